from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class CouponUsage(Base):
    """One accepted redemption. Written once, never updated."""

    __tablename__ = "coupon_usages"
    __table_args__ = (
        Index("ix_coupon_usages_coupon_user", "coupon_id", "user_id"),
        Index("ix_coupon_usages_coupon_used_at", "coupon_id", "used_at"),
        Index("ix_coupon_usages_user_used_at", "user_id", "used_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    coupon_id: Mapped[str] = mapped_column(
        ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(String(36))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

# =============================================================================
# 🎟️ models/coupon.py
# Coupon-Modell (SQLAlchemy 2.0) – Angebot, Limits, Scope und Stacking-Regeln
# =============================================================================

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON, DateTime, Enum, Index, Integer, Numeric, String, Text
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CouponType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    DEPLETED = "depleted"

    @property
    def is_terminal(self) -> bool:
        return self in (CouponStatus.EXPIRED, CouponStatus.DEPLETED)


class StackabilityRule(str, enum.Enum):
    NONE = "none"            # nicht kombinierbar
    ALL = "all"              # mit allem kombinierbar
    CATEGORY = "category"    # nur mit Coupons derselben Kategorie
    EXCLUSIVE = "exclusive"  # exklusiv, wie NONE


class CouponScope(str, enum.Enum):
    GLOBAL = "global"
    USER_SPECIFIC = "user_specific"
    AFFILIATE = "affiliate"
    EVENT_SPECIFIC = "event_specific"
    CATEGORY_SPECIFIC = "category_specific"


# Scope -> Attribut, das bei diesem Scope gesetzt sein muss
SCOPE_RESTRICTION_FIELD = {
    CouponScope.USER_SPECIFIC: "user_id",
    CouponScope.AFFILIATE: "affiliate_id",
    CouponScope.EVENT_SPECIFIC: "event_id",
    CouponScope.CATEGORY_SPECIFIC: "category_id",
}


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        Index("ix_coupons_status_expires_at", "status", "expires_at"),
        Index("ix_coupons_created_by_created_at", "created_by", "created_at"),
        Index("ix_coupons_affiliate_id_status", "affiliate_id", "status"),
    )

    # =========================================================================
    # 🧩 Identität
    # =========================================================================
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # =========================================================================
    # 💶 Rabatt
    # =========================================================================
    type: Mapped[CouponType] = mapped_column(_enum_column(CouponType), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    minimum_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    maximum_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))

    # =========================================================================
    # 🔄 Status & Zeitfenster
    # =========================================================================
    status: Mapped[CouponStatus] = mapped_column(
        _enum_column(CouponStatus), default=CouponStatus.ACTIVE, nullable=False
    )
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # =========================================================================
    # 📊 Nutzungslimits
    # =========================================================================
    max_uses: Mapped[Optional[int]] = mapped_column(Integer)
    max_uses_per_user: Mapped[Optional[int]] = mapped_column(Integer)
    current_uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # =========================================================================
    # 🧱 Stacking
    # =========================================================================
    stackability_rule: Mapped[StackabilityRule] = mapped_column(
        _enum_column(StackabilityRule), default=StackabilityRule.ALL, nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String(100))

    # =========================================================================
    # 🎯 Scope
    # =========================================================================
    scope: Mapped[CouponScope] = mapped_column(
        _enum_column(CouponScope), default=CouponScope.GLOBAL, nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    event_id: Mapped[Optional[str]] = mapped_column(String(36))
    category_id: Mapped[Optional[str]] = mapped_column(String(36))
    affiliate_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    affiliate_commission: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))

    # Tags, Produkt-/Kategorielisten, freie Daten; wird nicht ausgewertet
    metadata_json: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON)

    # =========================================================================
    # 🕓 Audit
    # =========================================================================
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return (
            f"<Coupon(code='{self.code}', type={self.type.value}, "
            f"status={self.status.value}, uses={self.current_uses}/{self.max_uses})>"
        )

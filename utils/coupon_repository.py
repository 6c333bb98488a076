from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import and_, case, func, literal, or_, select, update
from sqlalchemy.orm import Session

from models.coupon import Coupon, CouponStatus
from models.coupon_usage import CouponUsage


class CouponRepository:
    """Alle Datenbankzugriffe der Coupon-Engine über eine Session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_code(self, code: str) -> Optional[Coupon]:
        return self.db.scalars(select(Coupon).where(Coupon.code == code)).first()

    def get_by_id(self, coupon_id: str, *, refresh: bool = False) -> Optional[Coupon]:
        stmt = select(Coupon).where(Coupon.id == coupon_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return self.db.scalars(stmt).first()

    def find_by_codes(self, codes: Iterable[str]) -> list[Coupon]:
        codes = list(codes)
        if not codes:
            return []
        return list(self.db.scalars(select(Coupon).where(Coupon.code.in_(codes))))

    def code_exists(self, code: str) -> bool:
        return self.db.scalar(select(Coupon.id).where(Coupon.code == code)) is not None

    def existing_codes(self, codes: Iterable[str], chunk_size: int = 500) -> set[str]:
        codes = list(codes)
        found: set[str] = set()
        for start in range(0, len(codes), chunk_size):
            chunk = codes[start:start + chunk_size]
            found.update(self.db.scalars(select(Coupon.code).where(Coupon.code.in_(chunk))))
        return found

    def count_user_usages(self, coupon_id: str, user_id: str) -> int:
        return self.db.scalar(
            select(func.count())
            .select_from(CouponUsage)
            .where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
        ) or 0

    def count_usages(self, coupon_id: str) -> int:
        return self.db.scalar(
            select(func.count()).select_from(CouponUsage).where(CouponUsage.coupon_id == coupon_id)
        ) or 0

    def guarded_increment(self, coupon_id: str, now: datetime) -> bool:
        """
        Increment ``current_uses`` only while the coupon is active and below
        ``max_uses``; flips the status to depleted on the last slot.

        One UPDATE statement: the limit check and the increment cannot be
        separated by a concurrent redemption. Returns False when the guard
        did not match (race lost or coupon no longer active).
        """
        status_type = Coupon.__table__.c.status.type
        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                Coupon.status == CouponStatus.ACTIVE,
                or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
            )
            .values(
                current_uses=Coupon.current_uses + 1,
                status=case(
                    (
                        and_(
                            Coupon.max_uses.is_not(None),
                            Coupon.current_uses + 1 >= Coupon.max_uses,
                        ),
                        literal(CouponStatus.DEPLETED, status_type),
                    ),
                    else_=Coupon.status,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def add_usage(
        self,
        *,
        coupon_id: str,
        user_id: str,
        order_id: Optional[str],
        discount_amount: Decimal,
        currency: Optional[str],
        used_at: datetime,
    ) -> CouponUsage:
        usage = CouponUsage(
            coupon_id=coupon_id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
            currency=currency,
            used_at=used_at,
        )
        self.db.add(usage)
        self.db.flush()
        return usage

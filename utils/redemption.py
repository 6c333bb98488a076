"""
Einlösen von Coupons (atomar).

Ablauf pro ``apply``:
  1. erneute Validierung direkt gegen die Datenbank (ohne Cache)
  2. eigene Unit of Work: bedingtes UPDATE auf ``current_uses``
  3. Limit pro Benutzer unter der Zeilensperre des UPDATE prüfen
  4. CouponUsage schreiben, commit
  5. Cache-Eintrag invalidieren

Ein verlorenes Rennen um den letzten Slot ist ein normales Ergebnis
(``success=False``), kein Fehler. Nur Datenbankfehler werden als
``TransactionFailure`` weitergereicht, nach vollständigem Rollback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.coupon import CouponStatus
from utils.coupon_errors import (
    InvalidCouponInput,
    LimitScope,
    RejectReason,
    TransactionFailure,
)
from utils.coupon_repository import CouponRepository
from utils.coupon_snapshot import CouponSnapshot
from utils.coupon_validation import (
    CouponValidator,
    RedemptionContext,
    ValidationVerdict,
    status_rejection,
)
from utils.discount import compute_discount, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionResult:
    success: bool
    reason: Optional[RejectReason] = None
    error_message: Optional[str] = None
    limit_scope: Optional[LimitScope] = None
    coupon: Optional[CouponSnapshot] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    usage_id: Optional[str] = None

    @classmethod
    def from_verdict(cls, verdict: ValidationVerdict) -> "RedemptionResult":
        return cls(
            success=False,
            reason=verdict.reason,
            error_message=verdict.error_message,
            limit_scope=verdict.limit_scope,
        )


class RedemptionCoordinator:
    def __init__(self, session_factory: Callable[[], Session], validator: CouponValidator) -> None:
        self.session_factory = session_factory
        self.validator = validator

    @property
    def clock(self):
        return self.validator.clock

    @property
    def cache(self):
        return self.validator.cache

    def apply(self, code: str, context: RedemptionContext) -> RedemptionResult:
        if context.order_amount is None:
            raise InvalidCouponInput("Order amount is required to apply a coupon")

        with self.session_factory() as db:
            verdict = self.validator.validate(db, code, context, use_cache=False)
        if not verdict.valid:
            return RedemptionResult.from_verdict(verdict)

        coupon_id = verdict.coupon.id
        with self.session_factory() as db:
            try:
                result = self._redeem(db, coupon_id, context)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Redemption of coupon %s rolled back", verdict.coupon.code)
                raise TransactionFailure("Failed to apply coupon") from exc

        if result.success:
            self._invalidate(result.coupon.code)
        return result

    def _redeem(self, db: Session, coupon_id: str, context: RedemptionContext) -> RedemptionResult:
        repo = CouponRepository(db)
        now = self.clock.now()

        # Sperrt die Coupon-Zeile bis zum Commit/Rollback
        if not repo.guarded_increment(coupon_id, now):
            db.rollback()
            return self._guard_failure(repo, coupon_id)

        coupon = repo.get_by_id(coupon_id, refresh=True)
        snapshot = CouponSnapshot.from_model(coupon)

        if snapshot.max_uses_per_user is not None:
            used = repo.count_user_usages(coupon_id, context.user_id)
            if used >= snapshot.max_uses_per_user:
                db.rollback()
                return RedemptionResult(
                    success=False,
                    reason=RejectReason.LIMIT_EXCEEDED,
                    error_message="Coupon usage limit per user exceeded",
                    limit_scope=LimitScope.PER_USER,
                )

        order_amount = to_money(context.order_amount)
        discount = compute_discount(snapshot, order_amount)
        usage = repo.add_usage(
            coupon_id=coupon_id,
            user_id=context.user_id,
            order_id=context.order_id,
            discount_amount=discount,
            currency=snapshot.currency,
            used_at=now,
        )
        db.commit()

        logger.info(
            "✅ Coupon %s redeemed by user %s (usage %s, %s/%s)",
            snapshot.code,
            context.user_id,
            usage.id,
            snapshot.current_uses,
            snapshot.max_uses if snapshot.max_uses is not None else "∞",
        )
        return RedemptionResult(
            success=True,
            coupon=snapshot,
            discount_amount=discount,
            final_amount=order_amount - discount,
            usage_id=usage.id,
        )

    def _guard_failure(self, repo: CouponRepository, coupon_id: str) -> RedemptionResult:
        coupon = repo.get_by_id(coupon_id, refresh=True)
        if coupon is None:
            return RedemptionResult(
                success=False, reason=RejectReason.NOT_FOUND, error_message="Coupon not found"
            )

        snapshot = CouponSnapshot.from_model(coupon)
        if snapshot.status not in (CouponStatus.ACTIVE, CouponStatus.DEPLETED):
            return RedemptionResult.from_verdict(status_rejection(snapshot))

        logger.warning("⚠️ Coupon %s: usage limit reached by a concurrent redemption", snapshot.code)
        return RedemptionResult(
            success=False,
            reason=RejectReason.LIMIT_EXCEEDED,
            error_message="Coupon usage limit exceeded",
            limit_scope=LimitScope.GLOBAL,
        )

    def _invalidate(self, code: str) -> None:
        try:
            self.cache.invalidate(code)
        except Exception as exc:
            logger.warning("⚠️ Cache invalidation failed for %s: %s", code, exc)

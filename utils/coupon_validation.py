"""
Validierung von Coupon-Codes (Dry-Run).

Die Prüfungen laufen in fester Reihenfolge und brechen beim ersten Fehler ab,
damit Fehlermeldungen deterministisch bleiben:

  1. Code existiert            5. Limit pro Benutzer
  2. Status == active          6. Scope (User / Event / Kategorie)
  3. Zeitfenster               7. Mindestbestellwert
  4. Globales Limit            8. Kombinierbarkeit

Es wird nie geschrieben. Geschäftliche Ablehnungen kommen als
``ValidationVerdict`` zurück, nur Datenbankfehler als ``TransactionFailure``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.coupon import CouponScope, CouponStatus, StackabilityRule
from utils.clock import SystemClock
from utils.coupon_cache import CouponCache, NullCouponCache
from utils.coupon_errors import LimitScope, RejectReason, TransactionFailure
from utils.coupon_repository import CouponRepository
from utils.coupon_snapshot import CouponSnapshot
from utils.discount import compute_discount, to_money
from utils.stackability import can_stack

logger = logging.getLogger(__name__)


def normalize_lookup_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class RedemptionContext:
    user_id: str
    order_amount: Optional[Decimal] = None
    existing_coupons: tuple[str, ...] = ()
    event_id: Optional[str] = None
    category_id: Optional[str] = None
    product_ids: tuple[str, ...] = ()
    order_id: Optional[str] = None


@dataclass(frozen=True)
class ValidationVerdict:
    valid: bool
    reason: Optional[RejectReason] = None
    error_message: Optional[str] = None
    limit_scope: Optional[LimitScope] = None
    coupon: Optional[CouponSnapshot] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None

    @classmethod
    def reject(
        cls,
        reason: RejectReason,
        message: str,
        *,
        coupon: Optional[CouponSnapshot] = None,
        limit_scope: Optional[LimitScope] = None,
    ) -> "ValidationVerdict":
        return cls(
            valid=False,
            reason=reason,
            error_message=message,
            limit_scope=limit_scope,
            coupon=coupon,
        )


_STATUS_REASONS = {
    CouponStatus.INACTIVE: (RejectReason.INACTIVE, None),
    CouponStatus.EXPIRED: (RejectReason.EXPIRED, None),
    CouponStatus.DEPLETED: (RejectReason.LIMIT_EXCEEDED, LimitScope.GLOBAL),
}

_SCOPE_CHECKS = {
    CouponScope.USER_SPECIFIC: ("user_id", "user"),
    CouponScope.EVENT_SPECIFIC: ("event_id", "event"),
    CouponScope.CATEGORY_SPECIFIC: ("category_id", "category"),
}


def status_rejection(snapshot: CouponSnapshot) -> ValidationVerdict:
    reason, limit_scope = _STATUS_REASONS.get(snapshot.status, (RejectReason.INACTIVE, None))
    return ValidationVerdict.reject(
        reason,
        f"Coupon is {snapshot.status.value}",
        coupon=snapshot,
        limit_scope=limit_scope,
    )


class CouponValidator:
    def __init__(self, cache: Optional[CouponCache] = None, clock=None) -> None:
        self.cache = cache or NullCouponCache()
        self.clock = clock or SystemClock()

    def load_snapshot(
        self, repo: CouponRepository, code: str, use_cache: bool = True
    ) -> Optional[CouponSnapshot]:
        if use_cache:
            cached = self.cache.get(code)
            if cached is not None:
                return cached

        coupon = repo.get_by_code(code)
        if coupon is None:
            return None

        snapshot = CouponSnapshot.from_model(coupon)
        if use_cache:
            self.cache.set(code, snapshot)
        return snapshot

    def validate(
        self,
        db: Session,
        code: str,
        context: RedemptionContext,
        *,
        use_cache: bool = True,
    ) -> ValidationVerdict:
        normalized = normalize_lookup_code(code)
        repo = CouponRepository(db)
        try:
            verdict = self._run_checks(repo, normalized, context, use_cache)
        except SQLAlchemyError as exc:
            logger.exception("Coupon validation failed for %s", normalized)
            raise TransactionFailure("Coupon lookup failed") from exc

        if not verdict.valid:
            logger.debug("Coupon %s rejected: %s", normalized, verdict.reason.value)
        return verdict

    def _run_checks(
        self,
        repo: CouponRepository,
        code: str,
        context: RedemptionContext,
        use_cache: bool,
    ) -> ValidationVerdict:
        snapshot = self.load_snapshot(repo, code, use_cache) if code else None
        if snapshot is None:
            return ValidationVerdict.reject(RejectReason.NOT_FOUND, "Coupon not found")

        if snapshot.status is not CouponStatus.ACTIVE:
            return status_rejection(snapshot)

        # Ablauf wird live geprüft, unabhängig vom gespeicherten Status
        now = self.clock.now()
        if snapshot.expires_at is not None and now >= snapshot.expires_at:
            return ValidationVerdict.reject(
                RejectReason.EXPIRED, "Coupon has expired", coupon=snapshot
            )
        if snapshot.starts_at is not None and now < snapshot.starts_at:
            return ValidationVerdict.reject(
                RejectReason.NOT_YET_VALID, "Coupon is not yet valid", coupon=snapshot
            )

        if snapshot.max_uses is not None and snapshot.current_uses >= snapshot.max_uses:
            return ValidationVerdict.reject(
                RejectReason.LIMIT_EXCEEDED,
                "Coupon usage limit exceeded",
                coupon=snapshot,
                limit_scope=LimitScope.GLOBAL,
            )

        if snapshot.max_uses_per_user is not None:
            used = repo.count_user_usages(snapshot.id, context.user_id)
            if used >= snapshot.max_uses_per_user:
                return ValidationVerdict.reject(
                    RejectReason.LIMIT_EXCEEDED,
                    "Coupon usage limit per user exceeded",
                    coupon=snapshot,
                    limit_scope=LimitScope.PER_USER,
                )

        scope_check = _SCOPE_CHECKS.get(snapshot.scope)
        if scope_check is not None:
            attr, label = scope_check
            if getattr(snapshot, attr) != getattr(context, attr):
                return ValidationVerdict.reject(
                    RejectReason.SCOPE_MISMATCH,
                    f"Coupon is not valid for this {label}",
                    coupon=snapshot,
                )

        order_amount = to_money(context.order_amount) if context.order_amount is not None else None
        if order_amount is not None and order_amount < snapshot.minimum_amount:
            return ValidationVerdict.reject(
                RejectReason.BELOW_MINIMUM,
                f"Minimum order amount is {snapshot.minimum_amount}",
                coupon=snapshot,
            )

        supplied = sorted({normalize_lookup_code(c) for c in context.existing_coupons} - {""})
        if supplied:
            # Nur die Kategorie-Regel vergleicht gespeicherte Coupons,
            # none/exclusive entscheiden allein über die übergebene Liste
            if snapshot.stackability_rule is StackabilityRule.CATEGORY:
                applied = [CouponSnapshot.from_model(c) for c in repo.find_by_codes(supplied)]
            else:
                applied = supplied
            if not can_stack(snapshot, applied):
                return ValidationVerdict.reject(
                    RejectReason.STACK_CONFLICT,
                    "Coupon cannot be combined with existing coupons",
                    coupon=snapshot,
                )

        if order_amount is None:
            return ValidationVerdict(valid=True, coupon=snapshot)

        discount = compute_discount(snapshot, order_amount)
        return ValidationVerdict(
            valid=True,
            coupon=snapshot,
            discount_amount=discount,
            final_amount=order_amount - discount,
        )

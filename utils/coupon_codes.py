from __future__ import annotations

import logging
import secrets
import string
import time
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.coupon import Coupon
from utils.coupon_errors import CodeConflict, InvalidCouponInput
from utils.coupon_repository import CouponRepository

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 50
_BASE36 = string.digits + string.ascii_uppercase


def normalize_code(code: Optional[str]) -> str:
    normalized = (code or "").strip().upper()
    if not normalized:
        raise InvalidCouponInput("Coupon code must not be empty")
    if len(normalized) > MAX_CODE_LENGTH:
        raise InvalidCouponInput(f"Coupon code must be at most {MAX_CODE_LENGTH} characters")
    return normalized


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rest = divmod(value, 36)
        digits.append(_BASE36[rest])
    return "".join(reversed(digits))


def generate_code(prefix: str, index: int, now_ms: Optional[int] = None) -> str:
    """PREFIX + Zeitstempel (base36) + 6 Zufallszeichen + laufende Nummer, max. 50 Zeichen."""
    stamp = to_base36(now_ms if now_ms is not None else int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    cleaned_prefix = "".join(ch for ch in prefix.upper() if ch.isalnum())
    return f"{cleaned_prefix}{stamp}{random_part}{index}"[:MAX_CODE_LENGTH]


def _is_code_violation(exc: IntegrityError) -> bool:
    return "code" in str(exc.orig).lower()


class CodeRegistry:
    """
    Guarantees globally unique coupon codes.

    The pre-check only avoids a pointless INSERT; the unique index on
    ``coupons.code`` decides. A concurrent insert that slips between check and
    flush surfaces as ``CodeConflict``.
    """

    def is_available(self, db: Session, code: str) -> bool:
        return not CouponRepository(db).code_exists(code)

    def taken_codes(self, db: Session, codes: list[str]) -> set[str]:
        return CouponRepository(db).existing_codes(codes)

    def reserve(self, db: Session, coupon: Coupon) -> Coupon:
        coupon.code = normalize_code(coupon.code)
        if not self.is_available(db, coupon.code):
            raise CodeConflict(coupon.code)

        db.add(coupon)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            if not _is_code_violation(exc):
                raise
            logger.warning("⚠️ Code %s taken by a concurrent insert", coupon.code)
            raise CodeConflict(coupon.code) from exc
        return coupon

    def reserve_batch(self, db: Session, coupons: list[Coupon]) -> list[Coupon]:
        """All-or-nothing: a conflict anywhere rolls back the whole batch."""
        seen: set[str] = set()
        for coupon in coupons:
            coupon.code = normalize_code(coupon.code)
            if coupon.code in seen:
                raise CodeConflict(coupon.code)
            seen.add(coupon.code)

        taken = self.taken_codes(db, sorted(seen))
        if taken:
            raise CodeConflict(min(taken))

        db.add_all(coupons)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            if not _is_code_violation(exc):
                raise
            raise CodeConflict("batch") from exc
        return coupons

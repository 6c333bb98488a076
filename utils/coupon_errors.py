"""
Fehler-Taxonomie des Coupon-Service.

Geschäftliche Ablehnungen (abgelaufen, Limit erreicht, ...) werden als
``RejectReason`` in Verdicts/Results zurückgegeben. Exceptions gibt es nur für
Verwaltungsfehler (NotFound, Conflict, InvalidInput) und Infrastrukturfehler
(TransactionFailure).
"""

from __future__ import annotations

import enum


class RejectReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    LIMIT_EXCEEDED = "limit_exceeded"
    SCOPE_MISMATCH = "scope_mismatch"
    BELOW_MINIMUM = "below_minimum"
    STACK_CONFLICT = "stack_conflict"


class LimitScope(str, enum.Enum):
    GLOBAL = "global"
    PER_USER = "per_user"


class CouponError(Exception):
    """Basisklasse für alle Coupon-Fehler."""


class CouponNotFound(CouponError):
    def __init__(self, message: str = "Coupon not found") -> None:
        super().__init__(message)


class CodeConflict(CouponError):
    def __init__(self, code: str) -> None:
        super().__init__("Coupon code already exists")
        self.code = code


class InvalidCouponInput(CouponError):
    pass


class TransactionFailure(CouponError):
    """Infrastructure fault (lock timeout, lost connection). Safe to retry."""

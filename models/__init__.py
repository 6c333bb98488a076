# =============================================================================
# 📦 models/__init__.py
# -----------------------------------------------------------------------------
# Minimal & korrekt für Alembic
# =============================================================================

from .coupon import Coupon, CouponScope, CouponStatus, CouponType, StackabilityRule
from .coupon_usage import CouponUsage

__all__ = [
    "Coupon",
    "CouponUsage",
    "CouponType",
    "CouponStatus",
    "CouponScope",
    "StackabilityRule",
]

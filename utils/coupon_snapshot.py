from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from models.coupon import (
    Coupon,
    CouponScope,
    CouponStatus,
    CouponType,
    StackabilityRule,
)
from utils.clock import as_utc

_DECIMAL_FIELDS = {"discount_value", "minimum_amount", "maximum_discount"}
_DATETIME_FIELDS = {"starts_at", "expires_at"}
_ENUM_FIELDS = {
    "type": CouponType,
    "status": CouponStatus,
    "scope": CouponScope,
    "stackability_rule": StackabilityRule,
}


@dataclass(frozen=True)
class CouponSnapshot:
    """Read-only copy of a coupon row, detached from any session."""

    id: str
    code: str
    name: str
    type: CouponType
    status: CouponStatus
    scope: CouponScope
    discount_value: Decimal
    currency: Optional[str]
    minimum_amount: Decimal
    maximum_discount: Optional[Decimal]
    max_uses: Optional[int]
    max_uses_per_user: Optional[int]
    current_uses: int
    starts_at: Optional[datetime]
    expires_at: Optional[datetime]
    stackability_rule: StackabilityRule
    category: Optional[str]
    user_id: Optional[str]
    event_id: Optional[str]
    category_id: Optional[str]
    affiliate_id: Optional[str]

    @classmethod
    def from_model(cls, coupon: Coupon) -> "CouponSnapshot":
        return cls(
            id=coupon.id,
            code=coupon.code,
            name=coupon.name,
            type=CouponType(coupon.type),
            status=CouponStatus(coupon.status),
            scope=CouponScope(coupon.scope),
            discount_value=Decimal(coupon.discount_value),
            currency=coupon.currency,
            minimum_amount=Decimal(coupon.minimum_amount or 0),
            maximum_discount=(
                Decimal(coupon.maximum_discount) if coupon.maximum_discount is not None else None
            ),
            max_uses=coupon.max_uses,
            max_uses_per_user=coupon.max_uses_per_user,
            current_uses=coupon.current_uses or 0,
            starts_at=as_utc(coupon.starts_at),
            expires_at=as_utc(coupon.expires_at),
            stackability_rule=StackabilityRule(coupon.stackability_rule),
            category=coupon.category,
            user_id=coupon.user_id,
            event_id=coupon.event_id,
            category_id=coupon.category_id,
            affiliate_id=coupon.affiliate_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation, used by the Redis cache."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                out[f.name] = None
            elif f.name in _DECIMAL_FIELDS:
                out[f.name] = str(value)
            elif f.name in _DATETIME_FIELDS:
                out[f.name] = value.isoformat()
            elif f.name in _ENUM_FIELDS:
                out[f.name] = value.value
            else:
                out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CouponSnapshot":
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = data.get(f.name)
            if raw is None:
                values[f.name] = None
            elif f.name in _DECIMAL_FIELDS:
                values[f.name] = Decimal(raw)
            elif f.name in _DATETIME_FIELDS:
                values[f.name] = as_utc(datetime.fromisoformat(raw))
            elif f.name in _ENUM_FIELDS:
                values[f.name] = _ENUM_FIELDS[f.name](raw)
            else:
                values[f.name] = raw
        return cls(**values)

    def public_view(self) -> dict[str, Any]:
        """Coupon summary returned by validate/apply."""
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type.value,
            "discount_value": self.discount_value,
            "currency": self.currency,
            "minimum_amount": self.minimum_amount,
            "maximum_discount": self.maximum_discount,
        }

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from models.coupon import CouponType
from utils.coupon_errors import InvalidCouponInput

Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Amount) -> Decimal:
    """Converts to a 2-place Decimal. Floats go through ``str`` to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_discount(coupon, order_amount: Amount) -> Decimal:
    """
    Rabattbetrag für einen Coupon (Modell oder Snapshot) und einen Bestellwert.

    percentage: order_amount * discount_value / 100
    fixed:      discount_value
    Danach begrenzt auf den Bestellwert und ggf. auf maximum_discount.
    """
    amount = to_money(order_amount)
    if amount < 0:
        raise InvalidCouponInput("Order amount must not be negative")

    value = Decimal(str(coupon.discount_value))
    coupon_type = CouponType(coupon.type)
    if coupon_type is CouponType.PERCENTAGE:
        discount = amount * value / HUNDRED
    elif coupon_type is CouponType.FIXED:
        discount = value
    else:
        raise InvalidCouponInput(f"Unsupported coupon type: {coupon.type}")

    discount = min(discount, amount)
    if coupon.maximum_discount is not None:
        discount = min(discount, Decimal(str(coupon.maximum_discount)))

    return max(discount, Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)

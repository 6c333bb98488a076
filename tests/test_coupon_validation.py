from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from models.coupon import Coupon, CouponScope, CouponStatus, CouponType, StackabilityRule
from models.coupon_usage import CouponUsage
from conftest import NOW
from utils.coupon_errors import LimitScope, RejectReason, TransactionFailure
from utils.coupon_validation import RedemptionContext


def _ctx(user_id="u1", **kwargs):
    return RedemptionContext(user_id=user_id, **kwargs)


def _add_usage(session_factory, coupon_id, user_id):
    with session_factory() as session:
        session.add(
            CouponUsage(
                coupon_id=coupon_id,
                user_id=user_id,
                discount_amount=Decimal("1.00"),
                used_at=NOW,
            )
        )
        session.commit()


def test_welcome20_validates_with_discount(db, validator, make_coupon):
    make_coupon(
        "WELCOME20",
        discount_value=Decimal("20"),
        minimum_amount=Decimal("50"),
        max_uses=1000,
        max_uses_per_user=1,
    )

    verdict = validator.validate(db, "welcome20", _ctx(order_amount=Decimal("100")))

    assert verdict.valid
    assert verdict.discount_amount == Decimal("20.00")
    assert verdict.final_amount == Decimal("80.00")
    assert verdict.coupon.code == "WELCOME20"


def test_dry_run_without_order_amount(db, validator, make_coupon):
    make_coupon("DRYRUN", minimum_amount=Decimal("500"))

    verdict = validator.validate(db, "DRYRUN", _ctx())

    assert verdict.valid
    assert verdict.discount_amount is None
    assert verdict.final_amount is None


def test_unknown_code(db, validator):
    verdict = validator.validate(db, "NOPE", _ctx(order_amount=Decimal("10")))
    assert not verdict.valid
    assert verdict.reason is RejectReason.NOT_FOUND
    assert verdict.error_message == "Coupon not found"


def test_blank_code_is_not_found(db, validator):
    assert validator.validate(db, "   ", _ctx()).reason is RejectReason.NOT_FOUND


@pytest.mark.parametrize(
    "status, reason",
    [
        (CouponStatus.INACTIVE, RejectReason.INACTIVE),
        (CouponStatus.EXPIRED, RejectReason.EXPIRED),
        (CouponStatus.DEPLETED, RejectReason.LIMIT_EXCEEDED),
    ],
)
def test_non_active_status_rejected(db, validator, make_coupon, status, reason):
    make_coupon("STATUS", status=status)

    verdict = validator.validate(db, "STATUS", _ctx())

    assert not verdict.valid
    assert verdict.reason is reason
    assert verdict.error_message == f"Coupon is {status.value}"


def test_expiry_is_evaluated_live(db, validator, make_coupon):
    make_coupon("OLD", expires_at=NOW - timedelta(days=1))

    verdict = validator.validate(db, "OLD", _ctx(order_amount=Decimal("20")))

    assert not verdict.valid
    assert verdict.reason is RejectReason.EXPIRED
    assert verdict.error_message == "Coupon has expired"


def test_expiry_boundary_counts_as_expired(db, validator, clock, make_coupon):
    make_coupon("EDGE", expires_at=NOW + timedelta(minutes=5))
    assert validator.validate(db, "EDGE", _ctx()).valid

    clock.advance(minutes=5)
    assert validator.validate(db, "EDGE", _ctx(), use_cache=False).reason is RejectReason.EXPIRED


def test_not_yet_valid(db, validator, make_coupon):
    make_coupon("SOON", starts_at=NOW + timedelta(hours=1))

    verdict = validator.validate(db, "SOON", _ctx())

    assert verdict.reason is RejectReason.NOT_YET_VALID
    assert verdict.error_message == "Coupon is not yet valid"


def test_global_limit(db, validator, make_coupon):
    make_coupon("FULL", max_uses=3, current_uses=3)

    verdict = validator.validate(db, "FULL", _ctx())

    assert verdict.reason is RejectReason.LIMIT_EXCEEDED
    assert verdict.limit_scope is LimitScope.GLOBAL
    assert verdict.error_message == "Coupon usage limit exceeded"


def test_per_user_limit(db, validator, make_coupon, session_factory):
    coupon_id = make_coupon("ONCE", max_uses_per_user=1)
    _add_usage(session_factory, coupon_id, "u1")

    verdict = validator.validate(db, "ONCE", _ctx("u1"))
    assert verdict.reason is RejectReason.LIMIT_EXCEEDED
    assert verdict.limit_scope is LimitScope.PER_USER
    assert verdict.error_message == "Coupon usage limit per user exceeded"

    assert validator.validate(db, "ONCE", _ctx("u2")).valid


@pytest.mark.parametrize(
    "scope, field, label",
    [
        (CouponScope.USER_SPECIFIC, "user_id", "user"),
        (CouponScope.EVENT_SPECIFIC, "event_id", "event"),
        (CouponScope.CATEGORY_SPECIFIC, "category_id", "category"),
    ],
)
def test_scope_mismatch(db, validator, make_coupon, scope, field, label):
    make_coupon("SCOPED", scope=scope, **{field: "target"})

    verdict = validator.validate(db, "SCOPED", _ctx("someone-else"))

    assert verdict.reason is RejectReason.SCOPE_MISMATCH
    assert verdict.error_message == f"Coupon is not valid for this {label}"


def test_scope_match(db, validator, make_coupon):
    make_coupon("MYEVENT", scope=CouponScope.EVENT_SPECIFIC, event_id="ev-1")
    assert validator.validate(db, "MYEVENT", _ctx(event_id="ev-1")).valid


def test_affiliate_scope_has_no_gate(db, validator, make_coupon):
    make_coupon("PARTNER", scope=CouponScope.AFFILIATE, affiliate_id="aff-1")
    assert validator.validate(db, "PARTNER", _ctx()).valid


def test_below_minimum(db, validator, make_coupon):
    make_coupon("MIN50", minimum_amount=Decimal("50"))

    verdict = validator.validate(db, "MIN50", _ctx(order_amount=Decimal("49.99")))

    assert verdict.reason is RejectReason.BELOW_MINIMUM
    assert verdict.error_message == "Minimum order amount is 50.00"


def test_stack_conflict(db, validator, make_coupon):
    make_coupon("SOLO", stackability_rule=StackabilityRule.NONE)
    make_coupon("OTHER")

    verdict = validator.validate(db, "SOLO", _ctx(existing_coupons=("other",)))

    assert verdict.reason is RejectReason.STACK_CONFLICT
    assert verdict.error_message == "Coupon cannot be combined with existing coupons"


@pytest.mark.parametrize("rule", [StackabilityRule.EXCLUSIVE, StackabilityRule.NONE])
@pytest.mark.parametrize("existing", [("GHOST",), ("solo",)])
def test_exclusive_rejects_any_supplied_code(db, validator, make_coupon, rule, existing):
    make_coupon("SOLO", stackability_rule=rule)

    verdict = validator.validate(db, "SOLO", _ctx(existing_coupons=existing))

    assert verdict.reason is RejectReason.STACK_CONFLICT


def test_exclusive_ignores_blank_codes(db, validator, make_coupon):
    make_coupon("SOLO", stackability_rule=StackabilityRule.EXCLUSIVE)

    assert validator.validate(db, "SOLO", _ctx(existing_coupons=("", "  "))).valid


def test_category_stacking_ignores_unknown_codes(db, validator, make_coupon):
    make_coupon("SUMMER10", stackability_rule=StackabilityRule.CATEGORY, category="summer")
    make_coupon("SUMMER5", category="summer")

    verdict = validator.validate(
        db, "SUMMER10", _ctx(existing_coupons=("SUMMER5", "GHOST", "SUMMER10"))
    )

    assert verdict.valid


def test_category_stacking_against_stored_coupons(db, validator, make_coupon):
    make_coupon("SUMMER10", stackability_rule=StackabilityRule.CATEGORY, category="summer")
    make_coupon("SUMMER5", category="summer")
    make_coupon("WINTER5", category="winter")

    assert validator.validate(db, "SUMMER10", _ctx(existing_coupons=("SUMMER5",))).valid
    verdict = validator.validate(db, "SUMMER10", _ctx(existing_coupons=("WINTER5",)))
    assert verdict.reason is RejectReason.STACK_CONFLICT


def test_checks_run_in_order(db, validator, make_coupon):
    # abgelaufen UND Limit erreicht UND unter Mindestwert: Ablauf gewinnt
    make_coupon(
        "MANY",
        expires_at=NOW - timedelta(seconds=1),
        max_uses=1,
        current_uses=1,
        minimum_amount=Decimal("100"),
    )

    verdict = validator.validate(db, "MANY", _ctx(order_amount=Decimal("1")))

    assert verdict.reason is RejectReason.EXPIRED


def test_validate_never_writes(db, validator, make_coupon, session_factory):
    make_coupon("READONLY", type=CouponType.FIXED, discount_value=Decimal("5"), max_uses=10)

    for _ in range(5):
        assert validator.validate(db, "READONLY", _ctx(order_amount=Decimal("20"))).valid

    with session_factory() as session:
        coupon = session.scalars(select(Coupon).where(Coupon.code == "READONLY")).one()
        usages = session.scalar(select(func.count()).select_from(CouponUsage))
    assert coupon.current_uses == 0
    assert usages == 0


def test_validate_reads_through_cache(db, validator, cache, make_coupon):
    make_coupon("CACHED")

    validator.validate(db, "CACHED", _ctx())

    assert cache.get("CACHED") is not None


def test_database_error_becomes_transaction_failure(db, validator, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "scalars", boom)

    with pytest.raises(TransactionFailure):
        validator.validate(db, "ANY", _ctx())

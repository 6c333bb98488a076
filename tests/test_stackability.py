from types import SimpleNamespace

from models.coupon import StackabilityRule
from utils.stackability import can_stack


def _coupon(rule, category=None):
    return SimpleNamespace(stackability_rule=rule, category=category)


A = _coupon(StackabilityRule.CATEGORY, "summer")
B = _coupon(StackabilityRule.ALL, "summer")
C = _coupon(StackabilityRule.ALL, "winter")


def test_category_rule():
    assert can_stack(A, [B]) is True
    assert can_stack(A, [C]) is False
    assert can_stack(A, []) is True


def test_category_rule_needs_every_applied_coupon_in_category():
    assert can_stack(A, [B, C]) is False
    assert can_stack(A, [B, _coupon(StackabilityRule.NONE, "summer")]) is True


def test_category_rule_without_category_only_stacks_alone():
    candidate = _coupon(StackabilityRule.CATEGORY, None)
    assert can_stack(candidate, []) is True
    assert can_stack(candidate, [_coupon(StackabilityRule.ALL, None)]) is False


def test_none_and_exclusive_require_empty_set():
    for rule in (StackabilityRule.NONE, StackabilityRule.EXCLUSIVE):
        candidate = _coupon(rule)
        assert can_stack(candidate, []) is True
        assert can_stack(candidate, [B]) is False


def test_all_stacks_with_anything():
    candidate = _coupon(StackabilityRule.ALL)
    assert can_stack(candidate, [A, B, C, _coupon(StackabilityRule.NONE)]) is True


def test_only_candidate_rule_is_checked():
    # ein bereits angewendeter "none"-Coupon blockiert einen "all"-Kandidaten nicht
    assert can_stack(_coupon(StackabilityRule.ALL), [_coupon(StackabilityRule.NONE)]) is True


def test_unknown_rule_never_stacks():
    assert can_stack(_coupon("bogus"), []) is False

from __future__ import annotations

from typing import Iterable

from models.coupon import StackabilityRule


def can_stack(candidate, already_applied: Iterable) -> bool:
    """
    Prüft, ob ``candidate`` zusätzlich zu den bereits angewendeten Coupons
    genutzt werden darf.

    Asymmetrisch: geprüft wird nur die Toleranz des Kandidaten. Für eine
    vollständige Kombinationsprüfung müsste jedes Paar in beide Richtungen
    geprüft werden.
    """
    applied = list(already_applied)

    try:
        rule = StackabilityRule(candidate.stackability_rule)
    except ValueError:
        return False

    if rule in (StackabilityRule.NONE, StackabilityRule.EXCLUSIVE):
        return not applied

    if rule is StackabilityRule.ALL:
        return True

    if rule is StackabilityRule.CATEGORY:
        if not applied:
            return True
        if candidate.category is None:
            return False
        return all(other.category == candidate.category for other in applied)

    return False

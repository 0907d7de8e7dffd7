"""
Order status transition table.

Single source of truth for which status changes are legal and which ledger
side effect each one carries. Routers, the admin listing and OrderService all
consult this module instead of hand-coding per-status rules.
"""
import enum
from typing import Dict, FrozenSet, Optional

from backend.app.core.constants import PAID_FAMILY_STATUSES, VALID_ORDER_STATUSES


class LedgerEffect(enum.Enum):
    NONE = "none"
    GRANT_COMMISSION = "grant_commission"
    REVERSE_COMMISSION = "reverse_commission"


ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"approved", "paid", "rejected"}),
    "approved": frozenset({"paid", "shipped"}),
    "paid": frozenset({"approved", "shipped"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "rejected": frozenset(),
}


def is_paid_family(status: Optional[str]) -> bool:
    return status in PAID_FAMILY_STATUSES


def allowed_transitions(status: str) -> FrozenSet[str]:
    """Legal next statuses; empty for terminal or unknown statuses."""
    return ORDER_TRANSITIONS.get(status, frozenset())


def is_valid_status(status: str) -> bool:
    return status in VALID_ORDER_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in allowed_transitions(current)


def ledger_effect(current: str, target: str) -> LedgerEffect:
    """
    Commission side effect of moving from current to target.

    Entering `paid` from outside the paid family grants; leaving the paid
    family for a non-paid status reverses. Moves inside the family
    (paid -> shipped -> delivered) keep the existing commission.
    """
    if target == "paid" and not is_paid_family(current):
        return LedgerEffect.GRANT_COMMISSION
    if is_paid_family(current) and not is_paid_family(target):
        return LedgerEffect.REVERSE_COMMISSION
    return LedgerEffect.NONE

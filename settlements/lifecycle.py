"""
Settlement Lifecycle

DRAFT -> APPROVED -> CLOSED, plus the explicit CLOSED -> DRAFT reopen.
Only DRAFT settlements are editable.
"""

from .errors import StateViolation
from .models import Settlement, SettlementStatus

LEGAL_TRANSITIONS = {
    (SettlementStatus.DRAFT, SettlementStatus.APPROVED),
    (SettlementStatus.APPROVED, SettlementStatus.CLOSED),
    (SettlementStatus.CLOSED, SettlementStatus.DRAFT),
}


def can_transition(current: SettlementStatus, target: SettlementStatus) -> bool:
    return (current, target) in LEGAL_TRANSITIONS


def ensure_transition(settlement: Settlement, target: SettlementStatus) -> None:
    if not can_transition(settlement.status, target):
        raise StateViolation(
            f"Settlement {settlement.id} cannot move from {settlement.status.value} to {target.value}"
        )


def ensure_editable(settlement: Settlement, operation: str) -> None:
    if settlement.status != SettlementStatus.DRAFT:
        raise StateViolation(
            f"Cannot {operation} settlement {settlement.id} in {settlement.status.value} status; "
            "only DRAFT settlements are editable"
        )

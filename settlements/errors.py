"""
Error Taxonomy for the Settlement Engine

Every failure raised by the engine derives from SettlementError so transport
bindings can map it to a response without inspecting messages.
"""


class SettlementError(Exception):
    """Base class for all engine errors."""

    status = "failed"


class ValidationError(SettlementError, ValueError):
    """Malformed or missing input. Never persisted.

    Subclasses ValueError so callers that already treat ValueError as
    "bad input" keep working.
    """

    status = "validation_failed"

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class StateViolation(SettlementError):
    """Illegal transition or edit on a non-editable settlement."""

    status = "state_violation"


class ConcurrentModification(SettlementError):
    """Optimistic lock lost. The caller must reload and retry."""

    status = "concurrent_modification"

    def __init__(self, message: str, settlement_id: str | None = None):
        self.settlement_id = settlement_id
        super().__init__(message)


class NotAuthorized(StateViolation):
    """A gated transition (reopen) was refused for the acting user."""

    status = "not_authorized"


class NotFound(SettlementError):
    """Unknown identifier."""

    status = "not_found"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class TransientFailure(SettlementError):
    """Downstream catalog or accounting unavailable. Safe to retry."""

    status = "retry"


class RequestCancelled(SettlementError):
    """A long-running load was superseded by a newer request."""

    status = "cancelled"

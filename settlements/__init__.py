"""
COMMISSION SETTLEMENT ENGINE
Draft, adjust, approve and close commission settlements.
"""

from .config import Settings
from .errors import (
    ConcurrentModification,
    NotAuthorized,
    NotFound,
    RequestCancelled,
    SettlementError,
    StateViolation,
    TransientFailure,
    ValidationError,
)
from .models import Settlement, SettlementStatus
from .output import OutputBuilder
from .service import SettlementService

__all__ = [
    'SettlementService',
    'Settings',
    'Settlement',
    'SettlementStatus',
    'OutputBuilder',
    'SettlementError',
    'ValidationError',
    'StateViolation',
    'ConcurrentModification',
    'NotAuthorized',
    'NotFound',
    'TransientFailure',
    'RequestCancelled',
]

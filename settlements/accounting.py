"""
Accounting Gateway

Receives the single accounting entry a period closure may emit. The default
gateway queues entries in memory for a downstream poster to pick up.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from .errors import TransientFailure

logger = logging.getLogger(__name__)


@dataclass
class AccountingEntry:
    id: str
    period: str
    created_at: datetime
    settlement_ids: list[str] = field(default_factory=list)
    gross: Decimal = Decimal("0")
    withholdings: Decimal = Decimal("0")
    adjustments: Decimal = Decimal("0")
    net: Decimal = Decimal("0")
    currency: str = "EUR"
    notes: str | None = None


class QueuedAccountingGateway:
    """Thread-safe in-memory queue of accounting entries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: list[AccountingEntry] = []

    def enqueue(self, entry: AccountingEntry) -> str:
        try:
            self._deliver(entry)
        except (OSError, ConnectionError, TimeoutError) as e:
            logger.warning(f"Accounting gateway unavailable: {e}")
            raise TransientFailure(f"Accounting unavailable: {e}") from e
        logger.info(f"Accounting entry queued: {entry.id} ({len(entry.settlement_ids)} settlements, net {entry.net})")
        return entry.id

    def _deliver(self, entry: AccountingEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def discard(self, entry_id: str) -> None:
        with self._lock:
            self._entries = [e for e in self._entries if e.id != entry_id]

    @property
    def entries(self) -> list[AccountingEntry]:
        with self._lock:
            return list(self._entries)

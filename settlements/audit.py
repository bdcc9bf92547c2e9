"""
Audit Recorder

Append-only sink of settlement events. Entries are never mutated or removed
and are the only record of why a settlement's totals changed.
"""

import threading
import uuid
from copy import deepcopy
from datetime import datetime, timezone

from .models import AuditAction, AuditEntry


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditRecorder:
    """Builds and stores audit entries, time-ordered per settlement."""

    def __init__(self, clock=utcnow):
        self.clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, list[AuditEntry]] = {}

    def entry(self, settlement_id: str, action: AuditAction, actor: str, details: dict | None = None) -> AuditEntry:
        """Build an entry without recording it."""
        return AuditEntry(
            id=f"audit-{uuid.uuid4().hex[:12]}",
            settlement_id=settlement_id,
            action=action,
            actor=actor,
            timestamp=self.clock(),
            details=deepcopy(details or {}),
        )

    def append(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self._entries.setdefault(entry.settlement_id, []).append(entry)
        return entry

    def record(self, settlement_id: str, action: AuditAction, actor: str, details: dict | None = None) -> AuditEntry:
        return self.append(self.entry(settlement_id, action, actor, details))

    def entries_for(self, settlement_id: str) -> list[AuditEntry]:
        with self._lock:
            entries = list(self._entries.get(settlement_id, []))
        # Stable sort keeps insertion order for identical timestamps
        return sorted(entries, key=lambda e: e.timestamp)

    def count(self, settlement_id: str, action: AuditAction | None = None) -> int:
        return sum(1 for e in self.entries_for(settlement_id) if action is None or e.action == action)

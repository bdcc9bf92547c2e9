"""
Settlement Store

In-memory repository with per-settlement locks and optimistic versions.

Callers always receive deep copies. A mutation edits its copy and commits it
with the version it loaded; the commit fails with ConcurrentModification when
the stored version moved on in the meantime. The store also owns the
commission-item allocation registry, so reservations and settled flags change
inside the same commit as the settlement that owns them.
"""

import threading
import uuid
from contextlib import contextmanager
from copy import deepcopy

from .audit import AuditRecorder
from .errors import ConcurrentModification, NotFound
from .models import AuditEntry, Payout, PayoutStatus, Settlement


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class SettlementStore:
    """Thread-safe settlement repository."""

    def __init__(self, audit: AuditRecorder, lock_timeout: float = 5.0):
        self.audit = audit
        self.lock_timeout = lock_timeout
        self._index_lock = threading.RLock()
        self._locks: dict[str, threading.RLock] = {}
        self._settlements: dict[str, Settlement] = {}
        self._payouts: dict[str, Payout] = {}
        self._allocations: dict[str, str] = {}  # commission item id -> settlement id
        self._settled: set[str] = set()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, settlement_id: str) -> Settlement:
        with self._index_lock:
            settlement = self._settlements.get(settlement_id)
            if settlement is None:
                raise NotFound("Settlement", settlement_id)
            return deepcopy(settlement)

    def all(self) -> list[Settlement]:
        with self._index_lock:
            return [deepcopy(s) for s in self._settlements.values()]

    def allocated_item_ids(self) -> set[str]:
        with self._index_lock:
            return set(self._allocations)

    def settled_item_ids(self) -> set[str]:
        with self._index_lock:
            return set(self._settled)

    def payouts_for(self, settlement_id: str) -> list[Payout]:
        with self._index_lock:
            payouts = [deepcopy(p) for p in self._payouts.values() if p.settlement_id == settlement_id]
        return sorted(payouts, key=lambda p: p.created_at)

    def get_payout(self, payout_id: str) -> Payout:
        with self._index_lock:
            payout = self._payouts.get(payout_id)
            if payout is None:
                raise NotFound("Payout", payout_id)
            return deepcopy(payout)

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def _lock_for(self, settlement_id: str) -> threading.RLock:
        with self._index_lock:
            lock = self._locks.get(settlement_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[settlement_id] = lock
            return lock

    @contextmanager
    def locked(self, settlement_ids):
        """Hold the locks of several settlements, acquired in id order."""
        acquired = []
        try:
            for settlement_id in sorted(set(settlement_ids)):
                lock = self._lock_for(settlement_id)
                if not lock.acquire(timeout=self.lock_timeout):
                    raise ConcurrentModification(
                        f"Settlement {settlement_id} is locked by another operation", settlement_id
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _check_version(self, settlement_id: str, expected_version: int) -> Settlement:
        current = self._settlements.get(settlement_id)
        if current is None:
            raise NotFound("Settlement", settlement_id)
        if current.version != expected_version:
            raise ConcurrentModification(
                f"Settlement {settlement_id} changed (version {current.version}, expected {expected_version}); "
                "reload and retry",
                settlement_id,
            )
        return current

    def _check_payouts(self, settlement_id: str, expected: dict[str, PayoutStatus]) -> None:
        current = {p.id: p.status for p in self._payouts.values() if p.settlement_id == settlement_id}
        if current != expected:
            moved = sorted(pid for pid in current.keys() | expected.keys() if current.get(pid) != expected.get(pid))
            raise ConcurrentModification(
                f"Payouts of settlement {settlement_id} changed ({', '.join(moved)}); reload and retry",
                settlement_id,
            )

    def insert(self, settlement: Settlement, audit_entry: AuditEntry) -> Settlement:
        """Persist a new settlement and reserve its commission items."""
        item_ids = [line.commission_item_id for line in settlement.lines]
        with self._index_lock:
            if settlement.id in self._settlements:
                raise ConcurrentModification(f"Settlement {settlement.id} already exists")

            taken = sorted(i for i in item_ids if i in self._allocations or i in self._settled)
            if taken:
                raise ConcurrentModification(
                    f"Commission items already allocated to another settlement: {', '.join(taken)}"
                )

            stored = deepcopy(settlement)
            stored.version = 1
            self._settlements[stored.id] = stored
            for item_id in item_ids:
                self._allocations[item_id] = stored.id
            self.audit.append(audit_entry)
            return deepcopy(stored)

    def commit(
        self,
        working: Settlement,
        expected_version: int,
        audit_entry: AuditEntry,
        payouts: list[Payout] | None = None,
        expected_payouts: dict[str, PayoutStatus] | None = None,
    ) -> Settlement:
        """
        Replace a settlement (and optionally upsert its payouts) atomically.

        expected_payouts maps every payout id the caller read to the status it
        saw; any payout added or moved since then fails the commit.
        """
        with self.locked([working.id]), self._index_lock:
            self._check_version(working.id, expected_version)
            if expected_payouts is not None:
                self._check_payouts(working.id, expected_payouts)

            stored = deepcopy(working)
            stored.version = expected_version + 1
            self._settlements[stored.id] = stored
            for payout in payouts or []:
                self._payouts[payout.id] = deepcopy(payout)
            self.audit.append(audit_entry)
            return deepcopy(stored)

    def save_payout(self, payout: Payout, expected_status, audit_entry: AuditEntry) -> Payout:
        """Replace a payout if its stored status is still the one the caller saw."""
        with self.locked([payout.settlement_id]), self._index_lock:
            current = self._payouts.get(payout.id)
            if current is None:
                raise NotFound("Payout", payout.id)
            if current.status != expected_status:
                raise ConcurrentModification(
                    f"Payout {payout.id} changed (status {current.status.value}); reload and retry"
                )
            self._payouts[payout.id] = deepcopy(payout)
            self.audit.append(audit_entry)
            return deepcopy(payout)

    def delete(self, settlement_ids_versions: list[tuple[str, int]], audit_entries: list[AuditEntry]) -> None:
        """Remove settlements, release their reservations and drop their payouts."""
        ids = [sid for sid, _ in settlement_ids_versions]
        with self.locked(ids), self._index_lock:
            for settlement_id, expected_version in settlement_ids_versions:
                self._check_version(settlement_id, expected_version)

            for settlement_id in ids:
                del self._settlements[settlement_id]
                self._allocations = {k: v for k, v in self._allocations.items() if v != settlement_id}
                self._payouts = {k: p for k, p in self._payouts.items() if p.settlement_id != settlement_id}
            for entry in audit_entries:
                self.audit.append(entry)

    def commit_batch(
        self,
        workings: list[tuple[Settlement, int]],
        audit_entries: list[AuditEntry],
        settle_item_ids: list[str],
        on_each=None,
        on_complete=None,
    ) -> list[Settlement]:
        """
        Commit several settlements as one unit.

        Versions are checked for every settlement before anything changes.
        on_each(settlement) runs after each swap and on_complete() after all of
        them; if either raises, every swap and settled flag is rolled back and
        the error propagates. Audit entries are appended only on success.
        """
        with self.locked([w.id for w, _ in workings]), self._index_lock:
            for working, expected_version in workings:
                self._check_version(working.id, expected_version)

            snapshots: dict[str, Settlement] = {}
            newly_settled: list[str] = []
            try:
                for working, expected_version in workings:
                    snapshots[working.id] = self._settlements[working.id]
                    stored = deepcopy(working)
                    stored.version = expected_version + 1
                    self._settlements[stored.id] = stored
                    if on_each is not None:
                        on_each(deepcopy(stored))

                for item_id in settle_item_ids:
                    if item_id not in self._settled:
                        self._settled.add(item_id)
                        newly_settled.append(item_id)

                if on_complete is not None:
                    on_complete()
            except Exception:
                for settlement_id, snapshot in snapshots.items():
                    self._settlements[settlement_id] = snapshot
                self._settled.difference_update(newly_settled)
                raise

            for entry in audit_entries:
                self.audit.append(entry)
            return [deepcopy(self._settlements[w.id]) for w, _ in workings]

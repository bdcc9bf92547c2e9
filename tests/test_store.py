"""Tests for the settlement store: copies, versions, locks and batch commits."""

import threading

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from settlements.audit import AuditRecorder
from settlements.errors import ConcurrentModification, NotFound
from settlements.models import (
    AuditAction,
    Origin,
    Payout,
    PayoutStatus,
    ScopeKind,
    Settlement,
    SettlementLine,
    SettlementStatus,
    SourceKind,
)
from settlements.store import SettlementStore


def _settlement(settlement_id, item_ids):
    return Settlement(
        id=settlement_id,
        name=f"Settlement {settlement_id}",
        period="2025-03",
        scope_kind=ScopeKind.AGENT,
        scope_id="ag-1",
        origin=Origin.MIXED,
        status=SettlementStatus.APPROVED,
        created_by="maria",
        created_at=datetime(2025, 3, 31, tzinfo=timezone.utc),
        lines=[
            SettlementLine(
                id=f"line-{item_id}",
                settlement_id=settlement_id,
                commission_item_id=item_id,
                date="2025-03-05",
                source=SourceKind.CONTRACT,
                ref="CT-1",
                agent_id="ag-1",
                base_amount=Decimal("1000"),
                rate_applied=Decimal("0.03"),
                commission_amount=Decimal("30.00"),
            )
            for item_id in item_ids
        ],
    )


@pytest.fixture
def audit():
    return AuditRecorder()


@pytest.fixture
def store(audit):
    return SettlementStore(audit, lock_timeout=0.2)


def _insert(store, audit, settlement):
    return store.insert(settlement, audit.entry(settlement.id, AuditAction.CREATED, "maria"))


class TestReadsAndInsert:

    def test_insert_sets_first_version(self, store, audit):
        stored = _insert(store, audit, _settlement("stl-1", ["ci-1"]))

        assert stored.version == 1
        assert store.allocated_item_ids() == {"ci-1"}
        assert audit.count("stl-1") == 1

    def test_reads_are_copies(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))
        copy = store.get("stl-1")
        copy.name = "mutated"
        copy.lines.clear()

        stored = store.get("stl-1")
        assert stored.name == "Settlement stl-1"
        assert len(stored.lines) == 1

    def test_unknown_id(self, store):
        with pytest.raises(NotFound):
            store.get("stl-missing")

    def test_double_allocation_rejected(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))

        with pytest.raises(ConcurrentModification, match="ci-1"):
            _insert(store, audit, _settlement("stl-2", ["ci-2", "ci-1"]))
        assert store.allocated_item_ids() == {"ci-1"}
        assert audit.count("stl-2") == 0


class TestOptimisticVersions:

    def test_commit_bumps_version(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))
        working = store.get("stl-1")
        working.name = "Renamed"

        stored = store.commit(working, 1, audit.entry("stl-1", AuditAction.UPDATED, "maria"))
        assert stored.version == 2

    def test_lost_update_detected(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))
        first, second = store.get("stl-1"), store.get("stl-1")

        store.commit(first, first.version, audit.entry("stl-1", AuditAction.UPDATED, "a"))
        with pytest.raises(ConcurrentModification) as exc_info:
            store.commit(second, second.version, audit.entry("stl-1", AuditAction.UPDATED, "b"))

        assert exc_info.value.settlement_id == "stl-1"
        assert audit.count("stl-1", AuditAction.UPDATED) == 1

    def test_payout_statuses_checked_on_commit(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))
        payout = Payout(
            id="pay-1", settlement_id="stl-1", agent_id="ag-1", gross=Decimal("30.00"), adjustments=Decimal("0"),
            withholdings=Decimal("4.50"), net=Decimal("25.50"), created_at=datetime(2025, 3, 31, tzinfo=timezone.utc),
        )
        store.commit(store.get("stl-1"), 1, audit.entry("stl-1", AuditAction.PAYOUT_GENERATED, "maria"), payouts=[payout])

        sent = store.get_payout("pay-1")
        sent.status = PayoutStatus.SENT
        store.save_payout(sent, PayoutStatus.PENDING, audit.entry("stl-1", AuditAction.PAYOUT_STATUS_CHANGED, "maria"))

        with pytest.raises(ConcurrentModification, match="pay-1"):
            store.commit(
                store.get("stl-1"),
                2,
                audit.entry("stl-1", AuditAction.PAYOUT_GENERATED, "maria"),
                payouts=[],
                expected_payouts={"pay-1": PayoutStatus.PENDING},
            )
        assert store.get_payout("pay-1").status == PayoutStatus.SENT
        assert store.get("stl-1").version == 2

    def test_lock_timeout(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))
        held, release = threading.Event(), threading.Event()

        def hold():
            with store.locked(["stl-1"]):
                held.set()
                release.wait(5)

        worker = threading.Thread(target=hold)
        worker.start()
        held.wait(5)
        try:
            working = store.get("stl-1")
            with pytest.raises(ConcurrentModification, match="locked"):
                store.commit(working, 1, audit.entry("stl-1", AuditAction.UPDATED, "maria"))
        finally:
            release.set()
            worker.join()


class TestBatchCommit:

    def _close_all(self, store, ids):
        workings = []
        for settlement_id in ids:
            working = store.get(settlement_id)
            working.status = SettlementStatus.CLOSED
            workings.append((working, working.version))
        return workings

    def test_commit_batch(self, store, audit):
        for sid, item in (("stl-1", "ci-1"), ("stl-2", "ci-2")):
            _insert(store, audit, _settlement(sid, [item]))
        entries = [audit.entry(sid, AuditAction.STATUS_CHANGED, "finance") for sid in ("stl-1", "stl-2")]

        committed = store.commit_batch(self._close_all(store, ["stl-1", "stl-2"]), entries, ["ci-1", "ci-2"])

        assert [s.status for s in committed] == [SettlementStatus.CLOSED] * 2
        assert store.settled_item_ids() == {"ci-1", "ci-2"}
        assert audit.count("stl-1", AuditAction.STATUS_CHANGED) == 1

    def test_failure_restores_everything(self, store, audit):
        for sid, item in (("stl-1", "ci-1"), ("stl-2", "ci-2")):
            _insert(store, audit, _settlement(sid, [item]))
        entries = [audit.entry(sid, AuditAction.STATUS_CHANGED, "finance") for sid in ("stl-1", "stl-2")]
        seen = []

        def explode():
            raise RuntimeError("posting failed")

        with pytest.raises(RuntimeError):
            store.commit_batch(
                self._close_all(store, ["stl-1", "stl-2"]),
                entries,
                ["ci-1", "ci-2"],
                on_each=lambda s: seen.append(s.id),
                on_complete=explode,
            )

        assert seen == ["stl-1", "stl-2"]
        assert store.get("stl-1").status == SettlementStatus.APPROVED
        assert store.get("stl-2").version == 1
        assert store.settled_item_ids() == set()
        assert audit.count("stl-1", AuditAction.STATUS_CHANGED) == 0

    def test_stale_version_commits_nothing(self, store, audit):
        for sid, item in (("stl-1", "ci-1"), ("stl-2", "ci-2")):
            _insert(store, audit, _settlement(sid, [item]))
        workings = self._close_all(store, ["stl-1", "stl-2"])
        bumped = store.get("stl-2")
        store.commit(bumped, bumped.version, audit.entry("stl-2", AuditAction.UPDATED, "maria"))

        with pytest.raises(ConcurrentModification):
            store.commit_batch(workings, [], ["ci-1", "ci-2"])
        assert store.get("stl-1").status == SettlementStatus.APPROVED


class TestDelete:

    def test_delete_releases_items(self, store, audit):
        _insert(store, audit, _settlement("stl-1", ["ci-1"]))
        store.delete([("stl-1", 1)], [audit.entry("stl-1", AuditAction.DELETED, "maria")])

        with pytest.raises(NotFound):
            store.get("stl-1")
        assert store.allocated_item_ids() == set()
        assert audit.count("stl-1", AuditAction.DELETED) == 1

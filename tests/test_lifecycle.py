"""Tests for status transitions, edits, recalculation and reopen."""

import pytest
from decimal import Decimal

from settlements import SettlementService
from settlements.errors import NotAuthorized, StateViolation
from settlements.lifecycle import can_transition
from settlements.models import AuditAction, CommissionItem, SettlementStatus

CLOSE = {"confirmed": True, "create_accounting_entry": False}


class TestTransitionTable:

    @pytest.mark.parametrize("current,target", [
        (SettlementStatus.DRAFT, SettlementStatus.APPROVED),
        (SettlementStatus.APPROVED, SettlementStatus.CLOSED),
        (SettlementStatus.CLOSED, SettlementStatus.DRAFT),
    ])
    def test_legal(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (SettlementStatus.DRAFT, SettlementStatus.CLOSED),
        (SettlementStatus.APPROVED, SettlementStatus.DRAFT),
        (SettlementStatus.CLOSED, SettlementStatus.APPROVED),
        (SettlementStatus.DRAFT, SettlementStatus.DRAFT),
    ])
    def test_illegal(self, current, target):
        assert not can_transition(current, target)


class TestApproveAndClose:

    def test_approve(self, service, make_settlement):
        settlement = make_settlement(["ci-1"])
        result = service.approve_settlement(settlement.id, actor="lead")

        assert result.success
        stored = service.get_settlement(settlement.id)
        assert stored.status == SettlementStatus.APPROVED
        assert service.audit.count(settlement.id, AuditAction.STATUS_CHANGED) == 1

    def test_approve_twice(self, service, make_settlement):
        settlement = make_settlement(["ci-1"])
        service.approve_settlement(settlement.id)
        with pytest.raises(StateViolation):
            service.approve_settlement(settlement.id)

    def test_draft_cannot_close(self, service, make_settlement):
        settlement = make_settlement(["ci-1"])
        with pytest.raises(StateViolation):
            service.close_settlement(settlement.id, CLOSE)
        assert service.get_settlement(settlement.id).status == SettlementStatus.DRAFT

    def test_close_single_settlement(self, service, make_settlement, provider):
        settlement = make_settlement(["ci-1", "ci-2"])
        service.approve_settlement(settlement.id)
        result = service.close_settlement(settlement.id, CLOSE, actor="finance")

        assert result.success
        stored = service.get_settlement(settlement.id)
        assert stored.status == SettlementStatus.CLOSED
        assert stored.closed_at is not None
        statuses = {i.id: i.status.value for i in provider.fetch_commission_items()}
        assert statuses["ci-1"] == "SETTLED"
        assert statuses["ci-2"] == "SETTLED"


class TestClosedSettlementsAreImmutable:

    @pytest.fixture
    def closed(self, service, make_settlement):
        settlement = make_settlement(["ci-1", "ci-3"])
        service.approve_settlement(settlement.id)
        service.close_settlement(settlement.id, CLOSE)
        return service.get_settlement(settlement.id)

    def test_update_rejected(self, service, closed):
        with pytest.raises(StateViolation):
            service.update_settlement(closed.id, {"name": "Renamed"})
        assert service.get_settlement(closed.id).name == closed.name
        assert service.get_settlement(closed.id).version == closed.version

    def test_recalculate_rejected(self, service, closed):
        with pytest.raises(StateViolation):
            service.recalculate_settlement(closed.id)

    def test_adjust_rejected(self, service, closed):
        with pytest.raises(StateViolation):
            service.apply_adjustment(
                closed.id, {"line_id": closed.lines[0].id, "amount": 1, "reason": "x"}
            )

    def test_reopen_returns_to_draft(self, service, closed):
        result = service.reopen_settlement(closed.id, actor="controller")

        assert result.success
        reopened = service.get_settlement(closed.id)
        assert reopened.status == SettlementStatus.DRAFT
        assert reopened.closed_at is None
        assert [l.id for l in reopened.lines] == [l.id for l in closed.lines]
        assert [l.net_amount for l in reopened.lines] == [l.net_amount for l in closed.lines]
        entries = service.get_audit_trail(closed.id)
        assert entries[-1].action == AuditAction.REOPENED
        assert entries[-1].actor == "controller"

    def test_reopened_items_stay_allocated(self, service, closed):
        service.reopen_settlement(closed.id)
        eligible = {i.id for i in service.list_eligible_commissions({"period": "2025-03"})}

        assert "ci-1" not in eligible
        assert "ci-3" not in eligible

    def test_reopen_requires_authorization(self, provider, settings, clock):
        guarded = SettlementService(
            catalog_provider=provider,
            settings=settings,
            clock=clock,
            reopen_authorizer=lambda actor, settlement: actor == "controller",
        )
        payload = {
            "scope": {"period": "2025-03", "scope_kind": "AGENT", "scope_id": "ag-3"},
            "selected_commission_ids": ["ci-5"],
            "name": "Marta March",
        }
        settlement = guarded.create_settlement(payload)
        guarded.approve_settlement(settlement.id)
        guarded.close_settlement(settlement.id, CLOSE)

        with pytest.raises(NotAuthorized):
            guarded.reopen_settlement(settlement.id, actor="agent")
        assert guarded.get_settlement(settlement.id).status == SettlementStatus.CLOSED

        guarded.reopen_settlement(settlement.id, actor="controller")
        assert guarded.get_settlement(settlement.id).status == SettlementStatus.DRAFT

    def test_draft_cannot_be_reopened(self, service, make_settlement):
        settlement = make_settlement(["ci-2"])
        with pytest.raises(StateViolation):
            service.reopen_settlement(settlement.id)


class TestUpdateAndRecalculate:

    def test_update_name_and_notes(self, service, make_settlement):
        settlement = make_settlement(["ci-1"])
        updated = service.update_settlement(settlement.id, {"name": " Renamed ", "notes": "checked"}, actor="maria")

        assert updated.name == "Renamed"
        assert updated.notes == "checked"
        assert updated.version == settlement.version + 1
        entry = service.get_audit_trail(settlement.id)[-1]
        assert entry.action == AuditAction.UPDATED
        assert entry.details["name"] == {"from": "March settlement", "to": "Renamed"}

    def test_recalculate_is_idempotent(self, service, make_settlement):
        settlement = make_settlement(["ci-1", "ci-2", "ci-3"])
        service.recalculate_settlement(settlement.id)
        first = service.get_settlement(settlement.id)
        service.recalculate_settlement(settlement.id)
        second = service.get_settlement(settlement.id)

        assert (first.gross, first.withholdings, first.net) == (second.gross, second.withholdings, second.net)
        assert first.net == settlement.net
        assert service.audit.count(settlement.id, AuditAction.RECALCULATED) == 2

    def test_recalculate_picks_up_new_rate_and_keeps_adjustments(self, service, make_settlement, provider):
        settlement = make_settlement(["ci-1"])
        line_id = settlement.lines[0].id
        service.apply_adjustment(settlement.id, {"line_id": line_id, "amount": 5, "reason": "bonus"})

        original = next(i for i in provider.fetch_commission_items() if i.id == "ci-1")
        provider.add_items([CommissionItem(**{**original.__dict__, "commission_rate": Decimal("0.05")})])

        result = service.recalculate_settlement(settlement.id)
        stored = service.get_settlement(settlement.id)

        assert "1 lines changed" in result.message
        assert stored.lines[0].commission_amount == Decimal("50.00")
        assert stored.lines[0].adjustments == Decimal("5.00")
        assert stored.lines[0].net_amount == Decimal("55.00")
        assert stored.net == Decimal("50.00") - Decimal("7.50") + Decimal("5.00")

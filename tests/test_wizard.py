"""Tests for settlement creation through the wizard stages."""

import pytest
from decimal import Decimal

from settlements.errors import ValidationError
from settlements.models import (
    AuditAction,
    Origin,
    ScopeKind,
    SettlementStatus,
    WizardScope,
)


class TestWizardStages:
    """Each stage on its own."""

    def test_define_scope_rejects_unknown_team(self, service):
        with pytest.raises(ValidationError, match="unknown team"):
            service.wizard.define_scope(WizardScope(period="2025-03", scope_kind=ScopeKind.TEAM, scope_id="team-z"))

    def test_select_eligible_items(self, service):
        scope = WizardScope(period="2025-03", scope_kind=ScopeKind.TEAM, scope_id="team-a")
        items = service.wizard.select(scope, ["ci-3", "ci-1"])

        assert [i.id for i in items] == ["ci-3", "ci-1"]

    def test_pending_items_excluded_when_only_approved(self, service):
        scope = WizardScope(period="2025-03", scope_kind=ScopeKind.TEAM, scope_id="team-a")
        eligible = {i.id for i in service.selector.eligible(scope)}

        assert eligible == {"ci-1", "ci-2", "ci-3", "ci-9"}

    def test_pending_items_included_on_request(self, service):
        scope = WizardScope(
            period="2025-03", scope_kind=ScopeKind.TEAM, scope_id="team-a", only_approved=False
        )
        eligible = {i.id for i in service.selector.eligible(scope)}

        assert "ci-4" in eligible
        assert "ci-8" not in eligible  # settled items never come back

    def test_origin_filter(self, service):
        scope = WizardScope(
            period="2025-03", scope_kind=ScopeKind.OFFICE, scope_id="off-mad", origin=Origin.RENTAL
        )
        assert [i.id for i in service.selector.eligible(scope)] == ["ci-2"]

    def test_calculate_is_pure(self, service):
        scope = WizardScope(period="2025-03", scope_kind=ScopeKind.TEAM, scope_id="team-a")
        preview = service.wizard.calculate(service.wizard.select(scope, ["ci-1", "ci-2", "ci-3"]))

        assert preview.net == Decimal("76.50")
        assert service.store.all() == []
        assert service.store.allocated_item_ids() == set()


class TestCreateSettlement:
    """End-to-end creation."""

    def test_three_items_at_three_percent(self, service, make_settlement):
        settlement = make_settlement(["ci-1", "ci-2", "ci-3"])

        assert settlement.status == SettlementStatus.DRAFT
        assert settlement.lines_count == 3
        assert settlement.gross == Decimal("90.00")
        assert settlement.withholdings == Decimal("13.50")
        assert settlement.net == Decimal("76.50")
        assert settlement.version == 1
        assert all(line.rate_applied == Decimal("0.03") for line in settlement.lines)

    def test_one_created_audit_entry(self, service, make_settlement):
        settlement = make_settlement(["ci-1"])
        entries = service.get_audit_trail(settlement.id)

        assert [e.action for e in entries] == [AuditAction.CREATED]
        assert entries[0].actor == "maria"
        assert entries[0].details["lines"] == 1

    def test_scope_names_resolved(self, make_settlement):
        settlement = make_settlement(["ci-1"])

        assert settlement.team_name == "Sales Alpha"
        assert settlement.office_id == "off-mad"
        assert settlement.office_name == "Madrid Centro"

    def test_item_override_rate(self, make_settlement):
        settlement = make_settlement(["ci-9"], scope_kind="AGENT", scope_id="ag-2")

        assert settlement.lines[0].rate_applied == Decimal("0.10")
        assert settlement.gross == Decimal("100.00")
        assert settlement.agent_name == "Luis Gil"

    def test_empty_selection_persists_nothing(self, service, make_settlement):
        with pytest.raises(ValidationError):
            make_settlement([])
        assert service.store.all() == []

    def test_ineligible_item_rejected(self, service, make_settlement):
        with pytest.raises(ValidationError, match="ci-4"):
            make_settlement(["ci-1", "ci-4"])
        assert service.store.all() == []
        assert service.store.allocated_item_ids() == set()

    def test_name_too_long(self, service, make_settlement):
        with pytest.raises(ValidationError, match="100"):
            make_settlement(["ci-1"], name="x" * 101)
        assert service.store.all() == []

    def test_items_reserved_by_draft(self, make_settlement):
        make_settlement(["ci-1"])

        with pytest.raises(ValidationError, match="ci-1"):
            make_settlement(["ci-1", "ci-2"], name="Second")

    def test_unknown_scope_kind(self, service):
        with pytest.raises(ValidationError):
            service.create_settlement(
                {"scope": {"period": "2025-03", "scope_kind": "REGION", "scope_id": "x"},
                 "selected_commission_ids": ["ci-1"], "name": "Bad"}
            )

"""
Settlement Wizard

Builds a new settlement in four stages:
1. Scope & period
2. Selection of eligible commission items
3. Calculation (preview only, nothing persisted)
4. Finalize (persist settlement, lines and CREATED audit entry)

A failure at any stage leaves nothing persisted.
"""

import logging
from decimal import Decimal

from .audit import AuditRecorder, utcnow
from .calculators import CommissionCalculator, SettlementTotalizer
from .catalog import CatalogCache
from .errors import ValidationError
from .models import (
    AuditAction,
    CalculationPreview,
    CommissionItem,
    ScopeKind,
    Settlement,
    SettlementLine,
    SettlementRequest,
    SettlementStatus,
    WizardScope,
)
from .selector import CommissionSelector
from .store import SettlementStore, new_id
from .validators import InputValidator

logger = logging.getLogger(__name__)


class SettlementWizard:
    """Orchestrates the four-stage settlement construction workflow."""

    def __init__(
        self,
        catalog: CatalogCache,
        store: SettlementStore,
        audit: AuditRecorder,
        selector: CommissionSelector,
        calculator: CommissionCalculator,
        totalizer: SettlementTotalizer,
        validator: InputValidator | None = None,
        clock=utcnow,
    ):
        self.catalog = catalog
        self.store = store
        self.audit = audit
        self.selector = selector
        self.calculator = calculator
        self.totalizer = totalizer
        self.validator = validator or InputValidator()
        self.clock = clock

    def build(self, request: SettlementRequest, actor: str) -> Settlement:
        """Run every stage for a complete wizard payload."""
        scope = self.define_scope(request.scope)
        items = self.select(scope, request.selected_ids)
        preview = self.calculate(items)
        return self.finalize(scope, preview, request.name, request.notes, actor)

    # Step 1
    def define_scope(self, scope: WizardScope) -> WizardScope:
        self.validator.validate_scope(scope)

        if scope.scope_kind == ScopeKind.OFFICE:
            known = self.catalog.office(scope.scope_id) is not None
        elif scope.scope_kind == ScopeKind.TEAM:
            known = self.catalog.team(scope.scope_id) is not None
        else:
            known = self.catalog.agent(scope.scope_id) is not None
        if not known:
            raise ValidationError(f"unknown {scope.scope_kind.value.lower()}: {scope.scope_id}")

        return scope

    # Step 2
    def select(self, scope: WizardScope, selected_ids: list[str], ticket=None) -> list[CommissionItem]:
        eligible = {item.id: item for item in self.selector.eligible(scope, ticket)}
        self.validator.validate_selection(selected_ids, set(eligible))
        return [eligible[item_id] for item_id in selected_ids]

    # Step 3
    def calculate(self, items: list[CommissionItem]) -> CalculationPreview:
        return self.calculator.calculate(items, self.catalog)

    # Step 4
    def finalize(
        self,
        scope: WizardScope,
        preview: CalculationPreview,
        name: str,
        notes: str | None,
        actor: str,
    ) -> Settlement:
        self.validator.validate_finalize(name, notes)
        if not preview.lines:
            raise ValidationError("at least one commission item must be selected")

        now = self.clock()
        settlement = Settlement(
            id=new_id("stl"),
            name=name.strip(),
            period=scope.period,
            scope_kind=scope.scope_kind,
            scope_id=scope.scope_id,
            origin=scope.origin,
            status=SettlementStatus.DRAFT,
            created_by=actor,
            created_at=now,
            notes=notes,
        )
        self._apply_scope_names(settlement)

        for calculated in preview.lines:
            item = calculated.item
            settlement.lines.append(
                SettlementLine(
                    id=new_id("line"),
                    settlement_id=settlement.id,
                    commission_item_id=item.id,
                    date=item.date,
                    source=item.source,
                    ref=item.ref,
                    entity_id=item.entity_id,
                    agent_id=item.agent_id,
                    agent_name=item.agent_name,
                    team_id=item.team_id,
                    team_name=item.team_name,
                    base_amount=item.base_amount,
                    rate_applied=calculated.rate,
                    commission_amount=calculated.commission,
                    adjustments=Decimal("0"),
                )
            )
        self.totalizer.recompute(settlement)

        entry = self.audit.entry(
            settlement.id,
            AuditAction.CREATED,
            actor,
            {
                "period": settlement.period,
                "scope_kind": settlement.scope_kind.value,
                "scope_id": settlement.scope_id,
                "lines": settlement.lines_count,
                "gross": str(settlement.gross),
                "withholdings": str(settlement.withholdings),
                "net": str(settlement.net),
            },
        )
        stored = self.store.insert(settlement, entry)
        logger.info(f"Settlement created: {stored.id} ({stored.lines_count} lines, net {stored.net})")
        return stored

    def _apply_scope_names(self, settlement: Settlement) -> None:
        if settlement.scope_kind == ScopeKind.AGENT:
            agent = self.catalog.agent(settlement.scope_id)
            settlement.agent_id = settlement.scope_id
            if agent is not None:
                settlement.agent_name = agent.name
                settlement.team_id = agent.team_id
                settlement.team_name = agent.team_name or None
                settlement.office_id = agent.office_id
                settlement.office_name = agent.office_name or None
        elif settlement.scope_kind == ScopeKind.TEAM:
            team = self.catalog.team(settlement.scope_id)
            settlement.team_id = settlement.scope_id
            if team is not None:
                settlement.team_name = team.name
                settlement.office_id = team.office_id
                settlement.office_name = team.office_name or None
        else:
            office = self.catalog.office(settlement.scope_id)
            settlement.office_id = settlement.scope_id
            if office is not None:
                settlement.office_name = office.name

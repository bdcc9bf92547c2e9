"""
Settlement Service - Main Facade

Wires the catalog, store, calculators and workflows together and exposes
every settlement operation to the transport bindings (Flask, Lambda).

Mutations follow the same pattern throughout:
1. Load a working copy
2. Check lifecycle rules
3. Apply the change and recompute aggregates
4. Commit with the loaded version plus exactly one audit entry
"""

import logging
import math
from collections import OrderedDict
from datetime import datetime

from .accounting import QueuedAccountingGateway
from .audit import AuditRecorder, utcnow
from .calculators import (
    AdjustmentCalculator,
    CommissionCalculator,
    PayoutCalculator,
    SettlementTotalizer,
    WithholdingPolicy,
)
from .calculators.amounts import ZERO
from .catalog import CatalogCache, InMemoryCatalog
from .closure import PeriodClosureOrchestrator, allow_all
from .config import Settings
from .epochs import RequestEpoch
from .errors import StateViolation, ValidationError
from .exports import SettlementExporter
from .ledger import AdjustmentLedger
from .lifecycle import ensure_editable, ensure_transition
from .models import (
    Adjustment,
    AdjustmentRequest,
    Agent,
    AuditAction,
    AuditEntry,
    ClosureOptions,
    ClosureReport,
    CommissionItem,
    ExportArtifact,
    Office,
    OperationResult,
    Page,
    Payout,
    PayoutMethod,
    PayoutStatus,
    ScopeKind,
    Settlement,
    SettlementLine,
    SettlementQuery,
    SettlementRequest,
    SettlementStatus,
    SettlementSummary,
    Team,
    WizardScope,
)
from .payouts import PayoutGenerator
from .selector import CommissionSelector
from .store import SettlementStore
from .validators import InputValidator
from .wizard import SettlementWizard

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def _parse_enum(enum_cls, value, label: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"invalid {label}: {value}. Must be one of: {allowed}")


def _parse_datetime(value, label: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an ISO-8601 datetime, got: {value!r}")


def _sort_key(field: str):
    def key(settlement: Settlement):
        value = getattr(settlement, field)
        if hasattr(value, "value"):
            value = value.value
        # None always sorts last in ascending order
        return (value is None, value if value is not None else 0)

    return key


class SettlementService:
    """
    Entry point for every settlement operation.

    The service holds no state of its own beyond its collaborators, so a
    single instance can be shared across request threads.
    """

    def __init__(
        self,
        catalog_provider=None,
        settings: Settings | None = None,
        accounting: QueuedAccountingGateway | None = None,
        reopen_authorizer=allow_all,
        clock=utcnow,
    ):
        self.settings = settings or Settings()
        self.clock = clock

        withholding = WithholdingPolicy(self.settings.withholding_rate)
        self.validator = InputValidator()
        self.catalog = CatalogCache(catalog_provider if catalog_provider is not None else InMemoryCatalog())
        self.audit = AuditRecorder(clock=clock)
        self.store = SettlementStore(self.audit, lock_timeout=self.settings.lock_timeout)
        self.accounting = accounting or QueuedAccountingGateway()

        self.commission_calculator = CommissionCalculator(withholding, self.settings.default_commission_rate)
        self.payout_calculator = PayoutCalculator(withholding)
        self.totalizer = SettlementTotalizer(withholding)
        self.selector = CommissionSelector(self.catalog, self.store)

        self.wizard = SettlementWizard(
            self.catalog,
            self.store,
            self.audit,
            self.selector,
            self.commission_calculator,
            self.totalizer,
            self.validator,
            clock,
        )
        self.ledger = AdjustmentLedger(
            self.store, self.audit, self.totalizer, AdjustmentCalculator(), self.validator, clock
        )
        self.payouts = PayoutGenerator(
            self.store, self.audit, self.catalog, self.payout_calculator, self.validator, clock
        )
        self.closure = PeriodClosureOrchestrator(
            self.store,
            self.audit,
            self.catalog,
            self.accounting,
            self.validator,
            reopen_authorizer=reopen_authorizer,
            currency=self.settings.currency,
            clock=clock,
        )
        self.exporter = SettlementExporter(self.settings.currency)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "SettlementService":
        provider = kwargs.pop("catalog_provider", None)
        if provider is None and settings.catalog_seed_path:
            provider = InMemoryCatalog.from_file(settings.catalog_seed_path)
            logger.info(f"Catalog seeded from {settings.catalog_seed_path}")
        return cls(catalog_provider=provider, settings=settings, **kwargs)

    @classmethod
    def from_env(cls, **kwargs) -> "SettlementService":
        return cls.from_settings(Settings.from_env(), **kwargs)

    # =========================================================================
    # Listing & reads
    # =========================================================================

    def list_settlements(self, filters=None, epoch: RequestEpoch | None = None) -> Page:
        """
        Filtered, sorted, paginated settlements.

        When an epoch is given the load runs under a fresh ticket and raises
        RequestCancelled if a newer load was started meanwhile.
        """
        query = self._query(filters)

        def load(ticket=None) -> Page:
            matches = self._matching(query, ticket)
            total = len(matches)
            start = (query.page - 1) * query.size
            return Page(
                items=matches[start:start + query.size],
                total=total,
                page=query.page,
                total_pages=math.ceil(total / query.size),
            )

        if epoch is not None:
            return epoch.run(load)
        return load()

    def _query(self, filters) -> SettlementQuery:
        if filters is None:
            query = SettlementQuery()
        elif isinstance(filters, SettlementQuery):
            query = filters
        else:
            try:
                query = SettlementQuery.from_dict(filters)
            except ValueError as e:
                raise ValidationError(f"invalid filter: {e}")
        self.validator.validate_query(query)
        return query

    def _matching(self, query: SettlementQuery, ticket=None) -> list[Settlement]:
        needle = query.q.lower() if query.q else None
        matches = []

        for settlement in self.store.all():
            if ticket is not None:
                ticket.raise_if_cancelled()

            if query.period and settlement.period != query.period:
                continue
            if query.office and settlement.office_id != query.office:
                continue
            if query.team and settlement.team_id != query.team:
                continue
            if query.agent and settlement.agent_id != query.agent:
                continue
            if query.status and settlement.status != query.status:
                continue
            if query.origin and settlement.origin != query.origin:
                continue

            created = settlement.created_at.date().isoformat()
            if query.date_from and created < query.date_from:
                continue
            if query.date_to and created > query.date_to:
                continue

            if needle:
                haystack = " ".join(
                    v for v in (settlement.name, settlement.office_name, settlement.created_by) if v
                ).lower()
                if needle not in haystack:
                    continue

            matches.append(settlement)

        descending = query.sort.startswith("-")
        field = query.sort.lstrip("-")
        matches.sort(key=_sort_key(field), reverse=descending)
        return matches

    def get_settlement(self, settlement_id: str) -> Settlement:
        return self.store.get(settlement_id)

    def list_settlement_lines(self, settlement_id: str) -> list[SettlementLine]:
        return self.store.get(settlement_id).lines

    def get_settlement_summary(self, settlement_id: str) -> SettlementSummary:
        settlement = self.store.get(settlement_id)

        by_source: OrderedDict[str, dict] = OrderedDict()
        for line in settlement.lines:
            bucket = by_source.setdefault(line.source.value, {"source": line.source.value, "count": 0, "amount": ZERO})
            bucket["count"] += 1
            bucket["amount"] += line.commission_amount

        return SettlementSummary(
            by_agent=self.payout_calculator.by_agent(settlement.lines),
            by_source=list(by_source.values()),
            totals={
                "lines": settlement.lines_count,
                "gross": settlement.gross,
                "withholdings": settlement.withholdings,
                "adjustments": settlement.adjustments,
                "net": settlement.net,
            },
        )

    def get_audit_trail(self, settlement_id: str) -> list[AuditEntry]:
        entries = self.audit.entries_for(settlement_id)
        # Deleted settlements keep their trail
        if not entries:
            self.store.get(settlement_id)
        return entries

    # =========================================================================
    # Creation & edits
    # =========================================================================

    def create_settlement(self, payload, actor: str = SYSTEM_ACTOR) -> Settlement:
        if isinstance(payload, SettlementRequest):
            request = payload
        else:
            try:
                request = SettlementRequest.from_dict(payload)
            except ValueError as e:
                raise ValidationError(f"invalid settlement request: {e}")
        return self.wizard.build(request, actor)

    def update_settlement(
        self, settlement_id: str, partial: dict, actor: str = SYSTEM_ACTOR, expected_version: int | None = None
    ) -> Settlement:
        self.validator.validate_update(partial)

        working = self.store.get(settlement_id)
        version = expected_version if expected_version is not None else working.version
        ensure_editable(working, "update")

        changes = {}
        if "name" in partial:
            changes["name"] = {"from": working.name, "to": partial["name"].strip()}
            working.name = partial["name"].strip()
        if "notes" in partial:
            changes["notes"] = {"from": working.notes, "to": partial["notes"]}
            working.notes = partial["notes"]
        working.updated_at = self.clock()

        entry = self.audit.entry(settlement_id, AuditAction.UPDATED, actor, changes)
        stored = self.store.commit(working, version, entry)
        logger.info(f"Settlement {settlement_id} updated by {actor}: {', '.join(changes)}")
        return stored

    def recalculate_settlement(self, settlement_id: str, actor: str = SYSTEM_ACTOR) -> OperationResult:
        """
        Re-resolve rates and base amounts from the catalog.

        Line adjustments are preserved; running it twice on an unchanged
        catalog yields the same aggregates.
        """
        working = self.store.get(settlement_id)
        version = working.version
        ensure_editable(working, "recalculate")

        items = {item.id: item for item in self.catalog.commission_items()}
        previous_net = working.net
        changed_lines = 0

        for line in working.lines:
            item = items.get(line.commission_item_id)
            if item is None:
                rate, base = line.rate_applied, line.base_amount
            else:
                rate, base = self.commission_calculator.resolve_rate(item, self.catalog), item.base_amount
            commission = self.commission_calculator.commission_for(base, rate)
            if (rate, base, commission) != (line.rate_applied, line.base_amount, line.commission_amount):
                changed_lines += 1
            line.rate_applied = rate
            line.base_amount = base
            line.commission_amount = commission

        self.totalizer.recompute(working)
        working.updated_at = self.clock()

        entry = self.audit.entry(
            settlement_id,
            AuditAction.RECALCULATED,
            actor,
            {"changed_lines": changed_lines, "net_before": str(previous_net), "net_after": str(working.net)},
        )
        self.store.commit(working, version, entry)
        logger.info(f"Settlement {settlement_id} recalculated: {changed_lines} lines changed, net {working.net}")
        return OperationResult(True, f"Settlement recalculated: {changed_lines} lines changed")

    def apply_adjustment(
        self, settlement_id: str, payload, actor: str = SYSTEM_ACTOR, expected_version: int | None = None
    ) -> Adjustment:
        if isinstance(payload, AdjustmentRequest):
            request = payload
        else:
            try:
                request = AdjustmentRequest.from_dict(payload)
            except ArithmeticError as e:
                raise ValidationError(f"adjustment value must be numeric: {e}")
        return self.ledger.apply(settlement_id, request, actor, expected_version)

    def delete_settlement(self, settlement_id: str, actor: str = SYSTEM_ACTOR) -> OperationResult:
        return self.delete_settlements([settlement_id], actor)

    def delete_settlements(self, settlement_ids: list[str], actor: str = SYSTEM_ACTOR) -> OperationResult:
        """Delete DRAFT settlements, all or nothing, releasing their items."""
        if not settlement_ids:
            raise ValidationError("at least one settlement id is required")

        settlements = [self.store.get(sid) for sid in dict.fromkeys(settlement_ids)]
        for settlement in settlements:
            ensure_editable(settlement, "delete")
            paid = [
                p.id
                for p in self.store.payouts_for(settlement.id)
                if p.status in (PayoutStatus.SENT, PayoutStatus.RECONCILED)
            ]
            if paid:
                raise StateViolation(
                    f"Settlement {settlement.id} has payouts already sent ({', '.join(paid)}) and cannot be deleted"
                )

        entries = [
            self.audit.entry(s.id, AuditAction.DELETED, actor, {"name": s.name, "lines": s.lines_count})
            for s in settlements
        ]
        self.store.delete([(s.id, s.version) for s in settlements], entries)
        logger.info(f"{len(settlements)} settlements deleted by {actor}")
        return OperationResult(True, f"{len(settlements)} settlements deleted")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def approve_settlement(self, settlement_id: str, actor: str = SYSTEM_ACTOR) -> OperationResult:
        working = self.store.get(settlement_id)
        version = working.version
        ensure_transition(working, SettlementStatus.APPROVED)
        if not working.lines:
            raise StateViolation(f"Settlement {settlement_id} has no lines and cannot be approved")

        working.status = SettlementStatus.APPROVED
        working.updated_at = self.clock()
        entry = self.audit.entry(
            settlement_id,
            AuditAction.STATUS_CHANGED,
            actor,
            {"from": SettlementStatus.DRAFT.value, "to": SettlementStatus.APPROVED.value},
        )
        self.store.commit(working, version, entry)
        logger.info(f"Settlement {settlement_id} approved by {actor}")
        return OperationResult(True, "Settlement approved")

    def close_settlement(self, settlement_id: str, options, actor: str = SYSTEM_ACTOR) -> OperationResult:
        report = self.closure.close_settlement(settlement_id, self._closure_options(options), actor)
        message = "Settlement closed"
        if report.accounting_entry_id:
            message += f" (accounting entry {report.accounting_entry_id})"
        return OperationResult(True, message)

    def close_period(
        self,
        period: str,
        options,
        actor: str = SYSTEM_ACTOR,
        scope_kind: ScopeKind | str | None = None,
        scope_id: str | None = None,
    ) -> ClosureReport:
        return self.closure.close_period(
            period,
            self._closure_options(options),
            actor,
            _parse_enum(ScopeKind, scope_kind, "scope_kind"),
            scope_id,
        )

    def _closure_options(self, options) -> ClosureOptions:
        if isinstance(options, ClosureOptions):
            return options
        return ClosureOptions.from_dict(options or {})

    def reopen_settlement(self, settlement_id: str, actor: str = SYSTEM_ACTOR) -> OperationResult:
        self.closure.reopen(settlement_id, actor)
        return OperationResult(True, "Settlement reopened as DRAFT")

    # =========================================================================
    # Payouts
    # =========================================================================

    def list_payouts(self, settlement_id: str) -> list[Payout]:
        self.store.get(settlement_id)
        return self.store.payouts_for(settlement_id)

    def generate_payouts(self, settlement_id: str, actor: str = SYSTEM_ACTOR) -> list[Payout]:
        return self.payouts.generate(settlement_id, actor)

    def update_payout_status(
        self, payout_id: str, status, actor: str = SYSTEM_ACTOR, paid_at=None
    ) -> OperationResult:
        target = _parse_enum(PayoutStatus, status, "payout status")
        payout = self.payouts.update_status(payout_id, target, actor, _parse_datetime(paid_at, "paid_at"))
        return OperationResult(True, f"Payout {payout.id} is now {payout.status.value}")

    def update_payout_details(
        self, payout_id: str, actor: str = SYSTEM_ACTOR, method=None, iban: str | None = None, concept: str | None = None
    ) -> Payout:
        return self.payouts.update_details(
            payout_id, actor, _parse_enum(PayoutMethod, method, "payout method"), iban, concept
        )

    def get_payout_receipt(self, payout_id: str) -> Payout:
        return self.payouts.receipt(payout_id)

    # =========================================================================
    # Exports
    # =========================================================================

    def export_settlement(self, settlement_id: str, fmt: str = "csv") -> ExportArtifact:
        settlement = self.store.get(settlement_id)
        return self.exporter.export_settlement(
            settlement, (fmt or "").lower(), self.payout_calculator.by_agent(settlement.lines)
        )

    def export_settlements(self, filters=None, fmt: str = "csv") -> ExportArtifact:
        query = self._query(filters)
        stem = f"settlements-{self.clock().strftime('%Y%m%d%H%M%S')}"
        return self.exporter.export_settlements(self._matching(query), (fmt or "").lower(), stem)

    # =========================================================================
    # Reference data
    # =========================================================================

    def list_offices(self) -> list[Office]:
        return sorted(self.catalog.offices(), key=lambda o: o.name)

    def list_teams(self, office_id: str | None = None) -> list[Team]:
        return sorted(self.catalog.teams(office_id), key=lambda t: t.name)

    def list_agents(self, team_id: str | None = None, office_id: str | None = None) -> list[Agent]:
        return sorted(self.catalog.agents(team_id, office_id), key=lambda a: a.name)

    def list_eligible_commissions(self, filters=None, epoch: RequestEpoch | None = None) -> list[CommissionItem]:
        if isinstance(filters, WizardScope):
            scope = filters
        else:
            try:
                scope = WizardScope.from_dict(filters or {})
            except ValueError as e:
                raise ValidationError(f"invalid filter: {e}")
        if scope.period:
            self.validator.validate_period(scope.period)

        if epoch is not None:
            return epoch.run(lambda ticket: self.selector.eligible(scope, ticket))
        return self.selector.eligible(scope)

    def refresh_catalog(self) -> None:
        self.catalog.refresh()

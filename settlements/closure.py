"""
Period Closure Orchestrator

Closes every APPROVED settlement of a period/scope as a single unit:

1. Validate: confirmation, accounting choice, settlement status, no held locks
2. Commit: transition to CLOSED, mark commission items settled, optionally
   queue one accounting entry, append one STATUS_CHANGED entry per settlement

If any settlement fails validation nothing is closed. If a commit step fails,
every transition already made is rolled back.
"""

import logging
from contextlib import ExitStack

from .accounting import AccountingEntry, QueuedAccountingGateway
from .audit import AuditRecorder, utcnow
from .calculators.amounts import ZERO
from .catalog import CatalogCache
from .errors import ConcurrentModification, NotAuthorized, StateViolation, ValidationError
from .lifecycle import ensure_transition
from .models import (
    AuditAction,
    ClosureOptions,
    ClosureReport,
    ScopeKind,
    Settlement,
    SettlementStatus,
)
from .store import SettlementStore, new_id
from .validators import InputValidator

logger = logging.getLogger(__name__)


def allow_all(actor: str, settlement: Settlement) -> bool:
    return True


class PeriodClosureOrchestrator:
    """Runs period closure, single-settlement closure and reopen."""

    def __init__(
        self,
        store: SettlementStore,
        audit: AuditRecorder,
        catalog: CatalogCache,
        accounting: QueuedAccountingGateway,
        validator: InputValidator | None = None,
        reopen_authorizer=allow_all,
        currency: str = "EUR",
        clock=utcnow,
    ):
        self.store = store
        self.audit = audit
        self.catalog = catalog
        self.accounting = accounting
        self.validator = validator or InputValidator()
        self.reopen_authorizer = reopen_authorizer
        self.currency = currency
        self.clock = clock

    def close_period(
        self,
        period: str,
        options: ClosureOptions,
        actor: str,
        scope_kind: ScopeKind | None = None,
        scope_id: str | None = None,
    ) -> ClosureReport:
        self.validator.validate_period(period)
        self.validator.validate_closure(options)

        candidate_ids = [
            s.id
            for s in self.store.all()
            if s.period == period and s.matches_scope(scope_kind, scope_id) and s.status != SettlementStatus.CLOSED
        ]
        if not candidate_ids:
            raise ValidationError(f"no open settlements to close for period {period}")

        report = ClosureReport(period=period, scope_kind=scope_kind, scope_id=scope_id)
        return self._close(candidate_ids, options, actor, report)

    def close_settlement(self, settlement_id: str, options: ClosureOptions, actor: str) -> ClosureReport:
        self.validator.validate_closure(options)
        settlement = self.store.get(settlement_id)
        ensure_transition(settlement, SettlementStatus.CLOSED)

        report = ClosureReport(period=settlement.period)
        report = self._close([settlement_id], options, actor, report)
        if settlement_id in report.locked:
            raise ConcurrentModification(report.failed[settlement_id], settlement_id)
        if not report.success:
            raise StateViolation(report.failed[settlement_id])
        return report

    def _close(self, settlement_ids: list[str], options: ClosureOptions, actor: str, report: ClosureReport):
        with ExitStack() as stack:
            # First pass: locks, then status of every settlement
            for settlement_id in sorted(settlement_ids):
                try:
                    stack.enter_context(self.store.locked([settlement_id]))
                except ConcurrentModification as e:
                    report.failed[settlement_id] = str(e)
                    report.locked.append(settlement_id)

            settlements = [self.store.get(sid) for sid in sorted(settlement_ids)]
            for settlement in settlements:
                if settlement.id in report.failed:
                    continue
                if settlement.status != SettlementStatus.APPROVED:
                    report.failed[settlement.id] = (
                        f"Settlement {settlement.id} is {settlement.status.value}; only APPROVED settlements can be closed"
                    )
                elif not settlement.lines:
                    report.failed[settlement.id] = f"Settlement {settlement.id} has no lines"

            if report.failed:
                logger.warning(
                    f"Closure of period {report.period} rejected: {len(report.failed)} of "
                    f"{len(settlement_ids)} settlements failed validation"
                )
                return report

            # Second pass: commit everything or nothing
            now = self.clock()
            accounting_entry = None
            if options.create_accounting_entry:
                accounting_entry = AccountingEntry(
                    id=new_id("acc"),
                    period=report.period,
                    created_at=now,
                    settlement_ids=[s.id for s in settlements],
                    gross=sum((s.gross for s in settlements), ZERO),
                    withholdings=sum((s.withholdings for s in settlements), ZERO),
                    adjustments=sum((s.adjustments for s in settlements), ZERO),
                    net=sum((s.net for s in settlements), ZERO),
                    currency=self.currency,
                    notes=options.notes,
                )

            workings = []
            audit_entries = []
            item_ids = []
            for settlement in settlements:
                version = settlement.version
                settlement.status = SettlementStatus.CLOSED
                settlement.closed_at = now
                settlement.updated_at = now
                settlement.accounting_entry_id = accounting_entry.id if accounting_entry else None
                workings.append((settlement, version))
                item_ids.extend(line.commission_item_id for line in settlement.lines)
                audit_entries.append(
                    self.audit.entry(
                        settlement.id,
                        AuditAction.STATUS_CHANGED,
                        actor,
                        {
                            "from": SettlementStatus.APPROVED.value,
                            "to": SettlementStatus.CLOSED.value,
                            "period": settlement.period,
                            "items_settled": len(settlement.lines),
                            "accounting_entry_id": settlement.accounting_entry_id,
                            "notes": options.notes,
                        },
                    )
                )

            previous_statuses = {}

            def settle_items(closed: Settlement) -> None:
                previous_statuses.update(self.catalog.mark_settled([line.commission_item_id for line in closed.lines]))

            def post_accounting() -> None:
                if accounting_entry is not None:
                    self.accounting.enqueue(accounting_entry)

            try:
                committed = self.store.commit_batch(
                    workings, audit_entries, item_ids, on_each=settle_items, on_complete=post_accounting
                )
            except Exception:
                self.catalog.restore(previous_statuses)
                logger.error(f"Closure of period {report.period} rolled back", exc_info=True)
                raise

        report.closed = [s.id for s in committed]
        report.total_net = sum((s.net for s in committed), ZERO)
        report.accounting_entry_id = accounting_entry.id if accounting_entry else None
        logger.info(
            f"Closed {len(report.closed)} settlements for period {report.period} "
            f"(net {report.total_net}, accounting entry {report.accounting_entry_id})"
        )
        return report

    def reopen(self, settlement_id: str, actor: str) -> Settlement:
        working = self.store.get(settlement_id)
        ensure_transition(working, SettlementStatus.DRAFT)
        if not self.reopen_authorizer(actor, working):
            raise NotAuthorized(f"{actor} is not allowed to reopen settlement {settlement_id}")

        version = working.version
        previous_entry = working.accounting_entry_id
        working.status = SettlementStatus.DRAFT
        working.closed_at = None
        working.accounting_entry_id = None
        working.updated_at = self.clock()

        entry = self.audit.entry(
            settlement_id,
            AuditAction.REOPENED,
            actor,
            {
                "from": SettlementStatus.CLOSED.value,
                "to": SettlementStatus.DRAFT.value,
                "previous_accounting_entry_id": previous_entry,
            },
        )
        stored = self.store.commit(working, version, entry)
        logger.info(f"Settlement {settlement_id} reopened by {actor}")
        return stored

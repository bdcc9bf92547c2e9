"""
Adjustment Ledger

Append-only manual corrections to settlement lines. Entries are never edited
or removed; a correction is reversed by applying an offsetting entry.
"""

import logging

from .audit import AuditRecorder, utcnow
from .calculators import AdjustmentCalculator, SettlementTotalizer
from .errors import ConcurrentModification, NotFound
from .lifecycle import ensure_editable
from .models import (
    AbsoluteAdjustment,
    Adjustment,
    AdjustmentRequest,
    AuditAction,
    PercentageAdjustment,
)
from .store import SettlementStore, new_id
from .validators import InputValidator

logger = logging.getLogger(__name__)


class AdjustmentLedger:
    """Applies adjustments to lines of DRAFT settlements."""

    def __init__(
        self,
        store: SettlementStore,
        audit: AuditRecorder,
        totalizer: SettlementTotalizer,
        calculator: AdjustmentCalculator | None = None,
        validator: InputValidator | None = None,
        clock=utcnow,
    ):
        self.store = store
        self.audit = audit
        self.totalizer = totalizer
        self.calculator = calculator or AdjustmentCalculator()
        self.validator = validator or InputValidator()
        self.clock = clock

    def apply(
        self,
        settlement_id: str,
        request: AdjustmentRequest,
        actor: str,
        expected_version: int | None = None,
    ) -> Adjustment:
        self.validator.validate_adjustment(request)

        working = self.store.get(settlement_id)
        loaded_version = working.version
        if expected_version is not None and expected_version != loaded_version:
            raise ConcurrentModification(
                f"Settlement {settlement_id} changed (version {loaded_version}, expected {expected_version}); "
                "reload and retry"
            )
        ensure_editable(working, "adjust")

        line = working.line(request.line_id)
        if line is None:
            raise NotFound("SettlementLine", request.line_id)

        if request.percent is not None:
            kind = PercentageAdjustment(percent=request.percent)
        else:
            kind = AbsoluteAdjustment(amount=request.amount)

        before = line.net_amount
        impact = self.calculator.impact(kind, before)
        now = self.clock()

        adjustment = Adjustment(
            id=new_id("adj"),
            line_id=line.id,
            kind=kind,
            impact=impact,
            amount_before=before,
            amount_after=before + impact,
            reason=request.reason.strip(),
            applied_by=actor,
            applied_at=now,
            attachment_url=request.attachment_url,
        )
        line.adjustment_history.append(adjustment)
        line.adjustments += impact
        self.totalizer.recompute(working)
        working.updated_at = now

        entry = self.audit.entry(
            settlement_id,
            AuditAction.LINE_ADJUSTED,
            actor,
            {
                "line_id": line.id,
                "adjustment_id": adjustment.id,
                "type": kind.type.value,
                "value": str(kind.value),
                "impact": str(impact),
                "before": str(before),
                "after": str(adjustment.amount_after),
                "reason": adjustment.reason,
                "settlement_net": str(working.net),
            },
        )
        self.store.commit(working, loaded_version, entry)
        logger.info(f"Line {line.id} of settlement {settlement_id} adjusted by {impact}")
        return adjustment

    def history(self, settlement_id: str, line_id: str) -> list[Adjustment]:
        settlement = self.store.get(settlement_id)
        line = settlement.line(line_id)
        if line is None:
            raise NotFound("SettlementLine", line_id)
        return list(line.adjustment_history)

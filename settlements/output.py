"""
Output Builder

Converts engine entities into JSON-ready dictionaries for API responses and
flat rows for exports.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from .models import (
    Adjustment,
    AgentTotals,
    AuditEntry,
    CalculationPreview,
    ClosureReport,
    CommissionItem,
    Page,
    Payout,
    Settlement,
    SettlementLine,
    SettlementSummary,
)


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _plain(value):
    """Make a nested structure JSON-friendly."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


SETTLEMENT_EXPORT_FIELDS = [
    "id", "name", "period", "scope_kind", "scope_id", "office_id", "office_name", "team_id", "team_name",
    "agent_id", "agent_name", "origin", "status", "lines_count", "gross", "withholdings", "adjustments",
    "net", "created_by", "created_at", "closed_at", "notes",
]

LINE_EXPORT_FIELDS = [
    "id", "settlement_id", "commission_item_id", "date", "source", "ref", "entity_id", "agent_id",
    "agent_name", "team_id", "team_name", "base_amount", "rate_applied", "commission_amount",
    "adjustments", "net_amount",
]


class OutputBuilder:
    """Builds API and export representations."""

    def settlement(self, settlement: Settlement, include_lines: bool = False) -> dict:
        result = {
            "id": settlement.id,
            "name": settlement.name,
            "period": settlement.period,
            "scope_kind": settlement.scope_kind.value,
            "scope_id": settlement.scope_id,
            "office_id": settlement.office_id,
            "office_name": settlement.office_name,
            "team_id": settlement.team_id,
            "team_name": settlement.team_name,
            "agent_id": settlement.agent_id,
            "agent_name": settlement.agent_name,
            "origin": settlement.origin.value,
            "status": settlement.status.value,
            "lines_count": settlement.lines_count,
            "gross": to_money(settlement.gross),
            "withholdings": to_money(settlement.withholdings),
            "adjustments": to_money(settlement.adjustments),
            "net": to_money(settlement.net),
            "version": settlement.version,
            "created_by": settlement.created_by,
            "created_at": _iso(settlement.created_at),
            "updated_at": _iso(settlement.updated_at),
            "closed_at": _iso(settlement.closed_at),
            "accounting_entry_id": settlement.accounting_entry_id,
            "notes": settlement.notes,
        }
        if include_lines:
            result["lines"] = [self.line(line) for line in settlement.lines]
        return result

    def line(self, line: SettlementLine) -> dict:
        return {
            "id": line.id,
            "settlement_id": line.settlement_id,
            "commission_item_id": line.commission_item_id,
            "date": line.date,
            "source": line.source.value,
            "ref": line.ref,
            "entity_id": line.entity_id,
            "agent_id": line.agent_id,
            "agent_name": line.agent_name,
            "team_id": line.team_id,
            "team_name": line.team_name,
            "base_amount": to_money(line.base_amount),
            "rate_applied": float(line.rate_applied),
            "commission_amount": to_money(line.commission_amount),
            "adjustments": to_money(line.adjustments),
            "net_amount": to_money(line.net_amount),
            "adjustment_history": [self.adjustment(a) for a in line.adjustment_history],
        }

    def adjustment(self, adjustment: Adjustment) -> dict:
        return {
            "id": adjustment.id,
            "line_id": adjustment.line_id,
            "type": adjustment.type.value,
            "value": float(adjustment.value),
            "amount": to_money(adjustment.impact),
            "amount_before": to_money(adjustment.amount_before),
            "amount_after": to_money(adjustment.amount_after),
            "reason": adjustment.reason,
            "attachment_url": adjustment.attachment_url,
            "applied_by": adjustment.applied_by,
            "applied_at": _iso(adjustment.applied_at),
        }

    def payout(self, payout: Payout) -> dict:
        return {
            "id": payout.id,
            "settlement_id": payout.settlement_id,
            "agent_id": payout.agent_id,
            "agent_name": payout.agent_name,
            "team_id": payout.team_id,
            "team_name": payout.team_name,
            "gross": to_money(payout.gross),
            "adjustments": to_money(payout.adjustments),
            "withholdings": to_money(payout.withholdings),
            "net": to_money(payout.net),
            "method": payout.method.value,
            "status": payout.status.value,
            "iban": payout.iban,
            "concept": payout.concept,
            "receipt_ref": payout.receipt_ref,
            "created_at": _iso(payout.created_at),
            "paid_at": _iso(payout.paid_at),
            "reconciled_at": _iso(payout.reconciled_at),
        }

    def audit_entry(self, entry: AuditEntry) -> dict:
        return {
            "id": entry.id,
            "settlement_id": entry.settlement_id,
            "action": entry.action.value,
            "actor": entry.actor,
            "timestamp": _iso(entry.timestamp),
            "details": _plain(entry.details),
        }

    def commission_item(self, item: CommissionItem) -> dict:
        return {
            "id": item.id,
            "date": item.date,
            "source": item.source.value,
            "ref": item.ref,
            "entity_id": item.entity_id,
            "agent_id": item.agent_id,
            "agent_name": item.agent_name,
            "team_id": item.team_id,
            "team_name": item.team_name,
            "origin": item.origin.value,
            "base_amount": to_money(item.base_amount),
            "commission_rate": float(item.commission_rate) if item.commission_rate is not None else None,
            "status": item.status.value,
        }

    def agent_totals(self, totals: AgentTotals) -> dict:
        return {
            "agent_id": totals.agent_id,
            "agent_name": totals.agent_name,
            "lines_count": totals.lines_count,
            "gross": to_money(totals.gross),
            "withholdings": to_money(totals.withholdings),
            "adjustments": to_money(totals.adjustments),
            "net": to_money(totals.net),
        }

    def preview(self, preview: CalculationPreview) -> dict:
        return {
            "total_items": preview.items_count,
            "gross_amount": to_money(preview.gross),
            "withholdings": to_money(preview.withholdings),
            "net_amount": to_money(preview.net),
            "by_agent": [self.agent_totals(t) for t in preview.by_agent],
        }

    def summary(self, summary: SettlementSummary) -> dict:
        return {
            "by_agent": [self.agent_totals(t) for t in summary.by_agent],
            "by_source": [
                {"source": s["source"], "count": s["count"], "amount": to_money(s["amount"])}
                for s in summary.by_source
            ],
            "totals": {
                "lines": summary.totals["lines"],
                "gross": to_money(summary.totals["gross"]),
                "withholdings": to_money(summary.totals["withholdings"]),
                "adjustments": to_money(summary.totals["adjustments"]),
                "net": to_money(summary.totals["net"]),
            },
        }

    def page(self, page: Page) -> dict:
        return {
            "items": [self.settlement(s) for s in page.items],
            "total": page.total,
            "page": page.page,
            "total_pages": page.total_pages,
        }

    def closure_report(self, report: ClosureReport) -> dict:
        return {
            "success": report.success,
            "period": report.period,
            "scope_kind": report.scope_kind.value if report.scope_kind else None,
            "scope_id": report.scope_id,
            "closed": report.closed,
            "failed": report.failed,
            "accounting_entry_id": report.accounting_entry_id,
            "total_net": to_money(report.total_net),
        }

    # Flat rows for CSV/JSON exports

    def settlement_row(self, settlement: Settlement) -> dict:
        data = self.settlement(settlement)
        return {field: data[field] for field in SETTLEMENT_EXPORT_FIELDS}

    def line_row(self, line: SettlementLine) -> dict:
        data = self.line(line)
        return {field: data[field] for field in LINE_EXPORT_FIELDS}

"""
Settlement Exports

CSV and JSON exports are flat UTF-8 tables, one row per line (single
settlement) or per settlement (listing). PDF exports render a settlement
statement with reportlab. Artifacts are rendered in memory; the caller
decides where the bytes go.
"""

import csv
import io
import json
import logging

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .errors import ValidationError
from .models import AgentTotals, ExportArtifact, Settlement
from .output import LINE_EXPORT_FIELDS, SETTLEMENT_EXPORT_FIELDS, OutputBuilder

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json; charset=utf-8",
    "pdf": "application/pdf",
}


def _fmt(value, currency: str) -> str:
    return f"{value:,.2f} {currency}"


class SettlementExporter:
    """Renders export artifacts."""

    def __init__(self, currency: str = "EUR", output: OutputBuilder | None = None):
        self.currency = currency
        self.output = output or OutputBuilder()

    @staticmethod
    def _check_format(fmt: str) -> None:
        if fmt not in CONTENT_TYPES:
            raise ValidationError(f"unsupported export format: {fmt}. Must be one of: csv, json, pdf")

    def export_settlement(self, settlement: Settlement, fmt: str, by_agent: list[AgentTotals]) -> ExportArtifact:
        self._check_format(fmt)
        rows = [self.output.line_row(line) for line in settlement.lines]

        if fmt == "csv":
            content = self._render_csv(LINE_EXPORT_FIELDS, rows)
        elif fmt == "json":
            content = self._render_json(rows)
        else:
            content = self._render_pdf(settlement, by_agent)

        logger.info(f"Settlement {settlement.id} exported as {fmt} ({len(content)} bytes)")
        return ExportArtifact(
            filename=f"{settlement.id}.{fmt}",
            format=fmt,
            content_type=CONTENT_TYPES[fmt],
            content=content,
            rows=len(rows),
        )

    def export_settlements(self, settlements: list[Settlement], fmt: str, stem: str = "settlements") -> ExportArtifact:
        self._check_format(fmt)
        if fmt == "pdf":
            raise ValidationError("settlement listings can only be exported as csv or json")
        rows = [self.output.settlement_row(s) for s in settlements]

        if fmt == "csv":
            content = self._render_csv(SETTLEMENT_EXPORT_FIELDS, rows)
        else:
            content = self._render_json(rows)

        logger.info(f"{len(rows)} settlements exported as {fmt}")
        return ExportArtifact(
            filename=f"{stem}.{fmt}",
            format=fmt,
            content_type=CONTENT_TYPES[fmt],
            content=content,
            rows=len(rows),
        )

    def _render_csv(self, fields: list[str], rows: list[dict]) -> bytes:
        buffer = io.StringIO(newline="")
        writer = csv.DictWriter(buffer, fieldnames=fields)
        writer.writeheader()
        for row in rows:
            writer.writerow({k: "" if v is None else v for k, v in row.items()})
        return buffer.getvalue().encode("utf-8")

    def _render_json(self, rows: list[dict]) -> bytes:
        return json.dumps(rows, indent=2, ensure_ascii=False).encode("utf-8")

    def _render_pdf(self, settlement: Settlement, by_agent: list[AgentTotals]) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=landscape(A4),
            rightMargin=0.5 * inch,
            leftMargin=0.5 * inch,
            topMargin=0.5 * inch,
            bottomMargin=0.5 * inch,
        )
        styles = getSampleStyleSheet()
        currency = self.currency
        elements = [
            Paragraph(settlement.name, styles["Heading1"]),
            Paragraph(
                f"Period {settlement.period} &middot; {settlement.scope_kind.value.title()} "
                f"{settlement.office_name or settlement.team_name or settlement.agent_name or settlement.scope_id} "
                f"&middot; Status {settlement.status.value}",
                styles["Normal"],
            ),
            Spacer(1, 12),
        ]

        totals = Table(
            [
                ["Gross", "Withholdings", "Adjustments", "Net", "Lines"],
                [
                    _fmt(settlement.gross, currency),
                    _fmt(settlement.withholdings, currency),
                    _fmt(settlement.adjustments, currency),
                    _fmt(settlement.net, currency),
                    str(settlement.lines_count),
                ],
            ]
        )
        totals.setStyle(self._table_style())
        elements.extend([totals, Spacer(1, 12), Paragraph("By agent", styles["Heading3"])])

        agents = Table(
            [["Agent", "Lines", "Gross", "Withholdings", "Adjustments", "Net"]]
            + [
                [
                    t.agent_name or t.agent_id,
                    str(t.lines_count),
                    _fmt(t.gross, currency),
                    _fmt(t.withholdings, currency),
                    _fmt(t.adjustments, currency),
                    _fmt(t.net, currency),
                ]
                for t in by_agent
            ]
        )
        agents.setStyle(self._table_style())
        elements.extend([agents, Spacer(1, 12), Paragraph("Lines", styles["Heading3"])])

        lines = Table(
            [["Date", "Source", "Ref", "Agent", "Base", "Rate", "Commission", "Adjustments", "Net"]]
            + [
                [
                    line.date,
                    line.source.value,
                    line.ref,
                    line.agent_name or line.agent_id,
                    _fmt(line.base_amount, currency),
                    f"{line.rate_applied * 100:.2f}%",
                    _fmt(line.commission_amount, currency),
                    _fmt(line.adjustments, currency),
                    _fmt(line.net_amount, currency),
                ]
                for line in settlement.lines
            ],
            repeatRows=1,
        )
        lines.setStyle(self._table_style())
        elements.append(lines)

        doc.build(elements)
        return buffer.getvalue()

    @staticmethod
    def _table_style() -> TableStyle:
        return TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1e293b")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#cbd5e1")),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f8fafc")]),
            ]
        )

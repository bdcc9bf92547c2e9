"""
Domain Models for the Commission Settlement Engine

These dataclasses provide type-safe representations of all settlement entities.
All monetary values use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


def _decimal(value) -> Decimal:
    return Decimal(str(value))


def _optional_decimal(value) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


# =============================================================================
# ENUMERATIONS
# =============================================================================


class SettlementStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    CLOSED = "CLOSED"


class ScopeKind(str, Enum):
    OFFICE = "OFFICE"
    TEAM = "TEAM"
    AGENT = "AGENT"


class Origin(str, Enum):
    SALE = "SALE"
    RENTAL = "RENTAL"
    MIXED = "MIXED"


class SourceKind(str, Enum):
    OFFER = "OFFER"
    RESERVATION = "RESERVATION"
    CONTRACT = "CONTRACT"
    COLLECTION = "COLLECTION"


class CommissionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SETTLED = "SETTLED"


class AdjustmentType(str, Enum):
    AMOUNT = "AMOUNT"
    PERCENT = "PERCENT"


class PayoutMethod(str, Enum):
    TRANSFER = "TRANSFER"
    CASH = "CASH"
    OTHER = "OTHER"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    RECONCILED = "RECONCILED"
    CANCELLED = "CANCELLED"


class AuditAction(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    RECALCULATED = "RECALCULATED"
    LINE_ADJUSTED = "LINE_ADJUSTED"
    STATUS_CHANGED = "STATUS_CHANGED"
    REOPENED = "REOPENED"
    PAYOUT_GENERATED = "PAYOUT_GENERATED"
    PAYOUT_UPDATED = "PAYOUT_UPDATED"
    PAYOUT_STATUS_CHANGED = "PAYOUT_STATUS_CHANGED"
    DELETED = "DELETED"


# =============================================================================
# CATALOG (REFERENCE DATA)
# =============================================================================


@dataclass
class Office:
    id: str
    name: str
    code: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Office":
        return cls(id=data["id"], name=data["name"], code=data.get("code", ""))


@dataclass
class Team:
    id: str
    name: str
    office_id: str
    office_name: str = ""
    commission_rate: Decimal | None = None  # Team plan rate

    @classmethod
    def from_dict(cls, data: dict) -> "Team":
        return cls(
            id=data["id"],
            name=data["name"],
            office_id=data["office_id"],
            office_name=data.get("office_name", ""),
            commission_rate=_optional_decimal(data.get("commission_rate")),
        )


@dataclass
class Agent:
    id: str
    name: str
    team_id: str
    office_id: str
    email: str = ""
    team_name: str = ""
    office_name: str = ""
    iban: str | None = None
    commission_rate: Decimal | None = None  # Individual plan rate, overrides team

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        return cls(
            id=data["id"],
            name=data["name"],
            team_id=data["team_id"],
            office_id=data["office_id"],
            email=data.get("email", ""),
            team_name=data.get("team_name", ""),
            office_name=data.get("office_name", ""),
            iban=data.get("iban"),
            commission_rate=_optional_decimal(data.get("commission_rate")),
        )


@dataclass
class CommissionItem:
    """An eligible commission record supplied by the catalog."""

    id: str
    date: str  # YYYY-MM-DD
    source: SourceKind
    ref: str
    agent_id: str
    origin: Origin
    base_amount: Decimal
    status: CommissionStatus
    entity_id: str = ""
    agent_name: str = ""
    team_id: str = ""
    team_name: str = ""
    commission_rate: Decimal | None = None  # Deal-specific override

    @property
    def period(self) -> str:
        return self.date[:7]

    @classmethod
    def from_dict(cls, data: dict) -> "CommissionItem":
        return cls(
            id=data["id"],
            date=data["date"],
            source=SourceKind(data["source"]),
            ref=data.get("ref", ""),
            agent_id=data["agent_id"],
            origin=Origin(data["origin"]),
            base_amount=_decimal(data["base_amount"]),
            status=CommissionStatus(data.get("status", CommissionStatus.APPROVED.value)),
            entity_id=data.get("entity_id", ""),
            agent_name=data.get("agent_name", ""),
            team_id=data.get("team_id", ""),
            team_name=data.get("team_name", ""),
            commission_rate=_optional_decimal(data.get("commission_rate")),
        )


# =============================================================================
# ADJUSTMENTS (tagged union)
# =============================================================================


@dataclass(frozen=True)
class AbsoluteAdjustment:
    """Fixed monetary delta."""

    amount: Decimal

    @property
    def type(self) -> AdjustmentType:
        return AdjustmentType.AMOUNT

    @property
    def value(self) -> Decimal:
        return self.amount


@dataclass(frozen=True)
class PercentageAdjustment:
    """Delta expressed as a percentage of the line's current net amount."""

    percent: Decimal

    @property
    def type(self) -> AdjustmentType:
        return AdjustmentType.PERCENT

    @property
    def value(self) -> Decimal:
        return self.percent


AdjustmentKind = AbsoluteAdjustment | PercentageAdjustment


@dataclass(frozen=True)
class Adjustment:
    """Immutable ledger entry attached to a settlement line."""

    id: str
    line_id: str
    kind: AdjustmentKind
    impact: Decimal
    amount_before: Decimal
    amount_after: Decimal
    reason: str
    applied_by: str
    applied_at: datetime
    attachment_url: str | None = None

    @property
    def type(self) -> AdjustmentType:
        return self.kind.type

    @property
    def value(self) -> Decimal:
        return self.kind.value


@dataclass
class AdjustmentRequest:
    """Raw adjustment input before validation.

    Exactly one of amount/percent must be set. Kept loose on purpose so the
    validator can report every problem at once.
    """

    line_id: str
    reason: str
    amount: Decimal | None = None
    percent: Decimal | None = None
    attachment_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "AdjustmentRequest":
        amount = data.get("amount")
        percent = data.get("percent")
        # API form: {"type": "AMOUNT"|"PERCENT", "value": n}
        if "type" in data and "value" in data:
            if data["type"] == AdjustmentType.PERCENT.value:
                percent = data["value"]
            else:
                amount = data["value"]
        return cls(
            line_id=data.get("line_id", ""),
            reason=data.get("reason", "") or "",
            amount=_optional_decimal(amount),
            percent=_optional_decimal(percent),
            attachment_url=data.get("attachment_url"),
        )


# =============================================================================
# SETTLEMENT
# =============================================================================


@dataclass
class SettlementLine:
    """One allocation of a single commission item into a settlement."""

    id: str
    settlement_id: str
    commission_item_id: str
    date: str
    source: SourceKind
    ref: str
    agent_id: str
    base_amount: Decimal
    rate_applied: Decimal
    commission_amount: Decimal
    adjustments: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")
    entity_id: str = ""
    agent_name: str = ""
    team_id: str = ""
    team_name: str = ""
    adjustment_history: list[Adjustment] = field(default_factory=list)


@dataclass
class Settlement:
    """A batch of commission allocations for a period and scope."""

    id: str
    name: str
    period: str
    scope_kind: ScopeKind
    scope_id: str
    origin: Origin
    status: SettlementStatus
    created_by: str
    created_at: datetime
    office_id: str | None = None
    office_name: str | None = None
    team_id: str | None = None
    team_name: str | None = None
    agent_id: str | None = None
    agent_name: str | None = None
    gross: Decimal = Decimal("0")
    withholdings: Decimal = Decimal("0")
    adjustments: Decimal = Decimal("0")
    net: Decimal = Decimal("0")
    lines_count: int = 0
    version: int = 0
    notes: str | None = None
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    accounting_entry_id: str | None = None
    lines: list[SettlementLine] = field(default_factory=list)

    def line(self, line_id: str) -> SettlementLine | None:
        for candidate in self.lines:
            if candidate.id == line_id:
                return candidate
        return None

    def matches_scope(self, scope_kind: ScopeKind | None, scope_id: str | None) -> bool:
        if scope_kind is None or not scope_id:
            return True
        if scope_kind == ScopeKind.OFFICE:
            return self.office_id == scope_id
        if scope_kind == ScopeKind.TEAM:
            return self.team_id == scope_id
        return self.agent_id == scope_id


# =============================================================================
# WIZARD INPUT
# =============================================================================


@dataclass
class WizardScope:
    """Stage 1: scope and period."""

    period: str
    scope_kind: ScopeKind | None
    scope_id: str
    origin: Origin = Origin.MIXED
    only_approved: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "WizardScope":
        kind = data.get("scope_kind")
        return cls(
            period=data.get("period", "") or "",
            scope_kind=ScopeKind(kind) if kind else None,
            scope_id=data.get("scope_id", "") or "",
            origin=Origin(data.get("origin") or Origin.MIXED.value),
            only_approved=data.get("only_approved", True),
        )


@dataclass
class SettlementRequest:
    """Complete wizard payload for creating a settlement."""

    scope: WizardScope
    selected_ids: list[str]
    name: str
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SettlementRequest":
        return cls(
            scope=WizardScope.from_dict(data.get("scope", data)),
            selected_ids=list(data.get("selected_commission_ids", [])),
            name=data.get("name", "") or "",
            notes=data.get("notes"),
        )


@dataclass
class AgentTotals:
    """Per-agent aggregate used for previews, summaries and payouts."""

    agent_id: str
    agent_name: str = ""
    team_id: str = ""
    team_name: str = ""
    lines_count: int = 0
    gross: Decimal = Decimal("0")
    withholdings: Decimal = Decimal("0")
    adjustments: Decimal = Decimal("0")
    net: Decimal = Decimal("0")


@dataclass
class CalculatedLine:
    """Stage 3 result for a single commission item."""

    item: CommissionItem
    rate: Decimal
    commission: Decimal


@dataclass
class CalculationPreview:
    """Stage 3 result: derived totals, nothing persisted."""

    lines: list[CalculatedLine] = field(default_factory=list)
    by_agent: list[AgentTotals] = field(default_factory=list)
    gross: Decimal = Decimal("0")
    withholdings: Decimal = Decimal("0")
    net: Decimal = Decimal("0")

    @property
    def items_count(self) -> int:
        return len(self.lines)


# =============================================================================
# PAYOUTS / AUDIT / CLOSURE
# =============================================================================


@dataclass
class Payout:
    """Money owed to one agent from one settlement."""

    id: str
    settlement_id: str
    agent_id: str
    gross: Decimal
    adjustments: Decimal
    withholdings: Decimal
    net: Decimal
    created_at: datetime
    method: PayoutMethod = PayoutMethod.TRANSFER
    status: PayoutStatus = PayoutStatus.PENDING
    agent_name: str = ""
    team_id: str = ""
    team_name: str = ""
    iban: str | None = None
    concept: str = ""
    receipt_ref: str | None = None
    paid_at: datetime | None = None
    reconciled_at: datetime | None = None


@dataclass(frozen=True)
class AuditEntry:
    id: str
    settlement_id: str
    action: AuditAction
    actor: str
    timestamp: datetime
    details: dict = field(default_factory=dict)


@dataclass
class ClosureOptions:
    """Caller-supplied confirmation for closing settlements.

    Fields stay untyped until validation so a non-boolean can be rejected
    rather than coerced.
    """

    confirmed: object = False
    create_accounting_entry: object = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ClosureOptions":
        return cls(
            confirmed=data.get("confirmed", False),
            create_accounting_entry=data.get("create_accounting_entry"),
            notes=data.get("notes") or data.get("accounting_notes"),
        )


@dataclass
class ClosureReport:
    """Aggregate outcome of a batch closure."""

    period: str
    scope_kind: ScopeKind | None = None
    scope_id: str | None = None
    closed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    locked: list[str] = field(default_factory=list)
    accounting_entry_id: str | None = None
    total_net: Decimal = Decimal("0")

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass
class OperationResult:
    success: bool
    message: str


@dataclass
class SettlementQuery:
    """Filters, paging and sort for listing settlements."""

    period: str | None = None
    office: str | None = None
    team: str | None = None
    agent: str | None = None
    status: SettlementStatus | None = None
    origin: Origin | None = None
    q: str | None = None
    date_from: str | None = None  # YYYY-MM-DD, inclusive
    date_to: str | None = None  # YYYY-MM-DD, inclusive
    page: int = 1
    size: int = 25
    sort: str = "-created_at"

    @classmethod
    def from_dict(cls, data: dict) -> "SettlementQuery":
        status = data.get("status")
        origin = data.get("origin")
        return cls(
            period=data.get("period") or None,
            office=data.get("office") or None,
            team=data.get("team") or None,
            agent=data.get("agent") or None,
            status=SettlementStatus(status) if status else None,
            origin=Origin(origin) if origin else None,
            q=data.get("q") or None,
            date_from=data.get("from") or data.get("date_from") or None,
            date_to=data.get("to") or data.get("date_to") or None,
            page=int(data.get("page", 1)),
            size=int(data.get("size", 25)),
            sort=data.get("sort") or "-created_at",
        )


@dataclass
class Page:
    items: list
    total: int
    page: int
    total_pages: int


@dataclass
class SettlementSummary:
    by_agent: list[AgentTotals]
    by_source: list[dict]
    totals: dict


@dataclass
class ExportArtifact:
    """A rendered export, held in memory until the caller sends or stores it."""

    filename: str
    format: str
    content_type: str
    content: bytes
    rows: int

"""
Payout Generator

Derives one payout per agent from a settlement's lines and tracks its
reconciliation status as the payment rail reports back.
"""

import logging
from copy import deepcopy
from datetime import datetime

from .audit import AuditRecorder, utcnow
from .calculators import PayoutCalculator
from .catalog import CatalogCache
from .errors import StateViolation, ValidationError
from .models import AuditAction, Payout, PayoutMethod, PayoutStatus, SettlementStatus
from .store import SettlementStore, new_id
from .validators import InputValidator

logger = logging.getLogger(__name__)

PAYOUT_TRANSITIONS = {
    (PayoutStatus.PENDING, PayoutStatus.SENT),
    (PayoutStatus.SENT, PayoutStatus.RECONCILED),
}


class PayoutGenerator:
    """Creates, regenerates and advances agent payouts."""

    def __init__(
        self,
        store: SettlementStore,
        audit: AuditRecorder,
        catalog: CatalogCache,
        calculator: PayoutCalculator,
        validator: InputValidator | None = None,
        clock=utcnow,
    ):
        self.store = store
        self.audit = audit
        self.catalog = catalog
        self.calculator = calculator
        self.validator = validator or InputValidator()
        self.clock = clock

    def active(self, settlement_id: str) -> list[Payout]:
        return [p for p in self.store.payouts_for(settlement_id) if p.status != PayoutStatus.CANCELLED]

    def generate(self, settlement_id: str, actor: str) -> list[Payout]:
        """
        Generate payouts for every agent in the settlement.

        Regeneration policy:
        - same net as the existing payout: left untouched
        - different net: existing payout cancelled, new PENDING payout created
        - agent no longer present: existing payout cancelled
        Payouts already SENT or RECONCILED are never replaced.
        """
        working = self.store.get(settlement_id)
        if working.status == SettlementStatus.CLOSED:
            raise StateViolation(f"Cannot generate payouts for closed settlement {settlement_id}")

        read = self.store.payouts_for(settlement_id)
        seen = {p.id: p.status for p in read}
        existing = {p.agent_id: p for p in read if p.status != PayoutStatus.CANCELLED}
        totals = self.calculator.by_agent(working.lines)
        now = self.clock()

        changes: list[Payout] = []
        created, cancelled, unchanged = [], [], []

        for agent_totals in totals:
            prior = existing.pop(agent_totals.agent_id, None)
            if prior is not None and prior.net == agent_totals.net:
                unchanged.append(prior.id)
                continue
            if prior is not None:
                changes.append(self._cancel(prior))
                cancelled.append(prior.id)

            agent = self.catalog.agent(agent_totals.agent_id)
            payout = Payout(
                id=new_id("pay"),
                settlement_id=settlement_id,
                agent_id=agent_totals.agent_id,
                agent_name=agent_totals.agent_name,
                team_id=agent_totals.team_id,
                team_name=agent_totals.team_name,
                gross=agent_totals.gross,
                adjustments=agent_totals.adjustments,
                withholdings=agent_totals.withholdings,
                net=agent_totals.net,
                created_at=now,
                method=prior.method if prior else PayoutMethod.TRANSFER,
                iban=prior.iban if prior else (agent.iban if agent else None),
                concept=f"Commission settlement {working.name} - {agent_totals.agent_name or agent_totals.agent_id}",
            )
            changes.append(payout)
            created.append(payout.id)

        for stale in existing.values():
            changes.append(self._cancel(stale))
            cancelled.append(stale.id)

        if not changes:
            logger.info(f"Payouts for settlement {settlement_id} already up to date")
            return self.active(settlement_id)

        entry = self.audit.entry(
            settlement_id,
            AuditAction.PAYOUT_GENERATED,
            actor,
            {"created": created, "cancelled": cancelled, "unchanged": unchanged},
        )
        self.store.commit(working, working.version, entry, payouts=changes, expected_payouts=seen)
        logger.info(
            f"Payouts generated for settlement {settlement_id}: "
            f"{len(created)} created, {len(cancelled)} cancelled, {len(unchanged)} unchanged"
        )
        return self.active(settlement_id)

    def _cancel(self, payout: Payout) -> Payout:
        if payout.status != PayoutStatus.PENDING:
            raise StateViolation(
                f"Payout {payout.id} is already {payout.status.value} and cannot be replaced; "
                "reconcile it before changing the settlement"
            )
        cancelled = deepcopy(payout)
        cancelled.status = PayoutStatus.CANCELLED
        return cancelled

    def update_status(
        self, payout_id: str, status: PayoutStatus, actor: str, paid_at: datetime | None = None
    ) -> Payout:
        payout = self.store.get_payout(payout_id)
        if (payout.status, status) not in PAYOUT_TRANSITIONS:
            raise StateViolation(
                f"Payout {payout_id} cannot move from {payout.status.value} to {status.value}"
            )
        self.validator.validate_payout_transition(payout, status, paid_at)

        previous = payout.status
        updated = deepcopy(payout)
        updated.status = status
        if status == PayoutStatus.SENT:
            updated.paid_at = paid_at
            updated.receipt_ref = f"RCPT-{payout.id}"
        else:
            updated.reconciled_at = self.clock()

        entry = self.audit.entry(
            payout.settlement_id,
            AuditAction.PAYOUT_STATUS_CHANGED,
            actor,
            {
                "payout_id": payout.id,
                "agent_id": payout.agent_id,
                "from": previous.value,
                "to": status.value,
                "paid_at": paid_at.isoformat() if paid_at else None,
            },
        )
        saved = self.store.save_payout(updated, previous, entry)
        logger.info(f"Payout {payout_id} moved from {previous.value} to {status.value}")
        return saved

    def update_details(
        self,
        payout_id: str,
        actor: str,
        method: PayoutMethod | None = None,
        iban: str | None = None,
        concept: str | None = None,
    ) -> Payout:
        """Change payment details while the payout is still PENDING."""
        payout = self.store.get_payout(payout_id)
        if payout.status != PayoutStatus.PENDING:
            raise StateViolation(f"Payout {payout_id} is {payout.status.value}; only PENDING payouts can be edited")

        updated = deepcopy(payout)
        if method is not None:
            updated.method = method
        if iban is not None:
            updated.iban = iban.replace(" ", "").upper() or None
        if concept is not None:
            updated.concept = concept.strip()

        if updated.method == PayoutMethod.TRANSFER and updated.iban is not None and len(updated.iban) < 15:
            raise ValidationError(f"IBAN looks too short: {updated.iban}")

        entry = self.audit.entry(
            payout.settlement_id,
            AuditAction.PAYOUT_UPDATED,
            actor,
            {"payout_id": payout.id, "method": updated.method.value, "iban_set": bool(updated.iban)},
        )
        return self.store.save_payout(updated, payout.status, entry)

    def receipt(self, payout_id: str) -> Payout:
        """Return a sent payout; unsent payouts have no receipt yet."""
        payout = self.store.get_payout(payout_id)
        if payout.receipt_ref is None:
            raise StateViolation(f"Payout {payout_id} has no receipt until it is sent")
        return payout

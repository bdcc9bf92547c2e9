"""
Commission Selector

Filters catalog commission items down to the ones a settlement may allocate.
"""

from copy import deepcopy

from .catalog import CatalogCache
from .models import CommissionItem, CommissionStatus, Origin, ScopeKind, WizardScope
from .store import SettlementStore


class CommissionSelector:
    """Selects eligible, unallocated commission items for a scope."""

    def __init__(self, catalog: CatalogCache, store: SettlementStore):
        self.catalog = catalog
        self.store = store

    def eligible(self, scope: WizardScope, ticket=None) -> list[CommissionItem]:
        """
        Items matching period, scope, origin and approval status.

        Settled items and items already reserved by another settlement are
        never returned, which keeps allocation exactly-once.
        """
        unavailable = self.store.allocated_item_ids() | self.store.settled_item_ids()
        selected = []

        for item in self.catalog.commission_items():
            if ticket is not None:
                ticket.raise_if_cancelled()

            if item.status == CommissionStatus.SETTLED or item.id in unavailable:
                continue
            if scope.only_approved and item.status != CommissionStatus.APPROVED:
                continue
            if scope.period and item.period != scope.period:
                continue
            if scope.origin not in (None, Origin.MIXED) and item.origin != scope.origin:
                continue
            if not self._in_scope(item, scope.scope_kind, scope.scope_id):
                continue
            selected.append(deepcopy(item))

        return sorted(selected, key=lambda i: (i.date, i.id))

    def _in_scope(self, item: CommissionItem, scope_kind: ScopeKind | None, scope_id: str) -> bool:
        if scope_kind is None or not scope_id:
            return True
        if scope_kind == ScopeKind.AGENT:
            return item.agent_id == scope_id

        agent = self.catalog.agent(item.agent_id)
        if scope_kind == ScopeKind.TEAM:
            team_id = item.team_id or (agent.team_id if agent else "")
            return team_id == scope_id
        return agent is not None and agent.office_id == scope_id

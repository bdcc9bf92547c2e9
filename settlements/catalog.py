"""
Catalog Access

The office/team/agent hierarchy and commission items belong to other parts of
the back office. The engine reads them through a provider and keeps the
hierarchy in a read-through cache that is refreshed on demand.
"""

import json
import logging
import threading
from pathlib import Path

from .errors import TransientFailure
from .models import Agent, CommissionItem, CommissionStatus, Office, Team

logger = logging.getLogger(__name__)


class InMemoryCatalog:
    """Catalog provider backed by plain lists, optionally loaded from JSON."""

    def __init__(self, offices=None, teams=None, agents=None, items=None):
        self._offices = list(offices or [])
        self._teams = list(teams or [])
        self._agents = list(agents or [])
        self._items = {item.id: item for item in (items or [])}
        self._lock = threading.Lock()

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryCatalog":
        return cls(
            offices=[Office.from_dict(o) for o in data.get("offices", [])],
            teams=[Team.from_dict(t) for t in data.get("teams", [])],
            agents=[Agent.from_dict(a) for a in data.get("agents", [])],
            items=[CommissionItem.from_dict(i) for i in data.get("commission_items", [])],
        )

    @classmethod
    def from_file(cls, path: str) -> "InMemoryCatalog":
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_dict(json.loads(content))

    def fetch_offices(self) -> list[Office]:
        return list(self._offices)

    def fetch_teams(self) -> list[Team]:
        return list(self._teams)

    def fetch_agents(self) -> list[Agent]:
        return list(self._agents)

    def fetch_commission_items(self) -> list[CommissionItem]:
        with self._lock:
            return list(self._items.values())

    def add_items(self, items: list[CommissionItem]) -> None:
        with self._lock:
            for item in items:
                self._items[item.id] = item

    def set_item_status(self, item_ids: list[str], status: CommissionStatus) -> dict[str, CommissionStatus]:
        """Update item statuses and return the previous ones."""
        with self._lock:
            previous = {}
            for item_id in item_ids:
                item = self._items.get(item_id)
                if item is None:
                    continue
                previous[item_id] = item.status
                item.status = status
            return previous

    def restore_item_status(self, previous: dict[str, CommissionStatus]) -> None:
        with self._lock:
            for item_id, status in previous.items():
                if item_id in self._items:
                    self._items[item_id].status = status


class CatalogCache:
    """
    Read-through cache over a catalog provider.

    Offices, teams and agents are cached until refresh() is called.
    Commission items are always fetched fresh because their status changes.
    Provider errors surface as TransientFailure.
    """

    def __init__(self, provider):
        self.provider = provider
        self._lock = threading.Lock()
        self._offices: dict[str, Office] | None = None
        self._teams: dict[str, Team] | None = None
        self._agents: dict[str, Agent] | None = None

    def refresh(self) -> None:
        with self._lock:
            self._offices = None
            self._teams = None
            self._agents = None
        logger.info("Catalog cache cleared")

    def _call(self, method_name: str):
        try:
            return getattr(self.provider, method_name)()
        except TransientFailure:
            raise
        except (OSError, TimeoutError, ConnectionError) as e:
            logger.warning(f"Catalog provider unavailable ({method_name}): {e}")
            raise TransientFailure(f"Catalog unavailable: {e}") from e

    def _load(self):
        with self._lock:
            if self._offices is None:
                self._offices = {o.id: o for o in self._call("fetch_offices")}
            if self._teams is None:
                self._teams = {t.id: t for t in self._call("fetch_teams")}
            if self._agents is None:
                self._agents = {a.id: a for a in self._call("fetch_agents")}
            return self._offices, self._teams, self._agents

    def offices(self) -> list[Office]:
        offices, _, _ = self._load()
        return list(offices.values())

    def teams(self, office_id: str | None = None) -> list[Team]:
        _, teams, _ = self._load()
        return [t for t in teams.values() if office_id is None or t.office_id == office_id]

    def agents(self, team_id: str | None = None, office_id: str | None = None) -> list[Agent]:
        _, _, agents = self._load()
        if team_id:
            return [a for a in agents.values() if a.team_id == team_id]
        if office_id:
            return [a for a in agents.values() if a.office_id == office_id]
        return list(agents.values())

    def office(self, office_id: str) -> Office | None:
        return self._load()[0].get(office_id)

    def team(self, team_id: str) -> Team | None:
        return self._load()[1].get(team_id)

    def agent(self, agent_id: str) -> Agent | None:
        return self._load()[2].get(agent_id)

    def commission_items(self) -> list[CommissionItem]:
        return self._call("fetch_commission_items")

    def mark_settled(self, item_ids: list[str]) -> dict[str, CommissionStatus]:
        """Flag items as settled in the provider, returning previous statuses."""
        try:
            return self.provider.set_item_status(item_ids, CommissionStatus.SETTLED)
        except (OSError, TimeoutError, ConnectionError) as e:
            raise TransientFailure(f"Catalog unavailable: {e}") from e

    def restore(self, previous: dict[str, CommissionStatus]) -> None:
        self.provider.restore_item_status(previous)

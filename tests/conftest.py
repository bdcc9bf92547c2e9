"""Shared fixtures: a small seeded catalog and a service with a fake clock."""

from copy import deepcopy
from datetime import datetime, timedelta, timezone

import pytest

from settlements import Settings, SettlementService
from settlements.catalog import InMemoryCatalog

CATALOG_SEED = {
    "offices": [
        {"id": "off-mad", "name": "Madrid Centro", "code": "MAD"},
        {"id": "off-bcn", "name": "Barcelona Eixample", "code": "BCN"},
    ],
    "teams": [
        {"id": "team-a", "name": "Sales Alpha", "office_id": "off-mad", "office_name": "Madrid Centro"},
        {
            "id": "team-b",
            "name": "Sales Beta",
            "office_id": "off-mad",
            "office_name": "Madrid Centro",
            "commission_rate": "0.05",
        },
        {"id": "team-c", "name": "Rentals", "office_id": "off-bcn", "office_name": "Barcelona Eixample"},
    ],
    "agents": [
        {
            "id": "ag-1",
            "name": "Ana Torres",
            "team_id": "team-a",
            "office_id": "off-mad",
            "team_name": "Sales Alpha",
            "office_name": "Madrid Centro",
            "iban": "ES9121000418450200051332",
        },
        {
            "id": "ag-2",
            "name": "Luis Gil",
            "team_id": "team-a",
            "office_id": "off-mad",
            "team_name": "Sales Alpha",
            "office_name": "Madrid Centro",
        },
        {
            "id": "ag-3",
            "name": "Marta Ruiz",
            "team_id": "team-b",
            "office_id": "off-mad",
            "team_name": "Sales Beta",
            "office_name": "Madrid Centro",
            "commission_rate": "0.04",
        },
        {
            "id": "ag-4",
            "name": "Jordi Puig",
            "team_id": "team-c",
            "office_id": "off-bcn",
            "team_name": "Rentals",
            "office_name": "Barcelona Eixample",
        },
        {
            "id": "ag-5",
            "name": "Pablo Sanz",
            "team_id": "team-b",
            "office_id": "off-mad",
            "team_name": "Sales Beta",
            "office_name": "Madrid Centro",
        },
    ],
    "commission_items": [
        {"id": "ci-1", "date": "2025-03-05", "source": "CONTRACT", "ref": "CT-101", "agent_id": "ag-1",
         "agent_name": "Ana Torres", "origin": "SALE", "base_amount": "1000", "status": "APPROVED"},
        {"id": "ci-2", "date": "2025-03-10", "source": "RESERVATION", "ref": "RS-204", "agent_id": "ag-1",
         "agent_name": "Ana Torres", "origin": "RENTAL", "base_amount": "1000", "status": "APPROVED"},
        {"id": "ci-3", "date": "2025-03-12", "source": "COLLECTION", "ref": "CB-330", "agent_id": "ag-2",
         "agent_name": "Luis Gil", "origin": "SALE", "base_amount": "1000", "status": "APPROVED"},
        {"id": "ci-4", "date": "2025-03-15", "source": "OFFER", "ref": "OF-412", "agent_id": "ag-2",
         "agent_name": "Luis Gil", "origin": "SALE", "base_amount": "2000", "status": "PENDING"},
        {"id": "ci-5", "date": "2025-03-20", "source": "CONTRACT", "ref": "CT-150", "agent_id": "ag-3",
         "agent_name": "Marta Ruiz", "origin": "SALE", "base_amount": "1000", "status": "APPROVED"},
        {"id": "ci-6", "date": "2025-04-02", "source": "CONTRACT", "ref": "CT-160", "agent_id": "ag-1",
         "agent_name": "Ana Torres", "origin": "SALE", "base_amount": "5000", "status": "APPROVED"},
        {"id": "ci-7", "date": "2025-03-08", "source": "CONTRACT", "ref": "CT-170", "agent_id": "ag-4",
         "agent_name": "Jordi Puig", "origin": "RENTAL", "base_amount": "1000", "status": "APPROVED"},
        {"id": "ci-8", "date": "2025-03-25", "source": "CONTRACT", "ref": "CT-180", "agent_id": "ag-1",
         "agent_name": "Ana Torres", "origin": "SALE", "base_amount": "500", "status": "SETTLED"},
        {"id": "ci-9", "date": "2025-03-28", "source": "CONTRACT", "ref": "CT-190", "agent_id": "ag-2",
         "agent_name": "Luis Gil", "origin": "SALE", "base_amount": "1000", "status": "APPROVED",
         "commission_rate": "0.10"},
    ],
}


class FakeClock:
    """Deterministic clock that moves one second per reading."""

    def __init__(self, start=datetime(2025, 3, 31, 10, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def catalog_seed():
    return deepcopy(CATALOG_SEED)


@pytest.fixture
def provider(catalog_seed):
    return InMemoryCatalog.from_dict(catalog_seed)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(lock_timeout=0.2)


@pytest.fixture
def service(provider, settings, clock):
    return SettlementService(catalog_provider=provider, settings=settings, clock=clock)


@pytest.fixture
def make_settlement(service):
    """Create a DRAFT settlement through the full wizard."""

    def _make(selected, scope_kind="TEAM", scope_id="team-a", name="March settlement", period="2025-03", **scope):
        payload = {
            "scope": {"period": period, "scope_kind": scope_kind, "scope_id": scope_id, **scope},
            "selected_commission_ids": list(selected),
            "name": name,
        }
        return service.create_settlement(payload, actor="maria")

    return _make

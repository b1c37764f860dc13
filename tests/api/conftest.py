"""Fixtures for API route tests.

The app lifespan is not run: tests install the scheduler, partner client
and discovery prober on ``app.state`` and point ``get_db`` at the
in-memory engine.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from balance_sync.api.main import app
from balance_sync.clients.discovery import ApiDiscovery, ProbeEndpoint
from balance_sync.clients.partner_client import PartnerClient
from balance_sync.db.connection import get_db
from balance_sync.services.change_feed import ChangeFeed
from balance_sync.services.sync_scheduler import SyncScheduler


class PartnerTransport(httpx.AsyncBaseTransport):
    """Answers every partner request with one configurable response."""

    def __init__(self):
        self.status = 200
        self.body = {"balance": 1500}
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body, request=request)


@pytest.fixture
def partner():
    return PartnerTransport()


@pytest.fixture
def client(session_factory, partner):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    partner_client = PartnerClient(transport=partner)
    app.dependency_overrides[get_db] = _get_db
    app.state.partner_client = partner_client
    app.state.discovery = ApiDiscovery(
        transport=partner,
        sleep=AsyncMock(),
        endpoints=(
            ProbeEndpoint("/auth/login", "POST", "Auth login"),
            ProbeEndpoint("/balance", "GET", "Balance"),
        ),
    )
    app.state.scheduler = SyncScheduler(
        session_factory=session_factory,
        client=partner_client,
        feed=ChangeFeed(),
        sleep=AsyncMock(),
    )
    yield TestClient(app)
    app.dependency_overrides.clear()
    for name in ("partner_client", "discovery", "scheduler"):
        delattr(app.state, name)


@pytest.fixture
def source_id(client):
    response = client.post("/api/v1/sources", json={"name": "Iraqi Airways", "type": "airline"})
    return response.json()["id"]


ACTOR_HEADERS = {"X-Actor-Email": "sara@agency.example", "X-Actor-Name": "Sara Agent"}


@pytest.fixture
def actor_headers():
    return dict(ACTOR_HEADERS)

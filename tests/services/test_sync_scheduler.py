"""Tests for the sync scheduler.

The partner client is faked; the database is the shared in-memory engine
so scheduler sessions and the test session see the same rows.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from balance_sync.clients.partner_client import PartnerClient
from balance_sync.db.models import ApiConnection, Balance, BalanceHistory
from balance_sync.errors import ConfigurationError, ServerError
from balance_sync.services.history_service import HistoryService
from balance_sync.services.reconciliation import ReconciliationEngine
from balance_sync.services.sync_config_service import SyncConfigService
from balance_sync.services.sync_events import SyncStatusEmitter
from balance_sync.services.sync_scheduler import MIN_PACING_SECONDS, SyncScheduler


class FakePartnerClient:
    """Returns canned payloads (or raises canned errors) per connection name."""

    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[str] = []

    async def fetch_balance(self, connection):
        self.calls.append(connection.name)
        outcome = self.responses[connection.name]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class GoodBalanceTransport(httpx.AsyncBaseTransport):
    """Answers every request with the same JSON body."""

    def __init__(self, body):
        self.body = body
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request):
        self.requests.append(request)
        return httpx.Response(200, json=self.body, request=request)


class BlockingPartnerClient:
    """Holds every fetch until ``release`` is set."""

    def __init__(self, payload=None):
        self.payload = payload or {"balance": 1}
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_balance(self, connection):
        self.started.set()
        await self.release.wait()
        return self.payload


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def statuses():
    return []


@pytest.fixture
def build_scheduler(session_factory, feed, statuses):
    """Factory for a scheduler wired to the test database and feed."""
    created = []

    def _build(client, **kwargs):
        emitter = SyncStatusEmitter()
        emitter.add_listener(statuses.append)
        kwargs.setdefault("sleep", AsyncMock())
        scheduler = SyncScheduler(
            session_factory=session_factory,
            client=client,
            emitter=emitter,
            feed=feed,
            **kwargs,
        )
        created.append(scheduler)
        return scheduler

    yield _build


class TestSyncPass:
    @pytest.mark.asyncio
    async def test_partial_failure_does_not_stop_the_pass(
        self, test_db, feed, build_scheduler, statuses, make_source, make_connection, make_balance
    ):
        alpha = make_source("Alpha Air")
        alpha_balance = make_balance(alpha, amount="10")
        make_connection(alpha, name="Alpha")
        beta = make_source("Beta Tours")
        beta_balance = make_balance(beta, amount="50")
        make_connection(beta, name="Beta")
        make_connection(make_source("Gamma Hotels"), name="Gamma")
        make_connection(make_source("Delta"), name="Delta", is_active=False)
        ReconciliationEngine(test_db, feed=feed).assign_ownership()
        assert beta_balance.is_auto_sync is True
        history = HistoryService(test_db, feed=feed)
        beta_history_before = history.count(beta_balance.id)
        beta_updated_by = beta_balance.last_updated_by_email
        created_rows = test_db.query(BalanceHistory).filter_by(action="created")
        created_before = created_rows.count()

        client = FakePartnerClient({
            "Alpha": {"balance": 100},
            "Beta": ServerError.from_code(status_code=502),
            "Gamma": {"wallets": [{"currency": "IQD", "balance": 25109543.95}]},
        })
        sleep = AsyncMock()
        scheduler = build_scheduler(client, sleep=sleep)

        result = await scheduler.sync_now()

        assert client.calls == ["Alpha", "Beta", "Gamma"]
        assert result.synced_count == 1
        assert result.failed_count == 2
        codes = {r.name: r.error_code for r in result.results}
        assert codes == {"Alpha": None, "Beta": "E-3004", "Gamma": "E-2001"}

        test_db.expire_all()
        rows = {c.name: c for c in test_db.query(ApiConnection).all()}
        assert rows["Alpha"].last_sync_status == "success"
        assert rows["Beta"].last_sync_status == "error"
        assert rows["Beta"].last_sync_error_code == "E-3004"
        assert rows["Gamma"].last_sync_error_code == "E-2001"
        assert rows["Delta"].last_sync is None

        balance = test_db.get(Balance, alpha_balance.id)
        assert balance.is_auto_sync is True
        assert balance.amount == Decimal("100")

        failed = test_db.get(Balance, beta_balance.id)
        assert failed.amount == Decimal("50")
        assert failed.is_auto_sync is True
        assert failed.last_updated_by_email == beta_updated_by
        assert history.count(beta_balance.id) == beta_history_before
        assert [b.id for b in test_db.query(Balance).filter_by(source_id=beta.id)] == [beta_balance.id]
        # Gamma failed too, so the only possible new row would be Beta's
        assert created_rows.count() == created_before

        assert [call.args[0] for call in sleep.await_args_list] == [MIN_PACING_SECONDS] * 2

    @pytest.mark.asyncio
    async def test_unparseable_url_fails_only_its_connection(
        self, test_db, build_scheduler, make_source, make_connection
    ):
        bad = make_connection(make_source("Alpha Air"), name="A bad")
        make_connection(make_source("Beta Tours"), name="B good", api_method="GET", auth_token="tok")
        # Rows saved before URL validation existed can still hold a broken URL
        test_db.query(ApiConnection).filter_by(id=bad.id).update(
            {"api_url": "http://[::1/balance"}, synchronize_session=False
        )
        test_db.commit()
        transport = GoodBalanceTransport({"balance": 15000})
        scheduler = build_scheduler(PartnerClient(transport=transport))

        result = await scheduler.sync_now()

        assert result.error is None
        codes = {r.name: r.error_code for r in result.results}
        assert codes == {"A bad": "E-1011", "B good": None}
        assert len(transport.requests) == 1

        test_db.expire_all()
        rows = {c.name: c for c in test_db.query(ApiConnection).all()}
        assert rows["A bad"].last_sync_status == "error"
        assert rows["A bad"].last_sync_error_code == "E-1011"
        assert rows["B good"].last_sync_status == "success"
        synced = test_db.query(Balance).filter_by(api_source="B good").one()
        assert synced.amount == Decimal("15000")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_and_pass_continues(
        self, test_db, build_scheduler, make_source, make_connection
    ):
        make_connection(make_source("Alpha Air"), name="Alpha")
        make_connection(make_source("Beta Tours"), name="Beta")
        client = FakePartnerClient({
            "Alpha": RuntimeError("codec exploded"),
            "Beta": {"balance": 15000},
        })

        result = await build_scheduler(client).sync_now()

        assert result.error is None
        assert client.calls == ["Alpha", "Beta"]
        alpha, beta = result.results
        assert alpha.error_code == "E-4002"
        assert "codec exploded" in alpha.error_message
        assert beta.success is True

        test_db.expire_all()
        row = test_db.query(ApiConnection).filter_by(name="Alpha").one()
        assert row.last_sync_status == "error"
        assert row.last_sync_error_code == "E-4002"

    @pytest.mark.asyncio
    async def test_status_lifecycle(self, build_scheduler, statuses, make_source, make_connection):
        make_connection(make_source("Alpha Air"), name="Alpha")
        make_connection(make_source("Beta Tours"), name="Beta")
        scheduler = build_scheduler(FakePartnerClient({"Alpha": {"balance": 1}, "Beta": {"amount": 2}}))

        await scheduler.sync_now()

        assert statuses[0].is_running is True
        assert statuses[0].total_connections == 2
        assert {s.current_connection for s in statuses[1:-1]} == {"Alpha", "Beta"}
        final = statuses[-1]
        assert final.is_running is False
        assert final.synced_count == 2
        assert final.current_connection is None
        assert final.last_sync_time is not None
        assert scheduler.status == final

    @pytest.mark.asyncio
    async def test_history_written_per_reconciled_balance(
        self, test_db, feed, build_scheduler, make_source, make_connection
    ):
        make_connection(make_source("Alpha Air"), name="Alpha")
        scheduler = build_scheduler(FakePartnerClient({"Alpha": {"balance": 5}}))

        await scheduler.sync_now()
        await scheduler.sync_now()

        test_db.expire_all()
        balance = test_db.query(Balance).one()
        assert HistoryService(test_db, feed=feed).count(balance.id) == 2

    @pytest.mark.asyncio
    async def test_no_active_connections(self, build_scheduler, statuses):
        result = await build_scheduler(FakePartnerClient({})).sync_now()
        assert result.results == []
        assert statuses[-1].is_running is False

    @pytest.mark.asyncio
    async def test_pacing_has_a_floor(self, build_scheduler):
        scheduler = build_scheduler(FakePartnerClient({}), pacing_seconds=0.01)
        assert scheduler._pacing == MIN_PACING_SECONDS


class TestOverlap:
    @pytest.mark.asyncio
    async def test_second_pass_skipped_while_running(
        self, build_scheduler, statuses, make_source, make_connection
    ):
        make_connection(make_source("Alpha Air"), name="Alpha")
        client = BlockingPartnerClient()
        scheduler = build_scheduler(client)

        first = asyncio.create_task(scheduler.sync_now())
        await client.started.wait()

        second = await scheduler.sync_now()
        assert second.skipped is True
        assert second.error == "A sync pass is already running."
        assert scheduler.status.is_running is True
        assert all(s.is_running for s in statuses)

        scheduler.fire()
        assert scheduler.pass_in_flight

        client.release.set()
        result = await first

        assert result.skipped is False
        assert result.synced_count == 1
        assert [s.is_running for s in statuses].count(False) == 1
        assert statuses[-1].is_running is False

    @pytest.mark.asyncio
    async def test_shutdown_abandons_in_flight_pass(
        self, build_scheduler, statuses, make_source, make_connection
    ):
        make_connection(make_source("Alpha Air"), name="Alpha")
        client = BlockingPartnerClient()
        scheduler = build_scheduler(client)

        caller = asyncio.create_task(scheduler.sync_now())
        await client.started.wait()
        pass_task = scheduler._pass_task
        assert pass_task is not None and pass_task is not caller
        await scheduler.shutdown()

        assert pass_task.cancelled()
        result = await caller
        assert not caller.cancelled()
        assert result.error == "Sync pass cancelled"
        assert statuses[-1].is_running is False
        assert statuses[-1].error == "Sync pass cancelled"
        assert not scheduler.pass_in_flight


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_start_disabled_by_default(self, build_scheduler):
        scheduler = build_scheduler(FakePartnerClient({}))
        await scheduler.start()
        assert scheduler.enabled is False
        assert scheduler.running is False
        assert scheduler.frequency_seconds == 30
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_enable_starts_timer_with_immediate_pass(self, build_scheduler):
        scheduler = build_scheduler(FakePartnerClient({}))
        await scheduler.start()

        await scheduler.update_config(enabled=True, frequency_seconds=60, updated_by="ops")

        assert scheduler.running is True
        assert scheduler.frequency_seconds == 60
        await _wait_until(lambda: scheduler.status.last_sync_time is not None)

        await scheduler.update_config(enabled=False)
        assert scheduler.running is False
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_out_of_range_frequency_rejected(self, test_db, feed, build_scheduler):
        scheduler = build_scheduler(FakePartnerClient({}))
        await scheduler.start()

        with pytest.raises(ConfigurationError) as exc_info:
            await scheduler.update_config(enabled=True, frequency_seconds=5)

        assert exc_info.value.code == "E-1005"
        assert scheduler.running is False
        test_db.expire_all()
        assert SyncConfigService(test_db, feed=feed).get_or_create().enabled is False
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_frequency_change_reschedules(self, build_scheduler):
        scheduler = build_scheduler(FakePartnerClient({}))
        await scheduler.start()
        await scheduler.update_config(enabled=True, frequency_seconds=30)
        first_timer = scheduler._timer_task

        await scheduler.update_config(frequency_seconds=120)

        assert scheduler.running is True
        assert scheduler._timer_task is not first_timer
        await scheduler.shutdown()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_config_change_notification_applies(self, test_db, feed, build_scheduler):
        scheduler = build_scheduler(FakePartnerClient({}))
        await scheduler.start()

        SyncConfigService(test_db, feed=feed).update(enabled=True, frequency_seconds=45)
        await _wait_until(lambda: scheduler.running)

        assert scheduler.frequency_seconds == 45
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_new_connection_claims_balances(
        self, test_db, build_scheduler, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source)
        scheduler = build_scheduler(FakePartnerClient({}))
        await scheduler.start()

        make_connection(source, name="IA B2B")
        await _wait_until(lambda: test_db.get(Balance, balance.id, populate_existing=True).is_auto_sync)

        assert test_db.get(Balance, balance.id).api_source == "IA B2B"
        assert scheduler.registry.get(test_db.query(ApiConnection).one().id) is not None
        await scheduler.shutdown()

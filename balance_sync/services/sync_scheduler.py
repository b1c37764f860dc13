"""Global sync scheduler.

One scheduler per deployment drives sync passes. The persisted SyncConfig
record is the source of truth for ``enabled`` and ``frequency_seconds``;
the scheduler only holds derived process-local state (timer task, pass
lock, last status).

A pass:
    1. assign ownership (so newly claimed balances are owned before writes)
    2. for each active connection, sequentially:
       fetch -> normalize -> reconcile -> record last_sync -> publish status
       then wait the pacing interval before the next connection
    3. publish the final status

Passes never overlap. The timer and ``sync_now`` both take the pass lock
without waiting; whoever finds it held is skipped. A failure on one
connection is recorded on that connection and the pass moves on.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from balance_sync.clients.partner_client import PartnerClient
from balance_sync.db.connection import SessionLocal
from balance_sync.db.models import utc_now_iso
from balance_sync.errors import BalanceSyncError
from balance_sync.services.change_feed import SYNC_CONFIG, ChangeFeed, Snapshot, change_feed
from balance_sync.services.connection_service import (
    ConnectionRecord,
    ConnectionRegistry,
    ConnectionService,
)
from balance_sync.services.history_service import SYSTEM_ACTOR, Actor
from balance_sync.services.normalizer import normalize
from balance_sync.services.reconciliation import ReconciliationEngine
from balance_sync.services.sync_config_service import SyncConfigService
from balance_sync.services.sync_events import SyncStatus, SyncStatusEmitter
from balance_sync.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

MIN_PACING_SECONDS = 0.5

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class ConnectionSyncResult:
    """Outcome for one connection within a pass."""

    connection_id: str
    name: str
    success: bool
    amount: Decimal | None = None
    currency: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "name": self.name,
            "success": self.success,
            "amount": None if self.amount is None else str(self.amount),
            "currency": self.currency,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass
class SyncPassResult:
    """Summary of one sync pass, or of a skipped request."""

    trigger: str
    skipped: bool = False
    started_at: str | None = None
    finished_at: str | None = None
    results: list[ConnectionSyncResult] = field(default_factory=list)
    error: str | None = None

    @property
    def synced_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "skipped": self.skipped,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "synced_count": self.synced_count,
            "failed_count": self.failed_count,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
        }


class SyncScheduler:
    """Drives periodic and on-demand sync passes.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session.
        client: Partner HTTP client.
        emitter: Receives SyncStatus snapshots.
        feed: Change feed for config and connection changes.
        registry: In-memory connection view read by each pass.
        pacing_seconds: Delay between connections (at least 0.5s).
        actor: Identity stamped on reconciled balances.
        sleep: Pacing sleep (tests pass a no-op).
        timer_sleep: Timer sleep between fires.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        client: PartnerClient | None = None,
        emitter: SyncStatusEmitter | None = None,
        feed: ChangeFeed | None = None,
        registry: ConnectionRegistry | None = None,
        pacing_seconds: float = MIN_PACING_SECONDS,
        actor: Actor = SYSTEM_ACTOR,
        sleep: SleepFn = asyncio.sleep,
        timer_sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._client = client or PartnerClient()
        self._emitter = emitter or SyncStatusEmitter()
        self._feed = feed or change_feed
        self._registry = registry or ConnectionRegistry()
        self._pacing = max(pacing_seconds, MIN_PACING_SECONDS)
        self._actor = actor
        self._sleep = sleep
        self._timer_sleep = timer_sleep

        self._pass_lock = asyncio.Lock()
        self._timer_task: asyncio.Task | None = None
        self._pass_task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribers: list[Callable[[], None]] = []

        self._enabled = False
        self._frequency = 30
        self._status = SyncStatus()

    # --- Properties ---

    @property
    def emitter(self) -> SyncStatusEmitter:
        return self._emitter

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def running(self) -> bool:
        """True while the repeating timer is alive."""
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def pass_in_flight(self) -> bool:
        return self._pass_lock.locked()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def frequency_seconds(self) -> int:
        return self._frequency

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load config, wire change-feed subscriptions and start the timer if enabled."""
        self._loop = asyncio.get_running_loop()
        db = self._session_factory()
        try:
            config = SyncConfigService(db, feed=self._feed).get_or_create()
            enabled, frequency = config.enabled, config.frequency_seconds
            self._registry.load(db)
        finally:
            db.close()

        if not self._unsubscribers:
            self._unsubscribers.append(self._registry.attach(self._feed))
            self._unsubscribers.append(
                self._feed.subscribe(SYNC_CONFIG, self._on_config_snapshot)
            )
            self._registry.on_change(self._on_connections_changed)

        self._apply_config(enabled, frequency)
        logger.info(
            "Sync scheduler started: enabled=%s frequency=%ss", enabled, frequency
        )

    def stop(self) -> None:
        """Stop future timer fires. An in-flight pass runs to completion."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
            logger.info("Sync timer stopped")

    async def shutdown(self) -> None:
        """Stop the timer, drop subscriptions and abandon any in-flight pass."""
        self.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        task = self._pass_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("In-flight sync pass abandoned on shutdown")

    async def update_config(
        self,
        enabled: bool | None = None,
        frequency_seconds: int | None = None,
        updated_by: str | None = None,
    ) -> None:
        """Persist new settings and reschedule without touching an in-flight pass.

        Raises:
            ConfigurationError: Frequency outside 10..300 seconds.
        """
        db = self._session_factory()
        try:
            config = SyncConfigService(db, feed=self._feed).update(
                enabled=enabled, frequency_seconds=frequency_seconds, updated_by=updated_by
            )
            new_enabled, new_frequency = config.enabled, config.frequency_seconds
        finally:
            db.close()
        self._apply_config(new_enabled, new_frequency)

    def _apply_config(self, enabled: bool, frequency_seconds: int) -> None:
        frequency_changed = frequency_seconds != self._frequency
        self._enabled = enabled
        self._frequency = frequency_seconds

        if not enabled:
            self.stop()
            return
        if not self.running:
            self._start_timer(immediate=True)
        elif frequency_changed:
            self.stop()
            self._start_timer(immediate=False)
            logger.info("Sync timer rescheduled every %ss", frequency_seconds)

    def _start_timer(self, immediate: bool) -> None:
        self._timer_task = asyncio.get_running_loop().create_task(
            self._timer_loop(immediate)
        )

    async def _timer_loop(self, immediate: bool) -> None:
        if not immediate:
            await self._timer_sleep(self._frequency)
        while True:
            self.fire()
            await self._timer_sleep(self._frequency)

    def fire(self) -> None:
        """One timer tick: start a pass in the background unless one is running."""
        if self._pass_lock.locked():
            logger.debug("Timer fire skipped: pass still running")
            return
        self._pass_task = asyncio.get_running_loop().create_task(
            self._run_if_idle("timer")
        )

    # --- Change feed callbacks (may run on any thread) ---

    def _on_config_snapshot(self, snapshot: Snapshot) -> None:
        if not snapshot or self._loop is None:
            return
        doc = snapshot[0]
        self._loop.call_soon_threadsafe(
            self._apply_config, bool(doc["enabled"]), int(doc["frequency_seconds"])
        )

    def _on_connections_changed(self) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._assign_ownership_if_idle)

    def _assign_ownership_if_idle(self) -> None:
        # A running pass assigns ownership itself before polling
        if self._pass_lock.locked():
            return
        db = self._session_factory()
        try:
            ReconciliationEngine(db, feed=self._feed, actor=self._actor).assign_ownership()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Ownership assignment after connection change failed: %s", e)
        finally:
            db.close()

    # --- Passes ---

    async def sync_now(self) -> SyncPassResult:
        """Run a pass immediately, or return a skipped result if one is running.

        The pass runs in its own task so that shutdown cancels the pass and
        not the caller awaiting it.
        """
        task = asyncio.get_running_loop().create_task(self._run_if_idle("manual"))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return SyncPassResult(
                trigger="manual", error="Sync pass cancelled", finished_at=utc_now_iso()
            )

    async def _run_if_idle(self, trigger: str) -> SyncPassResult:
        if self._pass_lock.locked():
            logger.info("Sync pass (%s) rejected: already running", trigger)
            return SyncPassResult(
                trigger=trigger,
                skipped=True,
                error=BalanceSyncError.from_code("E-4004").message,
            )
        async with self._pass_lock:
            self._pass_task = asyncio.current_task()
            try:
                return await self._run_pass(trigger)
            finally:
                self._pass_task = None

    async def _publish(self, status: SyncStatus) -> None:
        self._status = status
        await self._emitter.emit(status)

    async def _run_pass(self, trigger: str) -> SyncPassResult:
        result = SyncPassResult(trigger=trigger, started_at=utc_now_iso())
        db = self._session_factory()
        try:
            ReconciliationEngine(db, feed=self._feed, actor=self._actor).assign_ownership()
            if not self._registry.loaded:
                self._registry.load(db)
            connections = self._registry.active()

            status = SyncStatus(
                is_running=True,
                total_connections=len(connections),
                last_sync_time=self._status.last_sync_time,
            )
            await self._publish(status)
            logger.info("Sync pass (%s) started: %d connection(s)", trigger, len(connections))

            for index, connection in enumerate(connections):
                if index:
                    await self._sleep(self._pacing)
                status = status.evolve(current_connection=connection.name)
                await self._publish(status)

                outcome = await self._sync_connection(db, connection)
                result.results.append(outcome)
                status = status.evolve(
                    synced_count=result.synced_count,
                    failed_count=result.failed_count,
                )
                await self._publish(status)

            result.finished_at = utc_now_iso()
            await self._publish(status.evolve(
                is_running=False,
                current_connection=None,
                last_sync_time=result.finished_at,
            ))
            logger.info(
                "Sync pass (%s) finished: %d synced, %d failed",
                trigger, result.synced_count, result.failed_count,
            )
        except asyncio.CancelledError:
            await self._publish(self._status.evolve(
                is_running=False, current_connection=None, error="Sync pass cancelled"
            ))
            raise
        except Exception as e:
            db.rollback()
            message = sanitize_error_message(str(e))
            logger.error("Sync pass (%s) failed: %s", trigger, message, exc_info=True)
            result.error = message
            result.finished_at = utc_now_iso()
            await self._publish(self._status.evolve(
                is_running=False, current_connection=None, error=message
            ))
        finally:
            db.close()
        return result

    async def _sync_connection(
        self, db: Session, connection: ConnectionRecord
    ) -> ConnectionSyncResult:
        """Fetch, normalize and reconcile one connection, recording the outcome."""
        outcome = ConnectionSyncResult(
            connection_id=connection.id, name=connection.name, success=False
        )
        try:
            payload = await self._client.fetch_balance(connection)
            normalized = normalize(payload, connection.currency, connection.currency)
            ReconciliationEngine(db, feed=self._feed, actor=self._actor).reconcile_value(
                connection, normalized
            )
            outcome.success = True
            outcome.amount = normalized.amount
            outcome.currency = normalized.currency
        except BalanceSyncError as e:
            db.rollback()
            outcome.error_code = e.code
            outcome.error_message = sanitize_error_message(e.message)
            logger.warning(
                "Sync failed for %s: %s %s", connection.name, e.code, outcome.error_message
            )
        except SQLAlchemyError as e:
            db.rollback()
            error = BalanceSyncError.from_code("E-4001", error=type(e).__name__)
            outcome.error_code = error.code
            outcome.error_message = error.message
            logger.error("Database error reconciling %s: %s", connection.name, e)
        except Exception as e:
            db.rollback()
            error = BalanceSyncError.from_code(
                "E-4002", error=sanitize_error_message(str(e)) or type(e).__name__
            )
            outcome.error_code = error.code
            outcome.error_message = error.message
            logger.exception("Unexpected error syncing %s", connection.name)

        try:
            ConnectionService(db, feed=self._feed).record_sync_result(
                connection.id,
                success=outcome.success,
                error_message=outcome.error_message,
                error_code=outcome.error_code,
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Could not record sync result for %s: %s", connection.name, e)
        return outcome

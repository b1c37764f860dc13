"""Observer pattern for sync pass status.

Provides the SyncStatus snapshot, the SyncStatusEmitter publisher and an
SSE bridge that fans status snapshots out to per-client queues.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, replace
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatus:
    """Point-in-time view of the sync scheduler.

    Attributes:
        is_running: True while a sync pass is in flight.
        total_connections: Active connections in the current/last pass.
        synced_count: Connections reconciled successfully so far.
        failed_count: Connections that failed so far.
        current_connection: Name of the connection being fetched, if any.
        last_sync_time: ISO8601 time the last pass finished.
        error: Pass-level error message, if the pass itself failed.
    """

    is_running: bool = False
    total_connections: int = 0
    synced_count: int = 0
    failed_count: int = 0
    current_connection: str | None = None
    last_sync_time: str | None = None
    error: str | None = None

    def evolve(self, **changes: Any) -> "SyncStatus":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


SyncStatusListener = Callable[[SyncStatus], Awaitable[None] | None]


class SyncStatusEmitter:
    """Pushes SyncStatus snapshots to registered listeners.

    Listeners may be plain callables or coroutine functions. Exceptions
    from one listener are logged and do not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: list[SyncStatusListener] = []

    def add_listener(self, listener: SyncStatusListener) -> None:
        """Register a listener to receive status snapshots."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SyncStatusListener) -> None:
        """Unregister a listener. No-op if it was never registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.debug("Listener %r was not registered", listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def emit(self, status: SyncStatus) -> None:
        """Deliver a snapshot to every listener.

        Args:
            status: Snapshot to deliver.
        """
        for listener in list(self._listeners):
            try:
                result = listener(status)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Sync status listener %s failed: %s",
                    getattr(listener, "__qualname__", type(listener).__name__),
                    e,
                )


class SSESyncObserver:
    """Bridges SyncStatus snapshots to Server-Sent Events clients.

    Each connected client gets its own asyncio.Queue keyed by a
    subscription id; every snapshot is copied into every queue.
    """

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue[dict[str, Any]]] = {}

    def subscribe(self) -> tuple[str, asyncio.Queue[dict[str, Any]]]:
        """Create a queue for a new SSE client.

        Returns:
            (subscription_id, queue) tuple.
        """
        subscription_id = str(uuid4())
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._queues[subscription_id] = queue
        logger.debug("Created SSE sync subscription %s", subscription_id)
        return subscription_id, queue

    def unsubscribe(self, subscription_id: str) -> None:
        """Remove a client's queue. No-op if already gone."""
        if self._queues.pop(subscription_id, None) is not None:
            logger.debug("Removed SSE sync subscription %s", subscription_id)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    async def __call__(self, status: SyncStatus) -> None:
        payload = {"event": "sync_status", "data": status.to_dict()}
        for queue in list(self._queues.values()):
            await queue.put(payload)

"""In-process change subscription feed over the record collections.

Services call ``publish`` after committing a mutation; every subscriber
of that collection receives the full current document set (optionally
narrowed by an equality filter). Subscribers never re-poll the store.

Usage:
    unsubscribe = change_feed.subscribe(
        "api_connections", on_connections, filter={"is_active": True}
    )
    ...
    unsubscribe()
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from balance_sync.db.models import (
    ApiConnection,
    Balance,
    BalanceHistory,
    BalanceSource,
    Base,
    SyncConfig,
)

logger = logging.getLogger(__name__)

API_CONNECTIONS = "api_connections"
BALANCES = "balances"
BALANCE_HISTORY = "balance_history"
BALANCE_SOURCES = "balance_sources"
SYNC_CONFIG = "sync_config"

COLLECTION_MODELS: dict[str, type[Base]] = {
    API_CONNECTIONS: ApiConnection,
    BALANCES: Balance,
    BALANCE_HISTORY: BalanceHistory,
    BALANCE_SOURCES: BalanceSource,
    SYNC_CONFIG: SyncConfig,
}

Snapshot = list[dict[str, Any]]
SnapshotCallback = Callable[[Snapshot], None]


def to_document(row: Base) -> dict[str, Any]:
    """Column values of an ORM row as a plain dict."""
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


@dataclass
class _Subscription:
    id: str
    callback: SnapshotCallback
    filter: dict[str, Any] | None

    def select(self, snapshot: Snapshot) -> Snapshot:
        if not self.filter:
            return snapshot
        return [
            doc for doc in snapshot
            if all(doc.get(key) == value for key, value in self.filter.items())
        ]


class ChangeFeed:
    """Collection-level change subscriptions.

    Thread-safe registration; callbacks run synchronously in the
    publishing thread. Async consumers bridge with
    ``loop.call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        collection: str,
        callback: SnapshotCallback,
        filter: dict[str, Any] | None = None,
    ) -> Callable[[], None]:
        """Register a callback for a collection.

        Args:
            collection: One of COLLECTION_MODELS.
            callback: Receives the current document list after each mutation.
            filter: Optional field equality filter applied to the snapshot.

        Returns:
            Function that removes the subscription.

        Raises:
            ValueError: Unknown collection.
        """
        if collection not in COLLECTION_MODELS:
            raise ValueError(
                f"Unknown collection '{collection}'. Must be one of: {sorted(COLLECTION_MODELS)}"
            )
        subscription = _Subscription(str(uuid4()), callback, filter)
        with self._lock:
            self._subscriptions.setdefault(collection, []).append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                subs = self._subscriptions.get(collection, [])
                self._subscriptions[collection] = [
                    s for s in subs if s.id != subscription.id
                ]

        return unsubscribe

    def has_subscribers(self, collection: str) -> bool:
        with self._lock:
            return bool(self._subscriptions.get(collection))

    def publish(self, collection: str, db: Session) -> None:
        """Deliver the collection's current documents to its subscribers.

        Args:
            collection: Collection that was just mutated.
            db: Session to read the committed snapshot from.
        """
        with self._lock:
            subscriptions = list(self._subscriptions.get(collection, []))
        if not subscriptions:
            return

        model = COLLECTION_MODELS[collection]
        snapshot = [to_document(row) for row in db.query(model).all()]
        for subscription in subscriptions:
            try:
                subscription.callback(subscription.select(snapshot))
            except Exception as e:
                logger.error(
                    "Change feed subscriber for %s failed: %s", collection, e
                )


# Process-wide feed shared by services and the scheduler
change_feed = ChangeFeed()

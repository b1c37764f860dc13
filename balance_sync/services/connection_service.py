"""Partner connection registry.

ConnectionService handles CRUD for ApiConnection rows with validation:
URL always required, email+password for POST, bearer token for GET, and
at most one active connection per balance source.

ConnectionRegistry is the typed in-memory view the scheduler reads each
pass. It is loaded once and then kept current from the change feed.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from balance_sync.clients.partner_client import check_api_url
from balance_sync.db.models import (
    ApiConnection,
    ApiMethod,
    BalanceSource,
    Currency,
    utc_now_iso,
)
from balance_sync.errors import ConfigurationError, NotFoundError
from balance_sync.services.change_feed import (
    API_CONNECTIONS,
    ChangeFeed,
    Snapshot,
    change_feed,
)
from balance_sync.utils.redaction import redact_for_logging, redact_url

logger = logging.getLogger(__name__)

VALID_METHODS = frozenset(m.value for m in ApiMethod)
VALID_CURRENCIES = frozenset(c.value for c in Currency)

# Fields that can be updated via PATCH
_MUTABLE_FIELDS = {
    "name", "api_url", "api_method",
    "email", "password", "auth_token",
    "currency", "is_active", "auto_sync",
    "sync_interval_seconds", "source_id",
}


@dataclass(frozen=True)
class ConnectionRecord:
    """Immutable view of an ApiConnection used during sync passes."""

    id: str
    source_id: str
    name: str
    api_url: str
    api_method: str
    email: str | None
    password: str | None
    auth_token: str | None
    currency: str
    is_active: bool
    auto_sync: bool
    sync_interval_seconds: int

    @classmethod
    def from_row(cls, row: ApiConnection) -> "ConnectionRecord":
        return cls.from_document({
            name: getattr(row, name) for name in cls.__dataclass_fields__
        })

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "ConnectionRecord":
        return cls(**{name: doc.get(name) for name in cls.__dataclass_fields__})

    def __repr__(self) -> str:
        return f"ConnectionRecord(id={self.id!r}, name={self.name!r}, method={self.api_method!r})"


def validate_connection_fields(
    name: str,
    api_url: str | None,
    api_method: str,
    email: str | None,
    password: str | None,
    auth_token: str | None,
    currency: str,
) -> None:
    """Check a connection's configuration before it is written.

    Raises:
        ConfigurationError: On any validation failure.
    """
    if api_method not in VALID_METHODS:
        raise ConfigurationError.from_code(
            "E-1007", field="api_method", value=api_method, allowed=sorted(VALID_METHODS)
        )
    if currency not in VALID_CURRENCIES:
        raise ConfigurationError.from_code(
            "E-1007", field="currency", value=currency, allowed=sorted(VALID_CURRENCIES)
        )
    check_api_url(name, api_url)
    if api_method == ApiMethod.POST.value:
        missing = [f for f, v in (("email", email), ("password", password)) if not v]
        if missing:
            raise ConfigurationError.from_code(
                "E-1002", name=name, missing=" and ".join(missing)
            )
    elif not auth_token:
        raise ConfigurationError.from_code("E-1003", name=name)


def find_active_owner(
    db: Session, source_id: str, exclude_id: str | None = None
) -> ApiConnection | None:
    """Active connection that owns ``source_id``, if any."""
    query = db.query(ApiConnection).filter(
        ApiConnection.source_id == source_id,
        ApiConnection.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.filter(ApiConnection.id != exclude_id)
    return query.order_by(ApiConnection.created_at).first()


class ConnectionService:
    """CRUD service for partner connections.

    Args:
        db: SQLAlchemy session.
        feed: Change feed notified after each committed mutation.
    """

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self._feed = feed or change_feed

    def _check_single_owner(
        self, source_id: str, is_active: bool, connection_id: str | None = None
    ) -> None:
        if not is_active:
            return
        owner = find_active_owner(self._db, source_id, exclude_id=connection_id)
        if owner is not None:
            raise ConfigurationError.from_code(
                "E-1006", source_id=source_id, owner=owner.name
            )

    def _require_source(self, source_id: str) -> None:
        if self._db.get(BalanceSource, source_id) is None:
            raise NotFoundError.from_code(resource="Source", identifier=source_id)

    def _commit(self) -> None:
        self._db.commit()
        self._feed.publish(API_CONNECTIONS, self._db)

    def get(self, connection_id: str) -> ApiConnection:
        """Get a connection by id.

        Raises:
            NotFoundError: If no such connection exists.
        """
        row = self._db.get(ApiConnection, connection_id)
        if row is None:
            raise NotFoundError.from_code(resource="Connection", identifier=connection_id)
        return row

    def list_connections(self) -> list[ApiConnection]:
        """All connections ordered by name."""
        return self._db.query(ApiConnection).order_by(ApiConnection.name).all()

    def list_active(self) -> list[ApiConnection]:
        """Connections with is_active set, ordered by name."""
        return (
            self._db.query(ApiConnection)
            .filter(ApiConnection.is_active.is_(True))
            .order_by(ApiConnection.name)
            .all()
        )

    def create_connection(
        self,
        source_id: str,
        name: str,
        api_url: str,
        api_method: str = ApiMethod.POST.value,
        email: str | None = None,
        password: str | None = None,
        auth_token: str | None = None,
        currency: str = Currency.USD.value,
        is_active: bool = True,
        auto_sync: bool = True,
        sync_interval_seconds: int = 60,
    ) -> ApiConnection:
        """Validate and persist a new connection.

        Returns:
            The created ApiConnection.

        Raises:
            ConfigurationError: Invalid fields or the source already has an active owner.
            NotFoundError: Unknown source id.
        """
        validate_connection_fields(
            name, api_url, api_method, email, password, auth_token, currency
        )
        self._require_source(source_id)
        self._check_single_owner(source_id, is_active)
        row = ApiConnection(
            source_id=source_id,
            name=name,
            api_url=api_url.strip(),
            api_method=api_method,
            email=email,
            password=password,
            auth_token=auth_token,
            currency=currency,
            is_active=is_active,
            auto_sync=auto_sync,
            sync_interval_seconds=sync_interval_seconds,
        )
        self._db.add(row)
        self._commit()
        logger.info(
            "Created connection %s for source %s (%s %s)",
            row.name, row.source_id, row.api_method, redact_url(row.api_url),
        )
        return row

    def update_connection(self, connection_id: str, patch: dict[str, Any]) -> ApiConnection:
        """Apply patch-style updates to a connection.

        Args:
            connection_id: Connection to update.
            patch: Field names to new values.

        Returns:
            Updated ApiConnection.

        Raises:
            ValueError: Unknown field names.
            ConfigurationError: Resulting configuration is invalid.
        """
        unknown = set(patch.keys()) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown connection fields: {unknown}")

        row = self.get(connection_id)
        merged = {field: getattr(row, field) for field in _MUTABLE_FIELDS}
        merged.update(patch)
        validate_connection_fields(
            merged["name"], merged["api_url"], merged["api_method"],
            merged["email"], merged["password"], merged["auth_token"],
            merged["currency"],
        )
        if "source_id" in patch and patch["source_id"] != row.source_id:
            self._require_source(patch["source_id"])

        self._check_single_owner(merged["source_id"], merged["is_active"], row.id)

        for key, value in patch.items():
            setattr(row, key, value)
        row.updated_at = utc_now_iso()
        self._commit()
        logger.info(
            "Updated connection %s: %s",
            row.name, redact_for_logging({k: patch[k] for k in sorted(patch)}),
        )
        return row

    def set_active(self, connection_id: str, is_active: bool) -> ApiConnection:
        """Activate or deactivate a connection."""
        return self.update_connection(connection_id, {"is_active": is_active})

    def toggle_active(self, connection_id: str) -> ApiConnection:
        row = self.get(connection_id)
        return self.set_active(connection_id, not row.is_active)

    def delete_connection(self, connection_id: str) -> None:
        """Delete a connection.

        Raises:
            NotFoundError: If no such connection exists.
        """
        row = self.get(connection_id)
        self._db.delete(row)
        self._commit()
        logger.info("Deleted connection %s (%s)", row.name, connection_id)

    def record_sync_result(
        self,
        connection_id: str,
        success: bool,
        error_message: str | None = None,
        error_code: str | None = None,
    ) -> None:
        """Write last-sync bookkeeping. Called only by the scheduler."""
        row = self._db.get(ApiConnection, connection_id)
        if row is None:
            logger.warning("Connection %s vanished before sync result was recorded", connection_id)
            return
        row.last_sync = utc_now_iso()
        row.last_sync_status = "success" if success else "error"
        row.last_sync_error = None if success else error_message
        row.last_sync_error_code = None if success else error_code
        self._commit()


def connection_to_dict(row: ApiConnection) -> dict:
    """Convert a connection row to a response dict (no secrets exposed)."""
    return {
        "id": row.id,
        "source_id": row.source_id,
        "name": row.name,
        "api_url": row.api_url,
        "api_method": row.api_method,
        "email": row.email,
        "has_password": bool(row.password),
        "has_auth_token": bool(row.auth_token),
        "currency": row.currency,
        "is_active": row.is_active,
        "auto_sync": row.auto_sync,
        "sync_interval_seconds": row.sync_interval_seconds,
        "last_sync": row.last_sync,
        "last_sync_status": row.last_sync_status,
        "last_sync_error": row.last_sync_error,
        "last_sync_error_code": row.last_sync_error_code,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class ConnectionRegistry:
    """In-memory typed view over persisted connections.

    ``load`` reads the table once; afterwards ``apply_snapshot`` (wired to
    the change feed by ``attach``) replaces the view with each new
    snapshot. Reads are thread-safe.
    """

    def __init__(self) -> None:
        self._records: dict[str, ConnectionRecord] = {}
        self._loaded = False
        self._lock = threading.Lock()
        self._on_change: list[Callable[[], None]] = []

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self, db: Session) -> None:
        rows = db.query(ApiConnection).all()
        self._replace([ConnectionRecord.from_row(row) for row in rows])

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the view; run change callbacks if any record differs.

        Sync bookkeeping columns are not part of ConnectionRecord, so
        last-sync writes do not count as a change.
        """
        records = [ConnectionRecord.from_document(doc) for doc in snapshot]
        with self._lock:
            changed = {r.id: r for r in records} != self._records
        self._replace(records)
        if not changed:
            return
        for callback in list(self._on_change):
            try:
                callback()
            except Exception as e:
                logger.error("Connection registry change callback failed: %s", e)

    def _replace(self, records: list[ConnectionRecord]) -> None:
        with self._lock:
            self._records = {r.id: r for r in records}
            self._loaded = True

    def attach(self, feed: ChangeFeed) -> Callable[[], None]:
        """Subscribe to connection changes. Returns the unsubscribe function."""
        return feed.subscribe(API_CONNECTIONS, self.apply_snapshot)

    def on_change(self, callback: Callable[[], None]) -> None:
        """Register a callback run after every applied snapshot."""
        self._on_change.append(callback)

    def get(self, connection_id: str) -> ConnectionRecord | None:
        with self._lock:
            return self._records.get(connection_id)

    def all(self) -> list[ConnectionRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.name)

    def active(self) -> list[ConnectionRecord]:
        """Active connections ordered by name."""
        return [r for r in self.all() if r.is_active]

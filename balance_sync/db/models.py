"""SQLAlchemy ORM models for the balance sync state database.

Tables mirror the record collections the engine reads and writes:
partner connections, tracked balances, the append-only balance history,
balance sources and the global sync configuration singleton. Uses
SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the stored string values


class Currency(str, Enum):
    """Currencies a balance may be tracked in."""

    IQD = "IQD"
    USD = "USD"
    AED = "AED"


class BalanceType(str, Enum):
    """Kind of counterparty a balance is held with."""

    airline = "airline"
    supplier = "supplier"


class ApiMethod(str, Enum):
    """HTTP method used to query a partner balance endpoint.

    POST sends login credentials in the body; GET sends a bearer token.
    """

    POST = "POST"
    GET = "GET"


class SyncStatusValue(str, Enum):
    """Outcome of the last fetch attempt for a connection."""

    success = "success"
    error = "error"


class HistoryAction(str, Enum):
    """Mutation recorded by a balance history entry."""

    created = "created"
    updated = "updated"
    deleted = "deleted"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ApiConnection(Base):
    """Partner balance endpoint configuration plus last-sync bookkeeping.

    Attributes:
        id: UUID primary key.
        source_id: Id of the balance source this connection feeds.
        name: Display name; copied onto owned balances as ``api_source``.
        api_url: Partner balance endpoint.
        api_method: ``POST`` (credential login) or ``GET`` (bearer token).
        email: Login identity for POST connections.
        password: Login secret for POST connections.
        auth_token: Bearer token for GET connections.
        currency: Currency the partner wallet is expected in.
        is_active: Only active connections are polled and own balances.
        auto_sync: Stored preference carried over from the original record.
        sync_interval_seconds: Stored per-connection interval (informational).
        last_sync: ISO8601 timestamp of the last fetch attempt.
        last_sync_status: ``success`` or ``error``.
        last_sync_error: Sanitized error message from the last failure.
        last_sync_error_code: E-XXXX code from the last failure.
    """

    __tablename__ = "api_connections"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    source_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    api_method: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ApiMethod.POST.value
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password: Mapped[str | None] = mapped_column(Text, nullable=True)
    auth_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=Currency.USD.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sync_interval_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60
    )

    # Written only by the sync scheduler
    last_sync: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_sync_status: Mapped[str | None] = mapped_column(String(10), nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_error_code: Mapped[str | None] = mapped_column(
        String(20), nullable=True
    )

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_api_connections_source_id", "source_id"),
        Index("idx_api_connections_is_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<ApiConnection(id={self.id!r}, name={self.name!r}, source_id={self.source_id!r})>"


class Balance(Base):
    """Internally tracked balance with a counterparty.

    A balance is auto-owned when an active connection shares its
    ``source_id``. ``api_source`` is set exactly when ``is_auto_sync`` is.
    Limits are all present or all absent.
    """

    __tablename__ = "balances"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    source_id: Mapped[str] = mapped_column(String(36), nullable=False)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2, asdecimal=True), nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BalanceType.airline.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Threshold limits (red < yellow < green)
    limit_red: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2, asdecimal=True), nullable=True
    )
    limit_yellow: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2, asdecimal=True), nullable=True
    )
    limit_green: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2, asdecimal=True), nullable=True
    )

    # Ownership
    is_auto_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    api_source: Mapped[str | None] = mapped_column(String(255), nullable=True)

    last_updated: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    last_updated_by_email: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    last_updated_by_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_balances_source_id", "source_id"),
        Index("idx_balances_type", "type"),
    )

    @property
    def has_limits(self) -> bool:
        """True when all three threshold limits are configured."""
        return (
            self.limit_red is not None
            and self.limit_yellow is not None
            and self.limit_green is not None
        )

    def __repr__(self) -> str:
        return f"<Balance(id={self.id!r}, source={self.source_name!r}, amount={self.amount!r} {self.currency})>"


class BalanceHistory(Base):
    """Append-only audit entry for one balance mutation.

    Attributes:
        id: UUID primary key.
        balance_id: Balance the entry refers to (kept after balance deletion).
        source_name: Source name at the time of the mutation.
        action: created, updated or deleted.
        old_amount / new_amount: Amount before and after.
        old_currency / new_currency: Currency before and after.
        old_notes / new_notes: Notes before and after.
        changes: Human-readable summary of what changed.
        timestamp: ISO8601 timestamp of the mutation.
        updated_by_email / updated_by_name: Actor; the system actor for sync.
    """

    __tablename__ = "balance_history"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    balance_id: Mapped[str] = mapped_column(String(36), nullable=False)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False)

    old_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2, asdecimal=True), nullable=True
    )
    new_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2, asdecimal=True), nullable=True
    )
    old_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    new_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    old_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    changes: Mapped[str | None] = mapped_column(Text, nullable=True)

    timestamp: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_by_email: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by_name: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        Index("idx_balance_history_balance_id", "balance_id"),
        Index("idx_balance_history_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<BalanceHistory(id={self.id!r}, balance_id={self.balance_id!r}, action={self.action!r})>"


class BalanceSource(Base):
    """Airline or supplier identity that balances and connections refer to."""

    __tablename__ = "balance_sources"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BalanceType.airline.value
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<BalanceSource(id={self.id!r}, name={self.name!r}, type={self.type!r})>"


class SyncConfig(Base):
    """Global sync configuration singleton.

    ``frequency_seconds`` is bounded to 10..300 by the service layer.
    """

    __tablename__ = "sync_config"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frequency_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, default=30
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

"""Database module for balance sync state and persistence."""

from balance_sync.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from balance_sync.db.models import (
    ApiConnection,
    ApiMethod,
    Balance,
    BalanceHistory,
    BalanceSource,
    BalanceType,
    Currency,
    HistoryAction,
    SyncConfig,
    SyncStatusValue,
)

__all__ = [
    # Models
    "ApiConnection",
    "Balance",
    "BalanceHistory",
    "BalanceSource",
    "SyncConfig",
    # Enums
    "ApiMethod",
    "BalanceType",
    "Currency",
    "HistoryAction",
    "SyncStatusValue",
    # Connection
    "SessionLocal",
    "engine",
    "get_db",
    "get_db_context",
    "init_db",
]

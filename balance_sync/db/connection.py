"""Engine and session plumbing for the balance store.

One synchronous engine serves both the API request handlers and the
scheduler's per-pass sessions. The store is a local SQLite file unless
DATABASE_URL points somewhere else.

    from balance_sync.db.connection import get_db_context, init_db

    init_db()
    with get_db_context() as db:
        db.query(Balance).count()
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from balance_sync.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///./balance_sync.db"


def get_database_url() -> str:
    """Resolve the store location.

    DATABASE_URL wins. BALANCE_SYNC_DB_PATH may hold a bare file path or
    a sqlite: URL. With neither set, balance_sync.db in the working
    directory is used.
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("BALANCE_SYNC_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    return DEFAULT_DATABASE_URL


DATABASE_URL = get_database_url()

# Scheduler sessions run on the event loop thread, API sessions on the
# threadpool; SQLite must accept both.
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Turn on foreign keys and WAL for each new SQLite connection."""
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """Per-request session dependency; routes commit through their services."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session for CLI commands and scripts.

    The block's work is committed when it exits normally and rolled back
    when it raises.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Existing tables and rows are left alone."""
    Base.metadata.create_all(bind=engine)


def close_db() -> None:
    engine.dispose()

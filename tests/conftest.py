"""Root-level pytest fixtures for all tests.

Provides:
- In-memory SQLite engine, session factory and session
- An isolated ChangeFeed per test
- Factories for sources, connections and balances
"""

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from balance_sync.db.models import Base
from balance_sync.services.balance_service import BalanceService
from balance_sync.services.change_feed import ChangeFeed
from balance_sync.services.connection_service import ConnectionService
from balance_sync.services.history_service import Actor
from balance_sync.services.source_service import SourceService


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine (what the scheduler receives)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def test_db(session_factory) -> Generator[Session, None, None]:
    """Create a session on the in-memory database.

    Creates all tables, yields a session, and cleans up after test.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def feed() -> ChangeFeed:
    """Private change feed so subscriptions never leak between tests."""
    return ChangeFeed()


@pytest.fixture
def actor() -> Actor:
    return Actor(email="sara@agency.example", name="Sara Agent")


# ============================================================================
# Record Factories
# ============================================================================


@pytest.fixture
def make_source(test_db, feed):
    """Factory creating a BalanceSource."""

    def _make(name: str = "Iraqi Airways", source_type: str = "airline"):
        return SourceService(test_db, feed=feed).create_source(name, source_type)

    return _make


@pytest.fixture
def make_connection(test_db, feed):
    """Factory creating an ApiConnection for a source.

    Defaults to an active POST connection with a login.
    """

    def _make(source, name: str | None = None, **overrides):
        fields = {
            "source_id": source.id,
            "name": name or f"{source.name} API",
            "api_url": "https://partner.example/api/b2b/v1/auth/login",
            "api_method": "POST",
            "email": "ops@agency.example",
            "password": "s3cret-pass",
            "currency": "USD",
        }
        fields.update(overrides)
        return ConnectionService(test_db, feed=feed).create_connection(**fields)

    return _make


@pytest.fixture
def make_balance(test_db, feed, actor):
    """Factory creating a Balance through the manual-entry path."""

    def _make(source, amount="1000", currency: str = "USD", notes: str | None = None):
        return BalanceService(test_db, feed=feed).create_balance(
            source.id, amount, currency, actor, notes=notes
        )

    return _make

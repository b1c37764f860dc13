"""Tests for ownership assignment and value reconciliation."""

from decimal import Decimal

import pytest
from sqlalchemy import update

from balance_sync.db.models import Balance
from balance_sync.services.connection_service import ConnectionRecord, ConnectionService
from balance_sync.services.history_service import SYSTEM_ACTOR, HistoryService
from balance_sync.services.normalizer import NormalizedBalance
from balance_sync.services.reconciliation import ReconciliationEngine


@pytest.fixture
def engine(test_db, feed):
    return ReconciliationEngine(test_db, feed=feed)


def _owned_pairs_consistent(db) -> bool:
    """is_auto_sync and api_source are set together or not at all."""
    return all(
        b.is_auto_sync == (b.api_source is not None) for b in db.query(Balance).all()
    )


class TestAssignOwnership:
    def test_claims_balances_of_active_sources(
        self, test_db, engine, make_source, make_connection, make_balance
    ):
        owned_source = make_source("Iraqi Airways")
        manual_source = make_source("Desert Hotels", "supplier")
        owned = make_balance(owned_source)
        manual = make_balance(manual_source)
        connection = make_connection(owned_source, name="IA B2B")

        changes = engine.assign_ownership()

        assert [c.balance_id for c in changes] == [owned.id]
        assert owned.is_auto_sync is True
        assert owned.api_source == "IA B2B"
        assert manual.is_auto_sync is False
        assert manual.api_source is None
        assert connection.is_active
        assert _owned_pairs_consistent(test_db)

    def test_second_run_is_a_no_op(self, test_db, engine, make_source, make_connection, make_balance):
        source = make_source()
        make_balance(source)
        make_connection(source)

        assert engine.assign_ownership()
        assert engine.assign_ownership() == []

    def test_deactivation_releases_balances(
        self, test_db, feed, engine, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source)
        connection = make_connection(source)
        engine.assign_ownership()

        ConnectionService(test_db, feed=feed).set_active(connection.id, False)
        changes = engine.assign_ownership()

        assert len(changes) == 1
        assert balance.is_auto_sync is False
        assert balance.api_source is None
        assert _owned_pairs_consistent(test_db)

    def test_connection_rename_corrects_api_source(
        self, test_db, feed, engine, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source)
        connection = make_connection(source, name="Old name")
        engine.assign_ownership()

        ConnectionService(test_db, feed=feed).update_connection(connection.id, {"name": "New name"})
        engine.assign_ownership()

        assert balance.api_source == "New name"

    def test_does_not_write_history(self, test_db, feed, engine, make_source, make_connection, make_balance):
        source = make_source()
        make_balance(source)
        make_connection(source)
        before = HistoryService(test_db, feed=feed).count()
        engine.assign_ownership()
        assert HistoryService(test_db, feed=feed).count() == before


class TestReconcileValue:
    def test_updates_owned_balance_with_system_actor(
        self, test_db, feed, engine, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source, amount="100", currency="USD")
        connection = make_connection(source, currency="IQD")
        engine.assign_ownership()

        outcome = engine.reconcile_value(
            ConnectionRecord.from_row(connection),
            NormalizedBalance(Decimal("24723299.95"), "IQD", "wallet"),
        )

        assert outcome.updated_ids == [balance.id]
        assert outcome.created_id is None
        assert balance.amount == Decimal("24723299.95")
        assert balance.currency == "IQD"
        assert balance.last_updated_by_email == SYSTEM_ACTOR.email

        entries = HistoryService(test_db, feed=feed).list_for_balance(balance.id)
        update = next(e for e in entries if e.action == "updated")
        assert update.old_amount == Decimal("100")
        assert update.new_amount == Decimal("24723299.95")
        assert update.updated_by_name == SYSTEM_ACTOR.name

    def test_each_reconcile_adds_one_history_row(
        self, test_db, feed, engine, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source)
        connection = make_connection(source)
        engine.assign_ownership()
        history = HistoryService(test_db, feed=feed)
        before = history.count(balance.id)

        for amount in ("10", "10", "20"):
            engine.reconcile_value(connection, NormalizedBalance(Decimal(amount), "USD", "balance"))

        assert history.count(balance.id) == before + 3

    def test_creates_owned_balance_when_source_has_none(
        self, test_db, feed, engine, make_source, make_connection
    ):
        source = make_source("Fly Baghdad", "airline")
        connection = make_connection(source, name="FB API")

        outcome = engine.reconcile_value(
            connection, NormalizedBalance(Decimal("15000"), "USD", "balance")
        )

        created = test_db.get(Balance, outcome.created_id)
        assert created.source_name == "Fly Baghdad"
        assert created.is_auto_sync is True
        assert created.api_source == "FB API"
        assert created.amount == Decimal("15000")
        assert HistoryService(test_db, feed=feed).count(created.id) == 1

    def test_unowned_balances_are_not_touched(
        self, test_db, engine, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source, amount="100")
        connection = make_connection(source)
        # ownership not assigned yet: the balance is still manual

        outcome = engine.reconcile_value(
            connection, NormalizedBalance(Decimal("999"), "USD", "balance")
        )

        assert outcome.touched == 0
        assert balance.amount == Decimal("100")

    def test_custom_actor(self, test_db, feed, make_source, make_connection):
        from balance_sync.services.history_service import Actor

        bot = Actor("bot@agency.example", "Night Sync")
        connection = make_connection(make_source())
        outcome = ReconciliationEngine(test_db, feed=feed, actor=bot).reconcile_value(
            connection, NormalizedBalance(Decimal("1"), "USD", "balance")
        )
        assert test_db.get(Balance, outcome.created_id).last_updated_by_name == "Night Sync"

    def test_balance_detached_after_read_keeps_manual_value(
        self, test_db, feed, make_source, make_connection, make_balance
    ):
        source = make_source()
        balance = make_balance(source, amount="100")
        connection = make_connection(source, name="IA B2B")
        ReconciliationEngine(test_db, feed=feed).assign_ownership()
        history = HistoryService(test_db, feed=feed)
        before = history.count(balance.id)

        class DetachAfterRead(ReconciliationEngine):
            def _source_balances(self, source_id):
                rows = super()._source_balances(source_id)
                # A manual edit lands between the read and the write
                self._db.execute(
                    update(Balance)
                    .where(Balance.id == balance.id)
                    .values(is_auto_sync=False, api_source=None, amount=Decimal("777"))
                    .execution_options(synchronize_session=False)
                )
                return rows

        outcome = DetachAfterRead(test_db, feed=feed).reconcile_value(
            connection, NormalizedBalance(Decimal("15000"), "USD", "balance")
        )

        assert outcome.touched == 0
        test_db.expire_all()
        stored = test_db.get(Balance, balance.id)
        assert stored.amount == Decimal("777")
        assert stored.is_auto_sync is False
        assert stored.last_updated_by_email != SYSTEM_ACTOR.email
        assert history.count(balance.id) == before

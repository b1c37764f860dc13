"""Tests for the balance audit log."""

import logging
from decimal import Decimal

from balance_sync.services.balance_service import BalanceService
from balance_sync.services.history_service import (
    BalanceSnapshot,
    HistoryService,
    history_to_dict,
    summarize_changes,
)


class TestSummarizeChanges:
    def test_amount_and_currency(self):
        old = BalanceSnapshot(Decimal("1000"), "USD", None)
        new = BalanceSnapshot(Decimal("2500.5"), "IQD", None)
        assert summarize_changes(old, new) == (
            "amount: 1,000.00 -> 2,500.50; currency: USD -> IQD"
        )

    def test_notes_only(self):
        old = BalanceSnapshot(Decimal("1"), "USD", "a")
        new = BalanceSnapshot(Decimal("1"), "USD", "b")
        assert summarize_changes(old, new) == "notes updated"

    def test_identical(self):
        snap = BalanceSnapshot(Decimal("1"), "USD", None)
        assert summarize_changes(snap, snap) == "no changes"

    def test_from_nothing(self):
        new = BalanceSnapshot(Decimal("10"), "AED", None)
        assert summarize_changes(BalanceSnapshot(None, None, None), new) == (
            "amount: - -> 10.00; currency: - -> AED"
        )


class TestHistoryService:
    def test_every_mutation_appends_one_row(self, test_db, feed, actor, make_source, make_balance):
        balance = make_balance(make_source(), amount="1000")
        service = BalanceService(test_db, feed=feed)
        service.update_balance(balance.id, actor, amount="1500")
        service.update_balance(balance.id, actor, notes="top-up pending")

        history = HistoryService(test_db, feed=feed)
        assert history.count(balance.id) == 3
        actions = sorted(e.action for e in history.list_for_balance(balance.id))
        assert actions == ["created", "updated", "updated"]

    def test_entry_records_old_and_new(self, test_db, feed, actor, make_source, make_balance):
        balance = make_balance(make_source(), amount="1000")
        BalanceService(test_db, feed=feed).update_balance(balance.id, actor, amount="750.25")

        entries = HistoryService(test_db, feed=feed).list_for_balance(balance.id)
        update = next(e for e in entries if e.action == "updated")
        assert update.old_amount == Decimal("1000")
        assert update.new_amount == Decimal("750.25")
        assert update.updated_by_email == actor.email
        assert update.updated_by_name == actor.name

    def test_history_survives_balance_delete(self, test_db, feed, actor, make_source, make_balance):
        balance = make_balance(make_source(), amount="10")
        BalanceService(test_db, feed=feed).delete_balance(balance.id, actor)

        entries = HistoryService(test_db, feed=feed).list_for_balance(balance.id)
        deleted = next(e for e in entries if e.action == "deleted")
        assert deleted.old_amount == Decimal("10")
        assert deleted.new_amount is None

    def test_clear_history_logs_warning(self, test_db, feed, actor, make_source, make_balance, caplog):
        make_balance(make_source("A"))
        make_balance(make_source("B"))
        history = HistoryService(test_db, feed=feed)

        with caplog.at_level(logging.WARNING):
            deleted = history.clear_history(actor)

        assert deleted == 2
        assert history.count() == 0
        assert "cleared by Sara Agent" in caplog.text

    def test_list_recent_respects_limit(self, test_db, feed, make_source, make_balance):
        for name in ("A", "B", "C"):
            make_balance(make_source(name))
        assert len(HistoryService(test_db, feed=feed).list_recent(limit=2)) == 2

    def test_history_to_dict(self, test_db, feed, make_source, make_balance):
        balance = make_balance(make_source("Iraqi Airways"), amount="99.5", currency="IQD")
        entry = HistoryService(test_db, feed=feed).list_for_balance(balance.id)[0]
        data = history_to_dict(entry)
        assert data["action"] == "created"
        assert data["old_amount"] is None
        assert Decimal(data["new_amount"]) == Decimal("99.5")
        assert data["new_currency"] == "IQD"
        assert data["source_name"] == "Iraqi Airways"
        assert data["updated_by"] == {"email": "sara@agency.example", "name": "Sara Agent"}

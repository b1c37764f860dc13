"""Append-only balance history (audit log writer).

Every create, update and delete of a Balance adds one BalanceHistory row
in the same transaction as the mutation. Rows are never edited. The only
bulk removal is ``clear_history``, an explicit administrative action that
is logged at WARNING level.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from balance_sync.db.models import Balance, BalanceHistory, HistoryAction, utc_now_iso
from balance_sync.services.change_feed import BALANCE_HISTORY, ChangeFeed, change_feed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Who performed a mutation."""

    email: str
    name: str


SYSTEM_ACTOR = Actor(email="system@balance-sync.local", name="Auto Sync")


@dataclass(frozen=True)
class BalanceSnapshot:
    """Audited fields of a balance at one point in time."""

    amount: Decimal | None
    currency: str | None
    notes: str | None

    @classmethod
    def of(cls, balance: Balance) -> "BalanceSnapshot":
        return cls(
            amount=Decimal(balance.amount) if balance.amount is not None else None,
            currency=balance.currency,
            notes=balance.notes,
        )


EMPTY_SNAPSHOT = BalanceSnapshot(amount=None, currency=None, notes=None)


def summarize_changes(old: BalanceSnapshot, new: BalanceSnapshot) -> str:
    """Human-readable summary of what changed between two snapshots."""
    parts = []
    if old.amount != new.amount:
        parts.append(f"amount: {_fmt(old.amount)} -> {_fmt(new.amount)}")
    if old.currency != new.currency:
        parts.append(f"currency: {old.currency or '-'} -> {new.currency or '-'}")
    if (old.notes or "") != (new.notes or ""):
        parts.append("notes updated")
    return "; ".join(parts) if parts else "no changes"


def _fmt(amount: Decimal | None) -> str:
    if amount is None:
        return "-"
    return f"{amount:,.2f}"


class HistoryService:
    """Writes and reads the balance audit trail."""

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self._feed = feed or change_feed

    def append(
        self,
        balance: Balance,
        action: HistoryAction,
        old: BalanceSnapshot,
        new: BalanceSnapshot,
        actor: Actor,
        changes: str | None = None,
    ) -> BalanceHistory:
        """Stage a history row in the caller's transaction.

        The caller commits; nothing is flushed here.

        Args:
            balance: Balance being mutated (its id and source name are copied).
            action: created, updated or deleted.
            old: Values before the mutation.
            new: Values after the mutation.
            actor: Human or system actor.
            changes: Summary override; derived from the snapshots when None.

        Returns:
            The pending BalanceHistory row.
        """
        entry = BalanceHistory(
            balance_id=balance.id,
            source_name=balance.source_name,
            action=action.value,
            old_amount=old.amount,
            new_amount=new.amount,
            old_currency=old.currency,
            new_currency=new.currency,
            old_notes=old.notes,
            new_notes=new.notes,
            changes=changes or summarize_changes(old, new),
            timestamp=utc_now_iso(),
            updated_by_email=actor.email,
            updated_by_name=actor.name,
        )
        self._db.add(entry)
        return entry

    def publish(self) -> None:
        """Notify change-feed subscribers after the caller committed."""
        self._feed.publish(BALANCE_HISTORY, self._db)

    def list_for_balance(self, balance_id: str, limit: int | None = None) -> list[BalanceHistory]:
        """History entries for one balance, newest first."""
        query = (
            self._db.query(BalanceHistory)
            .filter(BalanceHistory.balance_id == balance_id)
            .order_by(BalanceHistory.timestamp.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def list_recent(self, limit: int = 100) -> list[BalanceHistory]:
        """Latest history entries across all balances."""
        return (
            self._db.query(BalanceHistory)
            .order_by(BalanceHistory.timestamp.desc())
            .limit(limit)
            .all()
        )

    def count(self, balance_id: str | None = None) -> int:
        query = self._db.query(BalanceHistory)
        if balance_id is not None:
            query = query.filter(BalanceHistory.balance_id == balance_id)
        return query.count()

    def clear_history(self, actor: Actor) -> int:
        """Delete every history row. Administrative action.

        Args:
            actor: Who requested the purge; recorded in the log.

        Returns:
            Number of rows deleted.
        """
        deleted = self._db.query(BalanceHistory).delete(synchronize_session=False)
        self._db.commit()
        logger.warning(
            "Balance history cleared by %s <%s>: %d entries deleted",
            actor.name, actor.email, deleted,
        )
        self.publish()
        return deleted


def history_to_dict(entry: BalanceHistory) -> dict:
    """Convert a history row to an API response dict."""
    return {
        "id": entry.id,
        "balance_id": entry.balance_id,
        "source_name": entry.source_name,
        "action": entry.action,
        "old_amount": _decimal_out(entry.old_amount),
        "new_amount": _decimal_out(entry.new_amount),
        "old_currency": entry.old_currency,
        "new_currency": entry.new_currency,
        "old_notes": entry.old_notes,
        "new_notes": entry.new_notes,
        "changes": entry.changes,
        "timestamp": entry.timestamp,
        "updated_by": {"email": entry.updated_by_email, "name": entry.updated_by_name},
    }


def _decimal_out(value: Decimal | None) -> str | None:
    return None if value is None else str(value)

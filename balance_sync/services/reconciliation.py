"""Reconciliation of partner balances into tracked balances.

Two operations:

- ``assign_ownership`` converges every balance's ``is_auto_sync`` /
  ``api_source`` pair onto the set of active connections. A balance is
  owned when an active connection shares its ``source_id``. Re-running it
  without changes in between is a no-op.
- ``reconcile_value`` writes a freshly normalized amount into the
  balances owned by one connection, stamping the system actor and adding
  a history row for each.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.orm import Session

from balance_sync.db.models import ApiConnection, Balance, BalanceSource, BalanceType, HistoryAction, utc_now_iso
from balance_sync.services.change_feed import BALANCES, ChangeFeed, change_feed
from balance_sync.services.history_service import (
    EMPTY_SNAPSHOT,
    SYSTEM_ACTOR,
    Actor,
    BalanceSnapshot,
    HistoryService,
)
from balance_sync.services.normalizer import NormalizedBalance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnershipChange:
    """One balance whose ownership flag was flipped or corrected."""

    balance_id: str
    source_name: str
    is_auto_sync: bool
    api_source: str | None


@dataclass
class ReconcileOutcome:
    """Balances written for one connection in one pass."""

    connection_id: str
    updated_ids: list[str] = field(default_factory=list)
    created_id: str | None = None

    @property
    def touched(self) -> int:
        return len(self.updated_ids) + (1 if self.created_id else 0)


class ReconciliationEngine:
    """Applies ownership and partner values to Balance rows.

    Args:
        db: SQLAlchemy session.
        feed: Change feed notified after commits.
        actor: Identity stamped on reconciled balances and history rows.
    """

    def __init__(
        self,
        db: Session,
        feed: ChangeFeed | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> None:
        self._db = db
        self._feed = feed or change_feed
        self._actor = actor
        self._history = HistoryService(db, feed=self._feed)

    def _owners_by_source(self) -> dict[str, str]:
        """Map source_id -> owning connection name for active connections."""
        owners: dict[str, str] = {}
        active = (
            self._db.query(ApiConnection)
            .filter(ApiConnection.is_active.is_(True))
            .order_by(ApiConnection.created_at)
            .all()
        )
        for connection in active:
            if connection.source_id in owners:
                logger.warning(
                    "Source %s has more than one active connection; keeping %s, ignoring %s",
                    connection.source_id, owners[connection.source_id], connection.name,
                )
                continue
            owners[connection.source_id] = connection.name
        return owners

    def assign_ownership(self) -> list[OwnershipChange]:
        """Converge ownership flags onto the active connection set.

        Returns:
            Balances whose flags changed; empty when already converged.
        """
        owners = self._owners_by_source()
        changes: list[OwnershipChange] = []
        for balance in self._db.query(Balance).all():
            owner = owners.get(balance.source_id)
            wanted_auto = owner is not None
            if balance.is_auto_sync == wanted_auto and balance.api_source == owner:
                continue
            balance.is_auto_sync = wanted_auto
            balance.api_source = owner
            changes.append(
                OwnershipChange(balance.id, balance.source_name, wanted_auto, owner)
            )

        if changes:
            self._db.commit()
            self._feed.publish(BALANCES, self._db)
            for change in changes:
                if change.is_auto_sync:
                    logger.info(
                        "Balance %s now auto-synced by %s", change.source_name, change.api_source
                    )
                else:
                    logger.info("Balance %s detached from auto-sync", change.source_name)
        return changes

    def reconcile_value(
        self, connection, normalized: NormalizedBalance
    ) -> ReconcileOutcome:
        """Write a normalized partner amount into the connection's balances.

        Only balances owned by this connection are touched. Each write is
        conditional on the balance still being owned by this connection at
        write time, so a concurrent manual detach wins. When the source
        has no balance at all, an owned one is created.

        Args:
            connection: ApiConnection row or ConnectionRecord.
            normalized: Amount from the normalizer.

        Returns:
            ReconcileOutcome listing the balances written.
        """
        outcome = ReconcileOutcome(connection_id=connection.id)
        balances = self._source_balances(connection.source_id)
        owned = [
            b for b in balances
            if b.is_auto_sync and b.api_source == connection.name
        ]

        if not balances:
            balance = self._create_owned_balance(connection, normalized)
            outcome.created_id = balance.id
        elif not owned:
            logger.warning(
                "Connection %s fetched a balance but owns none of source %s; skipping write",
                connection.name, connection.source_id,
            )
            return outcome

        values = {
            "amount": normalized.amount,
            "currency": normalized.currency,
            "last_updated": utc_now_iso(),
            "last_updated_by_email": self._actor.email,
            "last_updated_by_name": self._actor.name,
        }
        for balance in owned:
            old = BalanceSnapshot.of(balance)
            # Ownership may have been released since the read above
            written = self._db.execute(
                update(Balance)
                .where(
                    Balance.id == balance.id,
                    Balance.is_auto_sync.is_(True),
                    Balance.api_source == connection.name,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount
            if written != 1:
                logger.warning(
                    "Balance %s was detached from %s before the write; skipping",
                    balance.source_name, connection.name,
                )
                continue
            self._db.refresh(balance)
            self._history.append(
                balance, HistoryAction.updated, old, BalanceSnapshot.of(balance), self._actor
            )
            outcome.updated_ids.append(balance.id)

        self._db.commit()
        self._feed.publish(BALANCES, self._db)
        self._history.publish()
        logger.info(
            "Reconciled %s: %s %s (%d balance(s))",
            connection.name, normalized.amount, normalized.currency, outcome.touched,
        )
        return outcome

    def _source_balances(self, source_id: str) -> list[Balance]:
        return self._db.query(Balance).filter(Balance.source_id == source_id).all()

    def _create_owned_balance(self, connection, normalized: NormalizedBalance) -> Balance:
        source = self._db.get(BalanceSource, connection.source_id)
        now = utc_now_iso()
        balance = Balance(
            source_id=connection.source_id,
            source_name=source.name if source is not None else connection.name,
            type=source.type if source is not None else BalanceType.airline.value,
            amount=normalized.amount,
            currency=normalized.currency,
            is_auto_sync=True,
            api_source=connection.name,
            last_updated=now,
            last_updated_by_email=self._actor.email,
            last_updated_by_name=self._actor.name,
            created_at=now,
        )
        self._db.add(balance)
        self._db.flush()
        self._history.append(
            balance, HistoryAction.created, EMPTY_SNAPSHOT, BalanceSnapshot.of(balance), self._actor
        )
        return balance

"""Manual balance management.

Humans create, edit and delete balances here. Balances owned by an
active connection (``is_auto_sync``) reject amount/currency edits and
deletion with OwnershipConflictError; the owning connection must be
deactivated first. Limits and notes stay editable on owned balances.
Every create/update/delete writes one history row in the same commit.
"""

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from balance_sync.db.models import Balance, Currency, HistoryAction, utc_now_iso
from balance_sync.errors import ConfigurationError, NotFoundError, OwnershipConflictError
from balance_sync.services.change_feed import BALANCES, ChangeFeed, change_feed
from balance_sync.services.connection_service import find_active_owner
from balance_sync.services.history_service import (
    EMPTY_SNAPSHOT,
    Actor,
    BalanceSnapshot,
    HistoryService,
)
from balance_sync.services.normalizer import parse_amount
from balance_sync.services.source_service import SourceService
from balance_sync.services.thresholds import classify_balance, validate_limits

logger = logging.getLogger(__name__)

VALID_CURRENCIES = frozenset(c.value for c in Currency)


def _check_currency(currency: str) -> None:
    if currency not in VALID_CURRENCIES:
        raise ConfigurationError.from_code(
            "E-1007", field="currency", value=currency, allowed=sorted(VALID_CURRENCIES)
        )


def _to_amount(value: Any) -> Decimal:
    try:
        return parse_amount(value)
    except ValueError as e:
        raise ConfigurationError.from_code("E-1010", value=value) from e


class BalanceService:
    """CRUD for balances with ownership enforcement and audit history."""

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self._feed = feed or change_feed
        self._history = HistoryService(db, feed=self._feed)

    def _commit(self, history: bool = True) -> None:
        self._db.commit()
        self._feed.publish(BALANCES, self._db)
        if history:
            self._history.publish()

    def get(self, balance_id: str) -> Balance:
        balance = self._db.get(Balance, balance_id)
        if balance is None:
            raise NotFoundError.from_code(resource="Balance", identifier=balance_id)
        return balance

    def list_balances(
        self,
        balance_type: str | None = None,
        ownership: str | None = None,
        search: str | None = None,
        currency: str | None = None,
    ) -> list[Balance]:
        """List balances with optional filters.

        Args:
            balance_type: ``airline`` or ``supplier``.
            ownership: ``auto`` or ``manual``.
            search: Case-insensitive substring of source name or notes.
            currency: Exact currency code.
        """
        query = self._db.query(Balance)
        if balance_type:
            query = query.filter(Balance.type == balance_type)
        if ownership == "auto":
            query = query.filter(Balance.is_auto_sync.is_(True))
        elif ownership == "manual":
            query = query.filter(Balance.is_auto_sync.is_(False))
        if currency:
            query = query.filter(Balance.currency == currency)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(Balance.source_name.ilike(pattern), Balance.notes.ilike(pattern))
            )
        return query.order_by(Balance.source_name).all()

    def create_balance(
        self,
        source_id: str,
        amount: Any,
        currency: str,
        actor: Actor,
        notes: str | None = None,
    ) -> Balance:
        """Create a balance for a source.

        If an active connection already owns the source the new balance
        starts out auto-owned.

        Raises:
            NotFoundError: Unknown source.
            ConfigurationError: Invalid amount or currency.
        """
        _check_currency(currency)
        value = _to_amount(amount)
        source = SourceService(self._db, feed=self._feed).get(source_id)
        owner = find_active_owner(self._db, source_id)
        now = utc_now_iso()
        balance = Balance(
            source_id=source.id,
            source_name=source.name,
            type=source.type,
            amount=value,
            currency=currency,
            notes=notes,
            is_auto_sync=owner is not None,
            api_source=owner.name if owner is not None else None,
            last_updated=now,
            last_updated_by_email=actor.email,
            last_updated_by_name=actor.name,
            created_at=now,
        )
        self._db.add(balance)
        self._db.flush()
        self._history.append(
            balance, HistoryAction.created, EMPTY_SNAPSHOT, BalanceSnapshot.of(balance), actor
        )
        self._commit()
        logger.info("Created balance %s for %s by %s", balance.id, balance.source_name, actor.email)
        return balance

    def update_balance(
        self,
        balance_id: str,
        actor: Actor,
        amount: Any = None,
        currency: str | None = None,
        notes: str | None = None,
    ) -> Balance:
        """Manual edit of amount, currency and/or notes.

        Raises:
            OwnershipConflictError: Amount or currency change on an auto-owned balance.
            ConfigurationError: Invalid amount or currency.
        """
        balance = self.get(balance_id)
        new_amount = _to_amount(amount) if amount is not None else None
        if currency is not None:
            _check_currency(currency)

        old = BalanceSnapshot.of(balance)
        amount_change = new_amount is not None and new_amount != old.amount
        currency_change = currency is not None and currency != old.currency
        if balance.is_auto_sync and (amount_change or currency_change):
            raise OwnershipConflictError.from_code(
                source_name=balance.source_name,
                api_source=balance.api_source,
                details={"balance_id": balance.id},
            )

        if new_amount is not None:
            balance.amount = new_amount
        if currency is not None:
            balance.currency = currency
        if notes is not None:
            balance.notes = notes
        balance.last_updated = utc_now_iso()
        balance.last_updated_by_email = actor.email
        balance.last_updated_by_name = actor.name

        self._history.append(
            balance, HistoryAction.updated, old, BalanceSnapshot.of(balance), actor
        )
        self._commit()
        logger.info("Updated balance %s by %s", balance.id, actor.email)
        return balance

    def delete_balance(self, balance_id: str, actor: Actor) -> None:
        """Delete a manual balance, writing the history row first.

        Raises:
            OwnershipConflictError: The balance is auto-owned.
        """
        balance = self.get(balance_id)
        if balance.is_auto_sync:
            raise OwnershipConflictError.from_code(
                source_name=balance.source_name,
                api_source=balance.api_source,
                details={"balance_id": balance.id},
            )
        self._history.append(
            balance, HistoryAction.deleted, BalanceSnapshot.of(balance), EMPTY_SNAPSHOT, actor
        )
        self._db.delete(balance)
        self._commit()
        logger.info("Deleted balance %s (%s) by %s", balance_id, balance.source_name, actor.email)

    def set_limits(
        self,
        balance_id: str,
        red: Any = None,
        yellow: Any = None,
        green: Any = None,
    ) -> Balance:
        """Set or clear threshold limits. Allowed on auto-owned balances.

        Raises:
            ConfigurationError: Partial limits or wrong ordering.
        """
        balance = self.get(balance_id)
        limits = validate_limits(
            *(None if v is None else _to_amount(v) for v in (red, yellow, green))
        )
        balance.limit_red = limits.red if limits else None
        balance.limit_yellow = limits.yellow if limits else None
        balance.limit_green = limits.green if limits else None
        self._commit(history=False)
        logger.info("Set limits on balance %s: %s", balance.id, limits)
        return balance


def balance_to_dict(balance: Balance) -> dict:
    """Convert a balance row to a response dict including its tier."""
    limits = None
    if balance.has_limits:
        limits = {
            "red": str(balance.limit_red),
            "yellow": str(balance.limit_yellow),
            "green": str(balance.limit_green),
        }
    return {
        "id": balance.id,
        "source_id": balance.source_id,
        "source_name": balance.source_name,
        "amount": str(balance.amount),
        "currency": balance.currency,
        "type": balance.type,
        "notes": balance.notes,
        "limits": limits,
        "tier": classify_balance(balance).value,
        "is_auto_sync": balance.is_auto_sync,
        "api_source": balance.api_source,
        "last_updated": balance.last_updated,
        "last_updated_by": {
            "email": balance.last_updated_by_email,
            "name": balance.last_updated_by_name,
        },
        "created_at": balance.created_at,
    }

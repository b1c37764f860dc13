"""Service for balance sources (airlines and suppliers)."""

import logging

from sqlalchemy.orm import Session

from balance_sync.db.models import ApiConnection, Balance, BalanceSource, BalanceType, utc_now_iso
from balance_sync.errors import ConfigurationError, NotFoundError
from balance_sync.services.change_feed import (
    BALANCE_SOURCES,
    BALANCES,
    ChangeFeed,
    change_feed,
)

logger = logging.getLogger(__name__)

VALID_TYPES = frozenset(t.value for t in BalanceType)


def _check_type(source_type: str) -> None:
    if source_type not in VALID_TYPES:
        raise ConfigurationError.from_code(
            "E-1007", field="type", value=source_type, allowed=sorted(VALID_TYPES)
        )


class SourceService:
    """CRUD for BalanceSource with rename propagation to balances."""

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self._feed = feed or change_feed

    def get(self, source_id: str) -> BalanceSource:
        source = self._db.get(BalanceSource, source_id)
        if source is None:
            raise NotFoundError.from_code(resource="Source", identifier=source_id)
        return source

    def list_sources(self, source_type: str | None = None) -> list[BalanceSource]:
        query = self._db.query(BalanceSource)
        if source_type:
            query = query.filter(BalanceSource.type == source_type)
        return query.order_by(BalanceSource.name).all()

    def create_source(self, name: str, source_type: str = BalanceType.airline.value) -> BalanceSource:
        """Create a new source.

        Raises:
            ConfigurationError: Empty name or unknown type.
        """
        _check_type(source_type)
        if not name.strip():
            raise ConfigurationError.from_code(
                "E-1007", field="name", value=name, allowed="a non-empty name"
            )
        source = BalanceSource(name=name.strip(), type=source_type)
        self._db.add(source)
        self._db.commit()
        self._feed.publish(BALANCE_SOURCES, self._db)
        logger.info("Created source %s (%s)", source.name, source.type)
        return source

    def rename_source(
        self, source_id: str, name: str, source_type: str | None = None
    ) -> BalanceSource:
        """Rename a source and copy the new name/type onto its balances.

        Balance rows cache ``source_name`` and ``type``; they are rewritten
        in the same transaction. Renames are not balance mutations and do
        not add history rows.

        Returns:
            The updated source.
        """
        source = self.get(source_id)
        if source_type is not None:
            _check_type(source_type)
            source.type = source_type
        source.name = name.strip() or source.name

        balances = self._db.query(Balance).filter(Balance.source_id == source_id).all()
        for balance in balances:
            balance.source_name = source.name
            balance.type = source.type
            balance.last_updated = utc_now_iso()
        self._db.commit()
        self._feed.publish(BALANCE_SOURCES, self._db)
        if balances:
            self._feed.publish(BALANCES, self._db)
        logger.info(
            "Renamed source %s to %s; %d balance(s) updated",
            source_id, source.name, len(balances),
        )
        return source

    def delete_source(self, source_id: str) -> None:
        """Delete a source that nothing references.

        Raises:
            ConfigurationError: Balances or connections still reference it.
        """
        source = self.get(source_id)
        balances = self._db.query(Balance).filter(Balance.source_id == source_id).count()
        connections = (
            self._db.query(ApiConnection).filter(ApiConnection.source_id == source_id).count()
        )
        if balances or connections:
            raise ConfigurationError.from_code(
                "E-1009", name=source.name, balances=balances, connections=connections
            )
        self._db.delete(source)
        self._db.commit()
        self._feed.publish(BALANCE_SOURCES, self._db)
        logger.info("Deleted source %s (%s)", source.name, source_id)


def source_to_dict(source: BalanceSource) -> dict:
    return {
        "id": source.id,
        "name": source.name,
        "type": source.type,
        "created_at": source.created_at,
    }

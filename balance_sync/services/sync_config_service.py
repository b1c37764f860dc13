"""Service for the global sync configuration singleton."""

import logging

from sqlalchemy.orm import Session

from balance_sync.db.models import SyncConfig, utc_now_iso
from balance_sync.errors import ConfigurationError
from balance_sync.services.change_feed import SYNC_CONFIG, ChangeFeed, change_feed

logger = logging.getLogger(__name__)

MIN_FREQUENCY_SECONDS = 10
MAX_FREQUENCY_SECONDS = 300
DEFAULT_FREQUENCY_SECONDS = 30


def validate_frequency(frequency_seconds: int) -> int:
    """Raise ConfigurationError unless 10 <= frequency <= 300."""
    if isinstance(frequency_seconds, bool) or not isinstance(frequency_seconds, int) or not (
        MIN_FREQUENCY_SECONDS <= frequency_seconds <= MAX_FREQUENCY_SECONDS
    ):
        raise ConfigurationError.from_code(
            "E-1005",
            minimum=MIN_FREQUENCY_SECONDS,
            maximum=MAX_FREQUENCY_SECONDS,
            value=frequency_seconds,
        )
    return frequency_seconds


class SyncConfigService:
    """Singleton access to SyncConfig with validated updates."""

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self._feed = feed or change_feed

    def get_or_create(self) -> SyncConfig:
        """Return the config singleton, creating a disabled default if absent."""
        config = self._db.query(SyncConfig).first()
        if config is None:
            config = SyncConfig(enabled=False, frequency_seconds=DEFAULT_FREQUENCY_SECONDS)
            self._db.add(config)
            self._db.commit()
            logger.info("Created SyncConfig singleton: %s", config.id)
        return config

    def update(
        self,
        enabled: bool | None = None,
        frequency_seconds: int | None = None,
        updated_by: str | None = None,
    ) -> SyncConfig:
        """Persist new sync settings and notify subscribers.

        Raises:
            ConfigurationError: Frequency outside 10..300 seconds.
        """
        if frequency_seconds is not None:
            validate_frequency(frequency_seconds)
        config = self.get_or_create()
        if enabled is not None:
            config.enabled = enabled
        if frequency_seconds is not None:
            config.frequency_seconds = frequency_seconds
        config.updated_at = utc_now_iso()
        config.updated_by = updated_by
        self._db.commit()
        self._feed.publish(SYNC_CONFIG, self._db)
        logger.info(
            "Sync config updated by %s: enabled=%s frequency=%ss",
            updated_by or "unknown", config.enabled, config.frequency_seconds,
        )
        return config


def sync_config_to_dict(config: SyncConfig) -> dict:
    return {
        "enabled": config.enabled,
        "frequency_seconds": config.frequency_seconds,
        "updated_at": config.updated_at,
        "updated_by": config.updated_by,
    }

"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./balance_sync.yaml (working directory)
3. ~/.balance_sync/config.yaml (user home)

Environment variables override YAML: BALANCE_SYNC_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.

Example:
    server:
      port: 8100
    sync:
      request_timeout_seconds: 20
      system_actor_name: "Partner Sync"
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator

from balance_sync.clients.partner_client import (
    DISCOVERY_TIMEOUT_SECONDS,
    SYNC_TIMEOUT_SECONDS,
)
from balance_sync.services.history_service import SYSTEM_ACTOR, Actor
from balance_sync.services.sync_scheduler import MIN_PACING_SECONDS

logger = logging.getLogger(__name__)

ENV_PREFIX = "BALANCE_SYNC_"

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references from the environment. Missing vars become ''."""
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    @property
    def base_url(self) -> str:
        """URL the CLI uses to reach the server; wildcard binds map to loopback."""
        host = "127.0.0.1" if self.host in ("0.0.0.0", "::", "") else self.host
        return f"http://{host}:{self.port}"


class SyncSettings(BaseModel):
    """Partner sync tuning. The on/off switch and frequency live in the database."""

    request_timeout_seconds: float = SYNC_TIMEOUT_SECONDS
    discovery_timeout_seconds: float = DISCOVERY_TIMEOUT_SECONDS
    pacing_seconds: float = MIN_PACING_SECONDS
    system_actor_email: str = SYSTEM_ACTOR.email
    system_actor_name: str = SYSTEM_ACTOR.name

    @field_validator("pacing_seconds")
    @classmethod
    def pacing_floor(cls, value: float) -> float:
        if value < MIN_PACING_SECONDS:
            raise ValueError(f"pacing_seconds must be at least {MIN_PACING_SECONDS}")
        return value

    @field_validator("request_timeout_seconds", "discovery_timeout_seconds")
    @classmethod
    def positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @property
    def system_actor(self) -> Actor:
        return Actor(email=self.system_actor_email, name=self.system_actor_name)


class BalanceSyncConfig(BaseModel):
    """Top-level configuration."""

    server: ServerConfig = ServerConfig()
    sync: SyncSettings = SyncSettings()


def _find_config_file() -> Path | None:
    candidates = [
        Path.cwd() / "balance_sync.yaml",
        Path.cwd() / "balance_sync.yml",
        Path.home() / ".balance_sync" / "config.yaml",
        Path.home() / ".balance_sync" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply BALANCE_SYNC_<SECTION>_<KEY> env var overrides to config data.

    ``BALANCE_SYNC_DB_PATH`` is read by the database layer and is not a
    config section, so unknown sections are ignored.
    """
    known_sections = sorted(
        BalanceSyncConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_data = data.setdefault(matched_section, {})
        if not isinstance(section_data, dict):
            continue
        try:
            section_data[matched_field] = int(value)
        except ValueError:
            if value.lower() in ("true", "false"):
                section_data[matched_field] = value.lower() == "true"
            else:
                section_data[matched_field] = value
    return data


def load_config(config_path: str | None = None) -> BalanceSyncConfig:
    """Load configuration from YAML with env var resolution and overrides.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations; defaults apply when none is found.

    Returns:
        Validated BalanceSyncConfig.

    Raises:
        FileNotFoundError: Explicit path does not exist.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return BalanceSyncConfig(**data)

"""HTTP clients for partner balance APIs."""

from balance_sync.clients.discovery import ApiDiscovery, ProbeResult
from balance_sync.clients.partner_client import (
    DISCOVERY_TIMEOUT_SECONDS,
    SYNC_TIMEOUT_SECONDS,
    PartnerClient,
    classify_status,
)

__all__ = [
    "ApiDiscovery",
    "ProbeResult",
    "PartnerClient",
    "classify_status",
    "SYNC_TIMEOUT_SECONDS",
    "DISCOVERY_TIMEOUT_SECONDS",
]

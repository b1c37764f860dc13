"""Service layer for balance sync.

Provides normalization, threshold classification, balance and connection
management, reconciliation and audit history. The scheduler lives in
``balance_sync.services.sync_scheduler`` and is imported from there.
"""

from balance_sync.services.balance_service import BalanceService
from balance_sync.services.connection_service import (
    ConnectionRecord,
    ConnectionRegistry,
    ConnectionService,
)
from balance_sync.services.history_service import SYSTEM_ACTOR, Actor, HistoryService
from balance_sync.services.normalizer import NormalizedBalance, normalize
from balance_sync.services.reconciliation import ReconciliationEngine
from balance_sync.services.thresholds import Limits, ThresholdTier, classify

__all__ = [
    "Actor",
    "BalanceService",
    "ConnectionRecord",
    "ConnectionRegistry",
    "ConnectionService",
    "HistoryService",
    "Limits",
    "NormalizedBalance",
    "ReconciliationEngine",
    "SYSTEM_ACTOR",
    "ThresholdTier",
    "classify",
    "normalize",
]

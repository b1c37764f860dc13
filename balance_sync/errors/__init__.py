"""Error handling framework for balance sync.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions (configuration, partner client, extraction, ownership)
- Error formatting utilities

Error categories:
- E-1xxx: Configuration errors
- E-2xxx: Extraction errors
- E-3xxx: Partner API errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
- E-6xxx: Ownership errors
"""

from balance_sync.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)
from balance_sync.errors.formatter import (
    BalanceSyncError,
    format_error,
    format_error_summary,
)
from balance_sync.errors.domain import (
    ClientError,
    ConfigurationError,
    ExtractionError,
    MalformedResponse,
    NetworkUnreachable,
    NoBalanceFound,
    NotFoundError,
    OwnershipConflictError,
    PartnerNotFound,
    PartnerTimeout,
    RequestRejected,
    ServerError,
    Unauthorized,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "BalanceSyncError",
    "format_error",
    "format_error_summary",
    # Domain
    "ConfigurationError",
    "NotFoundError",
    "OwnershipConflictError",
    "ClientError",
    "PartnerTimeout",
    "NetworkUnreachable",
    "Unauthorized",
    "PartnerNotFound",
    "ServerError",
    "RequestRejected",
    "ExtractionError",
    "NoBalanceFound",
    "MalformedResponse",
]

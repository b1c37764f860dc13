"""Error code registry with E-XXXX format codes.

This module defines the error code system for balance sync, organizing
errors into categories:
- E-1xxx: Configuration errors
- E-2xxx: Extraction (response normalization) errors
- E-3xxx: Partner API errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
- E-6xxx: Ownership errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    CONFIGURATION = "configuration"  # E-1xxx
    EXTRACTION = "extraction"  # E-2xxx
    PARTNER_API = "partner_api"  # E-3xxx
    SYSTEM = "system"  # E-4xxx
    AUTH = "auth"  # E-5xxx
    OWNERSHIP = "ownership"  # E-6xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the next sync pass may succeed without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Configuration errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.CONFIGURATION,
        title="Missing API URL",
        message_template="Connection '{name}' has no API URL configured.",
        remediation="Enter the partner balance endpoint URL and save the connection.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.CONFIGURATION,
        title="Missing Login Credentials",
        message_template="Connection '{name}' uses POST but is missing {missing}.",
        remediation="POST connections need both an email and a password.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.CONFIGURATION,
        title="Missing Auth Token",
        message_template="Connection '{name}' uses GET but has no auth token.",
        remediation="Paste the partner bearer token, or switch the connection to POST login.",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.CONFIGURATION,
        title="Invalid Limit Ordering",
        message_template="Limits must satisfy red < yellow < green (got red={red}, yellow={yellow}, green={green}).",
        remediation="Adjust the thresholds so each tier is strictly above the previous one.",
    ),
    "E-1005": ErrorCode(
        code="E-1005",
        category=ErrorCategory.CONFIGURATION,
        title="Sync Frequency Out Of Range",
        message_template="Sync frequency must be between {minimum} and {maximum} seconds (got {value}).",
        remediation="Choose a frequency within the allowed range.",
    ),
    "E-1006": ErrorCode(
        code="E-1006",
        category=ErrorCategory.CONFIGURATION,
        title="Source Already Owned",
        message_template="Source '{source_id}' already has an active connection ('{owner}').",
        remediation="Deactivate the existing connection before activating another for the same source.",
    ),
    "E-1007": ErrorCode(
        code="E-1007",
        category=ErrorCategory.CONFIGURATION,
        title="Unsupported Value",
        message_template="Unsupported {field} '{value}'. Allowed: {allowed}.",
        remediation="Pick one of the allowed values.",
    ),
    "E-1008": ErrorCode(
        code="E-1008",
        category=ErrorCategory.CONFIGURATION,
        title="Incomplete Limits",
        message_template="Limits must be given all together (red, yellow, green) or not at all.",
        remediation="Provide all three thresholds, or clear them to disable classification.",
    ),
    "E-1009": ErrorCode(
        code="E-1009",
        category=ErrorCategory.CONFIGURATION,
        title="Source In Use",
        message_template="Source '{name}' is still referenced by {balances} balance(s) and {connections} connection(s).",
        remediation="Delete or move the balances and connections first.",
    ),
    "E-1010": ErrorCode(
        code="E-1010",
        category=ErrorCategory.CONFIGURATION,
        title="Invalid Amount",
        message_template="'{value}' is not a valid amount.",
        remediation="Enter a number such as 15000 or -250.50.",
    ),
    "E-1011": ErrorCode(
        code="E-1011",
        category=ErrorCategory.CONFIGURATION,
        title="Invalid API URL",
        message_template="Connection '{name}' has an invalid API URL: {reason}.",
        remediation="Use a full http:// or https:// URL that includes the partner host.",
    ),
    # Extraction errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.EXTRACTION,
        title="No Balance Found",
        message_template="No {currency} balance found in partner response.",
        remediation="Check the connection currency and that the endpoint returns a wallet or balance field.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.EXTRACTION,
        title="Malformed Response",
        message_template="Partner response could not be read: {reason}.",
        remediation="Verify the API URL points at the balance endpoint, not a web page.",
    ),
    # Partner API errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.PARTNER_API,
        title="Partner Timeout",
        message_template="Partner did not respond within {timeout} seconds.",
        remediation="The partner may be slow or down. The next pass will retry.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.PARTNER_API,
        title="Network Unreachable",
        message_template="Could not reach partner: {reason}.",
        remediation="Check the URL host and network connectivity.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.PARTNER_API,
        title="Endpoint Not Found",
        message_template="Partner endpoint returned 404.",
        remediation="Verify the API URL path.",
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.PARTNER_API,
        title="Partner Server Error",
        message_template="Partner returned server error {status_code}.",
        remediation="The partner is having problems. The next pass will retry.",
        is_retryable=True,
    ),
    "E-3005": ErrorCode(
        code="E-3005",
        category=ErrorCategory.PARTNER_API,
        title="Request Rejected",
        message_template="Partner rejected the request with status {status_code}.",
        remediation="Check the HTTP method and request format expected by the partner.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {error}.",
        remediation="Check database connectivity and retry.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Unexpected Error",
        message_template="Unexpected error: {error}.",
        remediation="Check the server log for details.",
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.SYSTEM,
        title="Record Not Found",
        message_template="{resource} '{identifier}' not found.",
        remediation="Refresh the list and try again.",
    ),
    "E-4004": ErrorCode(
        code="E-4004",
        category=ErrorCategory.SYSTEM,
        title="Sync Already Running",
        message_template="A sync pass is already running.",
        remediation="Wait for the current pass to finish.",
        is_retryable=True,
    ),
    # Authentication errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Partner Authentication Failed",
        message_template="Partner rejected credentials (status {status_code}).",
        remediation="Update the email/password or token for this connection.",
    ),
    # Ownership errors (E-6xxx)
    "E-6001": ErrorCode(
        code="E-6001",
        category=ErrorCategory.OWNERSHIP,
        title="Balance Is Auto-Synced",
        message_template="Balance '{source_name}' is owned by connection '{api_source}'.",
        remediation="Deactivate the owning connection before editing this balance manually.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up error code definition.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all error codes in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]

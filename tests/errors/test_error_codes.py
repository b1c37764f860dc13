"""Unit tests for the error registry, BalanceSyncError and formatting."""

import pytest

from balance_sync.errors import (
    ERROR_REGISTRY,
    BalanceSyncError,
    ClientError,
    ErrorCategory,
    NoBalanceFound,
    NotFoundError,
    ServerError,
    format_error,
    format_error_summary,
    get_error,
    get_errors_by_category,
)


@pytest.mark.parametrize(
    "code,category,title",
    [
        ("E-1001", ErrorCategory.CONFIGURATION, "Missing API URL"),
        ("E-1005", ErrorCategory.CONFIGURATION, "Sync Frequency Out Of Range"),
        ("E-1011", ErrorCategory.CONFIGURATION, "Invalid API URL"),
        ("E-2001", ErrorCategory.EXTRACTION, "No Balance Found"),
        ("E-2002", ErrorCategory.EXTRACTION, "Malformed Response"),
        ("E-3001", ErrorCategory.PARTNER_API, "Partner Timeout"),
        ("E-3004", ErrorCategory.PARTNER_API, "Partner Server Error"),
        ("E-4003", ErrorCategory.SYSTEM, "Record Not Found"),
        ("E-5001", ErrorCategory.AUTH, "Partner Authentication Failed"),
        ("E-6001", ErrorCategory.OWNERSHIP, "Balance Is Auto-Synced"),
    ],
)
def test_error_codes_registered(code, category, title):
    error = get_error(code)
    assert error is not None, f"{code} not found in registry"
    assert error.category == category
    assert error.title == title


def test_registry_keys_match_codes():
    for key, error in ERROR_REGISTRY.items():
        assert key == error.code
        assert error.remediation


def test_unknown_code_lookup():
    assert get_error("E-9999") is None


@pytest.mark.parametrize("code", ["E-3001", "E-3002", "E-3004"])
def test_transient_partner_errors_are_retryable(code):
    assert get_error(code).is_retryable is True


@pytest.mark.parametrize("code", ["E-3003", "E-3005", "E-5001", "E-2001"])
def test_permanent_errors_are_not_retryable(code):
    assert get_error(code).is_retryable is False


def test_errors_by_category():
    codes = {e.code for e in get_errors_by_category(ErrorCategory.EXTRACTION)}
    assert codes == {"E-2001", "E-2002"}


class TestFromCode:

    def test_subclass_default_code(self):
        error = NoBalanceFound.from_code(currency="IQD")
        assert isinstance(error, NoBalanceFound)
        assert error.code == "E-2001"
        assert error.message == "No IQD balance found in partner response."
        assert error.details == {"currency": "IQD"}

    def test_explicit_code_overrides_default(self):
        error = NotFoundError.from_code("E-4003", resource="Balance", identifier="b-1")
        assert error.message == "Balance 'b-1' not found."

    def test_missing_placeholder_keeps_template(self):
        error = ServerError.from_code()
        assert error.message == "Partner returned server error {status_code}."
        assert error.is_retryable is True

    def test_unknown_code(self):
        error = BalanceSyncError.from_code("E-9999")
        assert error.message == "Unknown error: E-9999"

    def test_extra_details_merged(self):
        error = ServerError.from_code(status_code=503, details={"connection": "IA B2B"})
        assert error.details == {"status_code": 503, "connection": "IA B2B"}

    def test_is_exception_hierarchy(self):
        error = ServerError.from_code(status_code=500)
        assert isinstance(error, ClientError)
        assert isinstance(error, Exception)
        assert str(error) == "E-3004: Partner returned server error 500."


class TestFormatting:

    def test_format_error_with_remediation(self):
        error = NoBalanceFound.from_code(currency="USD")
        text = format_error(error)
        assert text.startswith("E-2001: No USD balance found")
        assert "\n  Action: " in text

    def test_format_error_without_remediation(self):
        error = NoBalanceFound.from_code(currency="USD")
        assert "\n" not in format_error(error, include_remediation=False)

    def test_summary_empty(self):
        assert format_error_summary([]) == "No errors."

    def test_summary_counts_repeats(self):
        errors = [
            ServerError.from_code(status_code=502),
            ServerError.from_code(status_code=502),
            NoBalanceFound.from_code(currency="IQD"),
        ]
        summary = format_error_summary(errors)
        assert summary.startswith("2 error type(s) found:")
        assert "(x2)" in summary

"""Tests for CLI output formatting."""

import io
import json

from rich.console import Console

from balance_sync.cli.output import (
    format_amount,
    format_balance_table,
    format_connection_table,
    format_pass_result,
    format_probe_table,
)


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=200)
    console.print(renderable)
    return console.file.getvalue()


def _balance(**overrides) -> dict:
    balance = {
        "id": "b-1",
        "source_id": "s-1",
        "source_name": "Iraqi Airways",
        "amount": "24723299.95",
        "currency": "IQD",
        "type": "airline",
        "notes": None,
        "limits": {"red": "1000", "yellow": "5000", "green": "10000"},
        "tier": "green",
        "is_auto_sync": True,
        "api_source": "IA B2B",
        "last_updated": "2026-03-01T10:00:00+00:00",
        "last_updated_by": {"email": "system@balance-sync.local", "name": "Auto Sync"},
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    balance.update(overrides)
    return balance


class TestFormatAmount:

    def test_thousands_separators(self):
        assert format_amount("24723299.95") == "24,723,299.95"
        assert format_amount("-1250") == "-1,250.00"

    def test_none_returns_dash(self):
        assert format_amount(None) == "-"

    def test_unparseable_passes_through(self):
        assert format_amount("n/a") == "n/a"


class TestFormatBalanceTable:

    def test_renders_rows(self):
        output = _render(format_balance_table([
            _balance(),
            _balance(source_name="Cham Wings", is_auto_sync=False, tier="red", amount="10"),
        ]))
        assert "Iraqi Airways" in output
        assert "24,723,299.95" in output
        assert "auto (IA B2B)" in output
        assert "manual" in output
        assert "red" in output

    def test_json(self):
        output = format_balance_table([_balance()], as_json=True)
        assert json.loads(output)[0]["tier"] == "green"

    def test_empty(self):
        assert format_balance_table([]) == "No balances found."


class TestFormatConnectionTable:

    def test_renders_last_sync_outcome(self):
        connection = {
            "name": "IA B2B",
            "api_method": "POST",
            "api_url": "https://partner.example/api/b2b/v1/auth/login",
            "currency": "IQD",
            "is_active": True,
            "last_sync": None,
            "last_sync_status": "error",
            "last_sync_error_code": "E-5001",
        }
        output = _render(format_connection_table([connection]))
        assert "IA B2B" in output
        assert "never" in output
        assert "E-5001" in output

    def test_empty(self):
        assert format_connection_table([]) == "No API connections configured."


def test_probe_table_shows_detected_amount():
    rows = [
        {"method": "POST", "endpoint": "/auth/login", "status": 200, "success": True,
         "detected_amount": "1500", "error": None},
        {"method": "GET", "endpoint": "/balance", "status": 0, "success": False,
         "detected_amount": None, "error": "connection refused"},
    ]
    output = _render(format_probe_table(rows))
    assert "/auth/login" in output
    assert "1,500.00" in output
    assert "connection refused" in output


class TestFormatPassResult:

    def test_summary_lines(self):
        text = format_pass_result({
            "trigger": "manual",
            "skipped": False,
            "synced_count": 1,
            "failed_count": 1,
            "results": [
                {"name": "Alpha", "success": True, "amount": "100", "currency": "USD",
                 "error_code": None, "error_message": None},
                {"name": "Beta", "success": False, "amount": None, "currency": None,
                 "error_code": "E-3004", "error_message": "Partner returned server error 502."},
            ],
            "error": None,
        })
        assert "1 synced" in text
        assert "Alpha: 100.00 USD" in text
        assert "E-3004" in text

    def test_skipped(self):
        text = format_pass_result({"skipped": True, "error": "A sync pass is already running."})
        assert "Skipped" in text

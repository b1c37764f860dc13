"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). Commands pass plain response dicts, the same
shape the HTTP API returns.
"""

import json
from decimal import Decimal, InvalidOperation

from rich.table import Table

from balance_sync.services.thresholds import ThresholdTier

# Tier color map (matches the dashboard card colors)
TIER_COLORS = {
    ThresholdTier.red.value: "red",
    ThresholdTier.yellow.value: "yellow",
    ThresholdTier.green.value: "green",
    ThresholdTier.gray.value: "dim",
}

SYNC_STATUS_COLORS = {
    "success": "green",
    "error": "red",
}


def format_amount(amount: str | None) -> str:
    """Format a decimal string with thousands separators.

    Args:
        amount: Amount as carried in response dicts, or None.

    Returns:
        Formatted string like "-1,250.00" or "-" for None.
    """
    if amount is None:
        return "-"
    try:
        return f"{Decimal(amount):,.2f}"
    except InvalidOperation:
        return amount


def format_balance_table(balances: list[dict], as_json: bool = False) -> str | Table:
    """Format balances as a Rich table colored by threshold tier, or JSON."""
    if as_json:
        return json.dumps(balances, indent=2)
    if not balances:
        return "No balances found."

    table = Table(title="Balances")
    table.add_column("Source", style="cyan")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Currency")
    table.add_column("Tier")
    table.add_column("Sync")
    table.add_column("Updated")

    for b in balances:
        color = TIER_COLORS.get(b["tier"], "white")
        sync_label = f"auto ({b['api_source']})" if b["is_auto_sync"] else "manual"
        table.add_row(
            b["source_name"],
            b["type"],
            f"[{color}]{format_amount(b['amount'])}[/{color}]",
            b["currency"],
            f"[{color}]{b['tier']}[/{color}]",
            sync_label,
            b["last_updated"] or "-",
        )
    return table


def format_connection_table(connections: list[dict], as_json: bool = False) -> str | Table:
    """Format API connections (secrets never included) as a table or JSON."""
    if as_json:
        return json.dumps(connections, indent=2)
    if not connections:
        return "No API connections configured."

    table = Table(title="API Connections")
    table.add_column("Name", style="cyan")
    table.add_column("Method")
    table.add_column("URL")
    table.add_column("Currency")
    table.add_column("Active")
    table.add_column("Last sync")
    table.add_column("Error")

    for c in connections:
        status = c["last_sync_status"]
        color = SYNC_STATUS_COLORS.get(status, "dim")
        last_sync = f"[{color}]{c['last_sync'] or 'never'}[/{color}]"
        table.add_row(
            c["name"],
            c["api_method"],
            c["api_url"],
            c["currency"],
            "[green]yes[/green]" if c["is_active"] else "[dim]no[/dim]",
            last_sync,
            c["last_sync_error_code"] or "",
        )
    return table


def format_probe_table(results: list[dict], as_json: bool = False) -> str | Table:
    """Format discovery probe results."""
    if as_json:
        return json.dumps(results, indent=2)

    table = Table(title="Endpoint discovery")
    table.add_column("Method")
    table.add_column("Path", style="cyan")
    table.add_column("Status", justify="right")
    table.add_column("Amount", justify="right")
    table.add_column("Error")

    for r in results:
        ok = r["success"]
        status = f"[green]{r['status']}[/green]" if ok else f"[red]{r['status']}[/red]"
        table.add_row(
            r["method"],
            r["endpoint"],
            status,
            format_amount(r.get("detected_amount")),
            r.get("error") or "",
        )
    return table


def format_pass_result(result: dict) -> str:
    """One-paragraph summary of a sync pass."""
    if result["skipped"]:
        return f"[yellow]Skipped:[/yellow] {result['error']}"
    lines = [
        f"[bold]Sync pass[/bold] ({result['trigger']}): "
        f"[green]{result['synced_count']} synced[/green], "
        f"[red]{result['failed_count']} failed[/red]"
    ]
    for r in result["results"]:
        if r["success"]:
            lines.append(f"  [green]ok[/green] {r['name']}: {format_amount(r['amount'])} {r['currency']}")
        else:
            lines.append(f"  [red]{r['error_code']}[/red] {r['name']}: {r['error_message']}")
    if result["error"]:
        lines.append(f"[red]Pass error:[/red] {result['error']}")
    return "\n".join(lines)

"""Balance sync CLI.

Runs the API server and gives back-office operators direct access to
the same services from a terminal.

Usage:
    balance-sync serve                 Start the API server and scheduler
    balance-sync sync run              Run one sync pass on the server now
    balance-sync sync config --enable  Turn the scheduler on
    balance-sync balances list         Show balances colored by tier
    balance-sync probe URL             Probe a partner for balance endpoints
"""

import asyncio
import logging
import os
from typing import Optional

import typer
from rich.console import Console

from balance_sync.cli.config import load_config
from balance_sync.cli.output import (
    format_balance_table,
    format_connection_table,
    format_pass_result,
    format_probe_table,
)
from balance_sync.errors import BalanceSyncError, format_error

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="balance-sync",
    help="Partner balance sync and threshold alerting",
    no_args_is_help=True,
)
sync_app = typer.Typer(help="Control the sync scheduler")
balances_app = typer.Typer(help="Inspect balances")
connections_app = typer.Typer(help="Inspect API connections")

app.add_typer(sync_app, name="sync")
app.add_typer(balances_app, name="balances")
app.add_typer(connections_app, name="connections")

console = Console()

# --- Global state ---
_config_path: str | None = None
_standalone: bool = False


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to balance_sync.yaml config file"
    ),
    standalone: bool = typer.Option(
        False, "--standalone", help="Run sync commands in-process without the server"
    ),
):
    """Balance sync: partner balances, thresholds and history."""
    global _config_path, _standalone
    _config_path = config
    _standalone = standalone


def _fail(error: BalanceSyncError) -> None:
    console.print(f"[red]{format_error(error)}[/red]")
    raise typer.Exit(code=1)


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the API server; the scheduler runs inside it."""
    import uvicorn

    cfg = load_config(config_path=_config_path)
    final_host = host or cfg.server.host
    final_port = port or cfg.server.port

    # The app lifespan reloads config from this path
    if _config_path:
        os.environ["BALANCE_SYNC_CONFIG_PATH"] = str(_config_path)

    console.print(f"[bold]Starting balance sync on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "balance_sync.api.main:app",
        host=final_host,
        port=final_port,
        log_level=cfg.server.log_level,
        workers=1,
    )


# --- Sync commands ---


def _server_client(cfg, actor=None):
    from balance_sync.cli.http_client import HttpClient

    return HttpClient(base_url=cfg.server.base_url, actor=actor)


def _warn_no_server(error) -> None:
    console.print(
        f"[yellow]No server answered at {error.base_url}; "
        "running in this process instead.[/yellow]"
    )


def _run_local_pass(cfg) -> dict:
    """One pass in this process, for when no server is running."""
    from balance_sync.clients.partner_client import PartnerClient
    from balance_sync.db.connection import init_db
    from balance_sync.services.sync_scheduler import SyncScheduler

    init_db()
    scheduler = SyncScheduler(
        client=PartnerClient(timeout=cfg.sync.request_timeout_seconds),
        pacing_seconds=cfg.sync.pacing_seconds,
        actor=cfg.sync.system_actor,
    )

    async def _run():
        def _progress(status):
            if status.current_connection and status.is_running:
                console.print(f"[dim]syncing {status.current_connection}...[/dim]")

        scheduler.emitter.add_listener(_progress)
        return await scheduler.sync_now()

    return asyncio.run(_run()).to_dict()


@sync_app.command("run")
def sync_run(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Run one sync pass over all active connections and wait for it.

    The pass runs on the server so it shares the server's pass lock. With
    --standalone, or when no server answers, it runs in this process.
    """
    import json

    from balance_sync.cli.http_client import ServerUnavailable

    cfg = load_config(config_path=_config_path)
    result = None
    if not _standalone:
        async def _remote():
            async with _server_client(cfg) as client:
                return await client.run_sync()

        try:
            result = asyncio.run(_remote())
        except ServerUnavailable as e:
            _warn_no_server(e)
        except BalanceSyncError as e:
            _fail(e)
    if result is None:
        result = _run_local_pass(cfg)

    if json_output:
        console.print(json.dumps(result, indent=2))
    else:
        console.print(format_pass_result(result))
    if result["failed_count"] or result["error"]:
        raise typer.Exit(code=1)


def _local_sync_config(enable, frequency, updated_by) -> dict:
    from balance_sync.db.connection import get_db_context, init_db
    from balance_sync.services.sync_config_service import (
        SyncConfigService,
        sync_config_to_dict,
    )

    init_db()
    with get_db_context() as db:
        svc = SyncConfigService(db)
        if enable is None and frequency is None:
            return sync_config_to_dict(svc.get_or_create())
        return sync_config_to_dict(
            svc.update(enabled=enable, frequency_seconds=frequency, updated_by=updated_by)
        )


@sync_app.command("config")
def sync_config(
    enable: Optional[bool] = typer.Option(
        None, "--enable/--disable", help="Turn scheduled sync on or off"
    ),
    frequency: Optional[int] = typer.Option(
        None, "--frequency", "-f", help="Seconds between passes (10-300)"
    ),
    updated_by: str = typer.Option("cli", "--by", help="Recorded as updated_by"),
):
    """Show or change the sync configuration.

    Changes go through the running server, which reschedules at once.
    With --standalone, or when no server answers, the database is written
    directly and a server picks the change up on its next start.
    """
    from balance_sync.cli.http_client import ServerUnavailable
    from balance_sync.services.history_service import Actor

    cfg = load_config(config_path=_config_path)
    config = None
    try:
        if not _standalone:
            async def _remote():
                actor = Actor(email=updated_by, name=updated_by)
                async with _server_client(cfg, actor=actor) as client:
                    if enable is not None or frequency is not None:
                        applied = await client.update_sync_config(enable, frequency)
                        state = "running" if applied["running"] else "stopped"
                        console.print(f"[dim]Server timer {state}[/dim]")
                    return await client.get_sync_config()

            try:
                config = asyncio.run(_remote())
            except ServerUnavailable as e:
                _warn_no_server(e)
        if config is None:
            config = _local_sync_config(enable, frequency, updated_by)
    except BalanceSyncError as e:
        _fail(e)

    state = "[green]enabled[/green]" if config["enabled"] else "[yellow]disabled[/yellow]"
    console.print(f"[bold]Sync:[/bold] {state}, every {config['frequency_seconds']}s")
    if config["updated_by"]:
        console.print(f"  updated {config['updated_at']} by {config['updated_by']}")


@sync_app.command("status")
def sync_status():
    """Show the persisted config and each connection's last sync outcome."""
    from balance_sync.db.connection import get_db_context, init_db
    from balance_sync.services.connection_service import (
        ConnectionService,
        connection_to_dict,
    )
    from balance_sync.services.sync_config_service import SyncConfigService

    init_db()
    with get_db_context() as db:
        config = SyncConfigService(db).get_or_create()
        enabled, frequency = config.enabled, config.frequency_seconds
        connections = [connection_to_dict(c) for c in ConnectionService(db).list_connections()]

    state = "[green]enabled[/green]" if enabled else "[yellow]disabled[/yellow]"
    console.print(f"[bold]Sync:[/bold] {state}, every {frequency}s")
    failed = [c for c in connections if c["last_sync_status"] == "error"]
    if failed:
        console.print(f"[red]{len(failed)} connection(s) failing:[/red]")
        for c in failed:
            console.print(f"  {c['name']}: {c['last_sync_error_code']} {c['last_sync_error']}")
    console.print(format_connection_table(connections))


# --- Balance commands ---


@balances_app.command("list")
def balances_list(
    balance_type: Optional[str] = typer.Option(None, "--type", "-t", help="airline or supplier"),
    ownership: Optional[str] = typer.Option(None, "--ownership", help="auto or manual"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Match name or notes"),
    tier: Optional[str] = typer.Option(None, "--tier", help="red, yellow, green or gray"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List balances with their threshold tier."""
    from balance_sync.db.connection import get_db_context, init_db
    from balance_sync.services.balance_service import BalanceService, balance_to_dict

    init_db()
    with get_db_context() as db:
        balances = [
            balance_to_dict(b)
            for b in BalanceService(db).list_balances(
                balance_type=balance_type, ownership=ownership, search=search
            )
        ]
    if tier:
        balances = [b for b in balances if b["tier"] == tier.lower()]
    console.print(format_balance_table(balances, as_json=json_output))


# --- Connection commands ---


@connections_app.command("list")
def connections_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List API connections and their last sync outcome."""
    from balance_sync.db.connection import get_db_context, init_db
    from balance_sync.services.connection_service import (
        ConnectionService,
        connection_to_dict,
    )

    init_db()
    with get_db_context() as db:
        connections = [connection_to_dict(c) for c in ConnectionService(db).list_connections()]
    console.print(format_connection_table(connections, as_json=json_output))


# --- Discovery ---


@app.command()
def probe(
    base_url: str = typer.Argument(..., help="Partner base URL"),
    email: str = typer.Option(..., "--email", "-e", help="Login email"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, help="Login password"
    ),
    currency: Optional[str] = typer.Option(
        None, "--currency", "-c", help="Try to detect a balance in this currency"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Probe common login and balance endpoints under a partner URL."""
    from balance_sync.clients.discovery import ApiDiscovery

    cfg = load_config(config_path=_config_path)
    discovery = ApiDiscovery(timeout=cfg.sync.discovery_timeout_seconds)
    try:
        results = asyncio.run(
            discovery.explore(base_url, email, password, currency=currency)
        )
    except BalanceSyncError as e:
        _fail(e)

    rows = [r.to_dict() for r in results]
    console.print(format_probe_table(rows, as_json=json_output))
    if not json_output:
        found = sum(1 for r in results if r.success)
        console.print(f"{found}/{len(results)} endpoints answered 2xx")


if __name__ == "__main__":
    app()

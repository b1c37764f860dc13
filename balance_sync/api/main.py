"""FastAPI application for the balance sync service.

Provides the main application instance with routers, the lifespan that
owns the sync scheduler, and the domain error handler.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("balance_sync").setLevel(logging.INFO)
from fastapi.responses import JSONResponse

from balance_sync.api.routes import balances, connections, history, sources, sync
from balance_sync.cli.config import load_config
from balance_sync.clients.discovery import ApiDiscovery
from balance_sync.clients.partner_client import PartnerClient
from balance_sync.db.connection import init_db
from balance_sync.errors import (
    BalanceSyncError,
    ClientError,
    ConfigurationError,
    ExtractionError,
    NotFoundError,
    OwnershipConflictError,
)
from balance_sync.services.sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def status_code_for(exc: BalanceSyncError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, ConfigurationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, OwnershipConflictError):
        return 409
    if isinstance(exc, (ClientError, ExtractionError)):
        return 502
    if exc.code == "E-4004":
        return 409
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, build the scheduler and start it; stop it on shutdown."""
    global _startup_time

    _startup_time = _time.time()
    init_db()

    config = load_config(config_path=os.environ.get("BALANCE_SYNC_CONFIG_PATH"))
    settings = config.sync

    client = PartnerClient(timeout=settings.request_timeout_seconds)
    scheduler = SyncScheduler(
        client=client,
        pacing_seconds=settings.pacing_seconds,
        actor=settings.system_actor,
    )
    scheduler.emitter.add_listener(sync.sse_sync_observer)

    app.state.partner_client = client
    app.state.discovery = ApiDiscovery(timeout=settings.discovery_timeout_seconds)
    app.state.scheduler = scheduler

    await scheduler.start()

    yield

    scheduler.emitter.remove_listener(sync.sse_sync_observer)
    await scheduler.shutdown()
    logger.info("Balance sync service stopped")


app = FastAPI(
    title="Balance Sync API",
    description="Partner balance synchronization and threshold alerting",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(BalanceSyncError)
async def balance_sync_error_handler(
    request: Request, exc: BalanceSyncError
) -> JSONResponse:
    """Render domain errors in the shared error envelope.

    Args:
        request: The incoming request.
        exc: The BalanceSyncError raised by a service.

    Returns:
        JSONResponse with the error code, message and remediation.
    """
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "remediation": exc.remediation,
                "details": jsonable_encoder(exc.details) if exc.details else None,
            }
        },
    )


# Include routers
app.include_router(connections.router, prefix="/api/v1")
app.include_router(balances.router, prefix="/api/v1")
app.include_router(sources.router, prefix="/api/v1")
app.include_router(sync.router, prefix="/api/v1")
app.include_router(history.router, prefix="/api/v1")


@app.get("/health")
def health_check(request: Request) -> dict:
    """Liveness plus scheduler state."""
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("balance-sync")
    except PackageNotFoundError:
        version = "unknown"

    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
        "sync_enabled": scheduler.enabled if scheduler else False,
        "sync_running": scheduler.pass_in_flight if scheduler else False,
    }

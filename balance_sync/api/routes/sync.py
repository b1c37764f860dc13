"""API routes for the sync scheduler.

Config read/update, manual pass trigger, status snapshot, on-demand
ownership assignment and a Server-Sent Events stream of SyncStatus.
"""

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
from starlette.responses import JSONResponse

from balance_sync.api.deps import get_actor, get_scheduler
from balance_sync.db.connection import get_db
from balance_sync.services.history_service import Actor
from balance_sync.services.reconciliation import ReconciliationEngine
from balance_sync.services.sync_config_service import SyncConfigService, sync_config_to_dict
from balance_sync.services.sync_events import SSESyncObserver
from balance_sync.services.sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Shared SSE fan-out; registered on the scheduler's emitter at startup
sse_sync_observer = SSESyncObserver()


class SyncConfigUpdate(BaseModel):
    enabled: bool | None = None
    frequency_seconds: int | None = None


@router.get("/config")
def get_sync_config(db: Session = Depends(get_db)):
    return sync_config_to_dict(SyncConfigService(db).get_or_create())


@router.put("/config")
async def update_sync_config(
    body: SyncConfigUpdate,
    actor: Actor = Depends(get_actor),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Persist config and reschedule. 400 when frequency is outside 10..300."""
    await scheduler.update_config(
        enabled=body.enabled,
        frequency_seconds=body.frequency_seconds,
        updated_by=actor.email,
    )
    return {
        "enabled": scheduler.enabled,
        "frequency_seconds": scheduler.frequency_seconds,
        "running": scheduler.running,
    }


@router.post("/run")
async def run_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
    """Run a pass now. 409 with the skipped result if one is already running."""
    result = await scheduler.sync_now()
    if result.skipped:
        return JSONResponse(status_code=409, content=result.to_dict())
    return result.to_dict()


@router.get("/status")
def sync_status(scheduler: SyncScheduler = Depends(get_scheduler)):
    return {
        **scheduler.status.to_dict(),
        "scheduler_running": scheduler.running,
        "enabled": scheduler.enabled,
        "frequency_seconds": scheduler.frequency_seconds,
    }


@router.post("/ownership")
def assign_ownership(db: Session = Depends(get_db)):
    """Re-run ownership assignment on demand."""
    changes = ReconciliationEngine(db).assign_ownership()
    return {
        "changed": [
            {
                "balance_id": c.balance_id,
                "source_name": c.source_name,
                "is_auto_sync": c.is_auto_sync,
                "api_source": c.api_source,
            }
            for c in changes
        ]
    }


async def _event_generator(
    request: Request,
    subscription_id: str,
    queue: asyncio.Queue,
    initial: dict,
) -> AsyncGenerator[dict, None]:
    """Yield status events, with a ping every 15 seconds of silence."""
    try:
        yield {"data": json.dumps({"event": "sync_status", "data": initial})}
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=15.0)
                yield {"data": json.dumps(event)}
            except asyncio.TimeoutError:
                yield {"data": json.dumps({"event": "ping"})}
    finally:
        sse_sync_observer.unsubscribe(subscription_id)


@router.get("/stream")
async def stream_status(
    request: Request,
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """SSE stream of SyncStatus snapshots, starting with the current one."""
    subscription_id, queue = sse_sync_observer.subscribe()
    return EventSourceResponse(
        _event_generator(request, subscription_id, queue, scheduler.status.to_dict())
    )

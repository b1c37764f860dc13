"""API routes for the balance history log.

``DELETE /history`` is the administrative purge; it needs an explicit
actor (X-Actor-Email header) and is logged.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from balance_sync.api.deps import DEFAULT_ACTOR, get_actor
from balance_sync.db.connection import get_db
from balance_sync.services.history_service import Actor, HistoryService, history_to_dict

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
def recent_history(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    entries = HistoryService(db).list_recent(limit=limit)
    return {"history": [history_to_dict(e) for e in entries]}


@router.delete("")
def clear_history(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    if actor == DEFAULT_ACTOR:
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "code": "ACTOR_REQUIRED",
                    "message": "Clearing history requires the X-Actor-Email header",
                }
            },
        )
    deleted = HistoryService(db).clear_history(actor)
    return {"deleted": deleted}

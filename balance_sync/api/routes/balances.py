"""API routes for balances, their limits and their history.

Listing includes each balance's threshold tier. Manual edits of amount
or currency and deletes on auto-synced balances return 409.
"""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from balance_sync.api.deps import get_actor
from balance_sync.db.connection import get_db
from balance_sync.services.balance_service import BalanceService, balance_to_dict
from balance_sync.services.history_service import Actor, HistoryService, history_to_dict
from balance_sync.services.thresholds import ThresholdTier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/balances", tags=["balances"])


class CreateBalanceRequest(BaseModel):
    source_id: str = Field(..., min_length=1)
    amount: Decimal
    currency: str
    notes: str | None = None


class UpdateBalanceRequest(BaseModel):
    amount: Decimal | None = None
    currency: str | None = None
    notes: str | None = None


class LimitsRequest(BaseModel):
    """All three thresholds, or all null to clear."""

    red: Decimal | None = None
    yellow: Decimal | None = None
    green: Decimal | None = None


@router.get("")
def list_balances(
    type: str | None = Query(None, description="airline or supplier"),
    ownership: str | None = Query(None, pattern="^(auto|manual)$"),
    search: str | None = None,
    currency: str | None = None,
    tier: ThresholdTier | None = None,
    db: Session = Depends(get_db),
):
    """List balances with tier colors and a per-tier summary."""
    balances = [
        balance_to_dict(b)
        for b in BalanceService(db).list_balances(
            balance_type=type, ownership=ownership, search=search, currency=currency
        )
    ]
    if tier is not None:
        balances = [b for b in balances if b["tier"] == tier.value]
    summary = {t.value: 0 for t in ThresholdTier}
    for balance in balances:
        summary[balance["tier"]] += 1
    return {"balances": balances, "total": len(balances), "summary": summary}


@router.post("", status_code=201)
def create_balance(
    body: CreateBalanceRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    balance = BalanceService(db).create_balance(
        source_id=body.source_id,
        amount=body.amount,
        currency=body.currency,
        actor=actor,
        notes=body.notes,
    )
    return balance_to_dict(balance)


@router.get("/{balance_id}")
def get_balance(balance_id: str, db: Session = Depends(get_db)):
    return balance_to_dict(BalanceService(db).get(balance_id))


@router.patch("/{balance_id}")
def update_balance(
    balance_id: str,
    body: UpdateBalanceRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Manual edit. 409 when changing amount/currency of an auto-synced balance."""
    balance = BalanceService(db).update_balance(
        balance_id,
        actor,
        amount=body.amount,
        currency=body.currency,
        notes=body.notes,
    )
    return balance_to_dict(balance)


@router.delete("/{balance_id}")
def delete_balance(
    balance_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    BalanceService(db).delete_balance(balance_id, actor)
    return {"deleted": True, "id": balance_id}


@router.put("/{balance_id}/limits")
def set_limits(
    balance_id: str,
    body: LimitsRequest,
    db: Session = Depends(get_db),
):
    """Set or clear thresholds. 400 unless red < yellow < green."""
    balance = BalanceService(db).set_limits(
        balance_id, red=body.red, yellow=body.yellow, green=body.green
    )
    return balance_to_dict(balance)


@router.get("/{balance_id}/history")
def balance_history(
    balance_id: str,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    BalanceService(db).get(balance_id)
    entries = HistoryService(db).list_for_balance(balance_id, limit=limit)
    return {"history": [history_to_dict(e) for e in entries]}

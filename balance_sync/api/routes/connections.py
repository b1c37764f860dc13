"""API routes for partner connection management.

CRUD for ApiConnection plus two diagnostics: ``test`` fetches and
normalizes a balance without writing anything, and ``discover`` probes
common endpoint paths under a base URL. Credentials are never returned.
Every mutation re-runs ownership assignment so balances reflect the new
active set immediately.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from balance_sync.api.deps import get_discovery, get_partner_client
from balance_sync.clients.discovery import ApiDiscovery
from balance_sync.clients.partner_client import PartnerClient
from balance_sync.db.connection import get_db
from balance_sync.errors import ClientError, ExtractionError
from balance_sync.services.connection_service import (
    ConnectionRecord,
    ConnectionService,
    connection_to_dict,
    validate_connection_fields,
)
from balance_sync.services.normalizer import normalize
from balance_sync.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


# --- Pydantic request models ---


class ConnectionFields(BaseModel):
    """Connection settings shared by create and ad-hoc test requests."""

    name: str = Field(..., min_length=1)
    api_url: str = Field(..., min_length=1)
    api_method: str = "POST"
    email: str | None = None
    password: str | None = None
    auth_token: str | None = None
    currency: str = "USD"


class CreateConnectionRequest(ConnectionFields):
    source_id: str = Field(..., min_length=1)
    is_active: bool = True
    auto_sync: bool = True
    sync_interval_seconds: int = Field(60, ge=10, le=3600)


class UpdateConnectionRequest(BaseModel):
    """Patch body; omitted fields are left unchanged."""

    source_id: str | None = None
    name: str | None = None
    api_url: str | None = None
    api_method: str | None = None
    email: str | None = None
    password: str | None = None
    auth_token: str | None = None
    currency: str | None = None
    is_active: bool | None = None
    auto_sync: bool | None = None
    sync_interval_seconds: int | None = Field(None, ge=10, le=3600)


class DiscoverRequest(BaseModel):
    api_url: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    currency: str | None = None


def _assign_ownership(db: Session) -> None:
    ReconciliationEngine(db).assign_ownership()


async def _run_test(client: PartnerClient, connection: Any) -> dict:
    """Fetch and normalize without persisting. Failures are reported, not raised."""
    try:
        payload = await client.fetch_balance(connection)
        normalized = normalize(payload, connection.currency, connection.currency)
    except (ClientError, ExtractionError) as e:
        return {
            "success": False,
            "error": {"code": e.code, "message": e.message, "remediation": e.remediation},
        }
    return {
        "success": True,
        "amount": str(normalized.amount),
        "currency": normalized.currency,
        "strategy": normalized.strategy,
    }


@router.get("")
def list_connections(db: Session = Depends(get_db)):
    """List all connections (no credentials exposed)."""
    service = ConnectionService(db)
    return {"connections": [connection_to_dict(c) for c in service.list_connections()]}


@router.post("", status_code=201)
def create_connection(body: CreateConnectionRequest, db: Session = Depends(get_db)):
    """Create a connection; it claims its source's balances if active."""
    service = ConnectionService(db)
    row = service.create_connection(**body.model_dump())
    _assign_ownership(db)
    return connection_to_dict(row)


@router.post("/test")
async def test_unsaved_connection(
    body: ConnectionFields,
    client: PartnerClient = Depends(get_partner_client),
):
    """Try a connection configuration before saving it."""
    validate_connection_fields(
        body.name, body.api_url, body.api_method,
        body.email, body.password, body.auth_token, body.currency,
    )
    return await _run_test(client, body)


@router.post("/discover")
async def discover_endpoints(
    body: DiscoverRequest,
    discovery: ApiDiscovery = Depends(get_discovery),
):
    """Probe common login/balance paths under a base URL."""
    results = await discovery.explore(
        body.api_url, body.email, body.password, currency=body.currency
    )
    return {
        "results": [r.to_dict() for r in results],
        "success_count": sum(1 for r in results if r.success),
    }


@router.get("/{connection_id}")
def get_connection(connection_id: str, db: Session = Depends(get_db)):
    return connection_to_dict(ConnectionService(db).get(connection_id))


@router.patch("/{connection_id}")
def update_connection(
    connection_id: str,
    body: UpdateConnectionRequest,
    db: Session = Depends(get_db),
):
    """Update a connection (patch semantics)."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "NO_FIELDS", "message": "No fields to update"}},
        )
    row = ConnectionService(db).update_connection(connection_id, updates)
    _assign_ownership(db)
    return connection_to_dict(row)


@router.post("/{connection_id}/toggle")
def toggle_connection(connection_id: str, db: Session = Depends(get_db)):
    """Flip is_active. Deactivating detaches the owned balances."""
    row = ConnectionService(db).toggle_active(connection_id)
    _assign_ownership(db)
    return connection_to_dict(row)


@router.delete("/{connection_id}")
def delete_connection(connection_id: str, db: Session = Depends(get_db)):
    ConnectionService(db).delete_connection(connection_id)
    _assign_ownership(db)
    return {"deleted": True, "id": connection_id}


@router.post("/{connection_id}/test")
async def test_saved_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    client: PartnerClient = Depends(get_partner_client),
):
    """Fetch and normalize a saved connection's balance without writing."""
    record = ConnectionRecord.from_row(ConnectionService(db).get(connection_id))
    return await _run_test(client, record)

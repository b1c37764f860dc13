"""API routes for balance sources (airlines and suppliers)."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from balance_sync.db.connection import get_db
from balance_sync.services.source_service import SourceService, source_to_dict

router = APIRouter(prefix="/sources", tags=["sources"])


class CreateSourceRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = "airline"


class RenameSourceRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: str | None = None


@router.get("")
def list_sources(type: str | None = None, db: Session = Depends(get_db)):
    return {"sources": [source_to_dict(s) for s in SourceService(db).list_sources(type)]}


@router.post("", status_code=201)
def create_source(body: CreateSourceRequest, db: Session = Depends(get_db)):
    return source_to_dict(SourceService(db).create_source(body.name, body.type))


@router.patch("/{source_id}")
def rename_source(source_id: str, body: RenameSourceRequest, db: Session = Depends(get_db)):
    """Rename a source; its balances pick up the new name and type."""
    return source_to_dict(SourceService(db).rename_source(source_id, body.name, body.type))


@router.delete("/{source_id}")
def delete_source(source_id: str, db: Session = Depends(get_db)):
    SourceService(db).delete_source(source_id)
    return {"deleted": True, "id": source_id}

"""Snapshot routes: compile the current context into an immutable, versioned text"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from groundwork.database import get_db
from groundwork.middleware.auth import get_current_user
from groundwork.models.user import User
from groundwork.routes.personas import get_owned_persona
from groundwork.services import snapshot_compiler
from groundwork.services.blob_store import BlobStore, get_blob_store
from groundwork.services.gateway import ServiceGateway, get_gateway

router = APIRouter()


class CompileRequest(BaseModel):
    persona_id: Optional[int] = None


@router.post("/", status_code=201)
async def compile_snapshot(
    body: CompileRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    gateway: ServiceGateway = Depends(get_gateway),
):
    """Compile a new snapshot version. Identical inputs produce the same content_hash."""
    persona = await get_owned_persona(db, current_user.id, body.persona_id)
    snapshot = await snapshot_compiler.compile_snapshot(db, store, current_user.id, persona, gateway)
    return snapshot.to_dict()


@router.get("/")
async def list_snapshots(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    snapshots = await snapshot_compiler.list_snapshots(db, current_user.id)
    return {"snapshots": [s.to_dict() for s in snapshots]}


@router.get("/{version}")
async def get_snapshot(
    version: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    snapshot = await snapshot_compiler.get_snapshot(db, current_user.id, version)
    if not snapshot:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshot.to_dict()


@router.get("/{version}/text", response_class=PlainTextResponse)
async def get_snapshot_text(
    version: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    gateway: ServiceGateway = Depends(get_gateway),
):
    snapshot = await snapshot_compiler.get_snapshot(db, current_user.id, version)
    if not snapshot:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    data = await gateway.execute("storage", store.get, snapshot.storage_key)
    return PlainTextResponse(data.decode("utf-8"), headers={"X-Content-Hash": snapshot.content_hash})

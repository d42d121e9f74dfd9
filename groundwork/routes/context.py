"""Context store routes: append-only career facts"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional
import uuid

from groundwork.database import get_db
from groundwork.middleware.auth import get_current_user
from groundwork.models.context_entry import CONTRIBUTION_TYPES, ENTRY_TYPES, TOMBSTONE_KEY
from groundwork.models.user import User
from groundwork.services import context_store
from groundwork.services.completeness import compute_completeness_report
from groundwork.services.context_advisories import check_for_conflicts

router = APIRouter()


class EntryCreate(BaseModel):
    entry_type: str
    data: Dict[str, Any]
    entry_id: Optional[str] = Field(None, max_length=36)
    raw_text: Optional[str] = None
    impact_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    recency_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    tags: List[str] = []
    # None lets the entry type decide (skills and certifications never decay)
    flagged_evergreen: Optional[bool] = None
    contribution_type: str = "team_member"


class EntryRevision(BaseModel):
    data: Dict[str, Any]
    expected_version: Optional[int] = Field(None, ge=1)
    raw_text: Optional[str] = None
    impact_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    recency_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    tags: Optional[List[str]] = None
    flagged_evergreen: Optional[bool] = None
    contribution_type: Optional[str] = None


def _validate_data(data: Dict[str, Any]) -> None:
    if TOMBSTONE_KEY in data:
        raise HTTPException(status_code=422, detail=f"{TOMBSTONE_KEY} is reserved; use DELETE to remove an entry")


def _validate_kinds(entry_type: Optional[str], contribution_type: Optional[str]) -> None:
    if entry_type is not None and entry_type not in ENTRY_TYPES:
        raise HTTPException(status_code=422, detail=f"entry_type must be one of {', '.join(ENTRY_TYPES)}")
    if contribution_type is not None and contribution_type not in CONTRIBUTION_TYPES:
        raise HTTPException(
            status_code=422,
            detail=f"contribution_type must be one of {', '.join(CONTRIBUTION_TYPES)}",
        )


@router.post("/entries", status_code=201)
async def create_entry(
    body: EntryCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Append version 1 of a new entry; conflicts with existing entries come back as advisories."""
    _validate_kinds(body.entry_type, body.contribution_type)
    _validate_data(body.data)
    entry_id = body.entry_id or str(uuid.uuid4())

    existing = await context_store.current(db, current_user.id, include_tombstoned=False)
    advisories = check_for_conflicts(
        existing, entry_id, body.entry_type, body.data, body.contribution_type, raw_text=body.raw_text
    )

    entry = await context_store.append_entry(
        db,
        current_user.id,
        entry_id,
        body.data,
        entry_type=body.entry_type,
        raw_text=body.raw_text,
        recency_score=body.recency_score,
        impact_score=body.impact_score,
        tags=body.tags,
        flagged_evergreen=body.flagged_evergreen,
        contribution_type=body.contribution_type,
        expected_version=1,
    )
    return {**entry.to_dict(), "advisories": advisories}


@router.post("/entries/{entry_id}/versions", status_code=201)
async def revise_entry(
    entry_id: str,
    body: EntryRevision,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Append the next version of an existing entry; advisories as for a new entry."""
    _validate_kinds(None, body.contribution_type)
    _validate_data(body.data)
    previous = await context_store.latest_entry(db, current_user.id, entry_id)
    if previous is None:
        raise HTTPException(status_code=404, detail="Entry not found")

    existing = await context_store.current(db, current_user.id, include_tombstoned=False)
    advisories = check_for_conflicts(
        existing,
        entry_id,
        previous.entry_type,
        body.data,
        body.contribution_type or previous.contribution_type,
        raw_text=body.raw_text if body.raw_text is not None else previous.raw_text,
    )

    entry = await context_store.append_entry(
        db,
        current_user.id,
        entry_id,
        body.data,
        raw_text=body.raw_text,
        recency_score=body.recency_score,
        impact_score=body.impact_score,
        tags=body.tags,
        flagged_evergreen=body.flagged_evergreen,
        contribution_type=body.contribution_type,
        expected_version=body.expected_version,
    )
    return {**entry.to_dict(), "advisories": advisories}


@router.delete("/entries/{entry_id}")
async def delete_entry(
    entry_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Tombstone an entry. History is kept; compiles skip it from now on."""
    entry = await context_store.tombstone_entry(db, current_user.id, entry_id)
    return entry.to_dict()


@router.get("/entries")
async def list_entries(
    include_tombstoned: bool = False,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entries = await context_store.current(db, current_user.id, include_tombstoned=include_tombstoned)
    return {
        "entries": [e.to_dict() for e in entries],
        "completeness": compute_completeness_report(entries),
    }


@router.get("/health")
async def context_health(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Per-section completeness of the live context, with recommendations."""
    entries = await context_store.current(db, current_user.id, include_tombstoned=False)
    return compute_completeness_report(entries)


@router.get("/entries/{entry_id}/versions")
async def list_entry_versions(
    entry_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    versions = await context_store.history(db, current_user.id, entry_id)
    if not versions:
        raise HTTPException(status_code=404, detail="Entry not found")
    return {"entry_id": entry_id, "versions": [v.to_dict() for v in versions]}

"""Persona routes: named emphasis/suppression profiles applied at compile time"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from groundwork.database import get_db
from groundwork.middleware.auth import get_current_user
from groundwork.models.persona import Persona
from groundwork.models.user import User
from groundwork.schemas.jd import JDTone
from groundwork.utils.logger import logger

router = APIRouter()


class PersonaBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    emphasized_tags: List[str] = []
    suppressed_tags: List[str] = []
    tone_preference: Optional[JDTone] = None
    section_order: Optional[List[str]] = None


async def get_owned_persona(db: AsyncSession, user_id: int, persona_id: Optional[int]) -> Optional[Persona]:
    """Persona lookup scoped to its owner; None passes through."""
    if persona_id is None:
        return None
    result = await db.execute(
        select(Persona).where(Persona.id == persona_id, Persona.user_id == user_id)
    )
    persona = result.scalar_one_or_none()
    if not persona:
        raise HTTPException(status_code=404, detail="Persona not found")
    return persona


def _apply(persona: Persona, body: PersonaBody) -> None:
    persona.name = body.name.strip()
    persona.emphasized_tags = sorted(set(body.emphasized_tags))
    persona.suppressed_tags = sorted(set(body.suppressed_tags))
    persona.tone_preference = body.tone_preference
    persona.section_order = body.section_order


@router.post("/", status_code=201)
async def create_persona(
    body: PersonaBody,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    persona = Persona(user_id=current_user.id)
    _apply(persona, body)
    db.add(persona)
    await db.commit()
    await db.refresh(persona)
    logger.info("persona.created", extra={"persona_id": persona.id})
    return persona.to_dict()


@router.get("/")
async def list_personas(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Persona).where(Persona.user_id == current_user.id).order_by(Persona.id)
    )
    return {"personas": [p.to_dict() for p in result.scalars().all()]}


@router.get("/{persona_id}")
async def get_persona(
    persona_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    persona = await get_owned_persona(db, current_user.id, persona_id)
    return persona.to_dict()


@router.put("/{persona_id}")
async def update_persona(
    persona_id: int,
    body: PersonaBody,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace a persona. Snapshots already compiled with it are unaffected."""
    persona = await get_owned_persona(db, current_user.id, persona_id)
    _apply(persona, body)
    await db.commit()
    await db.refresh(persona)
    return persona.to_dict()


@router.delete("/{persona_id}")
async def delete_persona(
    persona_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    persona = await get_owned_persona(db, current_user.id, persona_id)
    await db.delete(persona)
    await db.commit()
    return {"success": True}

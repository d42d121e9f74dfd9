"""Resume routes: grounded generation, review, bullet edits and PDF download"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from groundwork.config import get_settings
from groundwork.database import get_db
from groundwork.middleware.auth import get_current_user
from groundwork.middleware.rate_limit import limiter
from groundwork.models.resume import Resume
from groundwork.models.user import User
from groundwork.routes.personas import get_owned_persona
from groundwork.services import resume_compiler, snapshot_compiler
from groundwork.services.blob_store import BlobStore, get_blob_store
from groundwork.services.gateway import ServiceGateway, get_gateway
from groundwork.services.generation import GenerationClient, get_generator

router = APIRouter()
settings = get_settings()

MAX_JD_LENGTH = 50_000


class GenerateRequest(BaseModel):
    jd_text: str = Field(..., min_length=1, max_length=MAX_JD_LENGTH)
    snapshot_version: Optional[int] = Field(None, ge=1)
    persona_id: Optional[int] = None


class BulletEdit(BaseModel):
    bullet_text: str = Field(..., min_length=1, max_length=1000)


@router.post("/generate", status_code=201)
@limiter.limit(settings.generation_rate_limit)
async def generate_resume(
    request: Request,
    body: GenerateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    generator: GenerationClient = Depends(get_generator),
    gateway: ServiceGateway = Depends(get_gateway),
):
    """
    Generate a draft resume from a snapshot (latest when no version is given).

    Candidates that fail grounding are dropped and recorded as rejections; a
    resume with zero accepted bullets is still a valid draft. When the
    generation model stays unavailable the resume is stored as failed.
    """
    snapshot = await snapshot_compiler.get_snapshot(db, current_user.id, body.snapshot_version)
    if not snapshot:
        raise HTTPException(status_code=404, detail="Snapshot not found; compile one first")
    persona = await get_owned_persona(db, current_user.id, body.persona_id)

    resume = await resume_compiler.generate_resume(
        db, store, generator, current_user.id, snapshot, body.jd_text, persona=persona, gateway=gateway
    )
    return {
        **resume.to_dict(include_bullets=True),
        "rejected_count": len(resume.rejections),
    }


@router.get("/")
async def list_resumes(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Resume).where(Resume.user_id == current_user.id).order_by(Resume.created_at.desc())
    )
    return {"resumes": [r.to_dict() for r in result.scalars().all()]}


@router.get("/{resume_id}")
async def get_resume(
    resume_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    resume = await resume_compiler.get_resume(db, current_user.id, resume_id)
    return {**resume.to_dict(include_bullets=True), "latex_source": resume.latex_source}


@router.get("/{resume_id}/rejections")
async def list_rejections(
    resume_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rejections = await resume_compiler.list_rejections(db, current_user.id, resume_id)
    return {"resume_id": resume_id, "rejections": [r.to_dict() for r in rejections]}


@router.patch("/{resume_id}/bullets/{bullet_id}")
async def edit_bullet(
    resume_id: int,
    bullet_id: int,
    body: BulletEdit,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace a bullet with the user's wording. Request a new render for an updated PDF."""
    resume = await resume_compiler.get_resume(db, current_user.id, resume_id)
    persona = await get_owned_persona(db, current_user.id, resume.persona_id)
    bullet = await resume_compiler.edit_bullet(db, current_user.id, resume_id, bullet_id, body.bullet_text, persona)
    return bullet.to_dict()


@router.get("/{resume_id}/pdf")
async def download_pdf(
    resume_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    gateway: ServiceGateway = Depends(get_gateway),
):
    resume = await resume_compiler.get_resume(db, current_user.id, resume_id)
    if not resume.pdf_storage_key:
        raise HTTPException(status_code=404, detail="Resume has not been rendered")

    url = store.download_url(resume.pdf_storage_key)
    if url:
        return RedirectResponse(url)
    pdf = await gateway.execute("storage", store.get, resume.pdf_storage_key)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="resume-{resume_id}.pdf"'},
    )

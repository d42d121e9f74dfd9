"""Render job routes: request, poll and cancel PDF typesetting"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from groundwork.config import get_settings
from groundwork.database import get_db
from groundwork.middleware.auth import get_current_user
from groundwork.models.resume import Resume
from groundwork.models.user import User
from groundwork.services import render_scheduler, resume_compiler
from groundwork.services.render_queue import get_render_queue

router = APIRouter()


async def _owned_job(db: AsyncSession, user_id: int, job_id: str):
    job = await render_scheduler.get_job(db, job_id)
    resume = await db.get(Resume, job.resume_id)
    if resume is None or resume.user_id != user_id:
        raise HTTPException(status_code=404, detail="Render job not found")
    return job


@router.post("/resumes/{resume_id}/render", status_code=202)
async def request_render(
    resume_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Queue a PDF render of the resume's current LaTeX.

    Returns immediately; poll GET /api/render-jobs/{job_id}. The new job
    becomes the resume's latest, so any older job still in flight can no
    longer change the resume.
    """
    resume = await resume_compiler.get_resume(db, current_user.id, resume_id)
    if not resume.latex_source:
        raise HTTPException(status_code=422, detail="Resume has no LaTeX source to render")

    job = await render_scheduler.enqueue_render(db, resume, max_attempts=get_settings().render_max_attempts)
    await get_render_queue().publish(job.id)
    return {"job_id": job.id, "resume_id": resume_id, "status": job.status}


@router.get("/resumes/{resume_id}/render-jobs")
async def list_render_jobs(
    resume_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    resume = await resume_compiler.get_resume(db, current_user.id, resume_id)
    jobs = await render_scheduler.list_jobs_for_resume(db, resume_id)
    return {
        "resume_id": resume_id,
        "latest_render_job_id": resume.latest_render_job_id,
        "jobs": [await render_scheduler.get_job_status(db, j.id) for j in jobs],
    }


@router.get("/render-jobs/{job_id}")
async def get_render_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _owned_job(db, current_user.id, job_id)
    return await render_scheduler.get_job_status(db, job_id)


@router.post("/render-jobs/{job_id}/cancel")
async def cancel_render_job(
    job_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Queued jobs fail at once; a processing job fails when its attempt reports or its lease expires."""
    await _owned_job(db, current_user.id, job_id)
    job = await render_scheduler.cancel_job(db, job_id)
    return await render_scheduler.get_job_status(db, job.id)

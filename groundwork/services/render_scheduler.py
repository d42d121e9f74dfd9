"""
Durable render job scheduler backed by the render_jobs table.

Usage:
    job = await render_scheduler.enqueue_render(db, resume)
    claim = await render_scheduler.claim_job(db, job.id, "worker-1", lease_seconds=120)
    await render_scheduler.complete_job(db, claim.job_id, claim.token, pdf_key)

Every state change is a conditional UPDATE whose WHERE clause restates the
expected current state, so two workers (or a worker and the reclaimer) can
race on a row and exactly one wins. Completion and failure must present the
claim token minted by the winning claim; a report carrying an older token
belongs to a superseded attempt and is discarded.

Only the job recorded as the resume's latest_render_job_id may change the
resume's rendered state.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from groundwork.exceptions import InvalidTransition, NotFound, RetriesExhausted
from groundwork.models.render_job import RenderJob
from groundwork.models.resume import Resume
from groundwork.utils.logger import logger
from groundwork.utils.metrics import inc
from groundwork.utils.timestamp import utcnow

CANCELLED_MESSAGE = "cancelled by user"


@dataclass(frozen=True)
class RenderClaim:
    job_id: str
    resume_id: int
    worker_id: str
    token: str
    attempt: int


async def _load(db: AsyncSession, job_id: str) -> Optional[RenderJob]:
    # Conditional UPDATEs bypass the identity map; always re-read the row
    result = await db.execute(
        select(RenderJob)
        .where(RenderJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def enqueue_render(db: AsyncSession, resume: Resume, max_attempts: int = 3) -> RenderJob:
    """Create a queued job and make it the resume's latest. Older jobs keep running but lose the guard."""
    now = utcnow()
    job = RenderJob(
        id=str(uuid.uuid4()),
        resume_id=resume.id,
        status="queued",
        attempts=0,
        max_attempts=max_attempts,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    resume.latest_render_job_id = job.id
    await db.commit()
    inc("render.enqueued")
    logger.info("render.enqueued", extra={"job_id": job.id, "resume_id": resume.id})
    return job


async def get_job(db: AsyncSession, job_id: str) -> RenderJob:
    job = await _load(db, job_id)
    if job is None:
        raise NotFound(f"Render job {job_id} not found")
    return job


async def get_job_status(db: AsyncSession, job_id: str) -> Dict[str, Any]:
    """Job status, attempt count and outcome"""
    job = await get_job(db, job_id)
    response = {
        "job_id": job.id,
        "resume_id": job.resume_id,
        "status": job.status,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "cancel_requested": job.cancel_requested,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
    if job.status == "done":
        response["pdf_storage_key"] = job.pdf_storage_key
    if job.status == "failed" and job.error_message:
        response["error"] = job.error_message
    if job.last_error:
        response["last_error"] = job.last_error
    return response


async def list_jobs_for_resume(db: AsyncSession, resume_id: int) -> List[RenderJob]:
    result = await db.execute(
        select(RenderJob)
        .where(RenderJob.resume_id == resume_id)
        .order_by(RenderJob.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def claim_job(
    db: AsyncSession,
    job_id: str,
    worker_id: str,
    lease_seconds: int,
) -> Optional[RenderClaim]:
    """
    Atomically move a queued job to processing under a new lease.

    Returns None when another claimant got there first (or the job is no
    longer queued); the caller simply moves on.
    """
    now = utcnow()
    token = uuid.uuid4().hex
    result = await db.execute(
        update(RenderJob)
        .where(and_(RenderJob.id == job_id, RenderJob.status == "queued"))
        .values(
            status="processing",
            attempts=RenderJob.attempts + 1,
            worker_id=worker_id,
            claim_token=token,
            lease_expires_at=now + timedelta(seconds=lease_seconds),
            started_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return None
    await db.commit()

    job = await _load(db, job_id)
    inc("render.claimed")
    logger.info("render.claimed", extra={"job_id": job_id, "worker_id": worker_id, "attempt": job.attempts})
    return RenderClaim(job_id=job_id, resume_id=job.resume_id, worker_id=worker_id, token=token, attempt=job.attempts)


async def claim_next_job(db: AsyncSession, worker_id: str, lease_seconds: int) -> Optional[RenderClaim]:
    """
    Claim the oldest queued job.

    Candidate rows are read with FOR UPDATE SKIP LOCKED (a no-op on SQLite);
    the conditional update in claim_job is what guarantees a single winner.
    """
    result = await db.execute(
        select(RenderJob.id)
        .where(RenderJob.status == "queued")
        .order_by(RenderJob.created_at.asc())
        .limit(5)
        .with_for_update(skip_locked=True)
    )
    candidates = list(result.scalars().all())
    await db.rollback()
    for job_id in candidates:
        claim = await claim_job(db, job_id, worker_id, lease_seconds)
        if claim is not None:
            return claim
    return None


async def queued_job_ids(db: AsyncSession, limit: int = 10) -> List[str]:
    result = await db.execute(
        select(RenderJob.id)
        .where(RenderJob.status == "queued")
        .order_by(RenderJob.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _finalize_cancelled(db: AsyncSession, job: RenderJob, token: Optional[str]) -> bool:
    """processing → failed for a job whose cancellation was requested. Resume untouched."""
    now = utcnow()
    conditions = [RenderJob.id == job.id, RenderJob.status == "processing"]
    if token is not None:
        conditions.append(RenderJob.claim_token == token)
    result = await db.execute(
        update(RenderJob)
        .where(and_(*conditions))
        .values(
            status="failed",
            error_message=CANCELLED_MESSAGE,
            lease_expires_at=None,
            completed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False
    await db.commit()
    inc("render.cancelled")
    logger.info("render.cancelled", extra={"job_id": job.id, "resume_id": job.resume_id})
    return True


def _is_current_claim(job: Optional[RenderJob], token: str) -> bool:
    return job is not None and job.status == "processing" and job.claim_token == token


async def complete_job(db: AsyncSession, job_id: str, token: str, pdf_storage_key: str) -> bool:
    """
    Record a successful render. Returns True only when this report moved the job to done.

    The resume is updated in the same transaction, and only if this job is
    still its latest.
    """
    job = await _load(db, job_id)
    if not _is_current_claim(job, token):
        inc("render.discarded")
        logger.warning("render.discarded", extra={"job_id": job_id, "reason": "stale claim on done"})
        return False
    if job.cancel_requested:
        await _finalize_cancelled(db, job, token)
        return False

    now = utcnow()
    result = await db.execute(
        update(RenderJob)
        .where(and_(RenderJob.id == job_id, RenderJob.status == "processing", RenderJob.claim_token == token))
        .values(
            status="done",
            pdf_storage_key=pdf_storage_key,
            error_message=None,
            lease_expires_at=None,
            completed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        inc("render.discarded")
        logger.warning("render.discarded", extra={"job_id": job_id, "reason": "lost race on done"})
        return False

    await db.execute(
        update(Resume)
        .where(and_(Resume.id == job.resume_id, Resume.latest_render_job_id == job_id))
        .values(pdf_storage_key=pdf_storage_key, status="rendered", error_message=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    inc("render.done")
    logger.info("render.done", extra={"job_id": job_id, "resume_id": job.resume_id, "storage_key": pdf_storage_key})
    return True


async def fail_job(db: AsyncSession, job_id: str, token: str, error: str) -> bool:
    """Record a failed attempt (e.g. CompileError). Terminal for this job; never auto-retried."""
    job = await _load(db, job_id)
    if not _is_current_claim(job, token):
        inc("render.discarded")
        logger.warning("render.discarded", extra={"job_id": job_id, "reason": "stale claim on failed"})
        return False
    if job.cancel_requested:
        await _finalize_cancelled(db, job, token)
        return False

    now = utcnow()
    result = await db.execute(
        update(RenderJob)
        .where(and_(RenderJob.id == job_id, RenderJob.status == "processing", RenderJob.claim_token == token))
        .values(status="failed", error_message=error, lease_expires_at=None, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False

    await db.execute(
        update(Resume)
        .where(and_(Resume.id == job.resume_id, Resume.latest_render_job_id == job_id))
        .values(status="failed", error_message=error, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    inc("render.failed")
    logger.error("render.failed", extra={"job_id": job_id, "resume_id": job.resume_id, "error": error[:200]})
    return True


async def record_fault(db: AsyncSession, job_id: str, token: str, error: str) -> bool:
    """
    Note an infrastructure fault on the current attempt without ending it.

    The job stays processing until its lease expires; the reclaimer then
    requeues it, and once attempts run out the RetriesExhausted failure
    carries this text as the reason.
    """
    result = await db.execute(
        update(RenderJob)
        .where(and_(RenderJob.id == job_id, RenderJob.status == "processing", RenderJob.claim_token == token))
        .values(last_error=error, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False
    await db.commit()
    inc("render.fault")
    return True


async def reclaim_expired(db: AsyncSession, now=None) -> List[str]:
    """
    Supersede claims whose lease has expired.

    Each expired job is requeued, or failed with RetriesExhausted once its
    attempts reach max_attempts, or failed as cancelled if cancellation was
    requested while it ran. Returns the ids that went back to queued.
    """
    now = now or utcnow()
    result = await db.execute(
        select(RenderJob)
        .where(and_(RenderJob.status == "processing", RenderJob.lease_expires_at < now))
        .execution_options(populate_existing=True)
    )
    expired = list(result.scalars().all())

    requeued = []
    for job in expired:
        stale = and_(
            RenderJob.id == job.id,
            RenderJob.status == "processing",
            RenderJob.claim_token == job.claim_token,
        )
        if job.cancel_requested:
            await _finalize_cancelled(db, job, job.claim_token)
            continue

        if job.attempts >= job.max_attempts:
            error = str(RetriesExhausted(job.id, job.attempts, job.last_error))
            outcome = await db.execute(
                update(RenderJob)
                .where(stale)
                .values(status="failed", error_message=error, lease_expires_at=None, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                await db.rollback()
                continue
            await db.execute(
                update(Resume)
                .where(and_(Resume.id == job.resume_id, Resume.latest_render_job_id == job.id))
                .values(status="failed", error_message=error, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            inc("render.retries_exhausted")
            logger.error("render.retries_exhausted", extra={"job_id": job.id, "attempt": job.attempts})
            continue

        outcome = await db.execute(
            update(RenderJob)
            .where(stale)
            .values(status="queued", worker_id=None, claim_token=None, lease_expires_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:
            await db.rollback()
            continue
        await db.commit()
        requeued.append(job.id)
        inc("render.requeued")
        logger.warning(
            "render.requeued",
            extra={"job_id": job.id, "worker_id": job.worker_id, "attempt": job.attempts},
        )

    return requeued


async def cancel_job(db: AsyncSession, job_id: str) -> RenderJob:
    """
    User cancellation.

    A queued job fails immediately. A processing job only records intent; the
    in-flight attempt is never interrupted and the job fails when it reports
    or its lease expires. The resume is left as it was either way.
    """
    job = await get_job(db, job_id)
    now = utcnow()

    if job.status == "queued":
        result = await db.execute(
            update(RenderJob)
            .where(and_(RenderJob.id == job_id, RenderJob.status == "queued"))
            .values(status="failed", error_message=CANCELLED_MESSAGE, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await db.commit()
            inc("render.cancelled")
            logger.info("render.cancelled", extra={"job_id": job_id, "resume_id": job.resume_id})
            return await get_job(db, job_id)
        # Claimed between our read and the update; treat as processing
        await db.rollback()
        job = await get_job(db, job_id)

    if job.status == "processing":
        await db.execute(
            update(RenderJob)
            .where(and_(RenderJob.id == job_id, RenderJob.status == "processing"))
            .values(cancel_requested=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("render.cancel_requested", extra={"job_id": job_id, "worker_id": job.worker_id})
        return await get_job(db, job_id)

    raise InvalidTransition(job_id, job.status, "failed")


async def cleanup_old_jobs(db: AsyncSession, max_age_hours: int = 72) -> int:
    """
    Delete done jobs older than max_age_hours, except any resume's latest. Returns count deleted.

    Failed jobs are kept: their error_message is the only record of why a render failed.
    """
    cutoff = utcnow() - timedelta(hours=max_age_hours)
    latest = select(Resume.latest_render_job_id).where(Resume.latest_render_job_id.isnot(None))
    result = await db.execute(
        delete(RenderJob)
        .where(
            and_(
                RenderJob.status == "done",
                RenderJob.created_at < cutoff,
                RenderJob.id.notin_(latest),
            )
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    count = result.rowcount
    if count > 0:
        logger.info("render.cleanup", extra={"deleted": count, "max_age_hours": max_age_hours})
    return count

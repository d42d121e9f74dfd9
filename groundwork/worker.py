"""
Render worker: claims queued render jobs and typesets them to PDF.

Can run as:
  1. Standalone worker process: python -m groundwork.worker
  2. Several of them against one database; claims are atomic per job

Runs three loops concurrently:
  - worker_loop:  receive job ids → claim → typeset → store PDF → report
  - reclaim_loop: requeue (or fail) jobs whose lease expired
  - run_cleanup:  delete old done jobs (failed jobs keep their reason)
"""
import asyncio
import os
import socket
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groundwork.config import get_settings
from groundwork.database import AsyncSessionLocal
from groundwork.exceptions import CompileError
from groundwork.models.resume import Resume
from groundwork.services import render_scheduler
from groundwork.services.blob_store import BlobStore, get_blob_store
from groundwork.services.gateway import ServiceGateway, get_gateway
from groundwork.services.render_queue import get_render_queue
from groundwork.services.render_scheduler import RenderClaim
from groundwork.services.typesetting import Typesetter, get_typesetter
from groundwork.utils.logger import correlation_id_var, logger

PDF_CONTENT_TYPE = "application/pdf"


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def pdf_key(claim: RenderClaim) -> str:
    # One key per attempt; a superseded attempt never overwrites the winner's file
    return f"renders/{claim.resume_id}/{claim.job_id}/{claim.token}.pdf"


async def process_job(
    db: AsyncSession,
    claim: RenderClaim,
    store: BlobStore,
    typesetter: Typesetter,
    gateway: Optional[ServiceGateway] = None,
) -> bool:
    """
    Typeset one claimed job and report the outcome under the claim's token.

    Returns True when the job reached done. A report from an attempt whose
    claim was superseded is discarded by the scheduler.
    """
    gateway = gateway or get_gateway()
    result = await db.execute(select(Resume.latex_source).where(Resume.id == claim.resume_id))
    latex_source = result.scalar_one_or_none()
    if not latex_source:
        await render_scheduler.fail_job(db, claim.job_id, claim.token, "Resume has no LaTeX source")
        return False

    try:
        pdf = await gateway.execute("typesetting", typesetter.compile, latex_source)
        key = pdf_key(claim)
        await gateway.execute("storage", store.put, key, pdf, PDF_CONTENT_TYPE)
    except CompileError as exc:
        logger.warning("render.compile_error", extra={"job_id": claim.job_id, "error": exc.detail[:200]})
        await render_scheduler.fail_job(db, claim.job_id, claim.token, f"LaTeX compile failed: {exc.detail}"[:1000])
        return False
    except Exception as exc:
        # Infrastructure fault: leave the claim to expire so the reclaimer
        # requeues it, bounded by max_attempts
        logger.error(
            "worker.handler_error",
            extra={"job_id": claim.job_id, "error": str(exc)[:500], "error_type": type(exc).__name__},
        )
        await render_scheduler.record_fault(
            db, claim.job_id, claim.token, f"{type(exc).__name__}: {exc}"[:1000]
        )
        return False

    return await render_scheduler.complete_job(db, claim.job_id, claim.token, key)


# ---------------------------------------------------------------------------
# Loops
# ---------------------------------------------------------------------------

async def worker_loop(
    worker_id: Optional[str] = None,
    poll_interval: Optional[float] = None,
    max_idle_interval: Optional[float] = None,
) -> None:
    """
    Receive job ids and process the ones this worker manages to claim.

    Uses adaptive polling: starts at poll_interval, backs off to max_idle_interval
    when nothing is claimable, resets when a job is processed.
    """
    settings = get_settings()
    worker_id = worker_id or default_worker_id()
    poll_interval = poll_interval or settings.worker_poll_interval
    max_idle_interval = max_idle_interval or settings.worker_max_idle_interval
    store = get_blob_store()
    typesetter = get_typesetter()
    queue = get_render_queue()

    current_interval = poll_interval
    logger.info("worker.started", extra={"worker_id": worker_id})

    while True:
        processed = False
        try:
            for job_id in await queue.receive(timeout=current_interval):
                async with AsyncSessionLocal() as db:
                    claim = await render_scheduler.claim_job(db, job_id, worker_id, settings.render_lease_seconds)
                    if claim is None:
                        # Claimed elsewhere or no longer queued
                        continue
                    cid = correlation_id_var.set(f"render-{job_id}")
                    try:
                        await process_job(db, claim, store, typesetter)
                    finally:
                        correlation_id_var.reset(cid)
                    processed = True
        except Exception as exc:
            logger.error("worker.poll_error", extra={"worker_id": worker_id, "error": str(exc)[:500]})
            current_interval = max_idle_interval
            await asyncio.sleep(current_interval)
            continue

        if processed:
            current_interval = poll_interval
            continue
        current_interval = min(current_interval * 1.5, max_idle_interval)
        await asyncio.sleep(current_interval)


async def reclaim_loop(interval: Optional[float] = None) -> None:
    """Supersede expired leases and re-publish the requeued job ids."""
    interval = interval or get_settings().reclaim_interval
    queue = get_render_queue()
    while True:
        await asyncio.sleep(interval)
        try:
            async with AsyncSessionLocal() as db:
                requeued = await render_scheduler.reclaim_expired(db)
            for job_id in requeued:
                await queue.publish(job_id)
            if requeued:
                logger.info("worker.reclaimed", extra={"requeued": len(requeued)})
        except Exception as exc:
            logger.error("worker.reclaim_error", extra={"error": str(exc)[:200]})


async def run_cleanup(interval_hours: int = 6) -> None:
    """Periodically delete old done jobs."""
    max_age_hours = get_settings().render_job_retention_hours
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            async with AsyncSessionLocal() as db:
                deleted = await render_scheduler.cleanup_old_jobs(db, max_age_hours=max_age_hours)
                if deleted:
                    logger.info("worker.cleanup", extra={"deleted": deleted})
        except Exception as exc:
            logger.error("worker.cleanup_error", extra={"error": str(exc)[:200]})


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Run worker as standalone process."""
    from groundwork.database import init_db
    from groundwork.services.redis_client import init_redis, close_redis

    await init_db()
    await init_redis()
    try:
        await asyncio.gather(
            worker_loop(),
            reclaim_loop(),
            run_cleanup(),
        )
    finally:
        await close_redis()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

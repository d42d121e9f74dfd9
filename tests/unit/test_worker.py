import asyncio
from datetime import timedelta

from groundwork import worker
from groundwork.database import AsyncSessionLocal
from groundwork.exceptions import CompileError, StorageError
from groundwork.models.resume import Resume
from groundwork.models.user import User
from groundwork.services import render_scheduler
from groundwork.services.blob_store import LocalBlobStore
from groundwork.services.typesetting import Typesetter
from groundwork.utils.timestamp import utcnow

LEASE = 120
PDF = b"%PDF-1.5 fake"


class FakeTypesetter(Typesetter):
    def __init__(self, error=None):
        self.error = error
        self.sources = []

    async def compile(self, latex_source: str) -> bytes:
        self.sources.append(latex_source)
        if self.error:
            raise self.error
        return PDF


async def claimed_job(db, latex_source=r"\documentclass{article}", max_attempts=3):
    user = User(external_id="alice")
    db.add(user)
    await db.commit()
    resume = Resume(user_id=user.id, jd_text="Engineer", latex_source=latex_source)
    db.add(resume)
    await db.commit()
    job = await render_scheduler.enqueue_render(db, resume, max_attempts=max_attempts)
    return resume.id, await render_scheduler.claim_job(db, job.id, "w1", LEASE)


def test_successful_render_stores_pdf_and_marks_done(store, gateway) -> None:
    typesetter = FakeTypesetter()

    async def scenario():
        async with AsyncSessionLocal() as db:
            resume_id, claim = await claimed_job(db)
            done = await worker.process_job(db, claim, store, typesetter, gateway)
            status = await render_scheduler.get_job_status(db, claim.job_id)
            return claim, done, status, await store.get(status["pdf_storage_key"])

    claim, done, status, pdf = asyncio.run(scenario())
    assert done is True
    assert status["status"] == "done"
    assert status["pdf_storage_key"] == worker.pdf_key(claim)
    assert claim.token in status["pdf_storage_key"]
    assert pdf == PDF
    assert typesetter.sources == [r"\documentclass{article}"]


def test_compile_error_fails_job_without_retry(store, gateway) -> None:
    typesetter = FakeTypesetter(CompileError("Undefined control sequence", errors=["Undefined control sequence"]))

    async def scenario():
        async with AsyncSessionLocal() as db:
            _, claim = await claimed_job(db)
            done = await worker.process_job(db, claim, store, typesetter, gateway)
            return done, await render_scheduler.get_job_status(db, claim.job_id)

    done, status = asyncio.run(scenario())
    assert done is False
    assert status["status"] == "failed"
    assert status["error"] == "LaTeX compile failed: Undefined control sequence"
    # compile errors are answers, not faults
    assert len(typesetter.sources) == 1


def test_missing_latex_fails_job(store, gateway) -> None:
    async def scenario():
        async with AsyncSessionLocal() as db:
            _, claim = await claimed_job(db, latex_source=None)
            done = await worker.process_job(db, claim, store, FakeTypesetter(), gateway)
            return done, await render_scheduler.get_job_status(db, claim.job_id)

    done, status = asyncio.run(scenario())
    assert done is False
    assert status["status"] == "failed"
    assert status["error"] == "Resume has no LaTeX source"


def test_infrastructure_fault_leaves_job_for_the_reclaimer(store, gateway) -> None:
    typesetter = FakeTypesetter(OSError("pdflatex: not found"))

    async def scenario():
        async with AsyncSessionLocal() as db:
            _, claim = await claimed_job(db)
            done = await worker.process_job(db, claim, store, typesetter, gateway)
            before = (await render_scheduler.get_job(db, claim.job_id)).status
            requeued = await render_scheduler.reclaim_expired(db, now=utcnow() + timedelta(seconds=LEASE + 1))
            return claim, done, before, requeued

    claim, done, before, requeued = asyncio.run(scenario())
    assert done is False
    assert before == "processing"
    assert requeued == [claim.job_id]
    # gateway retried the typesetter once before giving up
    assert len(typesetter.sources) == 1 + gateway.config["typesetting"].max_retries


class BrokenStore(LocalBlobStore):
    async def put(self, key, data, content_type="application/octet-stream"):
        raise StorageError("bucket unreachable")


def test_exhausted_job_records_the_last_fault(store, gateway) -> None:
    typesetter = FakeTypesetter(OSError("pdflatex: not found"))

    async def scenario():
        async with AsyncSessionLocal() as db:
            _, claim = await claimed_job(db, max_attempts=1)
            await worker.process_job(db, claim, store, typesetter, gateway)
            while_running = await render_scheduler.get_job_status(db, claim.job_id)
            requeued = await render_scheduler.reclaim_expired(db, now=utcnow() + timedelta(seconds=LEASE + 1))
            return while_running, requeued, await render_scheduler.get_job_status(db, claim.job_id)

    while_running, requeued, status = asyncio.run(scenario())
    assert while_running["status"] == "processing"
    assert while_running["last_error"] == "OSError: pdflatex: not found"
    assert requeued == []
    assert status["status"] == "failed"
    assert "exhausted 1 attempts" in status["error"]
    assert status["error"].endswith("last error: OSError: pdflatex: not found")


def test_storage_fault_is_recorded_on_the_job(tmp_path, gateway) -> None:
    async def scenario():
        async with AsyncSessionLocal() as db:
            _, claim = await claimed_job(db)
            done = await worker.process_job(db, claim, BrokenStore(str(tmp_path)), FakeTypesetter(), gateway)
            return done, await render_scheduler.get_job_status(db, claim.job_id)

    done, status = asyncio.run(scenario())
    assert done is False
    assert status["status"] == "processing"
    assert status["last_error"] == "StorageError: bucket unreachable"

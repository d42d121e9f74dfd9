"""
Resume compiler: snapshot + job description → grounded draft resume.

Usage:
    resume = await resume_compiler.generate_resume(db, store, generator, user.id, snapshot, jd_text)

Flow: parse JD → rebuild the snapshot's exact entry blocks → keep the
JD-relevant entries within section limits → generate candidates → validate
each against its cited block (bounded rewrites for sub-threshold bullets,
none for citations outside the snapshot) → trim to one page → fit → LaTeX →
one commit for the resume, its accepted bullets and every rejection.

A generation failure that survives the gateway's retries still persists the
resume, as failed with the reason recorded.
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from groundwork.config import get_settings
from groundwork.exceptions import (
    GenerationUnavailable,
    MalformedOutput,
    NotFound,
    UngroundedReference,
)
from groundwork.models.context_entry import ContextSnapshot
from groundwork.models.persona import Persona
from groundwork.models.resume import Resume, ResumeBullet, BulletRejection
from groundwork.schemas.generation import CandidateBullet
from groundwork.schemas.jd import ParsedJD
from groundwork.services import context_store
from groundwork.services.blob_store import BlobStore
from groundwork.services.cache import get_snapshot_text, put_snapshot_text
from groundwork.services.content_selector import select_content
from groundwork.services.fit_scoring import compute_fit
from groundwork.services.gateway import CircuitOpenError, ServiceGateway, get_gateway
from groundwork.services.generation import EntryContext, GenerationClient, PromptContext
from groundwork.services.grounding import GroundingValidator
from groundwork.services.jd_parser import parse_jd
from groundwork.services.latex import render_resume_latex
from groundwork.services.layout import estimate_lines, fit_to_page
from groundwork.services.persona_filter import filter_and_order
from groundwork.services.snapshot_compiler import render_entry_block
from groundwork.services.tone import verbs_for_entry
from groundwork.utils.logger import logger
from groundwork.utils.metrics import inc, observe

REASON_UNGROUNDED = "ungrounded_reference"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_REWRITE_FAILED = "rewrite_failed"
REASON_PAGE_OVERFLOW = "page_overflow"

GENERATION_ERRORS = (GenerationUnavailable, MalformedOutput, CircuitOpenError)


async def load_snapshot_text(store: BlobStore, snapshot: ContextSnapshot, gateway: ServiceGateway) -> str:
    """Snapshot text through the cache; snapshots are immutable so entries never go stale."""
    cached = await get_snapshot_text(snapshot.content_hash)
    if cached is not None:
        return cached
    text = (await gateway.execute("storage", store.get, snapshot.storage_key)).decode("utf-8")
    await put_snapshot_text(snapshot.content_hash, text)
    return text


async def build_prompt_context(
    db: AsyncSession,
    store: BlobStore,
    snapshot: ContextSnapshot,
    parsed: ParsedJD,
    persona: Optional[Persona],
    gateway: ServiceGateway,
) -> PromptContext:
    entries = await context_store.entries_at(db, snapshot.user_id, snapshot.entry_refs)
    # A persona chosen at generation time narrows the snapshot further
    if persona is not None and persona.id != snapshot.persona_id:
        entries = filter_and_order(entries, persona)
    entries, excluded = select_content(entries, parsed)
    if excluded:
        logger.info("resume.entries_excluded", extra={"snapshot_id": snapshot.id, "excluded": len(excluded)})
    tone = (persona.tone_preference if persona is not None and persona.tone_preference else parsed.detected_tone)
    return PromptContext(
        snapshot_text=await load_snapshot_text(store, snapshot, gateway),
        entries=[
            EntryContext(
                entry_id=e.entry_id,
                entry_type=e.entry_type,
                contribution_type=e.contribution_type,
                block=render_entry_block(e),
                data=dict(e.data or {}),
                raw_text=e.raw_text,
                allowed_verbs=verbs_for_entry(tone, e.contribution_type),
            )
            for e in entries
        ],
        tone=tone,
        persona_name=persona.name if persona is not None else None,
        excluded=[e.to_dict() for e in excluded],
    )


async def _validate_candidate(
    candidate: CandidateBullet,
    validator: GroundingValidator,
    generator: GenerationClient,
    parsed: ParsedJD,
    gateway: ServiceGateway,
    max_rewrites: int,
    rejections: List[BulletRejection],
) -> Optional[tuple]:
    """
    Return (text, score) for an accepted candidate, or None.

    Every failed attempt is appended to `rejections`. Rewrites are bounded by
    max_rewrites; a failing rewrite call ends the loop for this candidate only.
    """
    try:
        result = validator.validate(candidate.text, candidate.source_entry_id)
    except UngroundedReference as e:
        rejections.append(BulletRejection(
            section=candidate.section,
            bullet_text=candidate.text,
            source_entry_id=candidate.source_entry_id,
            reason=REASON_UNGROUNDED,
            attempt=0,
            detail=str(e),
        ))
        inc("grounding.ungrounded_reference")
        return None

    text = candidate.text
    for attempt in range(max_rewrites + 1):
        if result.accepted:
            return text, result.score

        rejections.append(BulletRejection(
            section=candidate.section,
            bullet_text=text,
            source_entry_id=candidate.source_entry_id,
            grounding_score=result.score,
            reason=REASON_BELOW_THRESHOLD,
            attempt=attempt,
            detail=f"unsupported terms: {', '.join(validator.missing_terms(text, candidate.source_entry_id) or [])}",
        ))
        inc("grounding.below_threshold")
        if attempt == max_rewrites:
            break

        try:
            text = await gateway.execute(
                "generation",
                generator.rewrite,
                candidate.model_copy(update={"text": text}),
                validator.source_text(candidate.source_entry_id),
                parsed,
                attempt + 1,
                validator.missing_terms(text, candidate.source_entry_id),
            )
        except GENERATION_ERRORS as e:
            rejections.append(BulletRejection(
                section=candidate.section,
                bullet_text=text,
                source_entry_id=candidate.source_entry_id,
                grounding_score=result.score,
                reason=REASON_REWRITE_FAILED,
                attempt=attempt + 1,
                detail=str(e)[:500],
            ))
            return None
        result = validator.validate(text, candidate.source_entry_id)

    return None


async def generate_resume(
    db: AsyncSession,
    store: BlobStore,
    generator: GenerationClient,
    user_id: int,
    snapshot: ContextSnapshot,
    jd_text: str,
    persona: Optional[Persona] = None,
    gateway: Optional[ServiceGateway] = None,
) -> Resume:
    """Generate, validate and persist a draft resume. Zero accepted bullets is still a draft."""
    settings = get_settings()
    gateway = gateway or get_gateway()

    parsed = parse_jd(jd_text)
    prompt_context = await build_prompt_context(db, store, snapshot, parsed, persona, gateway)
    validator = GroundingValidator(
        {e.entry_id: e.block for e in prompt_context.entries},
        threshold=settings.grounding_threshold,
    )

    resume = Resume(
        user_id=user_id,
        snapshot_id=snapshot.id,
        persona_id=persona.id if persona is not None else None,
        jd_text=jd_text,
        jd_parsed=parsed.model_dump(),
        status="draft",
    )

    try:
        candidates = await gateway.execute("generation", generator.generate, prompt_context, parsed)
    except GENERATION_ERRORS as e:
        resume.status = "failed"
        resume.error_message = f"Generation failed: {e}"[:2000]
        resume.bullets = []
        resume.rejections = []
        db.add(resume)
        await db.commit()
        inc("resume.generation_failed")
        logger.error("resume.generation_failed", extra={"resume_id": resume.id, "error": str(e)[:200]})
        return resume

    versions = {entry_id: version for entry_id, version in snapshot.entry_refs}
    accepted: List[ResumeBullet] = []
    rejections: List[BulletRejection] = []
    for candidate in candidates:
        outcome = await _validate_candidate(
            candidate, validator, generator, parsed, gateway, settings.grounding_max_rewrites, rejections
        )
        if outcome is None:
            continue
        text, score = outcome
        accepted.append(ResumeBullet(
            section=candidate.section,
            position=len(accepted),
            bullet_text=text,
            source_entry_id=candidate.source_entry_id,
            source_entry_version=versions[candidate.source_entry_id],
            grounding_score=score,
            line_count=max(1, estimate_lines(text)),
        ))
        observe("grounding.accepted_score", score)

    accepted, overflow, page_fill = fit_to_page(accepted, parsed, settings.page_usable_lines)
    for bullet in overflow:
        rejections.append(BulletRejection(
            section=bullet.section,
            bullet_text=bullet.bullet_text,
            source_entry_id=bullet.source_entry_id,
            grounding_score=bullet.grounding_score,
            reason=REASON_PAGE_OVERFLOW,
            attempt=0,
            detail=f"removed to fit one page ({page_fill['initial_verdict']})",
        ))
    if overflow:
        inc("layout.bullets_removed", len(overflow))

    fit_score, fit_report = compute_fit(
        [(b.bullet_text, b.source_entry_id) for b in accepted], parsed, settings.fit_policy
    )
    resume.fit_score = fit_score
    resume.fit_report = {
        **fit_report,
        "page_fill": page_fill,
        "excluded_entries": prompt_context.excluded,
    }
    resume.latex_source = render_resume_latex(accepted, persona, headline=parsed.title)
    resume.bullets = accepted
    resume.rejections = rejections

    db.add(resume)
    await db.commit()

    inc("resume.generated")
    logger.info(
        "resume.generated",
        extra={
            "resume_id": resume.id,
            "snapshot_id": snapshot.id,
            "accepted": len(accepted),
            "rejected": len(rejections),
            "removed": len(overflow),
            "fit_score": fit_score,
            "tone": prompt_context.tone,
        },
    )
    return resume


async def get_resume(db: AsyncSession, user_id: int, resume_id: int) -> Resume:
    result = await db.execute(
        select(Resume)
        .options(selectinload(Resume.bullets))
        .where(Resume.id == resume_id, Resume.user_id == user_id)
    )
    resume = result.scalar_one_or_none()
    if resume is None:
        raise NotFound(f"Resume {resume_id} not found")
    return resume


async def list_rejections(db: AsyncSession, user_id: int, resume_id: int) -> List[BulletRejection]:
    await get_resume(db, user_id, resume_id)
    result = await db.execute(
        select(BulletRejection)
        .where(BulletRejection.resume_id == resume_id)
        .order_by(BulletRejection.id)
    )
    return list(result.scalars().all())


async def edit_bullet(
    db: AsyncSession,
    user_id: int,
    resume_id: int,
    bullet_id: int,
    bullet_text: str,
    persona: Optional[Persona] = None,
) -> ResumeBullet:
    """
    Replace a bullet's text with the user's wording.

    User-edited bullets are exempt from re-validation: the bullet was grounded
    when first accepted and keeps that score. The LaTeX source is re-rendered;
    a new render job is needed for a fresh PDF.
    """
    resume = await get_resume(db, user_id, resume_id)
    bullet = next((b for b in resume.bullets if b.id == bullet_id), None)
    if bullet is None:
        raise NotFound(f"Bullet {bullet_id} not found on resume {resume_id}")

    bullet.bullet_text = bullet_text.strip()
    bullet.is_user_edited = True
    bullet.line_count = max(1, estimate_lines(bullet.bullet_text))
    headline = (resume.jd_parsed or {}).get("title", "")
    resume.latex_source = render_resume_latex(resume.bullets, persona, headline=headline)
    await db.commit()
    await db.refresh(bullet)
    logger.info("resume.bullet_edited", extra={"resume_id": resume_id, "bullet_id": bullet_id})
    return bullet

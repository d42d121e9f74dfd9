"""
Append-only context store.

Usage:
    entry = await context_store.append_entry(db, user.id, entry_id, {...}, entry_type="experience")
    entries = await context_store.current(db, user.id)

Versions for an entry_id are dense 1..N. Two concurrent appends for the same
entry compute the same next version and the uniqueness constraint rejects
the loser with VersionConflict; callers re-read and retry. There is no
update or delete: tombstone_entry appends a version carrying the marker.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, and_
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from groundwork.exceptions import VersionConflict, NotFound
from groundwork.models.context_entry import ContextEntry, TOMBSTONE_KEY
from groundwork.services.scoring import compute_recency_score, parse_entry_date, EVERGREEN_TYPES
from groundwork.utils.logger import logger
from groundwork.utils.metrics import inc


async def latest_entry(db: AsyncSession, user_id: int, entry_id: str) -> Optional[ContextEntry]:
    """Highest version of one entry, or None if it was never appended."""
    result = await db.execute(
        select(ContextEntry)
        .where(ContextEntry.user_id == user_id, ContextEntry.entry_id == entry_id)
        .order_by(ContextEntry.version.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def append_entry(
    db: AsyncSession,
    user_id: int,
    entry_id: str,
    data: Dict[str, Any],
    entry_type: Optional[str] = None,
    raw_text: Optional[str] = None,
    recency_score: Optional[float] = None,
    impact_score: Optional[float] = None,
    tags: Optional[Iterable[str]] = None,
    flagged_evergreen: Optional[bool] = None,
    contribution_type: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> ContextEntry:
    """
    Append the next version of entry_id and return the new row.

    Attributes not given are carried over from the previous version.
    recency_score is rederived from date_end only when the end date or the
    evergreen flag changes; an explicit score otherwise survives revisions.
    expected_version, when given, is the version the caller believes it is
    creating (observed max + 1); a mismatch raises VersionConflict without
    touching the store.
    """
    previous = await latest_entry(db, user_id, entry_id)
    version = (previous.version if previous else 0) + 1

    if expected_version is not None and expected_version != version:
        raise VersionConflict(entry_id, expected_version)

    if previous is None and not entry_type:
        raise ValueError("entry_type is required for the first version of an entry")

    entry_type = entry_type or previous.entry_type
    if flagged_evergreen is None:
        flagged_evergreen = previous.flagged_evergreen if previous else entry_type in EVERGREEN_TYPES
    if recency_score is None:
        end_date_changed = previous is None or data.get("date_end") != (previous.data or {}).get("date_end")
        if end_date_changed or flagged_evergreen != previous.flagged_evergreen:
            recency_score = compute_recency_score(parse_entry_date(data.get("date_end")), flagged_evergreen)
        else:
            recency_score = previous.recency_score
    if impact_score is None:
        impact_score = previous.impact_score if previous else 0.5
    if tags is None:
        tags = previous.tags if previous else []
    if contribution_type is None:
        contribution_type = previous.contribution_type if previous else data.get("contribution_type", "team_member")

    row = ContextEntry(
        user_id=user_id,
        entry_id=entry_id,
        version=version,
        entry_type=entry_type,
        data=data,
        raw_text=raw_text if raw_text is not None else (previous.raw_text if previous else None),
        recency_score=max(0.0, min(1.0, recency_score)),
        impact_score=max(0.0, min(1.0, impact_score)),
        tags=sorted(set(tags)),
        flagged_evergreen=flagged_evergreen,
        contribution_type=contribution_type,
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        inc("context.version_conflict")
        logger.warning("context.version_conflict", extra={"entry_id": entry_id, "version": version})
        raise VersionConflict(entry_id, version)

    await db.refresh(row)
    inc("context.append")
    logger.info("context.appended", extra={"entry_id": entry_id, "version": version})
    return row


async def tombstone_entry(db: AsyncSession, user_id: int, entry_id: str) -> ContextEntry:
    """Append a version marking the entry removed. Already-removed entries are returned as-is."""
    previous = await latest_entry(db, user_id, entry_id)
    if previous is None:
        raise NotFound(f"Context entry {entry_id} not found")
    if previous.is_tombstone:
        return previous

    data = dict(previous.data or {})
    data[TOMBSTONE_KEY] = True
    return await append_entry(db, user_id, entry_id, data, expected_version=previous.version + 1)


async def current(db: AsyncSession, user_id: int, include_tombstoned: bool = True) -> List[ContextEntry]:
    """The max-version row for every entry_id the user owns, ordered by entry_id."""
    latest = (
        select(ContextEntry.entry_id, func.max(ContextEntry.version).label("max_version"))
        .where(ContextEntry.user_id == user_id)
        .group_by(ContextEntry.entry_id)
        .subquery()
    )
    result = await db.execute(
        select(ContextEntry)
        .join(
            latest,
            and_(
                ContextEntry.entry_id == latest.c.entry_id,
                ContextEntry.version == latest.c.max_version,
            ),
        )
        .where(ContextEntry.user_id == user_id)
        .order_by(ContextEntry.entry_id)
    )
    entries = list(result.scalars().all())
    if not include_tombstoned:
        entries = [e for e in entries if not e.is_tombstone]
    return entries


async def history(db: AsyncSession, user_id: int, entry_id: str) -> List[ContextEntry]:
    """Every version of one entry, oldest first."""
    result = await db.execute(
        select(ContextEntry)
        .where(ContextEntry.user_id == user_id, ContextEntry.entry_id == entry_id)
        .order_by(ContextEntry.version.asc())
    )
    return list(result.scalars().all())


async def entries_at(
    db: AsyncSession,
    user_id: int,
    refs: Sequence[Tuple[str, int]],
) -> List[ContextEntry]:
    """Load the exact (entry_id, version) rows a snapshot was compiled from, in ref order."""
    if not refs:
        return []
    wanted = {(entry_id, int(version)) for entry_id, version in refs}
    result = await db.execute(
        select(ContextEntry).where(
            ContextEntry.user_id == user_id,
            ContextEntry.entry_id.in_({entry_id for entry_id, _ in wanted}),
        )
    )
    by_ref = {
        (row.entry_id, row.version): row
        for row in result.scalars().all()
        if (row.entry_id, row.version) in wanted
    }
    return [by_ref[(entry_id, int(version))] for entry_id, version in refs if (entry_id, int(version)) in by_ref]

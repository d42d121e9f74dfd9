"""
Snapshot compiler: current context + persona → immutable compiled text.

The text depends only on the compiled entries and the persona's filter
settings. It carries no timestamp or snapshot version, so two compiles of
unchanged state are byte-identical and share a content hash.
"""
import hashlib
import json
from typing import Any, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from groundwork.exceptions import EmptyContext, SnapshotVersionConflict
from groundwork.models.context_entry import ContextEntry, ContextSnapshot, TOMBSTONE_KEY
from groundwork.models.persona import Persona
from groundwork.services import context_store
from groundwork.services.blob_store import BlobStore
from groundwork.services.gateway import ServiceGateway, get_gateway
from groundwork.services.persona_filter import filter_and_order
from groundwork.utils.logger import logger
from groundwork.utils.metrics import inc

SNAPSHOT_CONTENT_TYPE = "text/markdown; charset=utf-8"


def snapshot_key(user_id: int, version: int) -> str:
    return f"contexts/{user_id}/v{version}"


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    if isinstance(value, int):
        return str(value)
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def _data_lines(data: Any, prefix: str = "") -> List[str]:
    """Flatten data into 'key: value' lines, keys sorted at every level."""
    lines = []
    if isinstance(data, dict):
        for key in sorted(data):
            if key == TOMBSTONE_KEY:
                continue
            label = f"{prefix}.{key}" if prefix else str(key)
            value = data[key]
            if isinstance(value, dict):
                lines.extend(_data_lines(value, label))
            elif isinstance(value, list) and all(isinstance(v, str) for v in value):
                for item in value:
                    lines.append(f"- {label}: {item.strip()}")
            else:
                lines.append(f"- {label}: {_format_value(value)}")
    return lines


def render_entry_block(entry: ContextEntry) -> str:
    """Canonical text for one entry version. Grounding scores are computed against this."""
    lines = [
        f"## {entry.entry_type} [{entry.entry_id}@v{entry.version}]",
        f"- contribution_type: {entry.contribution_type}",
        f"- evergreen: {'yes' if entry.flagged_evergreen else 'no'}",
        f"- impact: {entry.impact_score:.2f}",
        f"- recency: {entry.recency_score:.2f}",
        f"- tags: {', '.join(sorted(entry.tags or [])) or '(none)'}",
    ]
    lines.extend(_data_lines(entry.data or {}))
    if entry.raw_text and entry.raw_text.strip():
        lines.append("")
        lines.append(entry.raw_text.strip())
    return "\n".join(lines) + "\n"


def render_snapshot(entries: List[ContextEntry], persona: Optional[Persona] = None) -> str:
    header = ["# Career context"]
    if persona is not None:
        header.append(f"persona: {persona.name}")
        header.append(f"emphasized: {', '.join(sorted(persona.emphasized_tags or [])) or '(none)'}")
        header.append(f"suppressed: {', '.join(sorted(persona.suppressed_tags or [])) or '(none)'}")
    header.append(f"entries: {len(entries)}")
    blocks = ["\n".join(header) + "\n"] + [render_entry_block(e) for e in entries]
    return "\n".join(blocks)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


async def next_snapshot_version(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.max(ContextSnapshot.version)).where(ContextSnapshot.user_id == user_id)
    )
    return (result.scalar() or 0) + 1


async def compile_snapshot(
    db: AsyncSession,
    store: BlobStore,
    user_id: int,
    persona: Optional[Persona] = None,
    gateway: Optional[ServiceGateway] = None,
) -> ContextSnapshot:
    """
    Compile the user's current context and persist it as the next snapshot version.

    The version is claimed by flushing the row before the blob is written, so
    a concurrent compile fails with SnapshotVersionConflict rather than
    overwriting a stored snapshot. Raises EmptyContext when nothing survives
    tombstones and persona filtering.
    """
    gateway = gateway or get_gateway()
    entries = filter_and_order(await context_store.current(db, user_id), persona)
    if not entries:
        raise EmptyContext(user_id, persona.id if persona is not None else None)

    text = render_snapshot(entries, persona)
    digest = content_hash(text)
    version = await next_snapshot_version(db, user_id)

    snapshot = ContextSnapshot(
        user_id=user_id,
        version=version,
        storage_key=snapshot_key(user_id, version),
        content_hash=digest,
        entry_refs=[[e.entry_id, e.version] for e in entries],
        persona_id=persona.id if persona is not None else None,
        persona_name=persona.name if persona is not None else None,
    )
    db.add(snapshot)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        inc("snapshot.version_conflict")
        raise SnapshotVersionConflict(user_id, version)

    try:
        await gateway.execute("storage", store.put, snapshot.storage_key, text.encode("utf-8"), SNAPSHOT_CONTENT_TYPE)
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    await db.refresh(snapshot)
    inc("snapshot.compiled")
    logger.info(
        "snapshot.compiled",
        extra={
            "snapshot_id": snapshot.id,
            "version": version,
            "entry_count": len(entries),
            "content_hash": digest,
        },
    )
    return snapshot


async def get_snapshot(db: AsyncSession, user_id: int, version: Optional[int] = None) -> Optional[ContextSnapshot]:
    """A user's snapshot by version, or the newest one when version is None."""
    query = select(ContextSnapshot).where(ContextSnapshot.user_id == user_id)
    if version is not None:
        query = query.where(ContextSnapshot.version == version)
    else:
        query = query.order_by(ContextSnapshot.version.desc()).limit(1)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_snapshots(db: AsyncSession, user_id: int) -> List[ContextSnapshot]:
    result = await db.execute(
        select(ContextSnapshot)
        .where(ContextSnapshot.user_id == user_id)
        .order_by(ContextSnapshot.version.desc())
    )
    return list(result.scalars().all())

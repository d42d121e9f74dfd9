"""
Append-only context log.

Each edit to a career fact inserts a new row with the next version for its
entry_id; rows are never updated or deleted. The current state of an entry
is its highest version. Removal is a version whose data carries
TOMBSTONE_KEY.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Float, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from groundwork.database import Base
from groundwork.utils.timestamp import utcnow

TOMBSTONE_KEY = "_tombstone"

ENTRY_TYPES = (
    "experience",
    "education",
    "project",
    "skill",
    "publication",
    "open_source",
    "certification",
    "award",
    "extracurricular",
)

CONTRIBUTION_TYPES = ("sole_author", "solo", "lead", "primary_contributor", "team_member", "reviewer")


class ContextEntry(Base):
    __tablename__ = "context_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_id = Column(String(36), nullable=False, index=True)  # stable across versions
    version = Column(Integer, nullable=False)

    entry_type = Column(String(50), nullable=False, index=True)
    data = Column(JSON, nullable=False)
    raw_text = Column(Text, nullable=True)

    # Compilation weights, both in [0, 1]
    recency_score = Column(Float, nullable=False, default=1.0)
    impact_score = Column(Float, nullable=False, default=0.5)

    tags = Column(JSON, nullable=False, default=list)
    flagged_evergreen = Column(Boolean, nullable=False, default=False)
    contribution_type = Column(String(50), nullable=False, default="team_member")

    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="context_entries")

    # One row per (user, entry, version); concurrent appends collide here
    __table_args__ = (
        UniqueConstraint("user_id", "entry_id", "version", name="uq_context_entry_version"),
        Index("ix_context_entries_user_entry", "user_id", "entry_id"),
    )

    @property
    def is_tombstone(self) -> bool:
        return bool((self.data or {}).get(TOMBSTONE_KEY))

    def to_dict(self):
        return {
            "entry_id": self.entry_id,
            "version": self.version,
            "entry_type": self.entry_type,
            "data": self.data,
            "raw_text": self.raw_text,
            "recency_score": self.recency_score,
            "impact_score": self.impact_score,
            "tags": list(self.tags or []),
            "flagged_evergreen": self.flagged_evergreen,
            "contribution_type": self.contribution_type,
            "is_tombstone": self.is_tombstone,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ContextSnapshot(Base):
    """Immutable compiled context: one row per compile, text lives in blob storage."""

    __tablename__ = "context_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)  # per-user counter, independent of entry versions
    storage_key = Column(String(500), nullable=False)  # contexts/{user}/v{version}
    content_hash = Column(String(64), nullable=False, index=True)  # sha256 of the compiled text

    # Ordered [[entry_id, version], ...] exactly as compiled
    entry_refs = Column(JSON, nullable=False)
    persona_id = Column(Integer, ForeignKey("personas.id", ondelete="SET NULL"), nullable=True)
    persona_name = Column(String(200), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint("user_id", "version", name="uq_context_snapshot_version"),
    )

    @property
    def entry_ids(self) -> set:
        return {entry_id for entry_id, _ in (self.entry_refs or [])}

    def to_dict(self):
        return {
            "id": self.id,
            "version": self.version,
            "storage_key": self.storage_key,
            "content_hash": self.content_hash,
            "entry_refs": self.entry_refs,
            "entry_count": len(self.entry_refs or []),
            "persona_id": self.persona_id,
            "persona_name": self.persona_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

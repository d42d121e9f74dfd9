from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Float, Boolean, JSON, SmallInteger
from sqlalchemy.orm import relationship
from groundwork.database import Base
from groundwork.utils.timestamp import utcnow

RESUME_STATUSES = ("draft", "rendered", "failed")


class Resume(Base):
    __tablename__ = "resumes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    snapshot_id = Column(Integer, ForeignKey("context_snapshots.id", ondelete="CASCADE"), nullable=True, index=True)
    persona_id = Column(Integer, ForeignKey("personas.id", ondelete="SET NULL"), nullable=True)

    # Job description
    jd_text = Column(Text, nullable=False)
    jd_parsed = Column(JSON, nullable=True)

    # Fit
    fit_score = Column(Float, nullable=True)  # 0.0-1.0
    fit_report = Column(JSON, nullable=True)

    # Output
    latex_source = Column(Text, nullable=True)
    pdf_storage_key = Column(String(500), nullable=True)

    # Status: draft → rendered | failed
    status = Column(String(20), nullable=False, default="draft", index=True)
    error_message = Column(Text, nullable=True)

    # Only this render job may change rendered state (set when a job is created)
    latest_render_job_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="resumes")
    bullets = relationship(
        "ResumeBullet",
        back_populates="resume",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ResumeBullet.position",
    )
    rejections = relationship("BulletRejection", back_populates="resume", cascade="all, delete-orphan", passive_deletes=True)
    render_jobs = relationship("RenderJob", back_populates="resume", cascade="all, delete-orphan", passive_deletes=True)

    def to_dict(self, include_bullets: bool = False):
        data = {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "persona_id": self.persona_id,
            "jd_parsed": self.jd_parsed,
            "fit_score": self.fit_score,
            "fit_report": self.fit_report,
            "pdf_storage_key": self.pdf_storage_key,
            "status": self.status,
            "error_message": self.error_message,
            "latest_render_job_id": self.latest_render_job_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_bullets:
            data["bullets"] = [b.to_dict() for b in self.bullets]
        return data


class ResumeBullet(Base):
    """An accepted, grounded statement; grounding_score >= threshold at acceptance."""

    __tablename__ = "resume_bullets"

    id = Column(Integer, primary_key=True, index=True)
    resume_id = Column(Integer, ForeignKey("resumes.id", ondelete="CASCADE"), nullable=False, index=True)
    section = Column(String(50), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    bullet_text = Column(Text, nullable=False)

    # Back-reference into the context log (non-owning)
    source_entry_id = Column(String(36), nullable=False, index=True)
    source_entry_version = Column(Integer, nullable=False)

    grounding_score = Column(Float, nullable=False)
    is_user_edited = Column(Boolean, nullable=False, default=False)
    line_count = Column(SmallInteger, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    resume = relationship("Resume", back_populates="bullets")

    def to_dict(self):
        return {
            "id": self.id,
            "section": self.section,
            "position": self.position,
            "bullet_text": self.bullet_text,
            "source_entry_id": self.source_entry_id,
            "source_entry_version": self.source_entry_version,
            "grounding_score": round(self.grounding_score, 4),
            "is_user_edited": self.is_user_edited,
            "line_count": self.line_count,
        }


class BulletRejection(Base):
    """Audit row for every candidate that was not accepted, with the reason."""

    __tablename__ = "bullet_rejections"

    id = Column(Integer, primary_key=True, index=True)
    resume_id = Column(Integer, ForeignKey("resumes.id", ondelete="CASCADE"), nullable=False, index=True)
    section = Column(String(50), nullable=True)
    bullet_text = Column(Text, nullable=False)
    source_entry_id = Column(String(36), nullable=True)
    grounding_score = Column(Float, nullable=True)
    reason = Column(String(50), nullable=False)  # ungrounded_reference | below_threshold | rewrite_failed | page_overflow
    attempt = Column(Integer, nullable=False, default=0)  # 0 = original candidate, n = nth rewrite
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    resume = relationship("Resume", back_populates="rejections")

    def to_dict(self):
        return {
            "id": self.id,
            "section": self.section,
            "bullet_text": self.bullet_text,
            "source_entry_id": self.source_entry_id,
            "grounding_score": round(self.grounding_score, 4) if self.grounding_score is not None else None,
            "reason": self.reason,
            "attempt": self.attempt,
            "detail": self.detail,
        }

"""
SQLAlchemy model for the render_jobs table: durable queue of PDF typesetting work.

A job moves queued → processing → done | failed. While processing, the
worker holds a lease (lease_expires_at) and a claim_token minted at claim
time; completion is only honoured when the caller presents the token of the
current claim.
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from groundwork.database import Base
from groundwork.utils.timestamp import utcnow
import uuid

JOB_STATUSES = ("queued", "processing", "done", "failed")
TERMINAL_STATUSES = ("done", "failed")


class RenderJob(Base):
    __tablename__ = "render_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    resume_id = Column(Integer, ForeignKey("resumes.id", ondelete="CASCADE"), nullable=False, index=True)

    # Status: queued → processing → done | failed
    status = Column(String(20), nullable=False, default="queued", index=True)
    error_message = Column(Text, nullable=True)
    # Infrastructure fault reported by the latest attempt that did not finish
    last_error = Column(Text, nullable=True)

    # Retry tracking
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    # Current claim
    worker_id = Column(String(100), nullable=True)
    claim_token = Column(String(32), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True, index=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    pdf_storage_key = Column(String(500), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    resume = relationship("Resume", back_populates="render_jobs")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

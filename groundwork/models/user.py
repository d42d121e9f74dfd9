from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from groundwork.database import Base
from groundwork.utils.timestamp import utcnow

USER_TIERS = ("free", "pro", "team", "api")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, nullable=False, index=True)  # identity provider subject
    email = Column(String(320), nullable=True)
    tier = Column(String(10), nullable=False, default="free")  # free | pro | team | api
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Everything a user owns goes with them
    context_entries = relationship("ContextEntry", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    snapshots = relationship("ContextSnapshot", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    personas = relationship("Persona", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    resumes = relationship("Resume", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)

    def to_dict(self):
        return {
            "id": self.id,
            "external_id": self.external_id,
            "email": self.email,
            "tier": self.tier,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

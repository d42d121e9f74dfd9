from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from groundwork.database import Base
from groundwork.utils.timestamp import utcnow


class Persona(Base):
    __tablename__ = "personas"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    emphasized_tags = Column(JSON, nullable=False, default=list)
    suppressed_tags = Column(JSON, nullable=False, default=list)
    tone_preference = Column(String(50), nullable=True)
    section_order = Column(JSON, nullable=True)  # e.g. ["experience", "project", "education"]
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="personas")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "emphasized_tags": list(self.emphasized_tags or []),
            "suppressed_tags": list(self.suppressed_tags or []),
            "tone_preference": self.tone_preference,
            "section_order": self.section_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

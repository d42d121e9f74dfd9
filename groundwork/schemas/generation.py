"""
Pydantic schemas for the generation collaborator's structured output.
Anything that does not validate against these is MalformedOutput.
"""
from typing import List
from pydantic import BaseModel, Field, field_validator


class CandidateBullet(BaseModel):
    """A generated bullet before grounding validation"""
    text: str = Field(..., min_length=1, max_length=600)
    source_entry_id: str = Field(..., min_length=1)
    section: str = Field("experience", min_length=1, max_length=50)
    line_estimate: int = Field(1, ge=1, le=2)
    jd_keywords_used: List[str] = Field(default_factory=list)

    @field_validator("text", "source_entry_id", "section")
    @classmethod
    def strip_whitespace(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class CandidateSet(BaseModel):
    bullets: List[CandidateBullet] = Field(default_factory=list)


class RewrittenBullet(BaseModel):
    text: str = Field(..., min_length=1, max_length=600)

"""
Pydantic schemas for parsed job descriptions.
Stored on Resume.jd_parsed as model_dump() output.
"""
from typing import List, Literal
from pydantic import BaseModel, Field

JDTone = Literal["aggressive_startup", "collaborative_enterprise", "research_oriented", "product_oriented"]

DEFAULT_TONE = "collaborative_enterprise"


class Requirement(BaseModel):
    """One requirement line; is_required is False for nice-to-haves"""
    text: str
    is_required: bool = True


class RoleSignals(BaseModel):
    is_startup: bool = False
    is_ic_focused: bool = True
    is_research: bool = False
    seniority: str = "unknown"  # junior | mid | senior | staff | principal | director | unknown


class KeywordEntry(BaseModel):
    keyword: str
    frequency: int = Field(..., ge=1)
    position_weight: float = Field(..., description="title=1.0, requirements=0.8, responsibilities=0.6, about=0.3")
    weighted_score: float = Field(..., description="frequency * position_weight")


class ParsedJD(BaseModel):
    title: str = ""
    hard_requirements: List[Requirement] = Field(default_factory=list)
    soft_signals: List[str] = Field(default_factory=list)
    role_signals: RoleSignals = Field(default_factory=RoleSignals)
    keyword_inventory: List[KeywordEntry] = Field(default_factory=list)
    detected_tone: JDTone = DEFAULT_TONE

    @property
    def required(self) -> List[Requirement]:
        return [r for r in self.hard_requirements if r.is_required]

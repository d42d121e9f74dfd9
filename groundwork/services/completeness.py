"""
Context completeness: how much usable material each resume section has.

A section's score is the mean of recency * impact over its live entries.
The overall score weighs sections by how much a resume leans on them, so a
missing experience section costs far more than a missing award.
"""
from typing import Any, Dict, List, Sequence

from groundwork.models.context_entry import ContextEntry

SECTION_WEIGHTS = {
    "experience": 0.35,
    "education": 0.15,
    "skill": 0.15,
    "project": 0.15,
    "publication": 0.05,
    "open_source": 0.05,
    "certification": 0.05,
    "award": 0.03,
    "extracurricular": 0.02,
}

# Impact below this reads as an unquantified bullet
QUANTIFIED_IMPACT = 0.5
MIN_EXPERIENCE_ENTRIES = 2


def section_status(score: float, entry_count: int) -> str:
    if entry_count == 0:
        return "missing"
    if score >= 0.8:
        return "strong"
    if score >= 0.5:
        return "moderate"
    if score >= 0.2:
        return "weak"
    return "missing"


def _label(section: str) -> str:
    return section.replace("_", " ")


def section_report(section: str, entries: Sequence[ContextEntry]) -> Dict[str, Any]:
    count = len(entries)
    if count:
        score = sum(float(e.recency_score or 0.0) * float(e.impact_score or 0.0) for e in entries) / count
        score = max(0.0, min(1.0, score))
    else:
        score = 0.0
    unquantified = sum(1 for e in entries if float(e.impact_score or 0.0) < QUANTIFIED_IMPACT)

    recommendations: List[str] = []
    if count == 0:
        recommendations.append(f"Add at least one {_label(section)} entry.")
    if unquantified:
        recommendations.append(
            f"{unquantified} {_label(section)} entries lack quantified metrics. Add numbers to show impact."
        )
    if section == "experience" and 0 < count < MIN_EXPERIENCE_ENTRIES:
        recommendations.append("Add more experience entries to give the generator more to choose from.")

    return {
        "section": section,
        "score": round(score, 4),
        "entry_count": count,
        "missing_quantification": unquantified,
        "status": section_status(score, count),
        "recommendations": recommendations,
    }


def compute_completeness_report(entries: Sequence[ContextEntry]) -> Dict[str, Any]:
    """
    Per-section health of the current context plus a weighted overall score.

    Tombstoned entries are ignored. Entry types outside SECTION_WEIGHTS get a
    section report but do not move the overall score.
    """
    by_section: Dict[str, List[ContextEntry]] = {section: [] for section in SECTION_WEIGHTS}
    for entry in entries:
        if entry.is_tombstone:
            continue
        by_section.setdefault(entry.entry_type, []).append(entry)

    sections = [section_report(section, items) for section, items in by_section.items()]

    weighted = sum(s["score"] * SECTION_WEIGHTS[s["section"]] for s in sections if s["section"] in SECTION_WEIGHTS)
    overall = weighted / sum(SECTION_WEIGHTS.values())

    return {
        "overall_score": round(max(0.0, min(1.0, overall)), 4),
        "total_entries": sum(s["entry_count"] for s in sections),
        "missing_sections": [s["section"] for s in sections if s["entry_count"] == 0],
        "sections": sections,
    }

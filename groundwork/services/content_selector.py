"""
Content selection: which snapshot entries the generator gets to see for a JD.

Entries are ranked per section by a combined score of recency, impact and
JD relevance, and each section keeps at most its limit. Selection decides
membership only; callers keep their own (persona) order for what survives.
"""
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from groundwork.models.context_entry import ContextEntry
from groundwork.schemas.jd import ParsedJD

RECENCY_WEIGHT = 0.5
IMPACT_WEIGHT = 0.3
RELEVANCE_WEIGHT = 0.2

SECTION_LIMITS = {
    "experience": 8,
    "project": 4,
    "open_source": 4,
}
DEFAULT_SECTION_LIMIT = 3


@dataclass
class Exclusion:
    entry_id: str
    entry_type: str
    score: float
    reason: str

    def to_dict(self):
        return {"entry_id": self.entry_id, "entry_type": self.entry_type, "score": self.score, "reason": self.reason}


def section_limit(entry_type: str) -> int:
    return SECTION_LIMITS.get(entry_type, DEFAULT_SECTION_LIMIT)


def compute_jd_relevance(entry: ContextEntry, parsed: ParsedJD) -> float:
    """
    Share of the JD's keyword weight the entry matches, in [0, 1].

    A keyword matches when it equals one of the entry's tags or appears in
    its raw text or rendered data.
    """
    total = sum(k.weighted_score for k in parsed.keyword_inventory)
    if total <= 0:
        return 0.0
    tags = {t.strip().lower() for t in (entry.tags or []) if t}
    haystack = " ".join([entry.raw_text or "", *(str(v) for v in (entry.data or {}).values())]).lower()
    matched = sum(
        k.weighted_score
        for k in parsed.keyword_inventory
        if k.keyword.lower() in tags or k.keyword.lower() in haystack
    )
    return min(1.0, matched / total)


def combined_score(entry: ContextEntry, parsed: ParsedJD) -> float:
    score = (
        RECENCY_WEIGHT * float(entry.recency_score or 0.0)
        + IMPACT_WEIGHT * float(entry.impact_score or 0.0)
        + RELEVANCE_WEIGHT * compute_jd_relevance(entry, parsed)
    )
    return round(max(0.0, min(1.0, score)), 4)


def select_content(
    entries: Sequence[ContextEntry],
    parsed: ParsedJD,
) -> Tuple[List[ContextEntry], List[Exclusion]]:
    """Return (selected entries in input order, exclusions). Ties go to the lower entry_id."""
    by_section: Dict[str, List[Tuple[float, ContextEntry]]] = {}
    for entry in entries:
        by_section.setdefault(entry.entry_type, []).append((combined_score(entry, parsed), entry))

    kept = set()
    exclusions: List[Exclusion] = []
    for entry_type, scored in by_section.items():
        limit = section_limit(entry_type)
        scored.sort(key=lambda pair: (-pair[0], pair[1].entry_id))
        for rank, (score, entry) in enumerate(scored):
            if rank < limit:
                kept.add(entry.entry_id)
            else:
                exclusions.append(Exclusion(
                    entry_id=entry.entry_id,
                    entry_type=entry_type,
                    score=score,
                    reason=f"Section limit reached ({limit} max for {entry_type})",
                ))

    return [e for e in entries if e.entry_id in kept], exclusions

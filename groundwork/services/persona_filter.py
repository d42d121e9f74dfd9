"""
Persona view over the current context: which entries are eligible and in
what order. Pure functions; both the snapshot compiler and the resume
compiler go through here so a persona means the same thing in both.
"""
from typing import Iterable, List, Optional, Sequence

from groundwork.models.context_entry import ContextEntry
from groundwork.models.persona import Persona

DEFAULT_SECTION_ORDER = (
    "experience",
    "project",
    "open_source",
    "education",
    "publication",
    "certification",
    "award",
    "skill",
    "extracurricular",
)


def _tags(values: Optional[Iterable[str]]) -> set:
    return {t.strip().lower() for t in (values or []) if t and t.strip()}


def is_suppressed(entry: ContextEntry, persona: Optional[Persona]) -> bool:
    """True if any entry tag is suppressed by the persona and the entry is not evergreen."""
    if persona is None or entry.flagged_evergreen:
        return False
    return bool(_tags(entry.tags) & _tags(persona.suppressed_tags))


def emphasis_score(entry: ContextEntry, persona: Optional[Persona]) -> int:
    """Number of the entry's tags the persona emphasizes."""
    if persona is None:
        return 0
    return len(_tags(entry.tags) & _tags(persona.emphasized_tags))


def sort_key(entry: ContextEntry, persona: Optional[Persona]):
    # entry_id makes the order total
    return (
        -emphasis_score(entry, persona),
        -float(entry.recency_score or 0.0),
        -float(entry.impact_score or 0.0),
        entry.entry_id,
    )


def filter_and_order(entries: Sequence[ContextEntry], persona: Optional[Persona] = None) -> List[ContextEntry]:
    """Drop tombstoned and suppressed entries, then order by emphasis, recency, impact."""
    eligible = [e for e in entries if not e.is_tombstone and not is_suppressed(e, persona)]
    return sorted(eligible, key=lambda e: sort_key(e, persona))


def order_sections(sections: Iterable[str], persona: Optional[Persona] = None) -> List[str]:
    """Persona section order first, then the default order, then anything else alphabetically."""
    present = set(sections)
    preferred = list((persona.section_order if persona and persona.section_order else [])) + list(DEFAULT_SECTION_ORDER)
    ordered = []
    for section in preferred:
        if section in present and section not in ordered:
            ordered.append(section)
    ordered.extend(sorted(present - set(ordered)))
    return ordered

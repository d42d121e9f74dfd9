"""
Non-blocking consistency checks run when an entry is appended.

Advisories never prevent an append; they are returned alongside the new
version so the client can ask the user to confirm.
"""
from typing import Any, Dict, List, Optional

from groundwork.models.context_entry import ContextEntry

CONTRIBUTION_MISMATCH = "contribution_type_mismatch"
DATE_OVERLAP = "date_overlap"
DUPLICATE_ENTRY = "duplicate_entry"

OPEN_END = "9999-12-31"


def _text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value.strip() if isinstance(value, str) and value.strip() else None


def _dates_overlap(start1: str, end1: Optional[str], start2: str, end2: Optional[str]) -> bool:
    # ISO strings compare chronologically
    return start1 <= (end2 or OPEN_END) and start2 <= (end1 or OPEN_END)


def check_for_conflicts(
    existing: List[ContextEntry],
    entry_id: str,
    entry_type: str,
    data: Dict[str, Any],
    contribution_type: str,
    raw_text: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Compare a new entry version against the user's other current entries."""
    warnings = []
    others = [e for e in existing if e.entry_id != entry_id and not e.is_tombstone]

    for other in others:
        if raw_text and other.raw_text and raw_text.strip() == other.raw_text.strip():
            warnings.append({
                "conflict_type": DUPLICATE_ENTRY,
                "existing_entry_id": other.entry_id,
                "severity": "warning",
                "description": "Another entry has identical text; consider appending a version to it instead.",
            })
        elif other.entry_type == entry_type and other.data == data:
            warnings.append({
                "conflict_type": DUPLICATE_ENTRY,
                "existing_entry_id": other.entry_id,
                "severity": "warning",
                "description": "Another entry has identical data; consider appending a version to it instead.",
            })

    if entry_type != "experience":
        return warnings

    company = _text(data, "company")
    role = _text(data, "role")
    start = _text(data, "date_start")
    end = _text(data, "date_end")

    for other in others:
        if other.entry_type != "experience":
            continue
        other_company = _text(other.data, "company")
        other_role = _text(other.data, "role")

        if (
            company and role and other_company and other_role
            and company.lower() == other_company.lower()
            and role.lower() == other_role.lower()
            and contribution_type != other.contribution_type
        ):
            warnings.append({
                "conflict_type": CONTRIBUTION_MISMATCH,
                "existing_entry_id": other.entry_id,
                "severity": "warning",
                "description": (
                    f"Existing entry at {other_company} ({other_role}) has contribution_type "
                    f"'{other.contribution_type}', new has '{contribution_type}'. Verify this is intentional."
                ),
            })

        other_start = _text(other.data, "date_start")
        if (
            start and other_start and other_company
            and (company or "").lower() != other_company.lower()
            and _dates_overlap(start, end, other_start, _text(other.data, "date_end"))
        ):
            warnings.append({
                "conflict_type": DATE_OVERLAP,
                "existing_entry_id": other.entry_id,
                "severity": "advisory",
                "description": (
                    f"Date range overlaps with existing entry at '{other_company}'. "
                    "If these were simultaneous roles, this may be intentional."
                ),
            })

    return warnings

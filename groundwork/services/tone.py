"""
Tone calibration: JD tone → verb guidance for the generation prompt.

Contribution type caps ownership language regardless of tone: a
team_member entry never gets sole-owner verbs, a reviewer only gets review
verbs.
"""
from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class ToneExamples:
    strong_verbs: tuple
    ownership_prefix: str
    avoid_verbs: tuple


TONE_EXAMPLES: Dict[str, ToneExamples] = {
    "aggressive_startup": ToneExamples(
        strong_verbs=("Architected", "Spearheaded", "Owned", "Drove", "Built", "Shipped", "Launched", "Led"),
        ownership_prefix="end-to-end ownership of",
        avoid_verbs=("assisted", "helped", "supported", "participated in"),
    ),
    "collaborative_enterprise": ToneExamples(
        strong_verbs=("Contributed to", "Partnered with", "Supported", "Enabled", "Collaborated on", "Facilitated"),
        ownership_prefix="as part of a team,",
        avoid_verbs=("architected", "spearheaded", "solely built", "owned end-to-end"),
    ),
    "research_oriented": ToneExamples(
        strong_verbs=("Investigated", "Designed and evaluated", "Published", "Proposed", "Analyzed", "Studied"),
        ownership_prefix="research into",
        avoid_verbs=("shipped", "launched", "moved fast", "disrupted"),
    ),
    "product_oriented": ToneExamples(
        strong_verbs=("Shipped", "Delivered", "Launched", "Improved", "Reduced friction for", "Enabled"),
        ownership_prefix="shipped",
        avoid_verbs=("investigated", "evaluated", "researched", "proposed"),
    ),
}

SOLE_OWNER_VERBS = frozenset({"architected", "spearheaded", "owned", "drove", "led", "built", "designed"})
REVIEWER_VERBS = ("Reviewed", "Evaluated", "Assessed", "Audited", "Analyzed")
FULL_OWNERSHIP_TYPES = frozenset({"sole_author", "solo", "lead", "primary_contributor"})


def get_tone_examples(tone: str) -> ToneExamples:
    return TONE_EXAMPLES.get(tone, TONE_EXAMPLES["collaborative_enterprise"])


def filter_verbs_for_contribution(verbs, contribution_type: str) -> List[str]:
    if contribution_type in FULL_OWNERSHIP_TYPES:
        return list(verbs)
    if contribution_type == "reviewer":
        return list(REVIEWER_VERBS)
    # team_member and anything unrecognised
    return [v for v in verbs if v.lower() not in SOLE_OWNER_VERBS]


def verbs_for_entry(tone: str, contribution_type: str) -> List[str]:
    return filter_verbs_for_contribution(get_tone_examples(tone).strong_verbs, contribution_type)

"""
Grounding validator.

A bullet's grounding score is the weighted share of its content terms that
also occur in the cited entry's canonical block:

    score = sum(w(t) for t in B & S) / sum(w(t) for t in B)

B and S are the stemmed, stopword-free term sets of the bullet and of the
source block. Numeric terms (40, p99, 3x) weigh 2.0 and other terms 1.0.
Resume action verbs (the tone-calibrated openers) are excluded from B. A
bullet with no content terms scores 0.0.

The score is bounded to [0, 1] and only grows as more bullet terms appear in
the source.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from groundwork.exceptions import UngroundedReference
from groundwork.utils.text import content_terms, is_numeric, stem

DEFAULT_THRESHOLD = 0.80
NUMERIC_WEIGHT = 2.0

ACTION_VERBS = frozenset(stem(v) for v in """
architected spearheaded owned drove built shipped launched led contributed partnered
supported enabled collaborated facilitated investigated designed evaluated published
proposed analyzed studied delivered improved reduced reviewed assessed audited developed
created implemented managed increased optimized established streamlined automated
""".split())


def _weight(term: str) -> float:
    return NUMERIC_WEIGHT if is_numeric(term) else 1.0


def bullet_terms(text: str) -> set:
    return content_terms(text, ignore=ACTION_VERBS)


def grounding_score(bullet_text: str, source_text: str) -> float:
    """Weighted containment of bullet terms in source terms, in [0, 1]."""
    bullet = bullet_terms(bullet_text)
    if not bullet:
        return 0.0
    source = content_terms(source_text)
    total = sum(_weight(t) for t in bullet)
    matched = sum(_weight(t) for t in bullet if t in source)
    return round(min(1.0, matched / total), 4)


def unsupported_terms(bullet_text: str, source_text: str) -> list:
    """Bullet terms missing from the source; fed back to the rewrite request."""
    source = content_terms(source_text)
    return sorted(t for t in bullet_terms(bullet_text) if t not in source)


@dataclass
class GroundingResult:
    source_entry_id: str
    score: float
    accepted: bool


class GroundingValidator:
    """Scores candidates against the canonical blocks of one snapshot's entries."""

    def __init__(self, blocks: Dict[str, str], threshold: float = DEFAULT_THRESHOLD):
        self.blocks = blocks
        self.threshold = threshold

    def source_text(self, source_entry_id: str) -> str:
        try:
            return self.blocks[source_entry_id]
        except KeyError:
            raise UngroundedReference(source_entry_id) from None

    def validate(self, bullet_text: str, source_entry_id: str) -> GroundingResult:
        """Raises UngroundedReference when the cited entry is not in the snapshot."""
        score = grounding_score(bullet_text, self.source_text(source_entry_id))
        return GroundingResult(source_entry_id, score, score >= self.threshold)

    def missing_terms(self, bullet_text: str, source_entry_id: str) -> Optional[list]:
        if source_entry_id not in self.blocks:
            return None
        return unsupported_terms(bullet_text, self.blocks[source_entry_id])

"""
Page layout: estimate how many lines each bullet wraps to and fit the
accepted bullets onto one page.

Widths are in em at the template's 11pt body size. Line counts come from a
greedy word wrap, the same way TeX fills a ragged-right paragraph, so they
track the rendered PDF closely enough to decide what to cut.

Fill verdicts, with fill_ratio = lines_used / usable_lines:
  - major_overflow:      fill_ratio > 1.05
  - minor_overflow:      fill_ratio > 1.00
  - too_much_whitespace: more than 8% of the page left empty
  - acceptable:          anything else

Overflow is resolved by dropping the least relevant bullets. Bullets are
never shortened here; a rewritten bullet would need grounding again.
"""
from typing import Any, Dict, List, Sequence, Tuple

from groundwork.schemas.jd import ParsedJD

TEXT_WIDTH_EM = 42.7
BULLET_INDENT_EM = 1.5
USABLE_LINES = 45

# Headline block, and the title plus spacing above each section
HEADER_LINES = 3
SECTION_HEADER_LINES = 2

MAX_OVERFLOW = 0.05
MAX_WHITESPACE = 0.08

SPACE_WIDTH = 0.25
AVERAGE_CHAR_WIDTH = 0.52
_NARROW = set("iljtf.,;:'!|()[]`")
_WIDE = set("mwMW@%")


def char_width(ch: str) -> float:
    if ch in _NARROW:
        return 0.3
    if ch in _WIDE:
        return 0.85
    if ch.isupper():
        return 0.65
    return AVERAGE_CHAR_WIDTH


def text_width(word: str) -> float:
    return sum(char_width(ch) for ch in word)


def estimate_lines(text: str, width_em: float = TEXT_WIDTH_EM - BULLET_INDENT_EM) -> int:
    """Lines `text` wraps to at `width_em`. Empty text takes no lines."""
    lines, current = 0, 0.0
    for word in text.split():
        w = text_width(word)
        if lines == 0:
            lines, current = 1, w
        elif current + SPACE_WIDTH + w > width_em:
            lines, current = lines + 1, w
        else:
            current += SPACE_WIDTH + w
    return lines


def lines_used(bullets: Sequence) -> int:
    sections = {b.section for b in bullets}
    return HEADER_LINES + SECTION_HEADER_LINES * len(sections) + sum(b.line_count for b in bullets)


def fill_verdict(fill_ratio: float) -> str:
    if fill_ratio > 1.0 + MAX_OVERFLOW:
        return "major_overflow"
    if fill_ratio > 1.0:
        return "minor_overflow"
    if 1.0 - fill_ratio > MAX_WHITESPACE:
        return "too_much_whitespace"
    return "acceptable"


def keyword_hits(text: str, parsed: ParsedJD) -> int:
    lowered = text.lower()
    return sum(1 for k in parsed.keyword_inventory if k.keyword.lower() in lowered)


def _relevance(bullet, parsed: ParsedJD) -> Tuple[int, float, int]:
    # Fewer JD keywords, then weaker grounding, then later position goes first
    return keyword_hits(bullet.bullet_text, parsed), float(bullet.grounding_score or 0.0), -bullet.position


def fit_to_page(
    bullets: Sequence,
    parsed: ParsedJD,
    usable_lines: int = USABLE_LINES,
) -> Tuple[List, List, Dict[str, Any]]:
    """
    Return (kept, removed, report) for bullets with .section, .position,
    .bullet_text, .grounding_score and .line_count.

    Kept bullets are renumbered so positions stay contiguous. The report
    records the verdict before and after trimming; on too_much_whitespace it
    names the most relevant one-line bullet as the one worth expanding.
    """
    kept = sorted(bullets, key=lambda b: b.position)
    initial_ratio = lines_used(kept) / usable_lines
    removed = []
    while kept and lines_used(kept) > usable_lines:
        weakest = min(kept, key=lambda b: _relevance(b, parsed))
        kept.remove(weakest)
        removed.append(weakest)

    for position, bullet in enumerate(kept):
        bullet.position = position

    used = lines_used(kept)
    fill_ratio = used / usable_lines
    verdict = fill_verdict(fill_ratio)
    report: Dict[str, Any] = {
        "lines_used": used,
        "usable_lines": usable_lines,
        "fill_ratio": round(fill_ratio, 4),
        "initial_verdict": fill_verdict(initial_ratio),
        "verdict": verdict,
        "removed": len(removed),
    }
    if verdict == "too_much_whitespace":
        one_liners = [b for b in kept if b.line_count == 1]
        if one_liners:
            report["expand_candidate"] = max(one_liners, key=lambda b: _relevance(b, parsed)).bullet_text
    return kept, removed, report

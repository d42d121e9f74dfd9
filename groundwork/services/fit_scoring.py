"""
Fit scoring: how well the accepted bullets cover the parsed JD.

Each requirement gets a strength in [0, 1], the best single bullet's
coverage of the requirement's content terms. The resume's fit_score
aggregates strengths under a policy:

  - linear:   plain mean over requirements
  - weighted: required items weigh 1.0, nice-to-haves 0.5

A JD with no extractable requirements falls back to its keyword inventory
(weighted policy uses each keyword's weighted_score).
"""
from typing import Any, Dict, List, Sequence, Tuple

from groundwork.schemas.jd import ParsedJD
from groundwork.utils.text import content_terms, stem

POLICIES = ("linear", "weighted")

STRONG_MATCH = 0.8
PARTIAL_MATCH = 0.4
PREFERRED_WEIGHT = 0.5

# (bullet_text, source_entry_id)
Evidence = Tuple[str, str]


def _best_coverage(terms: set, bullets: List[Tuple[set, str]]) -> Tuple[float, str]:
    best, evidence = 0.0, ""
    for bullet_terms, source_entry_id in bullets:
        coverage = len(terms & bullet_terms) / len(terms)
        if coverage > best:
            best, evidence = coverage, source_entry_id
    return round(best, 4), evidence


def build_recommendation(score: int, gaps: List[Dict[str, Any]]) -> str:
    top_gaps = ", ".join(g["dimension"] for g in gaps[:3])
    if score >= 80:
        return "Strong fit. The accepted bullets directly cover the key requirements."
    if score >= 60:
        return f"Moderate fit ({score}/100). Consider adding context for: {top_gaps}."
    if not gaps:
        return f"Low fit ({score}/100). Coverage is partial across the board."
    return f"Low fit ({score}/100). Significant gaps: {top_gaps}. Consider adding context before applying."


def compute_fit(
    bullets: Sequence[Evidence],
    parsed: ParsedJD,
    policy: str = "weighted",
) -> Tuple[float, Dict[str, Any]]:
    """Return (fit_score in [0, 1], fit_report)."""
    if policy not in POLICIES:
        raise ValueError(f"Unknown fit policy: {policy}")

    bullet_terms = [(content_terms(text), source_entry_id) for text, source_entry_id in bullets]

    # (dimension, terms, weight, is_required)
    dimensions = []
    basis = "requirements"
    for req in parsed.hard_requirements:
        terms = content_terms(req.text)
        if not terms:
            continue
        weight = 1.0 if (policy == "linear" or req.is_required) else PREFERRED_WEIGHT
        dimensions.append((req.text, terms, weight, req.is_required))

    if not dimensions:
        basis = "keywords"
        for kw in parsed.keyword_inventory:
            weight = 1.0 if policy == "linear" else kw.weighted_score
            dimensions.append((kw.keyword, {stem(kw.keyword)}, weight, True))

    strong, partial, gaps = [], [], []
    total_weight = 0.0
    total_score = 0.0
    for dimension, terms, weight, is_required in dimensions:
        strength, evidence = _best_coverage(terms, bullet_terms)
        total_weight += weight
        total_score += strength * weight
        match = {
            "dimension": dimension,
            "strength": strength,
            "is_required": is_required,
            "evidence_entry_id": evidence or None,
        }
        if strength >= STRONG_MATCH:
            strong.append(match)
        elif strength >= PARTIAL_MATCH:
            partial.append(match)
        else:
            gaps.append(match)

    fit_score = round(total_score / total_weight, 4) if total_weight > 0 else 0.0
    overall = round(fit_score * 100)
    report = {
        "policy": policy,
        "basis": basis,
        "overall_score": overall,
        "strong_matches": strong,
        "partial_matches": partial,
        "gaps": gaps,
        "recommendation": (
            build_recommendation(overall, gaps)
            if dimensions
            else "No requirements or keywords found in the job description; fit cannot be scored."
        ),
    }
    return fit_score, report

import pytest

from groundwork.schemas.jd import ParsedJD, KeywordEntry, Requirement
from groundwork.services.fit_scoring import compute_fit

PARSED = ParsedJD(
    title="Senior Backend Engineer",
    hard_requirements=[
        Requirement(text="5+ years of Python"),
        Requirement(text="PostgreSQL"),
        Requirement(text="Redis"),
        Requirement(text="Kafka"),
        Requirement(text="Kubernetes", is_required=False),
        Requirement(text="Terraform", is_required=False),
    ],
)

BULLETS = [("Built Kafka pipelines in Python for 5 years", "e1")]


def test_weighted_policy_halves_nice_to_haves() -> None:
    # two of four required items covered; nice-to-haves weigh 0.5 each
    score, report = compute_fit(BULLETS, PARSED, "weighted")
    assert score == pytest.approx(2 / 5, abs=1e-4)
    assert report["policy"] == "weighted"
    assert report["basis"] == "requirements"
    assert report["overall_score"] == 40
    assert {m["dimension"] for m in report["strong_matches"]} == {"5+ years of Python", "Kafka"}
    assert all(m["evidence_entry_id"] == "e1" for m in report["strong_matches"])
    assert len(report["gaps"]) == 4


def test_linear_policy_is_plain_mean() -> None:
    score, report = compute_fit(BULLETS, PARSED, "linear")
    assert score == pytest.approx(2 / 6, abs=1e-4)
    assert report["policy"] == "linear"


def test_no_bullets_scores_zero() -> None:
    score, report = compute_fit([], PARSED)
    assert score == 0.0
    assert report["strong_matches"] == []
    assert report["recommendation"].startswith("Low fit")


def test_keywords_used_when_no_requirements() -> None:
    parsed = ParsedJD(
        title="Engineer",
        keyword_inventory=[
            KeywordEntry(keyword="python", frequency=2, position_weight=1.0, weighted_score=2.0),
            KeywordEntry(keyword="rust", frequency=1, position_weight=0.5, weighted_score=0.5),
        ],
    )
    score, report = compute_fit([("Wrote Python services", "e1")], parsed, "weighted")
    assert report["basis"] == "keywords"
    assert score == pytest.approx(2.0 / 2.5, abs=1e-4)

    linear, _ = compute_fit([("Wrote Python services", "e1")], parsed, "linear")
    assert linear == pytest.approx(0.5)


def test_empty_jd_is_unscorable() -> None:
    score, report = compute_fit(BULLETS, ParsedJD())
    assert score == 0.0
    assert "cannot be scored" in report["recommendation"]


def test_unknown_policy_raises() -> None:
    with pytest.raises(ValueError):
        compute_fit(BULLETS, PARSED, "quadratic")

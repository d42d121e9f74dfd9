from types import SimpleNamespace

from groundwork.schemas.jd import KeywordEntry, ParsedJD
from groundwork.services.layout import estimate_lines, fill_verdict, fit_to_page

JD = ParsedJD(keyword_inventory=[KeywordEntry(keyword="kafka", frequency=2, position_weight=0.8, weighted_score=1.6)])


def bullet(position, text, score=0.9, lines=1, section="experience"):
    return SimpleNamespace(
        position=position, bullet_text=text, grounding_score=score, line_count=lines, section=section
    )


def test_greedy_wrap_counts_lines() -> None:
    assert estimate_lines("") == 0
    assert estimate_lines(" ".join(["abcde"] * 14)) == 1
    assert estimate_lines(" ".join(["abcde"] * 15)) == 2
    assert estimate_lines(" ".join(["abcde"] * 30)) == 3


def test_wide_letters_wrap_sooner() -> None:
    narrow = " ".join(["illicit"] * 12)
    wide = " ".join(["MWMWMWM"] * 12)
    assert estimate_lines(narrow) < estimate_lines(wide)


def test_fill_verdicts() -> None:
    assert fill_verdict(1.06) == "major_overflow"
    assert fill_verdict(1.04) == "minor_overflow"
    assert fill_verdict(0.95) == "acceptable"
    assert fill_verdict(1.0) == "acceptable"
    assert fill_verdict(0.9) == "too_much_whitespace"


def test_overflow_drops_least_relevant_bullets() -> None:
    bullets = [
        bullet(0, "Ran Kafka pipelines", 0.9, lines=2),
        bullet(1, "Wrote the runbook", 0.95, lines=2),
        bullet(2, "Fixed flaky tests", 0.85, lines=2),
        bullet(3, "Built Kafka consumers", 0.9, lines=2),
    ]
    # 3 header + 2 section + 8 bullet lines on a 10 line page
    kept, removed, report = fit_to_page(bullets, JD, usable_lines=10)

    assert [b.bullet_text for b in removed] == ["Fixed flaky tests", "Wrote the runbook"]
    assert [(b.position, b.bullet_text) for b in kept] == [(0, "Ran Kafka pipelines"), (1, "Built Kafka consumers")]
    assert report["initial_verdict"] == "major_overflow"
    assert report["lines_used"] == 9
    assert report["removed"] == 2
    assert report["verdict"] == "too_much_whitespace"
    # no one-line bullet to expand
    assert "expand_candidate" not in report


def test_sparse_page_names_a_bullet_to_expand() -> None:
    bullets = [bullet(0, "Wrote the runbook", 0.95), bullet(1, "Built Kafka consumers", 0.9)]
    kept, removed, report = fit_to_page(bullets, JD)

    assert removed == []
    assert len(kept) == 2
    assert report["verdict"] == "too_much_whitespace"
    assert report["expand_candidate"] == "Built Kafka consumers"


def test_full_page_is_left_alone() -> None:
    bullets = [bullet(i, f"Shipped feature {i}", section="project" if i % 2 else "experience") for i in range(4)]
    # 3 header + 2 sections * 2 + 4 bullet lines
    kept, removed, report = fit_to_page(bullets, JD, usable_lines=11)

    assert removed == []
    assert report["verdict"] == "acceptable"
    assert report["fill_ratio"] == 1.0

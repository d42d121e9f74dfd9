import pytest

from groundwork.exceptions import UngroundedReference
from groundwork.services.grounding import GroundingValidator, grounding_score, unsupported_terms
from groundwork.utils.text import content_terms, stem, tokenize

SOURCE = """## experience [e1@v1]
- company: Acme
- highlights: Cut p99 latency 40% for the billing API
"""


def test_tokenize_keeps_language_names_and_numbers() -> None:
    assert tokenize("C++ and C# at 40%") == ["c++", "and", "c#", "at", "40"]


def test_stem_collapses_inflections() -> None:
    assert stem("reduced") == stem("reduces") == stem("reduce")
    assert stem("companies") == "company"
    assert stem("class") == "class"
    assert stem("api") == "api"
    assert stem("2024") == "2024"


def test_content_terms_drops_stopwords() -> None:
    assert content_terms("the billing of the API") == {"bill", "api"}


def test_supported_bullet_scores_one() -> None:
    assert grounding_score("Reduced p99 latency by 40% on the billing API", SOURCE) == 1.0


def test_fabricated_number_falls_below_threshold() -> None:
    # 90 is unsupported and numeric terms weigh double: 5 of 7
    score = grounding_score("Reduced p99 latency by 90% on the billing API", SOURCE)
    assert score == pytest.approx(5 / 7, abs=1e-4)
    assert score < 0.80
    assert unsupported_terms("Reduced p99 latency by 90% on the billing API", SOURCE) == ["90"]


def test_bullet_with_only_action_verbs_scores_zero() -> None:
    assert grounding_score("Led", SOURCE) == 0.0


def test_score_stays_in_unit_interval() -> None:
    for bullet in ("", "Acme Acme Acme", "completely unrelated words here", "p99 40"):
        assert 0.0 <= grounding_score(bullet, SOURCE) <= 1.0


def test_validator_applies_threshold() -> None:
    validator = GroundingValidator({"e1": SOURCE}, threshold=0.80)
    assert validator.validate("Cut p99 latency 40% for the billing API", "e1").accepted
    assert not validator.validate("Cut p99 latency 90% for the billing API", "e1").accepted


def test_validator_rejects_citation_outside_snapshot() -> None:
    validator = GroundingValidator({"e1": SOURCE})
    with pytest.raises(UngroundedReference) as exc_info:
        validator.validate("Cut p99 latency", "e-missing")
    assert exc_info.value.source_entry_id == "e-missing"
    assert validator.missing_terms("Cut p99 latency", "e-missing") is None

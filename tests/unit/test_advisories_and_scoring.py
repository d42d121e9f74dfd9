from datetime import date

import pytest

from groundwork.models.context_entry import ContextEntry
from groundwork.services.context_advisories import (
    CONTRIBUTION_MISMATCH,
    DATE_OVERLAP,
    DUPLICATE_ENTRY,
    check_for_conflicts,
)
from groundwork.services.scoring import compute_recency_score, parse_entry_date


def existing(entry_id, data, entry_type="experience", contribution_type="team_member", raw_text=None):
    return ContextEntry(
        entry_id=entry_id,
        version=1,
        entry_type=entry_type,
        data=data,
        contribution_type=contribution_type,
        raw_text=raw_text,
    )


def test_contribution_mismatch_for_same_role() -> None:
    current = [existing("e1", {"company": "Acme", "role": "Engineer"}, contribution_type="lead")]
    advisories = check_for_conflicts(current, "e2", "experience", {"company": "acme", "role": "engineer"}, "team_member")
    assert [a["conflict_type"] for a in advisories] == [CONTRIBUTION_MISMATCH]
    assert advisories[0]["existing_entry_id"] == "e1"


def test_overlapping_dates_at_another_company() -> None:
    current = [existing("e1", {"company": "Acme", "date_start": "2020-01", "date_end": "2022-06"})]
    overlapping = {"company": "Globex", "date_start": "2022-01", "date_end": "present"}
    disjoint = {"company": "Globex", "date_start": "2023-01"}
    assert [a["conflict_type"] for a in check_for_conflicts(current, "e2", "experience", overlapping, "lead")] == [DATE_OVERLAP]
    assert check_for_conflicts(current, "e2", "experience", disjoint, "lead") == []


def test_duplicate_text_or_data() -> None:
    current = [existing("e1", {"name": "Kafka"}, entry_type="skill", raw_text="Kafka streams")]
    by_data = check_for_conflicts(current, "e2", "skill", {"name": "Kafka"}, "team_member")
    by_text = check_for_conflicts(current, "e2", "skill", {"name": "Kafka Streams"}, "team_member", raw_text="Kafka streams ")
    assert [a["conflict_type"] for a in by_data] == [DUPLICATE_ENTRY]
    assert [a["conflict_type"] for a in by_text] == [DUPLICATE_ENTRY]


def test_revising_an_entry_does_not_conflict_with_itself() -> None:
    current = [existing("e1", {"company": "Acme", "role": "Engineer"}, contribution_type="lead")]
    assert check_for_conflicts(current, "e1", "experience", {"company": "Acme", "role": "Engineer"}, "team_member") == []


@pytest.mark.parametrize(
    "value, expected",
    [("2021-03-15", date(2021, 3, 15)), ("2021-03", date(2021, 3, 1)), ("present", None), ("", None), ("March", None)],
)
def test_parse_entry_date(value, expected) -> None:
    assert parse_entry_date(value) == expected


def test_recency_halves_every_half_life() -> None:
    today = date(2024, 7, 1)
    assert compute_recency_score(None, today=today) == 1.0
    assert compute_recency_score(date(2020, 1, 1), flagged_evergreen=True, today=today) == 1.0
    assert compute_recency_score(date(2023, 1, 1), today=today) == pytest.approx(0.5)
    assert compute_recency_score(date(2021, 7, 1), today=today) == pytest.approx(0.25)

import asyncio
import json

import pytest

from groundwork.exceptions import MalformedOutput
from groundwork.schemas.generation import CandidateBullet
from groundwork.schemas.jd import ParsedJD
from groundwork.services.generation import (
    EntryContext,
    ExtractiveGenerator,
    PromptContext,
    build_generation_prompt,
    parse_candidates,
    parse_rewrite,
)


def make_context():
    return PromptContext(
        snapshot_text="",
        tone="product_oriented",
        entries=[
            EntryContext(
                entry_id="acme",
                entry_type="experience",
                contribution_type="lead",
                block="[acme@v1] experience\n- Cut p99 latency 40% for the billing API",
                data={
                    "highlights": ["Cut p99 latency 40% for the billing API."],
                    "description": "Ran the on-call rotation. Cut p99 latency 40% for the billing API.",
                },
                allowed_verbs=["Shipped", "Delivered"],
            ),
            EntryContext(
                entry_id="kafka",
                entry_type="skill",
                contribution_type="team_member",
                block="[kafka@v1] skill",
                data={"name": "Kafka"},
            ),
        ],
    )


def test_parse_candidates_accepts_object_or_list() -> None:
    payload = [{"text": " Shipped billing API ", "source_entry_id": "acme"}]
    wrapped = parse_candidates(json.dumps({"bullets": payload}))
    bare = parse_candidates(json.dumps(payload))
    assert wrapped == bare
    assert wrapped[0].text == "Shipped billing API"
    assert wrapped[0].section == "experience"
    assert wrapped[0].line_estimate == 1


@pytest.mark.parametrize(
    "content",
    [
        None,
        "",
        "not json",
        json.dumps({"bullets": [{"text": "no citation"}]}),
        json.dumps({"bullets": [{"text": "   ", "source_entry_id": "acme"}]}),
        json.dumps({"bullets": [{"text": "x", "source_entry_id": "acme", "line_estimate": 3}]}),
    ],
)
def test_parse_candidates_rejects_malformed_output(content) -> None:
    with pytest.raises(MalformedOutput):
        parse_candidates(content)


def test_parse_rewrite() -> None:
    assert parse_rewrite('{"text": " Cut latency 40% "}') == "Cut latency 40%"
    with pytest.raises(MalformedOutput):
        parse_rewrite('{"bullet": "x"}')


def test_extractive_generator_lifts_sentences_with_allowed_verb() -> None:
    bullets = asyncio.run(ExtractiveGenerator().generate(make_context(), ParsedJD()))
    assert [(b.text, b.source_entry_id, b.section) for b in bullets] == [
        ("Shipped cut p99 latency 40% for the billing API", "acme", "experience"),
        ("Shipped ran the on-call rotation", "acme", "experience"),
    ]


def test_extractive_rewrite_falls_back_to_source_wording() -> None:
    candidate = CandidateBullet(text="Cut latency 90%", source_entry_id="acme")
    source = "[acme@v1] experience\n- Cut p99 latency 40% for the billing API"
    text = asyncio.run(ExtractiveGenerator().rewrite(candidate, source, ParsedJD(), 1))
    assert text == "Cut p99 latency 40% for the billing API"


def test_generation_prompt_lists_entries_and_verbs() -> None:
    prompt = build_generation_prompt(make_context(), ParsedJD(title="Backend Engineer"))
    assert '"entry_id": "acme"' in prompt
    assert '"Shipped"' in prompt
    assert "Backend Engineer" in prompt
    assert "investigated" in prompt  # product tone avoids research verbs

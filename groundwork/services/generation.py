"""
Generation collaborator: snapshot + parsed JD → candidate bullets.

OpenAIGenerator is the production client. ExtractiveGenerator is the
TEST_MODE stand-in: it lifts sentences straight out of the entries, so its
output is deterministic and grounded without a model call.

Both raise GenerationUnavailable when the model cannot be reached and
MalformedOutput when the response does not match the bullet schema; the
service gateway retries both.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, APIError
from pydantic import ValidationError

from groundwork.config import get_settings
from groundwork.exceptions import GenerationUnavailable, MalformedOutput
from groundwork.schemas.generation import CandidateBullet, CandidateSet, RewrittenBullet
from groundwork.schemas.jd import ParsedJD
from groundwork.services.tone import get_tone_examples
from groundwork.utils.logger import logger

MAX_BULLETS_PER_ENTRY = 2


@dataclass
class EntryContext:
    entry_id: str
    entry_type: str
    contribution_type: str
    block: str
    data: Dict[str, Any] = field(default_factory=dict)
    raw_text: Optional[str] = None
    allowed_verbs: List[str] = field(default_factory=list)


@dataclass
class PromptContext:
    snapshot_text: str
    entries: List[EntryContext]
    tone: str
    persona_name: Optional[str] = None
    # Snapshot entries left out by section limits, with the reason
    excluded: List[Dict[str, Any]] = field(default_factory=list)


class GenerationClient:
    async def generate(self, prompt_context: PromptContext, jd_parsed: ParsedJD) -> List[CandidateBullet]:
        raise NotImplementedError

    async def rewrite(
        self,
        candidate: CandidateBullet,
        source_text: str,
        jd_parsed: ParsedJD,
        attempt: int,
        missing_terms: Optional[List[str]] = None,
    ) -> str:
        raise NotImplementedError


def parse_candidates(content: Optional[str]) -> List[CandidateBullet]:
    """Validate a model response: {"bullets": [...]} or a bare list."""
    if not content:
        raise MalformedOutput("Empty response from generation model", raw=content)
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"Response is not JSON: {e}", raw=content) from e
    if isinstance(payload, list):
        payload = {"bullets": payload}
    try:
        return CandidateSet.model_validate(payload).bullets
    except ValidationError as e:
        raise MalformedOutput(f"Response does not match bullet schema: {e.error_count()} errors", raw=content) from e


def parse_rewrite(content: Optional[str]) -> str:
    try:
        return RewrittenBullet.model_validate(json.loads(content or "")).text.strip()
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedOutput(f"Rewrite response does not match schema: {e}", raw=content) from e


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

GENERATION_SYSTEM = (
    "You are an expert resume writer generating factual, grounded resume bullets "
    "from verified professional context. Respond with a JSON object only. "
    "Do NOT invent facts, figures, tools or outcomes not present in the context entries."
)

REWRITE_SYSTEM = (
    "You tighten resume bullets so that every claim is supported by the given source entry. "
    "Respond with a JSON object only."
)


def build_generation_prompt(prompt_context: PromptContext, jd_parsed: ParsedJD) -> str:
    tone = get_tone_examples(prompt_context.tone)
    entries = [
        {
            "entry_id": e.entry_id,
            "section": e.entry_type,
            "contribution_type": e.contribution_type,
            "allowed_verbs": e.allowed_verbs,
            "source": e.block,
        }
        for e in prompt_context.entries
    ]
    keywords = [k.keyword for k in jd_parsed.keyword_inventory[:15]]
    requirements = [r.text for r in jd_parsed.hard_requirements]
    return f"""Write resume bullets for the role "{jd_parsed.title}".

TONE: {prompt_context.tone}. Avoid these verbs: {", ".join(tone.avoid_verbs)}.
Each entry lists the only opening verbs allowed for it (its contribution type limits ownership language).

CONTEXT ENTRIES (the only source of truth):
{json.dumps(entries, indent=2)}

ROLE REQUIREMENTS:
{json.dumps(requirements)}

KEYWORDS to use where the context supports them (never force-fit):
{json.dumps(keywords)}

Return {{"bullets": [{{"text": "...", "source_entry_id": "<entry_id from above>", "section": "<section>", "line_estimate": 1, "jd_keywords_used": []}}]}}

RULES:
1. Every bullet cites exactly one entry_id from the list above.
2. At most {MAX_BULLETS_PER_ENTRY} bullets per entry; line_estimate is 1 or 2.
3. Use only facts and numbers that appear in the cited entry's source text.
4. Skip entries with nothing relevant to this role."""


def build_rewrite_prompt(candidate: CandidateBullet, source_text: str, attempt: int, missing_terms: Optional[List[str]]) -> str:
    unsupported = ", ".join(missing_terms or []) or "(none listed)"
    return f"""The bullet below cites a source entry but makes claims the entry does not support.
Rewrite it using only words, facts and numbers present in the source. Attempt {attempt}.

SOURCE ENTRY:
{source_text}

BULLET:
{candidate.text}

UNSUPPORTED TERMS: {unsupported}

Return {{"text": "<rewritten bullet>"}}"""


# ---------------------------------------------------------------------------
# OpenAI client
# ---------------------------------------------------------------------------

class OpenAIGenerator(GenerationClient):
    """Bullet generation with OpenAI chat completions in JSON mode"""

    def __init__(self, api_key: str, model: str):
        if not api_key:
            raise GenerationUnavailable(
                "OPENAI_API_KEY not set. Set it in the environment, or set TEST_MODE=true "
                "to use the extractive generator."
            )
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model

    async def _complete(self, system: str, prompt: str, temperature: float) -> Optional[str]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=temperature,
                max_tokens=3000,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except APIError as e:
            raise GenerationUnavailable(f"OpenAI request failed: {e}") from e
        return response.choices[0].message.content

    async def generate(self, prompt_context: PromptContext, jd_parsed: ParsedJD) -> List[CandidateBullet]:
        content = await self._complete(GENERATION_SYSTEM, build_generation_prompt(prompt_context, jd_parsed), 0.4)
        bullets = parse_candidates(content)
        logger.info("generation.candidates", extra={"accepted": len(bullets)})
        return bullets

    async def rewrite(
        self,
        candidate: CandidateBullet,
        source_text: str,
        jd_parsed: ParsedJD,
        attempt: int,
        missing_terms: Optional[List[str]] = None,
    ) -> str:
        content = await self._complete(
            REWRITE_SYSTEM,
            build_rewrite_prompt(candidate, source_text, attempt, missing_terms),
            0.0,
        )
        return parse_rewrite(content)


# ---------------------------------------------------------------------------
# Extractive generator (TEST_MODE)
# ---------------------------------------------------------------------------

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _entry_sentences(entry: EntryContext) -> List[str]:
    sentences = []
    for key in ("highlights", "achievements", "bullets"):
        values = entry.data.get(key)
        if isinstance(values, list):
            sentences.extend(v.strip() for v in values if isinstance(v, str) and v.strip())
    description = entry.data.get("description")
    if isinstance(description, str):
        sentences.extend(s.strip() for s in _SENTENCE_RE.split(description) if s.strip())
    if entry.raw_text:
        sentences.extend(s.strip() for s in _SENTENCE_RE.split(entry.raw_text) if s.strip())
    seen = []
    for s in sentences:
        s = s.rstrip(".")
        if s and s not in seen:
            seen.append(s)
    return seen


def _lead_with(verb: Optional[str], sentence: str) -> str:
    if not verb:
        return sentence
    return f"{verb} {sentence[0].lower()}{sentence[1:]}" if sentence else verb


class ExtractiveGenerator(GenerationClient):
    """Deterministic generator: entry sentences prefixed with a permitted verb"""

    async def generate(self, prompt_context: PromptContext, jd_parsed: ParsedJD) -> List[CandidateBullet]:
        bullets = []
        for entry in prompt_context.entries:
            verb = entry.allowed_verbs[0] if entry.allowed_verbs else None
            for sentence in _entry_sentences(entry)[:MAX_BULLETS_PER_ENTRY]:
                bullets.append(CandidateBullet(
                    text=_lead_with(verb, sentence),
                    source_entry_id=entry.entry_id,
                    section=entry.entry_type,
                ))
        return bullets

    async def rewrite(
        self,
        candidate: CandidateBullet,
        source_text: str,
        jd_parsed: ParsedJD,
        attempt: int,
        missing_terms: Optional[List[str]] = None,
    ) -> str:
        # Fall back to the source's own wording
        lines = [l.strip("- ").strip() for l in source_text.splitlines() if l.strip() and not l.startswith("#")]
        return lines[-1] if lines else candidate.text


def get_generator() -> GenerationClient:
    settings = get_settings()
    if settings.test_mode:
        return ExtractiveGenerator()
    return OpenAIGenerator(settings.openai_api_key, settings.openai_model)

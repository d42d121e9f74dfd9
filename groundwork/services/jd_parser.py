"""
Deterministic job description parser.

Splits the text into sections by their headers (inline "Required: ..." labels
included), extracts requirement items, weights keywords by where they appear
and picks a tone from cue-word counts. Same input, same ParsedJD.
"""
import re
from collections import Counter
from typing import Dict, List, Tuple

from groundwork.schemas.jd import ParsedJD, Requirement, RoleSignals, KeywordEntry, DEFAULT_TONE
from groundwork.utils.text import tokenize, is_numeric, STOPWORDS

MAX_KEYWORDS = 30

POSITION_WEIGHTS = {
    "title": 1.0,
    "requirements": 0.8,
    "preferred": 0.8,
    "responsibilities": 0.6,
    "body": 0.5,
    "about": 0.3,
}

SECTION_LABELS = [
    (r"requirements|required|must[- ]haves?|qualifications|what you(?:'ll)? need|you have", "requirements"),
    (r"preferred|nice[- ]to[- ]haves?|bonus(?: points)?|pluses", "preferred"),
    (r"responsibilities|you will|what you(?:'ll)? do|the role|duties", "responsibilities"),
    (r"about(?: us| the company| the team)?|who we are|company", "about"),
]

_LABEL_RE = re.compile(
    r"(?i)(?:^|(?<=[\s.;]))(" + "|".join(pattern for pattern, _ in SECTION_LABELS) + r")\s*:"
)

# Regex fragments per tone, anchored at a word start
TONE_CUES: Dict[str, Tuple[str, ...]] = {
    "aggressive_startup": (
        "fast-paced", "move fast", r"own(?:er|ership)?\b", "drive", "spearhead", "disrupt",
        "startup", "scrappy", "hustle", "zero to", "end-to-end",
    ),
    "collaborative_enterprise": (
        "collaborat", "partner", "contribut", "cross-functional", "stakeholder",
        "enterprise", "support", "global",
    ),
    "research_oriented": (
        "research", "investigat", "publish", "publication", "novel", "phd", "evaluat",
        "propos", "paper", "experiment",
    ),
    "product_oriented": (
        r"ship(?:s|ped|ping)?\b", "launch", "deliver", "user experience", "customer", r"products?\b", "end users",
        "roadmap",
    ),
}

# Ties resolve in this order
TONE_PRIORITY = ("collaborative_enterprise", "aggressive_startup", "product_oriented", "research_oriented")

JD_STOPWORDS = frozenset({
    "experience", "years", "year", "required", "requirements", "preferred", "plus", "work",
    "working", "ability", "strong", "knowledge", "skills", "role", "team", "join", "looking",
    "including", "etc", "using", "across", "well", "new", "nice", "bonus", "must", "responsibilities",
    "qualifications", "company", "about", "like", "one", "help", "make",
})

SENIORITY_TITLES = [
    (r"\bintern\b|\bjunior\b|\bjr\.?\b|\bentry[- ]level\b|\bassociate\b", "junior"),
    (r"\bprincipal\b|\bdistinguished\b", "principal"),
    (r"\bstaff\b", "staff"),
    (r"\bdirector\b|\bhead of\b|\bvp\b|\bvice president\b", "director"),
    (r"\bsenior\b|\bsr\.?\b|\blead\b", "senior"),
    (r"\bmid[- ]level\b|\bii\b", "mid"),
]

_YEARS_RE = re.compile(r"(\d+)\s*\+?\s*years?")
_ITEM_SPLIT_RE = re.compile(r"\n|;|(?<=[a-z0-9)])\.\s+|^\s*[-*•]\s*", re.MULTILINE)
_FILLER_SUFFIX_RE = re.compile(r"(?i)\s*(?:\(?(?:is |are )?(?:required|preferred|a plus|a bonus|nice to have)\)?)\.?$")


def _label_section(label: str) -> str:
    for pattern, section in SECTION_LABELS:
        if re.fullmatch(pattern, label.strip(), flags=re.IGNORECASE):
            return section
    return "body"


def split_sections(jd_text: str) -> List[Tuple[str, str]]:
    """[(section, text)] in document order. The first non-empty line is the title."""
    lines = [line.strip() for line in (jd_text or "").splitlines()]
    lines = [line for line in lines if line]
    if not lines:
        return []

    segments = [("title", lines[0])]
    current = "body"
    for line in lines[1:]:
        position = 0
        for match in _LABEL_RE.finditer(line):
            before = line[position:match.start()].strip()
            if before:
                segments.append((current, before))
            current = _label_section(match.group(1))
            position = match.end()
        rest = line[position:].strip()
        if rest:
            segments.append((current, rest))
    return segments


def _split_items(text: str) -> List[str]:
    items = []
    for piece in _ITEM_SPLIT_RE.split(text):
        piece = (piece or "").strip(" .-*•\t")
        if not piece:
            continue
        parts = [p.strip(" .") for p in piece.split(",")]
        # A comma list of short phrases is a list of separate items
        if len(parts) > 1 and all(0 < len(p.split()) <= 4 for p in parts):
            items.extend(parts)
        else:
            items.append(piece)
    cleaned = []
    for item in items:
        item = _FILLER_SUFFIX_RE.sub("", item).strip(" .")
        if item and item not in cleaned:
            cleaned.append(item)
    return cleaned


def extract_requirements(segments: List[Tuple[str, str]]) -> Tuple[List[Requirement], List[str]]:
    requirements: List[Requirement] = []
    soft_signals: List[str] = []
    for section, text in segments:
        if section == "requirements":
            requirements.extend(Requirement(text=item, is_required=True) for item in _split_items(text))
        elif section == "preferred":
            for item in _split_items(text):
                requirements.append(Requirement(text=item, is_required=False))
                soft_signals.append(item)

    if not any(r.is_required for r in requirements):
        # No labelled section: fall back to sentences that state a requirement
        for section, text in segments:
            if section in ("title", "about", "preferred"):
                continue
            for item in _split_items(text):
                lowered = item.lower()
                if "required" in lowered or "must" in lowered or _YEARS_RE.search(lowered):
                    requirements.append(Requirement(text=item, is_required=True))
    return requirements, soft_signals


def extract_keywords(segments: List[Tuple[str, str]]) -> List[KeywordEntry]:
    frequency: Counter = Counter()
    weight: Dict[str, float] = {}
    for section, text in segments:
        section_weight = POSITION_WEIGHTS.get(section, POSITION_WEIGHTS["body"])
        for token in tokenize(text):
            if token in STOPWORDS or token in JD_STOPWORDS or len(token) < 2 or is_numeric(token):
                continue
            frequency[token] += 1
            weight[token] = max(weight.get(token, 0.0), section_weight)

    entries = [
        KeywordEntry(
            keyword=token,
            frequency=count,
            position_weight=weight[token],
            weighted_score=round(count * weight[token], 4),
        )
        for token, count in frequency.items()
    ]
    entries.sort(key=lambda k: (-k.weighted_score, k.keyword))
    return entries[:MAX_KEYWORDS]


def _count_cue(text: str, cue: str) -> int:
    return len(re.findall(r"\b(?:" + cue + ")", text))


def detect_tone(jd_text: str) -> str:
    lowered = (jd_text or "").lower()
    scores = {tone: sum(_count_cue(lowered, cue) for cue in cues) for tone, cues in TONE_CUES.items()}
    best = max(scores.values())
    if best == 0:
        return DEFAULT_TONE
    for tone in TONE_PRIORITY:
        if scores[tone] == best:
            return tone
    return DEFAULT_TONE


def detect_role_signals(title: str, jd_text: str, tone: str) -> RoleSignals:
    lowered = (jd_text or "").lower()
    title_lower = (title or "").lower()

    seniority = "unknown"
    for pattern, level in SENIORITY_TITLES:
        if re.search(pattern, title_lower):
            seniority = level
            break
    if seniority == "unknown":
        years = [int(y) for y in _YEARS_RE.findall(lowered)]
        if years:
            most = max(years)
            seniority = "junior" if most < 2 else "mid" if most < 5 else "senior"

    manages_people = bool(
        re.search(r"\bmanager\b|\bhead of\b|\bdirector\b", title_lower)
        or re.search(r"direct reports|people management|manage a team|hire and grow", lowered)
    )
    return RoleSignals(
        is_startup=bool(re.search(r"\bstartup\b|\bseries [a-d]\b|\bseed\b|early[- ]stage|fast-paced", lowered)),
        is_ic_focused=not manages_people,
        is_research=tone == "research_oriented" or "research" in title_lower,
        seniority=seniority,
    )


def parse_jd(jd_text: str) -> ParsedJD:
    """Parse a raw job description. Pure and deterministic."""
    segments = split_sections(jd_text)
    title = segments[0][1] if segments else ""
    requirements, soft_signals = extract_requirements(segments)
    tone = detect_tone(jd_text)
    return ParsedJD(
        title=title,
        hard_requirements=requirements,
        soft_signals=soft_signals,
        role_signals=detect_role_signals(title, jd_text, tone),
        keyword_inventory=extract_keywords(segments),
        detected_tone=tone,
    )

"""
cfp/response_analyzer.py

Heuristic reading of one model response: was the business mentioned, in
what tone, at what list position, and which competitors were named.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


class Sentiment:
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


EXACT_MATCH_CONFIDENCE = 0.95
VARIANT_MATCH_CONFIDENCE = 0.85
MAX_LIST_RANK = 10

_POSITIVE = (
    "excellent", "outstanding", "great", "amazing", "fantastic", "wonderful",
    "professional", "reliable", "trustworthy", "reputable", "quality",
    "highly recommended", "top-rated", "best", "leading", "premier",
    "experienced", "skilled", "expert", "knowledgeable", "competent",
    "friendly", "helpful", "responsive", "efficient", "thorough",
    "satisfied", "pleased", "happy", "impressed", "delighted",
)
_NEGATIVE = (
    "terrible", "awful", "horrible", "disappointing", "poor", "bad",
    "unprofessional", "unreliable", "untrustworthy", "questionable",
    "avoid", "warning", "complaint", "problem", "issue", "concern",
    "rude", "unhelpful", "slow", "inefficient", "careless",
    "overpriced", "low-quality", "subpar",
    "dissatisfied", "unhappy", "frustrated", "disappointed", "regret",
)
_NEUTRAL = (
    "okay", "average", "decent", "standard", "typical", "normal",
    "adequate", "acceptable", "reasonable", "fair", "moderate",
    "mixed", "varies", "depends", "sometimes", "generally",
)

_NAME_SUFFIXES = ("inc", "llc", "corp", "company", "co", "ltd", "group", "services", "solutions")
_NAME_PREFIXES = ("the", "a", "an")

_RANK_PATTERNS = (
    re.compile(r"(?:number\s+|#)(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)(?:st|nd|rd|th)\s+(?:place|choice|option)", re.IGNORECASE),
    re.compile(r"ranked\s+(\d+)", re.IGNORECASE),
)

_NUMBERED_LINE = re.compile(r"^\s*(\d{1,2})[.)]\s+(.+)$")
_BULLET_LINE = re.compile(r"^\s*[-*•]\s+(.+)$")
_NAME_CUT = re.compile(r"\s+[-–—]\s+|:\s|\s\(|,\s")

_INVALID_NAME_PATTERNS = (
    re.compile(r"^(here are|i'd recommend|i recommend|to give you|that's a|i need)", re.IGNORECASE),
    re.compile(r"^(each of these|these businesses|some top|top recommendations|recommendations for)", re.IGNORECASE),
    re.compile(r"^(a great|great question|little more|more information|what you're|you're looking|looking for)", re.IGNORECASE),
    re.compile(r"^(and|or|but|if|when|where|why|how)\s+", re.IGNORECASE),
    re.compile(r"^(is|are|was|were|be|been|being)\s+", re.IGNORECASE),
    re.compile(r"^(can|could|should|would|will|may|might)\s+", re.IGNORECASE),
    re.compile(r"^(this|that|these|those|it|they|we|you|he|she)\s+", re.IGNORECASE),
)
_GENERIC_WORDS = frozenset(
    {"quality", "professional", "local", "community", "excellence", "choice", "group", "services", "solutions"}
)
_FALSE_POSITIVES = frozenset(
    {
        "google", "google maps", "yelp", "bbb", "better business bureau", "facebook", "tripadvisor",
        "angi", "angie's list", "yellow pages", "nextdoor", "instagram",
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
        "january", "february", "march", "april", "may", "june", "july", "august",
        "september", "october", "november", "december",
    }
)


@dataclass(frozen=True)
class CompetitorMention:
    name: str
    position: int | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "position": self.position}


@dataclass(frozen=True)
class ResponseAnalysis:
    mentioned: bool
    confidence: float
    sentiment: str
    rank_position: int | None
    competitors: list[CompetitorMention] = field(default_factory=list)


@dataclass(frozen=True)
class ModelObservation:
    """One scoring call's reading. ``error`` is set when the call failed."""

    observation_id: str
    model: str
    prompt_type: str
    mentioned: bool = False
    sentiment: str = Sentiment.NEUTRAL
    confidence: float = 0.0
    rank_position: int | None = None
    competitor_mentions: list[CompetitorMention] = field(default_factory=list)
    tokens_used: int = 0
    processing_time_ms: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "id": self.observation_id,
            "model": self.model,
            "prompt_type": self.prompt_type,
            "mentioned": self.mentioned,
            "sentiment": self.sentiment,
            "confidence": self.confidence,
            "rank_position": self.rank_position,
            "competitor_mentions": [mention.to_dict() for mention in self.competitor_mentions],
            "tokens_used": self.tokens_used,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


def _contains_phrase(text: str, phrase: str) -> bool:
    if not phrase:
        return False
    return re.search(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])", text) is not None


def name_variants(name: str) -> set[str]:
    """Lower-cased spellings under which ``name`` may appear in free text."""

    base = " ".join(name.lower().split())
    variants = {base}
    for suffix in _NAME_SUFFIXES:
        stripped = re.sub(rf"[\s,]+{suffix}\.?$", "", base)
        if stripped != base:
            variants.add(stripped.strip())
    for prefix in _NAME_PREFIXES:
        if base.startswith(f"{prefix} "):
            variants.add(base[len(prefix) + 1:].strip())
    for variant in list(variants):
        if "&" in variant:
            variants.add(" ".join(variant.replace("&", " and ").split()))
        if " and " in variant:
            variants.add(variant.replace(" and ", " & "))
    return {variant for variant in variants if len(variant) >= 3}


def is_same_business(candidate: str, business_name: str) -> bool:
    return bool(name_variants(candidate) & name_variants(business_name))


def detect_mention(content: str, business_name: str) -> tuple[bool, float]:
    text = content.lower()
    exact = " ".join(business_name.lower().split())
    if _contains_phrase(text, exact):
        return True, EXACT_MATCH_CONFIDENCE
    for variant in name_variants(business_name) - {exact}:
        if _contains_phrase(text, variant):
            return True, VARIANT_MATCH_CONFIDENCE
    return False, 0.0


def classify_sentiment(content: str) -> str:
    text = content.lower()
    positive = sum(1 for word in _POSITIVE if _contains_phrase(text, word))
    negative = sum(1 for word in _NEGATIVE if _contains_phrase(text, word))
    neutral = sum(1 for word in _NEUTRAL if _contains_phrase(text, word))
    score = (positive - negative) / max(positive + negative + neutral, 1)
    if score > 0.3:
        return Sentiment.POSITIVE
    if score < -0.3:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def extract_rank(content: str, business_name: str) -> int | None:
    variants = name_variants(business_name)
    mention_lines = []
    for line in content.splitlines():
        lowered = line.lower()
        if not any(_contains_phrase(lowered, variant) for variant in variants):
            continue
        mention_lines.append(line)
        numbered = _NUMBERED_LINE.match(line)
        if numbered:
            rank = int(numbered.group(1))
            if 1 <= rank <= MAX_LIST_RANK:
                return rank

    for line in mention_lines:
        for pattern in _RANK_PATTERNS:
            match = pattern.search(line)
            if match:
                rank = int(match.group(1))
                if 1 <= rank <= MAX_LIST_RANK:
                    return rank
    return None


def _clean_list_item(raw: str) -> str:
    item = raw.replace("**", "").replace("__", "").strip()
    item = _NAME_CUT.split(item, maxsplit=1)[0]
    return item.strip().rstrip(".:;,")


def is_valid_business_name(name: str) -> bool:
    trimmed = name.strip()
    if len(trimmed) < 2 or len(trimmed) > 80:
        return False
    if not trimmed[0].isupper() and not trimmed[0].isdigit():
        return False
    if not re.search(r"[A-Za-z]", trimmed):
        return False
    if len(trimmed.split()) > 8 or re.search(r"\.\s+[A-Z]", trimmed):
        return False
    lowered = trimmed.lower()
    if lowered in _GENERIC_WORDS or lowered in _FALSE_POSITIVES:
        return False
    return not any(pattern.search(trimmed) for pattern in _INVALID_NAME_PATTERNS)


def extract_competitors(content: str, business_name: str) -> list[CompetitorMention]:
    """Competitor names from numbered and bulleted list lines, in order."""

    found: dict[str, CompetitorMention] = {}
    for line in content.splitlines():
        numbered = _NUMBERED_LINE.match(line)
        if numbered:
            position: int | None = int(numbered.group(1))
            raw = numbered.group(2)
        else:
            bullet = _BULLET_LINE.match(line)
            if not bullet:
                continue
            position = None
            raw = bullet.group(1)

        name = _clean_list_item(raw)
        if not is_valid_business_name(name) or is_same_business(name, business_name):
            continue
        if position is not None and not 1 <= position <= MAX_LIST_RANK:
            position = None
        if name not in found:
            found[name] = CompetitorMention(name=name, position=position)
    return list(found.values())


def analyze_response(content: str, business_name: str) -> ResponseAnalysis:
    mentioned, confidence = detect_mention(content, business_name)
    return ResponseAnalysis(
        mentioned=mentioned,
        confidence=confidence,
        sentiment=classify_sentiment(content) if mentioned else Sentiment.NEUTRAL,
        rank_position=extract_rank(content, business_name) if mentioned else None,
        competitors=extract_competitors(content, business_name),
    )

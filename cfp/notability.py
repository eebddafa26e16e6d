"""
cfp/notability.py

Notability assessment for knowledge-graph publishing.

References come from web search; each is judged serious / publicly available /
independent, by the scoring provider when it answers with usable JSON and by
a domain heuristic otherwise. ``is_notable`` is a counting rule over those
judgements; ``confidence`` is reported either way.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.providers.base import ScoringProvider, SearchProvider, SearchResult
from cfp.errors import PipelineError
from cfp.retry import call_with_timeout

logger = logging.getLogger(__name__)


class SourceType:
    GOVERNMENT = "government"
    NEWS = "news"
    ACADEMIC = "academic"
    DATABASE = "database"
    DIRECTORY = "directory"
    REVIEW = "review"
    COMPANY = "company"
    OTHER = "other"


TRUST_SCORES: dict[str, int] = {
    SourceType.GOVERNMENT: 95,
    SourceType.NEWS: 85,
    SourceType.ACADEMIC: 85,
    SourceType.DATABASE: 80,
    SourceType.DIRECTORY: 75,
    SourceType.REVIEW: 70,
    SourceType.OTHER: 60,
    SourceType.COMPANY: 50,
}

# Ordering used when choosing the references cited on the entity.
_SOURCE_RANK: tuple[str, ...] = (
    SourceType.GOVERNMENT,
    SourceType.NEWS,
    SourceType.ACADEMIC,
    SourceType.DATABASE,
    SourceType.DIRECTORY,
    SourceType.REVIEW,
)
SERIOUS_SOURCE_TYPES: frozenset[str] = frozenset(_SOURCE_RANK)

_NEWS_HOSTS = (
    "nytimes.com", "wsj.com", "washingtonpost.com", "reuters.com", "apnews.com", "bbc.co.uk",
    "bbc.com", "cnn.com", "forbes.com", "bizjournals.com", "usatoday.com", "latimes.com", "patch.com",
)
_NEWS_TOKENS = ("news", "times", "journal", "tribune", "herald", "gazette", "post", "chronicle")
_DIRECTORY_HOSTS = ("yelp.", "yellowpages.", "google.", "bbb.org", "mapquest.", "foursquare.", "manta.", "superpages.")
_REVIEW_HOSTS = ("tripadvisor.", "trustpilot.", "angi.", "houzz.", "glassdoor.", "consumeraffairs.")
_DATABASE_HOSTS = ("chamber", "opencorporates.", "dnb.com", "crunchbase.", "bloomberg.", "wikidata.", "wikipedia.")

MAX_TOP_REFERENCES = 5
_TRAILING_ID = re.compile(r"\s+\d{6,}$")
_LEGAL_SUFFIX = re.compile(r"[\s,]+(inc|llc|ltd|corp|corporation|co|company|limited)\.?$", re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class ReferenceAssessment:
    url: str
    title: str
    snippet: str
    source_type: str
    trust_score: int
    is_serious: bool
    is_publicly_available: bool
    is_independent: bool
    reasoning: str = ""

    @property
    def qualifies(self) -> bool:
        return self.is_serious and self.is_publicly_available and self.is_independent

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "source_type": self.source_type,
            "trust_score": self.trust_score,
            "is_serious": self.is_serious,
            "is_publicly_available": self.is_publicly_available,
            "is_independent": self.is_independent,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class NotabilityAssessment:
    is_notable: bool
    confidence: float
    serious_reference_count: int
    publicly_available_count: int
    independent_count: int
    recommendation: str
    references: list[ReferenceAssessment] = field(default_factory=list)
    top_references: list[ReferenceAssessment] = field(default_factory=list)
    assessed_by: str = "none"

    def summary(self) -> dict[str, Any]:
        """Shape stored alongside manual-publish entities."""
        return {
            "is_notable": self.is_notable,
            "confidence": self.confidence,
            "recommendation": self.recommendation,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary(),
            "serious_reference_count": self.serious_reference_count,
            "publicly_available_count": self.publicly_available_count,
            "independent_count": self.independent_count,
            "assessed_by": self.assessed_by,
            "top_references": [reference.to_dict() for reference in self.top_references],
        }


class _AssessedReference(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    index: int
    is_serious: bool
    is_publicly_available: bool
    is_independent: bool
    source_type: str = SourceType.OTHER
    trust_score: int | None = Field(default=None, ge=0, le=100)
    reasoning: str = ""


class _AssessmentPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    meets_notability: bool = False
    confidence: float = Field(ge=0.0, le=1.0)
    references: list[_AssessedReference] = Field(default_factory=list)
    summary: str = ""
    recommendations: list[str] = Field(default_factory=list)


def clean_business_name(name: str) -> str:
    """Drop trailing numeric suffixes (e.g. '... 1763324055284')."""

    return _TRAILING_ID.sub("", name.strip()).strip()


def _registered_domain(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    host = host[4:] if host.startswith("www.") else host
    parts = host.split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else host


def classify_source(url: str, business_url: str | None = None) -> str:
    host = (urlparse(url).hostname or "").lower()
    if business_url and _registered_domain(url) == _registered_domain(business_url):
        return SourceType.COMPANY
    if host.endswith(".gov") or host.endswith(".mil") or ".gov." in host:
        return SourceType.GOVERNMENT
    if host.endswith(".edu") or ".ac." in host:
        return SourceType.ACADEMIC
    if any(marker in host for marker in _DATABASE_HOSTS):
        return SourceType.DATABASE
    if any(marker in host for marker in _DIRECTORY_HOSTS):
        return SourceType.DIRECTORY
    if any(marker in host for marker in _REVIEW_HOSTS) or "review" in host:
        return SourceType.REVIEW
    if any(host.endswith(news) for news in _NEWS_HOSTS) or any(token in host for token in _NEWS_TOKENS):
        return SourceType.NEWS
    return SourceType.OTHER


def heuristic_reference(result: SearchResult, business_url: str | None) -> ReferenceAssessment:
    source_type = classify_source(result.url, business_url)
    return ReferenceAssessment(
        url=result.url,
        title=result.title,
        snippet=result.snippet,
        source_type=source_type,
        trust_score=TRUST_SCORES[source_type],
        is_serious=source_type in SERIOUS_SOURCE_TYPES,
        is_publicly_available=True,
        is_independent=source_type != SourceType.COMPANY,
        reasoning=f"Classified as {source_type} by domain.",
    )


def select_top_references(references: Sequence[ReferenceAssessment], limit: int = MAX_TOP_REFERENCES) -> list[ReferenceAssessment]:
    qualifying = [reference for reference in references if reference.qualifies]
    qualifying.sort(
        key=lambda reference: (
            _SOURCE_RANK.index(reference.source_type) if reference.source_type in _SOURCE_RANK else len(_SOURCE_RANK),
            -reference.trust_score,
        )
    )
    return qualifying[:limit]


def parse_assessment(raw: str) -> _AssessmentPayload | None:
    """Parse the provider's JSON verdict, tolerating Markdown code fences."""

    text = _CODE_FENCE.sub("", raw.strip()).strip()
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        return _AssessmentPayload.model_validate(json.loads(text[start : end + 1]))
    except (ValueError, ValidationError):
        return None


def _assessment_prompt(business_name: str, results: Sequence[SearchResult]) -> str:
    listing = "\n".join(
        f"{index}. {result.title}\n   URL: {result.url}\n   Snippet: {result.snippet}"
        for index, result in enumerate(results)
    )
    return (
        "You are assessing whether a business meets Wikidata notability guidelines.\n"
        f"Business: {business_name}\n\n"
        "A notable item needs serious, publicly available references from sources independent "
        "of the business (news, government records, academic work, established databases or "
        "directories). Self-published pages, social media and marketing copy do not count.\n\n"
        f"References:\n{listing}\n\n"
        "Respond with JSON only:\n"
        '{"meetsNotability": bool, "confidence": 0-1, "seriousReferenceCount": int, '
        '"publiclyAvailableCount": int, "independentCount": int, "summary": str, '
        '"references": [{"index": int, "isSerious": bool, "isPubliclyAvailable": bool, '
        '"isIndependent": bool, "sourceType": "news|government|academic|database|directory|review|company|other", '
        '"trustScore": 0-100, "reasoning": str}], "recommendations": [str]}'
    )


class NotabilityAssessor:
    """
    Gathers references and produces a NotabilityAssessment.
    """

    def __init__(
        self,
        search_provider: SearchProvider,
        scoring_provider: ScoringProvider | None,
        *,
        assessment_model: str,
        min_serious_references: int = 2,
        max_references: int = 15,
        search_timeout_seconds: float | None = 15.0,
        scoring_timeout_seconds: float | None = 30.0,
    ) -> None:
        self._search = search_provider
        self._scoring = scoring_provider
        self._assessment_model = assessment_model
        self._min_serious_references = max(1, min_serious_references)
        self._max_references = max(1, max_references)
        self._search_timeout_seconds = search_timeout_seconds
        self._scoring_timeout_seconds = scoring_timeout_seconds

    def build_queries(self, business_name: str, crawl_data: dict[str, Any] | None) -> list[str]:
        name = clean_business_name(business_name)
        location = (crawl_data or {}).get("location") or {}
        place = " ".join(part for part in (location.get("city"), location.get("state")) if part)
        queries = [f'"{name}" {place}'.strip()]
        without_suffix = _LEGAL_SUFFIX.sub("", name).strip()
        if without_suffix and without_suffix != name:
            queries.append(f'"{without_suffix}" {place}'.strip())
        queries.append(f'"{name}" site:*.gov OR site:*.edu')
        return queries

    def gather_references(self, business_name: str, crawl_data: dict[str, Any] | None) -> list[SearchResult]:
        seen: dict[str, SearchResult] = {}
        for query in self.build_queries(business_name, crawl_data):
            try:
                response = call_with_timeout(
                    partial(self._search.search, query),
                    timeout_seconds=self._search_timeout_seconds,
                    operation="notability search",
                    pool="search",
                )
            except PipelineError as exc:
                logger.warning("Notability search failed query=%r error=%s", query, exc)
                continue
            for result in response.results:
                if result.url and result.url not in seen:
                    seen[result.url] = result
        return list(seen.values())[: self._max_references]

    def assess(
        self,
        business_name: str,
        crawl_data: dict[str, Any] | None,
        *,
        business_url: str | None = None,
    ) -> NotabilityAssessment:
        results = self.gather_references(business_name, crawl_data)
        if not results:
            return NotabilityAssessment(
                is_notable=False,
                confidence=0.0,
                serious_reference_count=0,
                publicly_available_count=0,
                independent_count=0,
                recommendation="No independent references found. Add press coverage, government "
                "registrations or directory listings before publishing.",
            )

        payload = self._ask_provider(business_name, results)
        if payload is not None:
            references = self._merge_verdicts(results, payload, business_url)
            return self._decide(references, confidence=payload.confidence, assessed_by="llm", notes=payload.recommendations)

        references = [heuristic_reference(result, business_url) for result in results]
        qualifying = sum(1 for reference in references if reference.qualifies)
        if qualifying >= self._min_serious_references:
            confidence = max(0.7, min(0.9, 0.4 + 0.1 * qualifying))
        else:
            confidence = min(0.65, 0.25 + 0.15 * qualifying)
        return self._decide(references, confidence=round(confidence, 2), assessed_by="heuristic", notes=[])

    def _ask_provider(self, business_name: str, results: Sequence[SearchResult]) -> _AssessmentPayload | None:
        if self._scoring is None:
            return None
        prompt = _assessment_prompt(clean_business_name(business_name), results)
        try:
            response = call_with_timeout(
                lambda: self._scoring.query(self._assessment_model, prompt),
                timeout_seconds=self._scoring_timeout_seconds,
                operation="notability assessment",
                pool="scoring",
            )
        except PipelineError as exc:
            logger.warning("Notability assessment call failed, using heuristic error=%s", exc)
            return None
        payload = parse_assessment(response.content)
        if payload is None:
            logger.warning("Notability assessment was not valid JSON, using heuristic model=%s", self._assessment_model)
        return payload

    def _merge_verdicts(
        self,
        results: Sequence[SearchResult],
        payload: _AssessmentPayload,
        business_url: str | None,
    ) -> list[ReferenceAssessment]:
        verdicts = {verdict.index: verdict for verdict in payload.references}
        references: list[ReferenceAssessment] = []
        for index, result in enumerate(results):
            verdict = verdicts.get(index)
            if verdict is None:
                references.append(heuristic_reference(result, business_url))
                continue
            source_type = verdict.source_type if verdict.source_type in TRUST_SCORES else SourceType.OTHER
            references.append(
                ReferenceAssessment(
                    url=result.url,
                    title=result.title,
                    snippet=result.snippet,
                    source_type=source_type,
                    trust_score=verdict.trust_score if verdict.trust_score is not None else TRUST_SCORES[source_type],
                    is_serious=verdict.is_serious,
                    is_publicly_available=verdict.is_publicly_available,
                    is_independent=verdict.is_independent,
                    reasoning=verdict.reasoning,
                )
            )
        return references

    def _decide(
        self,
        references: list[ReferenceAssessment],
        *,
        confidence: float,
        assessed_by: str,
        notes: Sequence[str],
    ) -> NotabilityAssessment:
        qualifying = sum(1 for reference in references if reference.qualifies)
        is_notable = qualifying >= self._min_serious_references
        if is_notable:
            recommendation = f"Meets notability guidelines with {qualifying} qualifying reference(s)."
        else:
            recommendation = (
                f"Needs at least {self._min_serious_references} serious, public, independent "
                f"references (found {qualifying})."
            )
        if notes:
            recommendation = f"{recommendation} {' '.join(notes)}"
        return NotabilityAssessment(
            is_notable=is_notable,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            serious_reference_count=sum(1 for reference in references if reference.is_serious),
            publicly_available_count=sum(1 for reference in references if reference.is_publicly_available),
            independent_count=sum(1 for reference in references if reference.is_independent),
            recommendation=recommendation,
            references=references,
            top_references=select_top_references(references),
            assessed_by=assessed_by,
        )

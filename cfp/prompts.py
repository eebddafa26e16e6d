"""
cfp/prompts.py

Prompt construction for visibility fingerprinting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class PromptType:
    FACTUAL = "factual"
    OPINION = "opinion"
    RECOMMENDATION = "recommendation"


PROMPT_TYPES: frozenset[str] = frozenset(
    {PromptType.FACTUAL, PromptType.OPINION, PromptType.RECOMMENDATION}
)

_TEMPLATES: dict[str, str] = {
    PromptType.FACTUAL: (
        "What information do you have about {name}{location}? Please provide factual details "
        "about their services, reputation, contact information, and any notable characteristics."
    ),
    PromptType.OPINION: (
        "I'm considering using the services of {name}{location}. Based on what you know, would "
        "you say they are a reputable and reliable {business_type}? What's your assessment of "
        "their quality and trustworthiness?"
    ),
    PromptType.RECOMMENDATION: (
        "What are the best {industry_plural}{location}? I'm looking for top recommendations "
        "for quality {service} providers in the area."
    ),
}

# category keyword -> (singular, plural)
_INDUSTRIES: tuple[tuple[str, str, str], ...] = (
    ("restaurant", "restaurant", "restaurants"),
    ("cafe", "cafe", "cafes"),
    ("bakery", "bakery", "bakeries"),
    ("dental", "dental practice", "dental practices"),
    ("dentist", "dental practice", "dental practices"),
    ("medical", "medical practice", "medical practices"),
    ("law", "law firm", "law firms"),
    ("legal", "law firm", "law firms"),
    ("plumb", "plumbing company", "plumbing companies"),
    ("electric", "electrical contractor", "electrical contractors"),
    ("real estate", "real estate agency", "real estate agencies"),
    ("realty", "real estate agency", "real estate agencies"),
    ("salon", "salon", "salons"),
    ("fitness", "fitness studio", "fitness studios"),
    ("gym", "gym", "gyms"),
    ("auto", "auto repair shop", "auto repair shops"),
    ("account", "accounting firm", "accounting firms"),
    ("marketing", "marketing agency", "marketing agencies"),
    ("software", "software company", "software companies"),
    ("hotel", "hotel", "hotels"),
    ("retail", "retail store", "retail stores"),
)

_DEFAULT_INDUSTRY = ("business", "businesses")


@dataclass(frozen=True)
class PromptContext:
    business_name: str
    category: str | None = None
    city: str | None = None
    state: str | None = None
    service: str | None = None

    @classmethod
    def from_crawl_data(cls, business_name: str, crawl_data: dict[str, Any] | None, category: str | None = None) -> "PromptContext":
        data = crawl_data or {}
        location = data.get("location") or {}
        enhanced = data.get("llm_enhanced") or {}
        details = data.get("business_details") or {}
        categories = data.get("categories") or []
        services = data.get("services") or enhanced.get("service_offerings") or []
        return cls(
            business_name=business_name,
            category=(
                category
                or enhanced.get("business_category")
                or details.get("industry")
                or (categories[0] if categories else None)
            ),
            city=location.get("city"),
            state=location.get("state"),
            service=services[0] if services else None,
        )


def industry_names(category: str | None) -> tuple[str, str]:
    """Map a free-text category to (singular, plural) industry wording."""

    lowered = (category or "").strip().lower()
    if not lowered:
        return _DEFAULT_INDUSTRY
    for keyword, singular, plural in _INDUSTRIES:
        if keyword in lowered:
            return singular, plural
    return _DEFAULT_INDUSTRY


def location_context(city: str | None, state: str | None) -> str:
    parts = [part for part in (city, state) if part]
    return f" in {', '.join(parts)}" if parts else ""


def build_prompt(prompt_type: str, context: PromptContext) -> str:
    if prompt_type not in _TEMPLATES:
        raise ValueError(f"Unknown prompt type '{prompt_type}'. Allowed: {sorted(PROMPT_TYPES)}")
    singular, plural = industry_names(context.category)
    return _TEMPLATES[prompt_type].format(
        name=context.business_name,
        location=location_context(context.city, context.state),
        business_type=singular,
        industry_plural=plural,
        service=context.service or singular,
    )

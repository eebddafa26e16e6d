"""Normalized crawl snapshot stored on ``Business.crawl_data``.

Crawlers return loosely shaped JSON (camelCase or snake_case, blanks, numbers
where strings are expected). These models coerce it into one canonical shape
and reject payloads that carry neither a name nor a description.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MAX_DESCRIPTION_LENGTH = 2000


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _clean_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    seen: dict[str, None] = {}
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text and text.lower() not in {key.lower() for key in seen}:
            seen[text] = None
    return list(seen)


class _CrawlModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    @field_validator("*", mode="before")
    @classmethod
    def _strip_blanks(cls, value: Any) -> Any:
        return _blank_to_none(value)


class CrawlLocation(_CrawlModel):
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)

    @field_validator("postal_code", mode="before")
    @classmethod
    def _postal_code_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class SocialLinks(_CrawlModel):
    facebook: str | None = None
    instagram: str | None = None
    linkedin: str | None = None
    twitter: str | None = None


class BusinessDetails(_CrawlModel):
    industry: str | None = None
    sector: str | None = None
    employee_count: str | None = None
    legal_form: str | None = None
    parent_company: str | None = None
    stock_symbol: str | None = None

    @field_validator("employee_count", mode="before")
    @classmethod
    def _count_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value


class LLMEnhanced(_CrawlModel):
    extracted_entities: list[str] = Field(default_factory=list)
    business_category: str | None = None
    service_offerings: list[str] = Field(default_factory=list)
    target_audience: str | None = None
    key_differentiators: list[str] = Field(default_factory=list)
    confidence: float | None = None
    model: str | None = None

    @field_validator("extracted_entities", "service_offerings", "key_differentiators", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _clean_str_list(value)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return min(1.0, max(0.0, value))


class CrawlData(_CrawlModel):
    name: str | None = None
    description: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    location: CrawlLocation | None = None
    social_links: SocialLinks | None = None
    categories: list[str] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    founded: str | None = None
    business_details: BusinessDetails | None = None
    llm_enhanced: LLMEnhanced | None = None

    @field_validator("categories", "services", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _clean_str_list(value)

    @field_validator("founded", mode="before")
    @classmethod
    def _founded_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("description")
    @classmethod
    def _truncate_description(cls, value: str | None) -> str | None:
        if value is None or len(value) <= MAX_DESCRIPTION_LENGTH:
            return value
        return value[: MAX_DESCRIPTION_LENGTH - 3].rstrip() + "..."

    @model_validator(mode="after")
    def _require_identity(self) -> "CrawlData":
        if not self.name and not self.description:
            raise ValueError("crawl payload must include a name or a description")
        return self

    @property
    def primary_category(self) -> str | None:
        if self.llm_enhanced and self.llm_enhanced.business_category:
            return self.llm_enhanced.business_category
        if self.business_details and self.business_details.industry:
            return self.business_details.industry
        return self.categories[0] if self.categories else None

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-ready dict for persistence (snake_case, no empty fields)."""
        return self.model_dump(mode="json", exclude_none=True)

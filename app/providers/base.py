"""
app/providers/base.py

Narrow contracts for the external capabilities the pipeline consumes.
Implementations live beside each contract; the core only sees these shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from cfp.errors import PipelineError


class ProviderRequestError(PipelineError):
    """
    Raised when a provider call fails for a non-transient reason
    (authentication, bad request, unexpected payload).
    """


@dataclass(frozen=True)
class CrawlResult:
    """
    Crawler outcome. ``retryable`` marks a failed crawl that may succeed later.
    """

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class ScoringResponse:
    content: str
    tokens_used: int
    model: str


@dataclass(frozen=True)
class SearchResult:
    url: str
    title: str
    snippet: str = ""


@dataclass(frozen=True)
class SearchResponse:
    results: list[SearchResult] = field(default_factory=list)


@dataclass(frozen=True)
class PublishResult:
    success: bool
    qid: str | None = None
    error: str | None = None


class Crawler(Protocol):
    def crawl(self, url: str) -> CrawlResult:
        ...


class ScoringProvider(Protocol):
    def query(self, model: str, prompt: str) -> ScoringResponse:
        ...


class SearchProvider(Protocol):
    def search(self, query: str) -> SearchResponse:
        ...


class Publisher(Protocol):
    def publish_entity(self, entity: dict[str, Any], is_production: bool) -> PublishResult:
        ...

    def update_entity(self, qid: str, entity: dict[str, Any], is_production: bool) -> PublishResult:
        ...

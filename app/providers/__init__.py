"""
External capability adapters.
"""

from app.providers.base import (
    CrawlResult,
    Crawler,
    ProviderRequestError,
    PublishResult,
    Publisher,
    ScoringProvider,
    ScoringResponse,
    SearchProvider,
    SearchResponse,
    SearchResult,
)

__all__ = [
    "CrawlResult",
    "Crawler",
    "ProviderRequestError",
    "PublishResult",
    "Publisher",
    "ScoringProvider",
    "ScoringResponse",
    "SearchProvider",
    "SearchResponse",
    "SearchResult",
]

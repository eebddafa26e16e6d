"""
app/providers/search.py

Web search adapters for notability references.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from app.config import SearchSettings
from app.providers.base import ProviderRequestError, SearchResponse, SearchResult
from app.providers.http import JSONHTTPClient

logger = logging.getLogger(__name__)

# Google Custom Search caps ``num`` at 10 per request.
_GOOGLE_PAGE_SIZE = 10


class GoogleSearchProvider:
    """
    Google Programmable Search (Custom Search JSON API) client.
    """

    def __init__(self, settings: SearchSettings, *, client: JSONHTTPClient | None = None) -> None:
        if not settings.api_key or not settings.engine_id:
            raise ProviderRequestError(
                "Google search requires GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_ENGINE_ID."
            )
        self._settings = settings
        self._client = client or JSONHTTPClient(
            source="google_search",
            timeout_seconds=settings.timeout_seconds,
            rate_limit_per_second=5.0,
        )

    def search(self, query: str) -> SearchResponse:
        payload = self._client.request_json(
            method="GET",
            url=self._settings.base_url,
            params={
                "key": self._settings.api_key,
                "cx": self._settings.engine_id,
                "q": query,
                "num": min(_GOOGLE_PAGE_SIZE, self._settings.max_results),
            },
        )
        items = payload.get("items") if isinstance(payload, dict) else None
        results = [
            SearchResult(
                url=str(item.get("link", "")),
                title=str(item.get("title", "")),
                snippet=str(item.get("snippet", "")),
            )
            for item in (items or [])
            if item.get("link")
        ]
        logger.info("Search completed query=%r results=%d", query, len(results))
        return SearchResponse(results=results)


class MockSearchProvider:
    """
    Returns the same canned results for every query.
    """

    def __init__(self, results: Iterable[SearchResult] | None = None) -> None:
        self._results = list(results) if results is not None else [
            SearchResult(
                url="https://www.seattletimes.com/business/local-spotlight",
                title="Local spotlight",
                snippet="A profile of a neighbourhood business.",
            ),
            SearchResult(
                url="https://www.seattle.gov/business-licenses/record",
                title="Business license record",
                snippet="City of Seattle business license listing.",
            ),
            SearchResult(
                url="https://www.yelp.com/biz/sample",
                title="Reviews on Yelp",
                snippet="Customer reviews.",
            ),
        ]
        self.queries: list[str] = []

    def search(self, query: str) -> SearchResponse:
        self.queries.append(query)
        return SearchResponse(results=list(self._results))

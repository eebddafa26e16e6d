"""
app/providers/crawler.py

Crawler adapters: a crawl-API client over requests and a deterministic mock.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

from app.config import CrawlerSettings
from app.providers.base import CrawlResult, ProviderRequestError
from app.providers.http import JSONHTTPClient

logger = logging.getLogger(__name__)

# Extraction schema sent to the crawl API; keys mirror the CrawlData model.
_EXTRACT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "description": {"type": "string"},
        "phone": {"type": "string"},
        "email": {"type": "string"},
        "address": {"type": "string"},
        "location": {
            "type": "object",
            "properties": {
                "city": {"type": "string"},
                "state": {"type": "string"},
                "country": {"type": "string"},
                "postalCode": {"type": "string"},
            },
        },
        "socialLinks": {
            "type": "object",
            "properties": {
                "facebook": {"type": "string"},
                "instagram": {"type": "string"},
                "linkedin": {"type": "string"},
                "twitter": {"type": "string"},
            },
        },
        "categories": {"type": "array", "items": {"type": "string"}},
        "services": {"type": "array", "items": {"type": "string"}},
        "founded": {"type": "string"},
    },
}


class HTTPCrawler:
    """
    Client for a hosted crawl/extract API (Firecrawl-compatible request shape).
    """

    def __init__(self, settings: CrawlerSettings, *, client: JSONHTTPClient | None = None) -> None:
        self._settings = settings
        self._client = client or JSONHTTPClient(source="crawler", timeout_seconds=settings.timeout_seconds)

    def crawl(self, url: str) -> CrawlResult:
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"

        try:
            payload = self._client.request_json(
                method="POST",
                url=self._settings.base_url,
                json_body={
                    "url": url,
                    "formats": ["extract"],
                    "onlyMainContent": True,
                    "extract": {"schema": _EXTRACT_SCHEMA},
                },
                headers=headers,
            )
        except ProviderRequestError as exc:
            return CrawlResult(success=False, error=str(exc))

        if not isinstance(payload, dict) or not payload.get("success"):
            error = payload.get("error") if isinstance(payload, dict) else None
            return CrawlResult(success=False, error=str(error or "Crawler reported failure."))

        data = payload.get("data") or {}
        extracted = dict(data.get("extract") or data.get("json") or {})
        metadata = data.get("metadata") or {}
        if not extracted.get("name") and metadata.get("title"):
            extracted["name"] = metadata["title"]
        if not extracted.get("description") and metadata.get("description"):
            extracted["description"] = metadata["description"]

        logger.info("Crawl completed url=%s fields=%s", url, sorted(extracted.keys()))
        return CrawlResult(success=True, data=extracted)


class MockCrawler:
    """
    Deterministic crawler for local runs and tests. Derives a plausible
    payload from the URL host.
    """

    def __init__(self, overrides: dict[str, Any] | None = None) -> None:
        self._overrides = overrides or {}

    def crawl(self, url: str) -> CrawlResult:
        host = (urlparse(url).hostname or "example.com").removeprefix("www.")
        label = host.split(".")[0].replace("-", " ").title()
        data: dict[str, Any] = {
            "name": label,
            "description": f"{label} is a locally owned business serving its community.",
            "phone": "+1-555-0100",
            "email": f"info@{host}",
            "address": "100 Main Street",
            "location": {
                "city": "Seattle",
                "state": "WA",
                "country": "US",
                "postalCode": "98101",
                "lat": 47.6062,
                "lng": -122.3321,
            },
            "socialLinks": {"facebook": f"https://facebook.com/{host.split('.')[0]}"},
            "categories": ["restaurant"],
            "services": ["dine-in", "catering"],
            "llmEnhanced": {
                "businessCategory": "restaurant",
                "serviceOfferings": ["dine-in", "catering"],
                "confidence": 0.8,
                "model": "mock",
            },
        }
        data.update(self._overrides)
        return CrawlResult(success=True, data=data)

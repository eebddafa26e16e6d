"""
app/providers/http.py

Shared HTTP mechanics for requests-based provider adapters.

One call is one attempt: transient failures surface as RetryableIOError so the
pipeline's retry policy decides whether and when to try again.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from app.providers.base import ProviderRequestError
from cfp.errors import ExternalTimeoutError, RetryableIOError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class JSONHTTPClient:
    """
    Thin requests wrapper with timeout, rate limiting and error classification.
    """

    def __init__(
        self,
        *,
        source: str,
        timeout_seconds: float,
        rate_limit_per_second: float = 0.0,
        session: requests.Session | None = None,
    ) -> None:
        self.source = source
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds
        self._min_request_interval_seconds = 1.0 / rate_limit_per_second if rate_limit_per_second > 0 else 0.0
        self._last_request_monotonic: float = 0.0

    def request_json(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Execute one HTTP request and return parsed JSON.
        """

        self._apply_rate_limit()
        try:
            response = self._session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except requests.Timeout as exc:
            logger.warning("Provider request timed out source=%s url=%s", self.source, url)
            raise ExternalTimeoutError(f"{self.source}: request timed out.") from exc
        except requests.ConnectionError as exc:
            logger.warning("Provider connection failed source=%s url=%s error=%s", self.source, url, exc)
            raise RetryableIOError(f"{self.source}: connection failed.") from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning(
                "Provider returned retryable status source=%s status=%s url=%s",
                self.source,
                response.status_code,
                url,
            )
            raise RetryableIOError(f"{self.source}: retryable HTTP status {response.status_code}.")

        if response.status_code >= 400:
            logger.error(
                "Provider request failed source=%s status=%s url=%s body=%s",
                self.source,
                response.status_code,
                url,
                response.text[:500],
            )
            raise ProviderRequestError(f"{self.source}: HTTP {response.status_code}.")

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(f"{self.source}: response was not valid JSON.") from exc

    def _apply_rate_limit(self) -> None:
        """
        Enforce minimum interval between outbound requests.
        """

        if self._min_request_interval_seconds <= 0:
            return

        now = time.monotonic()
        elapsed = now - self._last_request_monotonic
        remaining = self._min_request_interval_seconds - elapsed
        if remaining > 0:
            time.sleep(remaining)
        self._last_request_monotonic = time.monotonic()

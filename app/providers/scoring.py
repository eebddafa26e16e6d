"""LLM scoring adapters for fingerprinting and notability assessment.

Provides an adapter for OpenAI-compatible chat completion APIs (OpenRouter by
default, so one key reaches several vendors' models) and a deterministic mock
for tests and local runs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from app.config import ScoringSettings
from app.providers.base import ProviderRequestError, ScoringResponse
from cfp.errors import ExternalTimeoutError, RetryableIOError

logger = logging.getLogger(__name__)


class OpenAIScoringProvider:
    """Adapter for OpenAI-compatible chat completion APIs.

    Each query is a single, non-streaming completion. Transport failures,
    rate limiting and server errors are raised as RetryableIOError; other API
    errors are raised as ProviderRequestError.
    """

    def __init__(
        self,
        settings: ScoringSettings,
        api_key: Optional[str] = None,
    ) -> None:
        """Initialise the adapter.

        Args:
            settings: Scoring settings (base URL, token budget, timeout).
            api_key: Overrides ``settings.api_key`` when given.
        """
        try:
            import openai  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "openai package is required for OpenAIScoringProvider. "
                "Install it with: pip install openai"
            ) from exc

        client_kwargs: dict = {
            "api_key": api_key or settings.api_key or "",
            "timeout": settings.timeout_seconds,
            "max_retries": 0,
        }
        if settings.base_url:
            client_kwargs["base_url"] = settings.base_url

        self._openai = openai
        self._client = openai.OpenAI(**client_kwargs)
        self._max_tokens = settings.max_tokens

    def query(self, model: str, prompt: str) -> ScoringResponse:
        """Send one prompt to ``model`` and return its text and token usage."""
        openai = self._openai
        try:
            response = self._client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.3,
                max_tokens=self._max_tokens,
                stream=False,
            )
        except openai.APITimeoutError as exc:
            raise ExternalTimeoutError(f"scoring: {model} timed out.") from exc
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as exc:
            raise RetryableIOError(f"scoring: {model} unavailable ({type(exc).__name__}).") from exc
        except openai.APIError as exc:
            raise ProviderRequestError(f"scoring: {model} request failed: {exc}") from exc

        if not response.choices:
            raise ProviderRequestError(f"scoring: {model} returned no choices.")
        content = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage is not None else 0
        return ScoringResponse(content=content, tokens_used=tokens_used, model=response.model or model)


# ---------------------------------------------------------------------------
# Fixed mock response used for local testing.
# ---------------------------------------------------------------------------
_MOCK_RECOMMENDATION = (
    "Here are some of the most popular options in the area:\n"
    "1. Harbor Bistro - known for seasonal seafood\n"
    "2. Pike Street Kitchen - reliable and friendly service\n"
    "3. The Copper Pot LLC - excellent catering\n"
)


class MockScoringProvider:
    """Deterministic provider returning canned responses.

    Args:
        responses: Optional per-model response text.
        responder: Optional callable ``(model, prompt) -> str`` taking precedence
            over ``responses``.
        failures: Optional per-model exception raised instead of answering.
    """

    def __init__(
        self,
        responses: Optional[dict[str, str]] = None,
        responder: Optional[Callable[[str, str], str]] = None,
        failures: Optional[dict[str, Exception]] = None,
    ) -> None:
        self._responses = responses or {}
        self._responder = responder
        self._failures = failures or {}
        self.calls: list[tuple[str, str]] = []

    def query(self, model: str, prompt: str) -> ScoringResponse:
        self.calls.append((model, prompt))
        if model in self._failures:
            raise self._failures[model]
        if self._responder is not None:
            content = self._responder(model, prompt)
        else:
            content = self._responses.get(model, _MOCK_RECOMMENDATION)
        return ScoringResponse(content=content, tokens_used=len(content.split()), model=model)

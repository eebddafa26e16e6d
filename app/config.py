"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from cfp.retry import CRAWL_RETRY_POLICY, SCORING_RETRY_POLICY, RetryPolicy
from db.config import load_env_files

DEFAULT_SCORING_MODELS: tuple[str, ...] = (
    "openai/gpt-4-turbo",
    "anthropic/claude-3-opus",
    "google/gemini-2.5-flash",
)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a comma-separated list, dropping empty items.
    """

    raw_value = _get_optional_str_env(name)
    if raw_value is None:
        return default
    items = tuple(item.strip() for item in raw_value.split(",") if item.strip())
    return items or default


def _read_retry_policy(prefix: str, default: RetryPolicy) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max(1, _get_int_env(f"{prefix}_RETRY_MAX_ATTEMPTS", default.max_attempts)),
        initial_delay_seconds=max(0.0, _get_float_env(f"{prefix}_RETRY_INITIAL_SECONDS", default.initial_delay_seconds)),
        multiplier=max(1.0, _get_float_env(f"{prefix}_RETRY_MULTIPLIER", default.multiplier)),
        max_delay_seconds=max(0.0, _get_float_env(f"{prefix}_RETRY_MAX_SECONDS", default.max_delay_seconds)),
        jitter=min(1.0, max(0.0, _get_float_env(f"{prefix}_RETRY_JITTER", default.jitter))),
    )


@dataclass(frozen=True)
class RetrySettings:
    """
    Backoff policies for retryable external calls. Publisher calls have none.
    """

    crawl: RetryPolicy = CRAWL_RETRY_POLICY
    scoring: RetryPolicy = SCORING_RETRY_POLICY


@dataclass(frozen=True)
class CrawlerSettings:
    """
    Crawl API adapter settings.
    """

    provider: str = "http"
    base_url: str = "https://api.firecrawl.dev/v1/scrape"
    api_key: str | None = None
    timeout_seconds: float = 60.0


@dataclass(frozen=True)
class ScoringSettings:
    """
    Language-model scoring provider settings (OpenAI-compatible endpoint).
    """

    provider: str = "openai"
    api_key: str | None = None
    base_url: str | None = "https://openrouter.ai/api/v1"
    models: tuple[str, ...] = DEFAULT_SCORING_MODELS
    prompt_types: tuple[str, ...] = ("recommendation",)
    assessment_model: str = "openai/gpt-4-turbo"
    max_tokens: int = 1024
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class SearchSettings:
    """
    Web search provider settings for notability references.
    """

    provider: str = "google"
    api_key: str | None = None
    engine_id: str | None = None
    base_url: str = "https://www.googleapis.com/customsearch/v1"
    max_results: int = 15
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class PublishSettings:
    """
    Publish gate thresholds and publisher target selection.
    """

    provider: str = "mock"
    is_production: bool = False
    production_target: str = "wikidata"
    test_target: str = "test.wikidata"
    publish_confidence_threshold: float = 0.7
    review_confidence_threshold: float = 0.5
    min_serious_references: int = 2
    timeout_seconds: float = 30.0

    @property
    def target(self) -> str:
        return self.production_target if self.is_production else self.test_target


@dataclass(frozen=True)
class ManualStorageSettings:
    """
    Location of the manual-publish fallback store.
    """

    root_dir: str = "data/manual-publish"


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Periodic automation driver settings.
    """

    enabled: bool = True
    sweep_interval_minutes: int = 15
    max_workers: int = 4
    batch_limit: int = 500
    stale_run_minutes: int = 60


@lru_cache(maxsize=1)
def get_retry_settings() -> RetrySettings:
    """
    Return retry policies from environment variables.
    """

    defaults = RetrySettings()
    return RetrySettings(
        crawl=_read_retry_policy("CRAWL", defaults.crawl),
        scoring=_read_retry_policy("SCORING", defaults.scoring),
    )


@lru_cache(maxsize=1)
def get_crawler_settings() -> CrawlerSettings:
    return CrawlerSettings(
        provider=_get_str_env("CRAWLER_PROVIDER", "http").lower(),
        base_url=_get_str_env("CRAWLER_BASE_URL", "https://api.firecrawl.dev/v1/scrape"),
        api_key=_get_optional_str_env("CRAWLER_API_KEY"),
        timeout_seconds=max(1.0, _get_float_env("CRAWLER_TIMEOUT_SECONDS", 60.0)),
    )


@lru_cache(maxsize=1)
def get_scoring_settings() -> ScoringSettings:
    return ScoringSettings(
        provider=_get_str_env("SCORING_PROVIDER", "openai").lower(),
        api_key=_get_optional_str_env("SCORING_API_KEY") or _get_optional_str_env("OPENAI_API_KEY"),
        base_url=_get_optional_str_env("SCORING_BASE_URL") or "https://openrouter.ai/api/v1",
        models=_get_csv_env("SCORING_MODELS", DEFAULT_SCORING_MODELS),
        prompt_types=_get_csv_env("SCORING_PROMPT_TYPES", ("recommendation",)),
        assessment_model=_get_str_env("SCORING_ASSESSMENT_MODEL", "openai/gpt-4-turbo"),
        max_tokens=max(64, _get_int_env("SCORING_MAX_TOKENS", 1024)),
        timeout_seconds=max(1.0, _get_float_env("SCORING_TIMEOUT_SECONDS", 30.0)),
    )


@lru_cache(maxsize=1)
def get_search_settings() -> SearchSettings:
    return SearchSettings(
        provider=_get_str_env("SEARCH_PROVIDER", "google").lower(),
        api_key=_get_optional_str_env("GOOGLE_SEARCH_API_KEY"),
        engine_id=_get_optional_str_env("GOOGLE_SEARCH_ENGINE_ID"),
        base_url=_get_str_env("GOOGLE_SEARCH_BASE_URL", "https://www.googleapis.com/customsearch/v1"),
        max_results=max(1, _get_int_env("SEARCH_MAX_RESULTS", 15)),
        timeout_seconds=max(1.0, _get_float_env("SEARCH_TIMEOUT_SECONDS", 15.0)),
    )


@lru_cache(maxsize=1)
def get_publish_settings() -> PublishSettings:
    return PublishSettings(
        provider=_get_str_env("PUBLISHER_PROVIDER", "mock").lower(),
        is_production=_get_bool_env("PUBLISH_TO_PRODUCTION", False),
        production_target=_get_str_env("PUBLISH_PRODUCTION_TARGET", "wikidata"),
        test_target=_get_str_env("PUBLISH_TEST_TARGET", "test.wikidata"),
        publish_confidence_threshold=min(1.0, max(0.0, _get_float_env("PUBLISH_CONFIDENCE_THRESHOLD", 0.7))),
        review_confidence_threshold=min(1.0, max(0.0, _get_float_env("PUBLISH_REVIEW_CONFIDENCE_THRESHOLD", 0.5))),
        min_serious_references=max(1, _get_int_env("NOTABILITY_MIN_SERIOUS_REFERENCES", 2)),
        timeout_seconds=max(1.0, _get_float_env("PUBLISH_TIMEOUT_SECONDS", 30.0)),
    )


@lru_cache(maxsize=1)
def get_manual_storage_settings() -> ManualStorageSettings:
    return ManualStorageSettings(
        root_dir=_get_str_env("MANUAL_PUBLISH_STORAGE_DIR", "data/manual-publish"),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        enabled=_get_bool_env("CFP_SCHEDULER_ENABLED", True),
        sweep_interval_minutes=max(1, _get_int_env("CFP_SWEEP_INTERVAL_MINUTES", 15)),
        max_workers=max(1, _get_int_env("CFP_WORKER_POOL_SIZE", 4)),
        batch_limit=max(1, _get_int_env("CFP_SWEEP_BATCH_LIMIT", 500)),
        stale_run_minutes=max(1, _get_int_env("CFP_STALE_RUN_MINUTES", 60)),
    )

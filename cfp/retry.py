"""Bounded retry with exponential backoff, plus hard timeouts for external calls.

Only ``RetryableIOError`` (network/timeout classes) is retried. Validation
failures, publisher rejections and programming errors propagate on the first
attempt.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, TypeVar

from cfp.errors import ExternalTimeoutError, RetryableIOError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff parameters.

    Attributes:
        max_attempts: Total attempts including the first one.
        initial_delay_seconds: Wait before the second attempt.
        multiplier: Growth factor applied per attempt.
        max_delay_seconds: Upper bound on any single wait.
        jitter: Fractional +/- randomisation applied to each wait (0 disables).
    """

    max_attempts: int = 3
    initial_delay_seconds: float = 2.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.25

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Wait in seconds after the 0-based ``attempt`` fails."""
        base = min(self.initial_delay_seconds * (self.multiplier**attempt), self.max_delay_seconds)
        if self.jitter <= 0:
            return base
        spread = base * self.jitter
        return max(0.0, base - spread + (2 * spread * rng()))


CRAWL_RETRY_POLICY = RetryPolicy(max_attempts=3, initial_delay_seconds=2.0, multiplier=2.0, max_delay_seconds=30.0)
SCORING_RETRY_POLICY = RetryPolicy(max_attempts=2, initial_delay_seconds=1.0, multiplier=2.0, max_delay_seconds=10.0)


def call_with_retry(
    func: Callable[[], T],
    *,
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or the retry budget runs out.

    Args:
        func: Zero-argument callable performing one attempt.
        policy: Backoff parameters.
        operation: Label used in logs and in the exhaustion error.
        sleep: Injectable sleeper, replaced in tests.

    Returns:
        Whatever ``func`` returns on the first successful attempt.

    Raises:
        RetryExhaustedError: If every attempt raised RetryableIOError.
        Exception: Any non-retryable error, unchanged, on first occurrence.
    """
    attempts = max(1, policy.max_attempts)
    last_error: RetryableIOError | None = None

    for attempt in range(attempts):
        try:
            result = func()
            if attempt > 0:
                logger.info("Retry succeeded operation=%s attempt=%d/%d", operation, attempt + 1, attempts)
            return result
        except RetryableIOError as exc:
            last_error = exc

        if attempt + 1 >= attempts:
            break

        wait_seconds = policy.delay_for(attempt)
        logger.warning(
            "Retryable failure operation=%s attempt=%d/%d wait_seconds=%.2f error=%s",
            operation,
            attempt + 1,
            attempts,
            wait_seconds,
            last_error,
        )
        sleep(wait_seconds)

    logger.error("Retries exhausted operation=%s attempts=%d error=%s", operation, attempts, last_error)
    raise RetryExhaustedError(operation=operation, attempts=attempts, last_error=last_error)


class TimeoutPool:
    """
    Worker pool for timeout-guarded calls of one kind (crawl, scoring, ...).

    A call that overruns keeps its worker until the underlying client returns;
    the caller is released immediately. Each concern gets its own pool so a
    hung provider only delays calls of its own kind. Submissions beyond the
    worker count queue up and are logged as saturation.
    """

    def __init__(self, name: str, max_workers: int = 4) -> None:
        self.name = name
        self.max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"cfp-{name}")
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def submit(self, func: Callable[[], T]) -> Future[T]:
        with self._lock:
            self._in_flight += 1
            in_flight = self._in_flight
        if in_flight > self.max_workers:
            logger.warning(
                "Timeout pool saturated pool=%s in_flight=%d max_workers=%d",
                self.name,
                in_flight,
                self.max_workers,
            )
        future = self._executor.submit(func)
        future.add_done_callback(self._on_done)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def _on_done(self, _: Future[Any]) -> None:
        with self._lock:
            self._in_flight -= 1


_pools: dict[str, TimeoutPool] = {}
_pools_lock = threading.Lock()


def get_timeout_pool(name: str) -> TimeoutPool:
    """Process-wide pool for ``name``, created on first use."""
    with _pools_lock:
        pool = _pools.get(name)
        if pool is None:
            pool = _pools[name] = TimeoutPool(name)
        return pool


def call_with_timeout(
    func: Callable[[], T],
    *,
    timeout_seconds: float | None,
    operation: str,
    pool: str | TimeoutPool = "external",
) -> T:
    """Run ``func`` with a hard deadline, raising ExternalTimeoutError on expiry."""
    if timeout_seconds is None or timeout_seconds <= 0:
        return func()

    runner = pool if isinstance(pool, TimeoutPool) else get_timeout_pool(pool)
    future = runner.submit(func)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.error(
            "External call timed out operation=%s pool=%s timeout_seconds=%.1f",
            operation,
            runner.name,
            timeout_seconds,
        )
        raise ExternalTimeoutError(f"{operation} timed out after {timeout_seconds:.1f}s") from exc

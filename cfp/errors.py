"""
cfp/errors.py

Pipeline error taxonomy. Every error carries a ``retryable`` flag so callers
can tell transient faults from ones that need human correction.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception for CFP pipeline failures."""

    retryable: bool = False


class RetryableIOError(PipelineError):
    """Network or timeout failure talking to an external capability."""

    retryable = True


class ExternalTimeoutError(RetryableIOError):
    """An external call exceeded its hard timeout."""


class RetryExhaustedError(RetryableIOError):
    """
    Raised when a retryable call keeps failing until the policy runs out.
    """

    def __init__(self, *, operation: str, attempts: int, last_error: BaseException | None) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown error"
        super().__init__(f"{operation} failed after {attempts} attempt(s): {detail}")


class ScoringFailedError(PipelineError):
    """Every scoring call of a fingerprint run failed."""

    def __init__(self, message: str, *, retryable: bool) -> None:
        self.retryable = retryable
        super().__init__(message)


class InputValidationError(PipelineError):
    """Malformed input (bad URL, unusable crawl payload). Never retried."""


class PublisherRejection(PipelineError):
    """The publisher refused the entity, typically a schema/property mismatch."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConcurrencyConflict(PipelineError):
    """A run is already active for this business."""

    retryable = True

    def __init__(self, business_id: object, message: str | None = None) -> None:
        self.business_id = business_id
        super().__init__(message or f"A CFP run is already active for business {business_id}.")


class InvalidStatusTransition(PipelineError):
    """Attempted a status change outside the transition table."""

    def __init__(self, current: str, target: str, *, reason: str | None = None) -> None:
        self.current = current
        self.target = target
        message = f"Illegal status transition '{current}' -> '{target}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


def describe_error(exc: BaseException, *, limit: int = 2000) -> str:
    """Human-readable cause suitable for ``error_message`` columns."""

    return f"{type(exc).__name__}: {exc}"[:limit]

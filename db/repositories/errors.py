"""
Repository-layer exceptions for CFP persistence and manual storage.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base exception for repository failures."""


class BusinessNotFoundError(RepositoryError):
    """Raised when a referenced business does not exist (or was deleted)."""


class StatusConflictError(RepositoryError):
    """Raised when a compare-and-set status write matches no row."""

    def __init__(self, business_id: object, expected: tuple[str, ...], target: str) -> None:
        self.business_id = business_id
        self.expected = expected
        self.target = target
        super().__init__(
            f"Status of business {business_id} is no longer one of {list(expected)}; "
            f"refusing transition to '{target}'."
        )


class ManualStorageError(RepositoryError):
    """Raised when writing, reading or deleting a stored manual entity fails."""

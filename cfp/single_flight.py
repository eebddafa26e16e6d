"""
cfp/single_flight.py

In-process single-flight registry: at most one active run per business.
A second acquisition for the same id is rejected, never queued.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from cfp.errors import ConcurrencyConflict


class SingleFlightRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[uuid.UUID] = set()

    def try_acquire(self, business_id: uuid.UUID) -> bool:
        with self._lock:
            if business_id in self._active:
                return False
            self._active.add(business_id)
            return True

    def acquire(self, business_id: uuid.UUID) -> None:
        if not self.try_acquire(business_id):
            raise ConcurrencyConflict(business_id)

    def release(self, business_id: uuid.UUID) -> None:
        with self._lock:
            self._active.discard(business_id)

    def is_active(self, business_id: uuid.UUID) -> bool:
        with self._lock:
            return business_id in self._active

    def active_ids(self) -> frozenset[uuid.UUID]:
        with self._lock:
            return frozenset(self._active)

    @contextmanager
    def hold(self, business_id: uuid.UUID) -> Iterator[None]:
        """Acquire for the duration of the block; raises ConcurrencyConflict if held."""
        self.acquire(business_id)
        try:
            yield
        finally:
            self.release(business_id)

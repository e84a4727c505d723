"""Counting admission gate that bounds concurrent units of work."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)

# Interval at which a blocked acquire re-checks its cancel event
_CANCEL_POLL_SECONDS = 0.05


class AdmissionGate:
    """Bounded-concurrency primitive.

    ``acquire()`` blocks until a permit is free; ``release()`` returns it.
    A limit of ``None`` or ``<= 0`` admits everything.

    Args:
        limit: Maximum number of permits held at once
    """

    def __init__(self, limit: int | None = None) -> None:
        self._limit = limit if limit is not None and limit > 0 else None
        self._semaphore = threading.Semaphore(self._limit) if self._limit else None
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0

    @property
    def limit(self) -> int | None:
        return self._limit

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak(self) -> int:
        """Highest number of permits held at the same time."""
        with self._lock:
            return self._peak

    def acquire(self, cancel_event: threading.Event | None = None) -> bool:
        """Wait for a permit.

        Args:
            cancel_event: If set while waiting, give up without a permit

        Returns:
            True if a permit was acquired, False if cancelled
        """
        if self._semaphore is not None:
            if cancel_event is None:
                self._semaphore.acquire()
            else:
                while not self._semaphore.acquire(timeout=_CANCEL_POLL_SECONDS):
                    if cancel_event.is_set():
                        return False
                if cancel_event.is_set():
                    self._semaphore.release()
                    return False
        elif cancel_event is not None and cancel_event.is_set():
            return False

        with self._lock:
            self._in_flight += 1
            self._peak = max(self._peak, self._in_flight)
        return True

    def release(self) -> None:
        with self._lock:
            if self._in_flight == 0:
                raise ValueError("AdmissionGate released more times than acquired")
            self._in_flight -= 1
        if self._semaphore is not None:
            self._semaphore.release()

    @contextmanager
    def permit(self, cancel_event: threading.Event | None = None) -> Iterator[bool]:
        """Hold a permit for the duration of the block.

        Yields False (and holds nothing) if ``cancel_event`` fired first.
        The permit is released on every exit path, including exceptions.
        """
        acquired = self.acquire(cancel_event)
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def __repr__(self) -> str:
        return f"AdmissionGate(limit={self._limit}, in_flight={self.in_flight})"

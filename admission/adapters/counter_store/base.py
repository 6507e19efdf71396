"""Counter store interfaces.

A counter store keeps one fixed-window bucket per key. Rate limiters only talk
to this abstraction so the storage backend (process memory or Redis) can be
chosen at startup without touching the admission logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Bucket:
    """Requests counted for one key in its current window.

    Attributes:
        count: Requests seen since the window opened (>= 1 once stored).
        reset_time: UNIX epoch seconds at which the window closes.
    """

    count: int
    reset_time: float

    def is_expired(self, now: float) -> bool:
        return now >= self.reset_time


class AbstractCounterStore(ABC):
    """Interface for counter stores."""

    backend_name: str = "abstract"

    @property
    def degraded(self) -> bool:
        """True while the store is answering from a fallback instead of its backend."""
        return False

    @abstractmethod
    def increment(self, key: str, window_ms: int) -> Bucket:
        """Count one request for ``key`` and return the updated bucket.

        Opens a new window of ``window_ms`` milliseconds when the key has no
        live bucket; otherwise increments the count and keeps the existing
        reset time. Concurrent calls for the same key observe distinct,
        consecutive counts.

        Implementations must not raise for backend outages: they recover
        internally (the Redis store answers from memory). Only invalid
        arguments raise. Rate limiters still guard this call and count in
        memory if a store breaks the contract.

        Args:
            key: Bucket identifier (already namespaced by the caller).
            window_ms: Window length used when a new window is opened.

        Returns:
            Bucket after the increment.

        Raises:
            ValueError: If key is empty or window_ms is not positive.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> Bucket | None:
        """Return the live bucket for ``key``, or None if absent or expired."""
        raise NotImplementedError

    def close(self) -> None:
        """Release background tasks and connections held by the store."""

    def __enter__(self) -> "AbstractCounterStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def validate_increment_args(key: str, window_ms: int) -> None:
    """Reject arguments that indicate a programming error in the caller.

    Raises:
        ValueError: If key is empty or window_ms is not positive.
    """
    if not key:
        raise ValueError("key must be a non-empty string")
    if window_ms < 1:
        raise ValueError("window_ms must be >= 1")

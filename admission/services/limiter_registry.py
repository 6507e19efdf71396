"""Named, process-lifetime rate limiters.

Limiters accumulate bucket counts across requests, so they must outlive any
single request. The registry builds each named limiter on first use and hands
back the same instance afterwards. It is created once at application startup
and closed on shutdown (see ``admission.core.app_factory``).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from admission.adapters.counter_store.base import AbstractCounterStore
from admission.adapters.counter_store.factory import create_counter_store
from admission.core.config import RateLimitSettings
from admission.services.rate_limiter import LimiterConfig, RateLimiter

logger = logging.getLogger(__name__)

FEEDBACK = "feedback"
GENERAL = "general"
STRICT = "strict"

LIMITER_PRESETS: dict[str, LimiterConfig] = {
    # Abuse-prone public writes
    FEEDBACK: LimiterConfig(
        window_ms=15 * 60 * 1000,
        max_requests=3,
        message="Too many feedback submissions. Please wait before submitting again.",
    ),
    # Ordinary read traffic
    GENERAL: LimiterConfig(
        window_ms=15 * 60 * 1000,
        max_requests=100,
        message="Too many requests. Please try again later.",
    ),
    # Short-horizon burst protection
    STRICT: LimiterConfig(
        window_ms=60 * 1000,
        max_requests=10,
        message="Rate limit exceeded. Please slow down your requests.",
    ),
}


class LimiterRegistry:
    """Memoizes rate limiters by name on top of one shared counter store."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._limiters: dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def get_or_create(self, name: str, config: LimiterConfig) -> RateLimiter:
        """Return the limiter registered under ``name``, creating it if needed.

        The config only applies on first creation; later calls get the
        existing instance (and its counters) unchanged.
        """
        with self._lock:
            limiter = self._limiters.get(name)
            if limiter is None:
                limiter = RateLimiter(name, config, self._store, clock=self._clock)
                self._limiters[name] = limiter
                logger.info(
                    "limiter_registry.created",
                    extra={
                        "limiter": name,
                        "max_requests": config.max_requests,
                        "window_ms": config.window_ms,
                        "backend": self._store.backend_name,
                    },
                )
            return limiter

    def get(self, name: str) -> RateLimiter:
        """Return an already created limiter.

        Raises:
            KeyError: If no limiter has been created under ``name``.
        """
        with self._lock:
            return self._limiters[name]

    def preset(self, name: str) -> RateLimiter:
        """Return one of the built-in limiters listed in LIMITER_PRESETS.

        Raises:
            KeyError: If ``name`` is not a known preset.
        """
        return self.get_or_create(name, LIMITER_PRESETS[name])

    def feedback(self) -> RateLimiter:
        return self.preset(FEEDBACK)

    def general(self) -> RateLimiter:
        return self.preset(GENERAL)

    def strict(self) -> RateLimiter:
        return self.preset(STRICT)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._limiters)

    @property
    def degraded(self) -> bool:
        """True while the store or any limiter is counting in process memory."""
        with self._lock:
            limiters = list(self._limiters.values())
        return self._store.degraded or any(limiter.degraded for limiter in limiters)

    def close(self) -> None:
        """Drop all limiters and release the counter store."""
        with self._lock:
            limiters = list(self._limiters.values())
            self._limiters.clear()
        for limiter in limiters:
            limiter.close()
        self._store.close()

    def __enter__(self) -> "LimiterRegistry":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_limiter_registry(
    rate_limit_settings: RateLimitSettings | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> LimiterRegistry:
    """Create a registry backed by the configured counter store."""
    store = create_counter_store(rate_limit_settings, clock=clock)
    return LimiterRegistry(store, clock=clock)

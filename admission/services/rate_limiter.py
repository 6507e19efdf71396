"""Fixed-window rate limiter producing admission decisions.

A limiter derives a bucket key from the request (caller IP by default),
counts the request in the counter store, and compares the count with its
threshold. Counting and checking are one step: rejected requests are counted
too, so a client that keeps flooding keeps its own bucket full.
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request

from admission.adapters.counter_store.base import AbstractCounterStore, Bucket
from admission.adapters.counter_store.in_memory import InMemoryCounterStore

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "rate_limit"
UNKNOWN_CLIENT = "unknown"
DEFAULT_MESSAGE = "Too many requests, please try again later."

KeyGenerator = Callable[[Request], str]


def client_ip(request: Request) -> str:
    """Return the caller's address as reported by the reverse proxy.

    Precedence: first entry of ``X-Forwarded-For``, then ``X-Real-IP``, then
    the literal ``"unknown"``. Clients without either header share the
    ``"unknown"`` bucket.
    """
    headers = getattr(request, "headers", None) or {}

    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    return UNKNOWN_CLIENT


def client_ip_key(request: Request) -> str:
    """Default key generator: ``rate_limit:<client ip>``."""
    return f"{KEY_NAMESPACE}:{client_ip(request)}"


def _hash_key(key: str) -> str:
    """Hash the bucket key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class LimiterConfig:
    """Immutable limiter configuration.

    Attributes:
        window_ms: Window length in milliseconds.
        max_requests: Requests admitted per key and window.
        key_generator: Maps a request to its bucket key.
        message: Text returned to rejected clients.
        skip_successful_requests: Accepted for compatibility; has no effect.
        skip_failed_requests: Accepted for compatibility; has no effect.
    """

    window_ms: int
    max_requests: int
    key_generator: KeyGenerator = client_ip_key
    message: str = DEFAULT_MESSAGE
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False

    def __post_init__(self) -> None:
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")


@dataclass(frozen=True)
class Decision:
    """Outcome of a limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when blocked).
        reset_time: UNIX epoch seconds when the current window closes.
        retry_after_seconds: Seconds to wait; set only when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after_seconds: int | None = None

    @property
    def reset_time_ms(self) -> int:
        return int(self.reset_time * 1000)

    @property
    def reset_time_iso(self) -> str:
        """Reset time as ISO-8601 UTC with millisecond precision (``...Z``)."""
        moment = datetime.fromtimestamp(self.reset_time, tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RateLimiter:
    """Admission check for one named purpose (e.g. feedback submissions)."""

    def __init__(
        self,
        name: str,
        config: LimiterConfig,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not name:
            raise ValueError("name must be a non-empty string")

        self._name = name
        self._config = config
        self._store = store
        self._clock = clock
        self._fallback: InMemoryCounterStore | None = None
        self._fallback_lock = threading.Lock()
        self._degraded = False

        if config.skip_successful_requests or config.skip_failed_requests:
            # TODO: decide with product whether outcome-based counting is wanted;
            # until then every request counts.
            logger.warning(
                "rate_limit.inert_option",
                extra={
                    "limiter": name,
                    "skip_successful_requests": config.skip_successful_requests,
                    "skip_failed_requests": config.skip_failed_requests,
                },
            )

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"RateLimiter(name={self._name!r}, max_requests={self._config.max_requests}, "
            f"window_ms={self._config.window_ms}, store={self._store.backend_name})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> LimiterConfig:
        return self._config

    @property
    def degraded(self) -> bool:
        """True while the last count had to bypass the shared store."""
        return self._degraded

    def close(self) -> None:
        """Release the private fallback store, if one was ever needed."""
        with self._fallback_lock:
            fallback, self._fallback = self._fallback, None
        if fallback is not None:
            fallback.close()

    def _fallback_store(self) -> InMemoryCounterStore:
        with self._fallback_lock:
            if self._fallback is None:
                self._fallback = InMemoryCounterStore(clock=self._clock)
            return self._fallback

    def _increment(self, key: str) -> Bucket:
        try:
            bucket = self._store.increment(key, self._config.window_ms)
        except Exception as exc:
            logger.error(
                "rate_limit.store_failed",
                extra={
                    "limiter": self._name,
                    "backend": self._store.backend_name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            self._degraded = True
            return self._fallback_store().increment(key, self._config.window_ms)

        self._degraded = False
        return bucket

    def _bucket_key(self, request: Request) -> str:
        try:
            key = self._config.key_generator(request)
        except Exception as exc:
            logger.warning(
                "rate_limit.key_generator_failed",
                extra={
                    "limiter": self._name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            key = ""

        if not key:
            key = f"{KEY_NAMESPACE}:{UNKNOWN_CLIENT}"

        # Limiters may share a store; the name keeps their buckets apart.
        return f"{self._name}:{key}"

    def check_limit(self, request: Request) -> Decision:
        """Count the request and decide whether it is admitted.

        Args:
            request: Incoming HTTP request (only its headers are read by the
                default key generator).

        Returns:
            Decision with limit metadata. Never raises: a failing key
            generator counts against the ``unknown`` bucket, and a failing
            store is replaced for that call by a process-local store owned
            by this limiter, so limits still hold per process.
        """
        key = self._bucket_key(request)
        bucket = self._increment(key)

        limit = self._config.max_requests
        allowed = bucket.count <= limit
        retry_after: int | None = None
        if not allowed:
            retry_after = max(1, math.ceil(bucket.reset_time - self._clock()))

        decision = Decision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - bucket.count),
            reset_time=bucket.reset_time,
            retry_after_seconds=retry_after,
        )

        log_fields = {
            "limiter": self._name,
            "key_hash": _hash_key(key),
            "count": bucket.count,
            "limit": limit,
            "remaining": decision.remaining,
            "window_ms": self._config.window_ms,
        }
        if allowed:
            logger.debug("rate_limit.allowed", extra=log_fields)
        else:
            logger.warning("rate_limit.exceeded", extra={**log_fields, "retry_after_s": retry_after})

        return decision

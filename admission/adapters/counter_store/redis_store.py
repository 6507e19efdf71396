"""Redis-backed fixed-window counter store.

Used when several API processes must share one set of limits. Counting runs
in a Lua script so increment and expiry are a single atomic step on the
server, and the expiry is set only when a window opens.

Failure policy: a Redis error or timeout never reaches the caller. The call
is answered by a private in-memory store instead, and the next call tries
Redis again.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import redis
from redis.backoff import NoBackoff
from redis.exceptions import RedisError
from redis.retry import Retry

from admission.adapters.counter_store.base import (
    AbstractCounterStore,
    Bucket,
    validate_increment_args,
)
from admission.adapters.counter_store.in_memory import (
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    InMemoryCounterStore,
)

logger = logging.getLogger(__name__)

# KEYS[1] = bucket key, ARGV[1] = window in milliseconds.
# Returns {count, remaining ttl in ms}.
INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store shared across processes through Redis."""

    backend_name = "redis"

    def __init__(
        self,
        client: redis.Redis,
        *,
        key_prefix: str | None = None,
        clock: Callable[[], float] = time.time,
        fallback: InMemoryCounterStore | None = None,
    ) -> None:
        """Wrap an existing Redis client.

        Args:
            client: Synchronous redis-py client. Its socket timeouts bound how
                long a call may block before falling back.
            key_prefix: Optional namespace prepended to every key.
            clock: Time source used to turn TTLs into absolute reset times.
            fallback: Store answering calls while Redis is failing; a private
                one is created when omitted.
        """
        self._client = client
        self._increment = client.register_script(INCREMENT_SCRIPT)
        self._prefix = f"{key_prefix}:" if key_prefix else ""
        self._clock = clock
        self._fallback = fallback if fallback is not None else InMemoryCounterStore(clock=clock)
        self._degraded = False

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        timeout_ms: int = 200,
        key_prefix: str | None = None,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float | None = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> "RedisCounterStore":
        """Build a store from a connection URL.

        No connection is made here; use ``ping()`` to probe reachability.

        Raises:
            ValueError: If the URL scheme is not understood by redis-py.
        """
        timeout = timeout_ms / 1000
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
            # A failed call falls back to memory at once instead of retrying
            retry=Retry(NoBackoff(), 0),
        )
        fallback = InMemoryCounterStore(clock=clock, sweep_interval_seconds=sweep_interval_seconds)
        return cls(client, key_prefix=key_prefix, clock=clock, fallback=fallback)

    @property
    def fallback(self) -> InMemoryCounterStore:
        return self._fallback

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _log_fallback(self, operation: str, exc: RedisError) -> None:
        self._degraded = True
        logger.warning(
            "counter_store.fallback",
            extra={
                "operation": operation,
                "backend": self.backend_name,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )

    def increment(self, key: str, window_ms: int) -> Bucket:
        validate_increment_args(key, window_ms)

        try:
            count, ttl_ms = self._increment(keys=[self._key(key)], args=[window_ms])
        except RedisError as exc:
            self._log_fallback("increment", exc)
            return self._fallback.increment(key, window_ms)

        self._degraded = False
        return Bucket(count=int(count), reset_time=self._clock() + int(ttl_ms) / 1000)

    def get(self, key: str) -> Bucket | None:
        redis_key = self._key(key)
        try:
            with self._client.pipeline() as pipe:
                pipe.get(redis_key)
                pipe.pttl(redis_key)
                raw_count, ttl_ms = pipe.execute()
        except RedisError as exc:
            self._log_fallback("get", exc)
            return self._fallback.get(key)

        self._degraded = False
        # PTTL is -2 for a missing key and -1 for a key without expiry
        if raw_count is None or ttl_ms is None or int(ttl_ms) <= 0:
            return None
        return Bucket(count=int(raw_count), reset_time=self._clock() + int(ttl_ms) / 1000)

    def ping(self) -> bool:
        """Return True when the Redis server answers within the timeout."""
        try:
            return bool(self._client.ping())
        except RedisError as exc:
            logger.warning(
                "counter_store.unreachable",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return False

    def close(self) -> None:
        self._fallback.close()
        try:
            self._client.close()
        except RedisError as exc:
            logger.debug("counter_store.close_failed", extra={"error_type": type(exc).__name__})

"""Factory for the counter store selected by configuration."""

from __future__ import annotations

import logging
import time
from typing import Callable

from admission.adapters.counter_store.base import AbstractCounterStore
from admission.adapters.counter_store.in_memory import InMemoryCounterStore
from admission.adapters.counter_store.redis_store import RedisCounterStore
from admission.core.config import RateLimitSettings, settings

logger = logging.getLogger(__name__)


def create_counter_store(
    rate_limit_settings: RateLimitSettings | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> AbstractCounterStore:
    """Instantiate the counter store for this process.

    Reads RATE_LIMIT_* settings. With a Redis URL configured, the server is
    probed once; if it cannot be reached the process keeps its counters in
    memory for the store's lifetime instead of failing startup.

    Args:
        rate_limit_settings: Optional settings; defaults to global settings.
        clock: Time source shared by the store and its fallback.

    Returns:
        AbstractCounterStore: Redis store when reachable, otherwise in-memory.
    """
    cfg = rate_limit_settings or settings.rate_limit

    if not cfg.redis_url:
        logger.info("counter_store.selected", extra={"backend": "memory", "reason": "not_configured"})
        return InMemoryCounterStore(clock=clock, sweep_interval_seconds=cfg.sweep_interval_seconds)

    try:
        store = RedisCounterStore.from_url(
            cfg.redis_url,
            timeout_ms=cfg.redis_timeout_ms,
            key_prefix=cfg.key_prefix,
            clock=clock,
            sweep_interval_seconds=cfg.sweep_interval_seconds,
        )
    except ValueError as exc:
        logger.warning(
            "counter_store.selected",
            extra={"backend": "memory", "reason": "invalid_url", "error_msg": str(exc)},
        )
        return InMemoryCounterStore(clock=clock, sweep_interval_seconds=cfg.sweep_interval_seconds)

    if not store.ping():
        store.close()
        logger.warning("counter_store.selected", extra={"backend": "memory", "reason": "unreachable"})
        return InMemoryCounterStore(clock=clock, sweep_interval_seconds=cfg.sweep_interval_seconds)

    logger.info("counter_store.selected", extra={"backend": "redis"})
    return store

"""Tests for the named limiter registry."""

import threading

import pytest

from admission.adapters.counter_store.in_memory import InMemoryCounterStore
from admission.core.config import RateLimitSettings
from admission.services.limiter_registry import (
    FEEDBACK,
    GENERAL,
    LIMITER_PRESETS,
    STRICT,
    LimiterRegistry,
    build_limiter_registry,
)
from admission.services.rate_limiter import LimiterConfig


@pytest.fixture
def registry(memory_store, clock):
    registry = LimiterRegistry(memory_store, clock=clock)
    yield registry
    registry.close()


def test_presets_match_documented_limits() -> None:
    assert (LIMITER_PRESETS[FEEDBACK].max_requests, LIMITER_PRESETS[FEEDBACK].window_ms) == (3, 900_000)
    assert (LIMITER_PRESETS[GENERAL].max_requests, LIMITER_PRESETS[GENERAL].window_ms) == (100, 900_000)
    assert (LIMITER_PRESETS[STRICT].max_requests, LIMITER_PRESETS[STRICT].window_ms) == (10, 60_000)


def test_same_name_returns_same_instance(registry) -> None:
    config = LimiterConfig(window_ms=1_000, max_requests=1)

    first = registry.get_or_create("custom", config)
    second = registry.get_or_create("custom", LimiterConfig(window_ms=5_000, max_requests=9))

    assert first is second
    assert second.config == config


def test_counters_persist_across_lookups(registry, make_request) -> None:
    request = make_request({"X-Forwarded-For": "1.2.3.4"})

    for _ in range(3):
        assert registry.feedback().check_limit(request).allowed is True

    assert registry.feedback().check_limit(request).allowed is False


def test_preset_accessors(registry) -> None:
    assert registry.feedback() is registry.preset(FEEDBACK)
    assert registry.general().config is LIMITER_PRESETS[GENERAL]
    assert registry.strict().name == STRICT
    assert registry.names() == [FEEDBACK, GENERAL, STRICT]


def test_unknown_names_raise(registry) -> None:
    with pytest.raises(KeyError):
        registry.get("missing")
    with pytest.raises(KeyError):
        registry.preset("missing")


def test_concurrent_first_use_builds_one_instance(registry) -> None:
    workers = 16
    barrier = threading.Barrier(workers)
    seen = []

    def _worker() -> None:
        barrier.wait()
        seen.append(registry.strict())

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(limiter) for limiter in seen}) == 1


def test_close_releases_store(memory_store, clock) -> None:
    memory_store.increment("k", 1_000)

    with LimiterRegistry(memory_store, clock=clock) as registry:
        registry.general()

    assert registry.names() == []
    assert len(memory_store) == 0


def test_build_limiter_registry_uses_configured_store() -> None:
    registry = build_limiter_registry(RateLimitSettings(redis_url=None))
    try:
        assert isinstance(registry.store, InMemoryCounterStore)
    finally:
        registry.close()


def test_degraded_follows_limiter_fallback(clock, make_request) -> None:
    class FlakyStore(InMemoryCounterStore):
        fail = True

        def increment(self, key, window_ms):
            if self.fail:
                raise RuntimeError("backend lost")
            return super().increment(key, window_ms)

    store = FlakyStore(clock=clock, sweep_interval_seconds=None)
    with LimiterRegistry(store, clock=clock) as registry:
        assert registry.degraded is False

        registry.general().check_limit(make_request())
        assert registry.degraded is True

        store.fail = False
        registry.general().check_limit(make_request())
        assert registry.degraded is False


def test_close_releases_limiter_fallback_stores(clock, make_request) -> None:
    class DeadStore(InMemoryCounterStore):
        def increment(self, key, window_ms):
            raise RuntimeError("backend lost")

    registry = LimiterRegistry(DeadStore(clock=clock, sweep_interval_seconds=None), clock=clock)
    limiter = registry.strict()
    limiter.check_limit(make_request())
    fallback = limiter._fallback
    assert fallback is not None and len(fallback) == 1

    registry.close()

    assert limiter._fallback is None
    assert len(fallback) == 0

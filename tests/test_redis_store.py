"""Unit tests for the Redis counter store and its in-memory fallback."""

from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from admission.adapters.counter_store.base import Bucket
from admission.adapters.counter_store.redis_store import INCREMENT_SCRIPT, RedisCounterStore


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.register_script.return_value = MagicMock(name="increment_script")
    return client


@pytest.fixture
def store(redis_client, clock, memory_store):
    store = RedisCounterStore(redis_client, key_prefix="svc", clock=clock, fallback=memory_store)
    yield store
    store.close()


def test_registers_increment_script(store, redis_client) -> None:
    redis_client.register_script.assert_called_once_with(INCREMENT_SCRIPT)


def test_increment_uses_script_and_remaining_ttl(store, redis_client, clock) -> None:
    script = redis_client.register_script.return_value
    script.return_value = [1, 900_000]

    bucket = store.increment("feedback:rate_limit:1.2.3.4", 900_000)

    script.assert_called_once_with(keys=["svc:feedback:rate_limit:1.2.3.4"], args=[900_000])
    assert bucket == Bucket(count=1, reset_time=clock() + 900)


def test_increment_keeps_window_reported_by_server(store, redis_client, clock) -> None:
    script = redis_client.register_script.return_value
    script.return_value = [2, 450_000]

    bucket = store.increment("k", 900_000)

    assert bucket.count == 2
    assert bucket.reset_time == clock() + 450


@pytest.mark.parametrize(
    "error",
    [RedisConnectionError("refused"), RedisTimeoutError("timed out"), ResponseError("WRONGTYPE")],
)
def test_increment_falls_back_to_memory_on_redis_error(store, redis_client, memory_store, clock, error) -> None:
    script = redis_client.register_script.return_value
    script.side_effect = error

    first = store.increment("k", 60_000)
    second = store.increment("k", 60_000)

    assert first == Bucket(count=1, reset_time=clock() + 60)
    assert second.count == 2
    assert memory_store.get("k").count == 2


def test_fallback_is_per_call(store, redis_client) -> None:
    script = redis_client.register_script.return_value
    script.side_effect = RedisConnectionError("refused")
    assert store.increment("k", 60_000).count == 1

    script.side_effect = None
    script.return_value = [7, 30_000]
    assert store.increment("k", 60_000).count == 7


def test_get_reads_count_and_ttl(store, redis_client, clock) -> None:
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.execute.return_value = ["3", 5_000]

    bucket = store.get("k")

    pipe.get.assert_called_once_with("svc:k")
    pipe.pttl.assert_called_once_with("svc:k")
    assert bucket == Bucket(count=3, reset_time=clock() + 5)


@pytest.mark.parametrize("result", [[None, -2], ["4", -1], ["4", 0]])
def test_get_treats_missing_or_expired_key_as_absent(store, redis_client, result) -> None:
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.execute.return_value = result

    assert store.get("k") is None


def test_get_falls_back_to_memory(store, redis_client, memory_store) -> None:
    memory_store.increment("k", 60_000)
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.execute.side_effect = RedisConnectionError("refused")

    bucket = store.get("k")

    assert bucket is not None
    assert bucket.count == 1


def test_ping(store, redis_client) -> None:
    redis_client.ping.return_value = True
    assert store.ping() is True

    redis_client.ping.side_effect = RedisConnectionError("refused")
    assert store.ping() is False


def test_close_releases_client_and_fallback(redis_client, clock, memory_store) -> None:
    store = RedisCounterStore(redis_client, clock=clock, fallback=memory_store)
    memory_store.increment("k", 60_000)

    store.close()

    redis_client.close.assert_called_once()
    assert len(memory_store) == 0


def test_keys_without_prefix(redis_client, clock, memory_store) -> None:
    store = RedisCounterStore(redis_client, clock=clock, fallback=memory_store)
    script = redis_client.register_script.return_value
    script.return_value = [1, 1_000]

    store.increment("k", 1_000)

    script.assert_called_once_with(keys=["k"], args=[1_000])


def test_unreachable_server_never_raises(clock) -> None:
    store = RedisCounterStore.from_url(
        "redis://127.0.0.1:1/0", timeout_ms=100, clock=clock, sweep_interval_seconds=None
    )
    try:
        assert store.ping() is False
        assert store.increment("k", 60_000).count == 1
        assert store.increment("k", 60_000).count == 2
        assert store.get("k").count == 2
    finally:
        store.close()


def test_degraded_tracks_last_call(store, redis_client) -> None:
    script = redis_client.register_script.return_value
    assert store.degraded is False

    script.side_effect = RedisConnectionError("refused")
    store.increment("k", 60_000)
    assert store.degraded is True

    script.side_effect = None
    script.return_value = [2, 30_000]
    store.increment("k", 60_000)
    assert store.degraded is False

"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the test environment before settings are imported, so no .env file
is loaded and the limiters never try to reach a developer's Redis.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ["APP_ENV"] = "testing"
os.environ.pop("RATE_LIMIT_REDIS_URL", None)
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Callable  # noqa: E402

import pytest  # noqa: E402
from starlette.requests import Request  # noqa: E402

from admission.adapters.counter_store.in_memory import InMemoryCounterStore  # noqa: E402


class FakeClock:
    """Deterministic clock used to test window expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock):
    """In-memory store on the fake clock, without the background sweep."""
    store = InMemoryCounterStore(clock=clock, sweep_interval_seconds=None)
    yield store
    store.close()


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Build a bare Starlette request carrying the given headers."""

    def _make(headers: dict[str, str] | None = None, path: str = "/") -> Request:
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ]
        return Request({"type": "http", "method": "GET", "path": path, "headers": raw_headers})

    return _make

"""Counter store adapters.

Rate limiters depend on the abstract store only, so the same limiter runs on
process memory in development and on a shared Redis in production.
"""

from admission.adapters.counter_store.base import AbstractCounterStore, Bucket
from admission.adapters.counter_store.factory import create_counter_store
from admission.adapters.counter_store.in_memory import InMemoryCounterStore
from admission.adapters.counter_store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "Bucket",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]

"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: increments are serialized per key through a striped lock pool,
  so requests for unrelated keys do not contend on one global lock.
- Expired buckets are ignored on read; a background sweep only bounds memory.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from admission.adapters.counter_store.base import (
    AbstractCounterStore,
    Bucket,
    validate_increment_args,
)

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by a process-local dict.

    The reset time of a bucket is fixed when its window opens and never moves
    forward on later increments (fixed window, not sliding window).

    Important:
        The sweep thread is a daemon but still holds a reference to the store.
        Call ``close()`` (or use the store as a context manager) on shutdown.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float | None = DEFAULT_SWEEP_INTERVAL_SECONDS,
        lock_stripes: int = 64,
    ) -> None:
        """Initialize the store and start the sweep thread.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_interval_seconds: Seconds between sweeps of expired buckets;
                None disables the background sweep.
            lock_stripes: Number of locks keys are hashed onto.

        Raises:
            ValueError: If sweep_interval_seconds or lock_stripes are invalid.
        """
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be >= 1")
        if sweep_interval_seconds is not None and sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._locks = tuple(threading.Lock() for _ in range(lock_stripes))
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

        if sweep_interval_seconds is not None:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(sweep_interval_seconds,),
                name="counter-store-sweep",
                daemon=True,
            )
            self._sweeper.start()

    def __len__(self) -> int:
        return len(self._buckets)

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def increment(self, key: str, window_ms: int) -> Bucket:
        validate_increment_args(key, window_ms)

        with self._lock_for(key):
            now = self._clock()
            current = self._buckets.get(key)
            if current is None or current.is_expired(now):
                bucket = Bucket(count=1, reset_time=now + window_ms / 1000)
            else:
                bucket = Bucket(count=current.count + 1, reset_time=current.reset_time)
            self._buckets[key] = bucket

        return bucket

    def get(self, key: str) -> Bucket | None:
        with self._lock_for(key):
            bucket = self._buckets.get(key)
            if bucket is None:
                return None
            if bucket.is_expired(self._clock()):
                del self._buckets[key]
                return None
            return bucket

    def sweep(self) -> int:
        """Remove expired buckets.

        Each removal re-checks the bucket under its key's lock, so a window
        reopened by a concurrent increment is never dropped.

        Returns:
            Number of buckets removed.
        """
        now = self._clock()
        removed = 0

        for key, bucket in self._buckets.copy().items():
            if not bucket.is_expired(now):
                continue
            with self._lock_for(key):
                current = self._buckets.get(key)
                if current is not None and current.is_expired(now):
                    del self._buckets[key]
                    removed += 1

        if removed:
            logger.debug(
                "counter_store.swept",
                extra={"removed": removed, "remaining": len(self._buckets)},
            )
        return removed

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.sweep()

    def close(self) -> None:
        """Stop the sweep thread and drop all buckets. Safe to call twice."""
        self._stop.set()
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=5)
        self._buckets.clear()

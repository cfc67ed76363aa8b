"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from review_api.adapters.counter_store.base import AbstractCounterStore


@dataclass
class _Counter:
    count: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping expiring counters in a dict.

    Suitable for single-process deployments and tests. An expired counter is
    replaced when its key is written again; counters of clients that stopped
    calling are swept once every ``sweep_every`` writes.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_every: int = 1024,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_every: Writes between full scans for expired counters.

        Raises:
            ValueError: If sweep_every is invalid.
        """
        if sweep_every < 1:
            raise ValueError("sweep_every must be >= 1")

        self._clock = clock
        self._sweep_every = sweep_every
        self._writes_since_sweep = 0
        self._lock = threading.RLock()
        self._counters: dict[str, _Counter] = {}

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired_locked(self._clock())
            return len(self._counters)

    def _evict_expired_locked(self, now: float) -> None:
        expired = [k for k, c in self._counters.items() if c.expires_at <= now]
        for key in expired:
            del self._counters[key]

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment the counter for key, creating it with a TTL if needed.

        Raises:
            ValueError: If key is empty or ttl_seconds is invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        now = self._clock()
        with self._lock:
            self._writes_since_sweep += 1
            if self._writes_since_sweep >= self._sweep_every:
                self._evict_expired_locked(now)
                self._writes_since_sweep = 0

            counter = self._counters.get(key)
            if counter is None or counter.expires_at <= now:
                counter = _Counter(count=0, expires_at=now + ttl_seconds)
                self._counters[key] = counter
            counter.count += 1
            return counter.count

    async def get(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or counter.expires_at <= now:
                return 0
            return counter.count

    async def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            self._evict_expired_locked(self._clock())
            keys = [k for k in self._counters if k.startswith(prefix)]
            for key in keys:
                del self._counters[key]
            return len(keys)

    async def ping(self) -> bool:
        return True

"""In-memory expiring counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so increments stay atomic
  even when the event loop is shared with worker threads.
- Bounded: expired counters are swept from `incr` at most once per
  sweep interval, so idle clients do not accumulate.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore, CounterSnapshot

logger = logging.getLogger(__name__)


@dataclass
class _Counter:
    count: int
    expires_at: float


class InMemoryQuotaStore(AbstractQuotaStore):
    """Counter store keeping windows in a process-local dict.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Use the Redis store for shared quotas.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_interval_seconds: Minimum time between sweeps of expired
                counters, run from ``incr``.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._clock = clock
        self._lock = threading.RLock()
        self._counters: dict[str, _Counter] = {}
        self._sweep_interval = sweep_interval_seconds
        self._next_sweep = clock() + sweep_interval_seconds

    async def incr(self, key: str, ttl_seconds: float) -> CounterSnapshot:
        if not key:
            raise ValueError("key must be a non-empty string")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._purge_locked(now)
            counter = self._counters.get(key)
            if counter is None or counter.expires_at <= now:
                counter = _Counter(count=0, expires_at=now + ttl_seconds)
                self._counters[key] = counter
            counter.count += 1
            return CounterSnapshot(count=counter.count, ttl_remaining=counter.expires_at - now)

    def purge_expired(self) -> int:
        """Drop expired counters and return how many were removed."""

        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        expired = [k for k, c in self._counters.items() if c.expires_at <= now]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + self._sweep_interval
        if expired:
            logger.debug(
                "quota_store.swept",
                extra={"removed": len(expired), "remaining": len(self._counters)},
            )
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

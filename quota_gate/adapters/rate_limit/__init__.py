"""Counter store adapters.

This package provides a small abstraction layer so a single process can start
with an in-memory store and move to Redis (shared across workers and hosts)
without changing the admission layer.
"""

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore, CounterSnapshot
from quota_gate.adapters.rate_limit.in_memory import InMemoryQuotaStore
from quota_gate.adapters.rate_limit.redis_store import RedisQuotaStore

__all__ = ["AbstractQuotaStore", "CounterSnapshot", "InMemoryQuotaStore", "RedisQuotaStore"]

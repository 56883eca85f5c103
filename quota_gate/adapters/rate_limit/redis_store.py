"""Redis-backed counter store shared across processes.

Increment, expire-on-create and TTL lookup run inside one Lua script, so a
counter can never exist without an expiry and concurrent callers are
serialized by Redis itself.
"""

from __future__ import annotations

import asyncio
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore, CounterSnapshot
from quota_gate.core.errors import StoreUnavailableAppError

logger = logging.getLogger(__name__)


# KEYS[1] = counter key, ARGV[1] = ttl in milliseconds.
# A key without expiry (PTTL -1) is re-armed so it cannot become permanent.
INCR_WITH_EXPIRY_LUA = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisQuotaStore(AbstractQuotaStore):
    """Counter store using a Redis INCR/PEXPIRE script."""

    def __init__(self, client: Redis, *, timeout_seconds: float = 0.5) -> None:
        """Initialize the store.

        Args:
            client: redis.asyncio client (owned by the store after this call).
            timeout_seconds: Upper bound for one round trip.

        Raises:
            ValueError: If timeout_seconds is not positive.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self._client = client
        self._timeout = timeout_seconds
        self._script = client.register_script(INCR_WITH_EXPIRY_LUA)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 0.5) -> "RedisQuotaStore":
        client = Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, timeout_seconds=timeout_seconds)

    async def incr(self, key: str, ttl_seconds: float) -> CounterSnapshot:
        ttl_ms = max(1, int(ttl_seconds * 1000))
        try:
            count, ttl = await asyncio.wait_for(
                self._script(keys=[key], args=[ttl_ms]),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "quota_store.unavailable",
                extra={"backend": "redis", "reason": "timeout", "timeout_s": self._timeout},
            )
            raise StoreUnavailableAppError(
                code="quota_store_timeout",
                message="Counter store did not respond in time",
                details={"backend": "redis", "timeout_s": self._timeout},
            ) from exc
        except (RedisError, OSError) as exc:
            logger.error(
                "quota_store.unavailable",
                extra={"backend": "redis", "reason": type(exc).__name__},
            )
            raise StoreUnavailableAppError(
                code="quota_store_unavailable",
                message="Counter store is unavailable",
                details={"backend": "redis"},
            ) from exc

        return CounterSnapshot(count=int(count), ttl_remaining=int(ttl) / 1000)

    async def aclose(self) -> None:
        await self._client.aclose()

"""Counter store interfaces.

The quota tracker depends on this abstraction (not the concrete store) so
deployments can pick an in-process store or a shared Redis instance without
touching the admission logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterSnapshot:
    """State of a counter right after an atomic increment.

    Attributes:
        count: Post-increment counter value (1 for a freshly created window).
        ttl_remaining: Seconds until the counter expires.
    """

    count: int
    ttl_remaining: float


class AbstractQuotaStore(ABC):
    """Interface for atomic, expiring counters."""

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: float) -> CounterSnapshot:
        """Atomically increment the counter at ``key``.

        A missing or expired counter is created with count=1 and an expiry of
        ``ttl_seconds`` as part of the same indivisible operation. Existing
        counters keep their expiry.

        Args:
            key: Namespaced counter key.
            ttl_seconds: Expiry applied only when the counter is created.

        Returns:
            CounterSnapshot with the new count and remaining time to live.

        Raises:
            StoreUnavailableAppError: If the store cannot complete the update.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release connections held by the store."""

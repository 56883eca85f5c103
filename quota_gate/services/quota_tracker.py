"""Fixed-window quota tracking.

Turns one atomic counter update into an admission decision. All
serialization between concurrent callers is delegated to the store; the
tracker keeps no per-identifier state and takes no locks.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore
from quota_gate.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS = 3600.0
DEFAULT_MAX_REQUESTS = 2500


@dataclass(frozen=True)
class QuotaPolicy:
    """Window configuration shared by every request.

    Attributes:
        duration: Window length in seconds.
        max: Maximum admitted requests per identifier within one window.
    """

    duration: float = DEFAULT_DURATION_SECONDS
    max: int = DEFAULT_MAX_REQUESTS

    def __post_init__(self) -> None:
        # bool is an int subclass; reject it explicitly instead of coercing.
        if isinstance(self.duration, bool) or not isinstance(self.duration, (int, float)):
            raise ConfigurationAppError(
                code="invalid_duration",
                message="duration must be a number of seconds",
                details={"option": "duration", "actual_value": repr(self.duration)},
            )
        if not math.isfinite(self.duration) or self.duration <= 0:
            raise ConfigurationAppError(
                code="invalid_duration",
                message="duration must be > 0",
                details={"option": "duration", "actual_value": self.duration},
            )
        if isinstance(self.max, bool) or not isinstance(self.max, int) or self.max < 0:
            raise ConfigurationAppError(
                code="invalid_max",
                message="max must be an integer >= 0",
                details={"option": "max", "actual_value": repr(self.max)},
            )


@dataclass(frozen=True)
class Decision:
    """Outcome of a single quota check.

    Attributes:
        allowed: Whether the request fits in the current window.
        total: Configured maximum for the window.
        remaining: Further requests still permitted this window (0 when denied).
        reset_at: UNIX epoch seconds when the current window expires.
    """

    allowed: bool
    total: int
    remaining: int
    reset_at: int

    def retry_after_seconds(self, now: float) -> int:
        """Whole seconds until the window resets, never negative."""

        return max(0, int(self.reset_at - now))


def hash_identifier(identifier: str) -> str:
    """Hash an identifier for logging without exposing IPs or keys."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


class QuotaTracker:
    """Count-then-decide quota tracker.

    The request being checked is always charged before the decision is made,
    including the request that ends up denied.
    """

    def __init__(
        self,
        store: AbstractQuotaStore,
        policy: QuotaPolicy | None = None,
        *,
        namespace: str = "limit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Atomic counter store shared by all processes enforcing the quota.
            policy: Window configuration (defaults to 1 hour / 2500 requests).
            namespace: Prefix for counter keys.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ConfigurationAppError: If namespace is empty.
        """
        if not namespace:
            raise ConfigurationAppError(
                code="invalid_namespace",
                message="namespace must be a non-empty string",
                details={"option": "namespace"},
            )

        self._store = store
        self._policy = policy or QuotaPolicy()
        self._namespace = namespace
        self._clock = clock

    def key_for(self, identifier: str) -> str:
        return f"{self._namespace}:{identifier}"

    async def check(self, identifier: str) -> Decision:
        """Charge one request to ``identifier`` and decide whether it is admitted.

        Args:
            identifier: Non-empty client identifier.

        Returns:
            Decision for this request.

        Raises:
            ValueError: If identifier is empty.
            StoreUnavailableAppError: If the store cannot complete the update.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        snapshot = await self._store.incr(self.key_for(identifier), self._policy.duration)
        now = self._clock()

        total = self._policy.max
        allowed = snapshot.count <= total
        remaining = total - snapshot.count if allowed else 0
        reset_at = int(math.ceil(now + max(0.0, snapshot.ttl_remaining)))

        logger.debug(
            "quota.checked",
            extra={
                "key_hash": hash_identifier(identifier),
                "count": snapshot.count,
                "limit": total,
                "remaining": remaining,
                "allowed": allowed,
                "reset_at": reset_at,
            },
        )

        return Decision(allowed=allowed, total=total, remaining=remaining, reset_at=reset_at)

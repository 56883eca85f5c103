"""Factory for creating counter store instances."""

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore
from quota_gate.adapters.rate_limit.in_memory import InMemoryQuotaStore
from quota_gate.adapters.rate_limit.redis_store import RedisQuotaStore
from quota_gate.core.config import RateLimitSettings, RedisSettings, settings
from quota_gate.core.errors import ConfigurationAppError


def create_quota_store(
    rate_limit_settings: RateLimitSettings | None = None,
    redis_settings: RedisSettings | None = None,
) -> AbstractQuotaStore:
    """Instantiate the counter store selected by configuration.

    Args:
        rate_limit_settings: Defaults to ``settings.ratelimit``.
        redis_settings: Defaults to ``settings.redis``.

    Returns:
        AbstractQuotaStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend is unknown.
    """
    rl = rate_limit_settings or settings.ratelimit
    backend = rl.backend.lower()

    if backend == "memory":
        return InMemoryQuotaStore()

    if backend == "redis":
        cfg = redis_settings or settings.redis
        return RedisQuotaStore.from_url(cfg.url, timeout_seconds=cfg.timeout_seconds)

    raise ConfigurationAppError(
        code="quota_store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: memory, redis",
        details={"option": "backend", "actual_value": backend},
    )

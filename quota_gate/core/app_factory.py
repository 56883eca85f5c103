"""Application factory for the FastAPI app.

Centralizes app construction (logging, middleware, handlers, routers) so tests
can build isolated apps with their own counter store and options.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore
from quota_gate.adapters.rate_limit.factory import create_quota_store
from quota_gate.api.routes import health_router, ping_router
from quota_gate.core.admission import AdmissionGate, RateLimitOptions
from quota_gate.core.config import settings
from quota_gate.core.exception_handlers import setup_exception_handlers
from quota_gate.core.logging import configure_logging
from quota_gate.core.middleware import request_id_middleware
from quota_gate.core.rate_limit import RateLimitMiddleware

logger = logging.getLogger(__name__)


def create_app(
    *,
    store: AbstractQuotaStore | None = None,
    options: RateLimitOptions | None = None,
    enabled: bool | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    ``RateLimitMiddleware`` tracks every request, routed or not. With
    ``raise_on_reject`` its rejections are rendered by the registered
    ``RateLimitRejectedAppError`` handler; otherwise it writes them directly.

    Args:
        store: Counter store; built from settings when omitted.
        options: Admission options; built from settings when omitted.
        enabled: Overrides ``settings.ratelimit.enabled``.

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If the rate limit configuration is invalid.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    limiting = settings.ratelimit.enabled if enabled is None else enabled
    gate: AdmissionGate | None = None
    if limiting:
        gate = AdmissionGate(
            store or create_quota_store(),
            options or RateLimitOptions.from_settings(),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if gate is not None:
            await gate.store.aclose()

    app = FastAPI(
        title="Quota Gate",
        description="Fixed-window request admission backed by a shared counter store.",
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    app.state.admission_gate = gate

    if gate is not None:
        app.add_middleware(RateLimitMiddleware, gate=gate)
        logger.info(
            "rate_limit.configured",
            extra={
                "store": type(gate.store).__name__,
                "window_s": gate.options.duration,
                "limit": gate.options.max,
                "raise_on_reject": gate.options.raise_on_reject,
                "store_failure_policy": gate.options.store_failure_policy,
            },
        )

    # Registered last so it runs outermost and correlates rate limit logs
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(ping_router)
    app.include_router(health_router)

    return app

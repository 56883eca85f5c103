"""Rate limiting wiring for FastAPI/Starlette.

This module renders admission outcomes into HTTP responses.

Two entry points share one ``AdmissionGate``:
- ``RateLimitMiddleware``: app-wide. Finalizes rejections as plain-text
  responses, or raises ``RateLimitRejectedAppError`` when ``raise_on_reject``
  is set and renders it through the app's registered handler.
- ``enforce_rate_limit``: per-route dependency. Always raises on rejection so
  the registered exception handler renders it; quota headers for admitted
  requests are set through the injected ``Response``.
"""

from __future__ import annotations

import inspect
import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp

from quota_gate.adapters.rate_limit.factory import create_quota_store
from quota_gate.core.admission import Admitted, AdmissionGate, RateLimitOptions, Rejected
from quota_gate.core.errors import RateLimitRejectedAppError

logger = logging.getLogger(__name__)


_gate: AdmissionGate | None = None


def get_admission_gate() -> AdmissionGate:
    """Return the process-wide admission gate built from settings.

    The instance is cached in-module so the counter store (and its
    connection pool) is shared across requests.

    Returns:
        AdmissionGate: Configured gate instance.
    """

    global _gate

    if _gate is None:
        _gate = AdmissionGate(create_quota_store(), RateLimitOptions.from_settings())
    return _gate


def resolve_gate(request: Request) -> AdmissionGate:
    """Prefer the gate installed on the app by ``create_app``."""

    gate = getattr(request.app.state, "admission_gate", None)
    return gate if gate is not None else get_admission_gate()


def render_rejection(rejected: Rejected) -> PlainTextResponse:
    """Build the response for a rejected request."""

    return PlainTextResponse(
        rejected.body,
        status_code=rejected.status_code,
        headers=rejected.headers,
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the admission gate to every request, routed or not.

    In ``raise_on_reject`` mode the rejection is raised as
    ``RateLimitRejectedAppError`` and handed to the handler the app registered
    for it. ``BaseHTTPMiddleware`` runs outside Starlette's exception
    middleware, so without a registered handler the error propagates.
    """

    def __init__(self, app: ASGIApp, gate: AdmissionGate | None = None) -> None:
        super().__init__(app)
        self._gate = gate

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        gate = self._gate if self._gate is not None else resolve_gate(request)
        outcome = await gate.evaluate(request)

        if isinstance(outcome, Rejected):
            if not gate.options.raise_on_reject:
                return render_rejection(outcome)
            exc = outcome.to_exception()
            handler = _registered_handler(request, exc)
            if handler is None:
                raise exc
            result = handler(request, exc)
            return await result if inspect.isawaitable(result) else result

        response = await call_next(request)
        if isinstance(outcome, Admitted):
            response.headers.update(outcome.headers)
        return response


def _registered_handler(request: Request, exc: RateLimitRejectedAppError) -> Callable | None:
    """Find the app's handler for ``exc``, if the app registered one for rejections."""

    handlers = getattr(request.scope.get("app"), "exception_handlers", None) or {}
    for cls in type(exc).__mro__:
        if not issubclass(cls, RateLimitRejectedAppError):
            break
        if cls in handlers:
            return handlers[cls]
    return None


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing rate limits on a route.

    Usage:
        @router.get("/items", dependencies=[Depends(enforce_rate_limit)])
        async def list_items():
            ...

    Args:
        request: FastAPI request.
        response: Response whose headers FastAPI merges into the final reply.

    Raises:
        RateLimitRejectedAppError: When the request is rejected.
    """

    outcome = await resolve_gate(request).evaluate(request)

    if isinstance(outcome, Rejected):
        raise outcome.to_exception()
    if isinstance(outcome, Admitted):
        for name, value in outcome.headers.items():
            response.headers[name] = value

"""Request correlation middleware.

Every response carries a request id (taken from the incoming header or
generated) so rate limit log events can be tied to the request that caused
them.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from quota_gate.core.config import settings
from quota_gate.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id for the duration of the request.

    Args:
        request: The incoming HTTP request.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response with the request id header and ``X-Request-Duration-ms``.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or uuid.uuid4().hex
    set_request_id(request_id)
    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms", f"{(time.perf_counter() - started) * 1000:.2f}"
    )
    return response

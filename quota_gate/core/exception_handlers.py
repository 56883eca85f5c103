"""Global exception handlers for consistent error responses.

Design:
- RateLimitRejectedAppError -> the exact status/body/headers the middleware
  would have written (plain text)
- StoreUnavailableAppError -> 503 with a generic message
- Other AppError subclasses -> 400/500 JSON
- Unexpected Exception -> generic 500 (safety net)
- JSON responses include request_id for tracing; none leak store details
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse

from quota_gate.core.errors import (
    AppError,
    ConfigurationAppError,
    RateLimitRejectedAppError,
    StoreUnavailableAppError,
)
from quota_gate.core.logging import get_request_id

logger = logging.getLogger(__name__)


async def rate_limit_rejected_handler(
    request: Request, exc: RateLimitRejectedAppError
) -> PlainTextResponse:
    """Render a raised rejection exactly like the middleware's direct response."""

    logger.info(
        "rate_limit.rejection_rendered",
        extra={
            "error_code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )
    return PlainTextResponse(exc.body, status_code=exc.status_code, headers=exc.headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to HTTP status codes:
    - StoreUnavailableAppError -> 503 Service Unavailable
    - ConfigurationAppError -> 500 Internal Server Error
    - anything else -> 400 Bad Request

    Store and configuration errors never expose their details to clients.
    """
    status_code = 400
    expose_details = True
    if isinstance(exc, StoreUnavailableAppError):
        status_code = 503
        expose_details = False
    elif isinstance(exc, ConfigurationAppError):
        status_code = 500
        expose_details = False

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    if expose_details:
        error_content = {"code": exc.code, "message": exc.message}
        if exc.details:
            error_content["details"] = exc.details
    elif status_code == 503:
        error_content = {
            "code": "service_unavailable",
            "message": "Service temporarily unavailable, please retry later",
        }
    else:
        error_content = {
            "code": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
        }
    error_content["request_id"] = get_request_id()

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the error type for debugging while returning a generic message; no
    stack traces or exception text reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    rejection handler wins over the generic AppError handler.
    """
    app.exception_handler(RateLimitRejectedAppError)(rate_limit_rejected_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)

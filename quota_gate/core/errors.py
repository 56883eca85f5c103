"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    option: str
    actual_value: Any
    backend: str
    timeout_s: float


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised at setup time when rate limit options are invalid."""


class StoreUnavailableAppError(AppError):
    """Raised when the counter store cannot complete an atomic update.

    Connection, timeout and protocol failures all collapse into this one
    error; callers never see the transport-specific cause except through
    ``__cause__``.
    """


@dataclass
class RateLimitRejectedAppError(AppError):
    """Typed rejection raised instead of writing the rejection response directly.

    Carries everything an outer handler needs to render the same response the
    middleware would have produced.
    """

    status_code: int = 429
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)

"""Admission decisions for incoming requests.

This module sits between the HTTP layer and the quota tracker:
- Identity: an explicit ``Limited(identifier)`` / ``Skipped`` result, so an
  identifier can never be confused with "do not limit".
- Options: an immutable value built once at setup and shared by all requests.
- Outcomes: ``Bypassed``, ``Admitted`` or ``Rejected``; the framework adapter
  (middleware or dependency) decides how to render them.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Union

from starlette.requests import Request

from quota_gate.adapters.rate_limit.base import AbstractQuotaStore
from quota_gate.core.config import RateLimitSettings, settings
from quota_gate.core.errors import (
    ConfigurationAppError,
    RateLimitRejectedAppError,
    StoreUnavailableAppError,
)
from quota_gate.services.quota_tracker import (
    DEFAULT_DURATION_SECONDS,
    DEFAULT_MAX_REQUESTS,
    Decision,
    QuotaPolicy,
    QuotaTracker,
    hash_identifier,
)
from quota_gate.utils.duration import format_duration

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
DEFAULT_ERROR_MSG = "Rate limit exceeded, retry in "
STORE_UNAVAILABLE_BODY = "Service temporarily unavailable, please retry later"


@dataclass(frozen=True)
class Limited:
    """The request is counted against ``identifier``."""

    identifier: str

    def __post_init__(self) -> None:
        if not isinstance(self.identifier, str) or not self.identifier:
            raise ValueError("identifier must be a non-empty string")


@dataclass(frozen=True)
class Skipped:
    """The request bypasses limiting entirely."""


SKIP = Skipped()

Identity = Union[Limited, Skipped]
IdentifyFn = Callable[[Request], Identity]
LogFn = Callable[[Request, str], None]


def _client_address(request: Request, trust_forwarded_for: bool) -> str:
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def _api_key_identity(request: Request) -> Limited | None:
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        return None
    return Limited(f"api_key:{hashlib.sha256(api_key.encode()).hexdigest()}")


def client_ip(request: Request) -> Identity:
    """Identify requests by the connecting client address."""
    return Limited(f"ip:{_client_address(request, False)}")


def build_identifier(
    kind: Literal["ip", "api_key"] = "ip",
    *,
    exempt_paths: Iterable[str] = (),
    trust_forwarded_for: bool = False,
) -> IdentifyFn:
    """Build an identifier function from configuration.

    Args:
        kind: ``ip`` or ``api_key`` (API key with client address fallback).
        exempt_paths: Request paths that return ``SKIP``.
        trust_forwarded_for: Use the first ``X-Forwarded-For`` hop as address.

    Returns:
        Callable mapping a request to an Identity.
    """
    exempt = frozenset(p for p in exempt_paths if p)

    def identify(request: Request) -> Identity:
        if request.url.path in exempt:
            return SKIP
        if kind == "api_key":
            identity = _api_key_identity(request)
            if identity is not None:
                return identity
        return Limited(f"ip:{_client_address(request, trust_forwarded_for)}")

    return identify


def parse_paths(paths: str | None) -> tuple[str, ...]:
    """Parse a comma-separated list of paths.

    Examples:
        >>> parse_paths("/health, /metrics")
        ('/health', '/metrics')
        >>> parse_paths(None)
        ()
    """
    if not paths:
        return ()
    return tuple(p.strip() for p in paths.split(",") if p.strip())


@dataclass(frozen=True)
class RateLimitHeaders:
    """Response header names for the exposed quota values."""

    remaining: str = "X-RateLimit-Remaining"
    reset: str = "X-RateLimit-Reset"
    total: str = "X-RateLimit-Limit"
    retry: str = "X-Retry-After"

    def __post_init__(self) -> None:
        names = (self.remaining, self.reset, self.total, self.retry)
        if not all(isinstance(n, str) and n.strip() for n in names):
            raise ConfigurationAppError(
                code="invalid_header_name",
                message="rate limit header names must be non-empty strings",
                details={"option": "headers"},
            )


@dataclass(frozen=True)
class RateLimitOptions:
    """Immutable admission configuration.

    Attributes:
        duration: Window length in seconds.
        max: Maximum admitted requests per identifier and window.
        identify: Maps a request to ``Limited`` or ``SKIP``.
        headers: Header names for remaining/reset/total/retry.
        error_msg: Rejection body prefix.
        append_retry_time: Append a human-readable wait time to the body.
        raise_on_reject: Raise ``RateLimitRejectedAppError`` instead of
            finalizing the response.
        store_failure_policy: ``open`` admits without quota headers,
            ``closed`` rejects with 503.
        log: Optional callback receiving ``(request, error_msg)`` on rejection.
        namespace: Counter key prefix.
    """

    duration: float = DEFAULT_DURATION_SECONDS
    max: int = DEFAULT_MAX_REQUESTS
    identify: IdentifyFn = client_ip
    headers: RateLimitHeaders = field(default_factory=RateLimitHeaders)
    error_msg: str = DEFAULT_ERROR_MSG
    append_retry_time: bool = True
    raise_on_reject: bool = False
    store_failure_policy: Literal["open", "closed"] = "closed"
    log: LogFn | None = None
    namespace: str = "limit"

    def __post_init__(self) -> None:
        QuotaPolicy(duration=self.duration, max=self.max)
        if self.store_failure_policy not in ("open", "closed"):
            raise ConfigurationAppError(
                code="invalid_store_failure_policy",
                message="store_failure_policy must be 'open' or 'closed'",
                details={"option": "store_failure_policy", "actual_value": self.store_failure_policy},
            )
        if not callable(self.identify):
            raise ConfigurationAppError(
                code="invalid_identify",
                message="identify must be callable",
                details={"option": "identify"},
            )
        if self.log is not None and not callable(self.log):
            raise ConfigurationAppError(
                code="invalid_log",
                message="log must be callable",
                details={"option": "log"},
            )

    @property
    def policy(self) -> QuotaPolicy:
        return QuotaPolicy(duration=self.duration, max=self.max)

    @classmethod
    def from_settings(
        cls,
        rate_limit_settings: RateLimitSettings | None = None,
        *,
        log: LogFn | None = None,
    ) -> "RateLimitOptions":
        """Build options from environment-driven settings.

        Args:
            rate_limit_settings: Defaults to ``settings.ratelimit``.
            log: Optional rejection callback (not expressible via env vars).

        Returns:
            RateLimitOptions: Validated options.
        """
        rl = rate_limit_settings or settings.ratelimit
        return cls(
            duration=rl.duration_seconds,
            max=rl.max_requests,
            identify=build_identifier(
                rl.identifier,
                exempt_paths=parse_paths(rl.exempt_paths),
                trust_forwarded_for=rl.trust_forwarded_for,
            ),
            headers=RateLimitHeaders(
                remaining=rl.header_remaining,
                reset=rl.header_reset,
                total=rl.header_total,
                retry=rl.header_retry,
            ),
            error_msg=rl.error_msg,
            append_retry_time=rl.append_retry_time,
            raise_on_reject=rl.raise_on_reject,
            store_failure_policy=rl.store_failure_policy,
            log=log,
            namespace=rl.key_namespace,
        )


@dataclass(frozen=True)
class Bypassed:
    """Identity was ``SKIP``; nothing was counted and no headers apply."""


BYPASSED = Bypassed()


@dataclass(frozen=True)
class Admitted:
    """Request may continue; ``headers`` go on the downstream response.

    ``decision`` is None when the store failed and the policy is fail-open.
    """

    headers: dict[str, str]
    decision: Decision | None = None


@dataclass(frozen=True)
class Rejected:
    """Request must not reach the downstream handler."""

    status_code: int
    body: str
    headers: dict[str, str]
    code: str = "rate_limit_exceeded"
    decision: Decision | None = None

    def to_exception(self) -> RateLimitRejectedAppError:
        return RateLimitRejectedAppError(
            code=self.code,
            message=self.body,
            status_code=self.status_code,
            body=self.body,
            headers=dict(self.headers),
        )


AdmissionOutcome = Union[Bypassed, Admitted, Rejected]


class AdmissionGate:
    """Decide admission for a request and shape the resulting response data."""

    def __init__(
        self,
        store: AbstractQuotaStore,
        options: RateLimitOptions | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.options = options or RateLimitOptions()
        self.store = store
        self._clock = clock
        self._tracker = QuotaTracker(
            store,
            self.options.policy,
            namespace=self.options.namespace,
            clock=clock,
        )

    async def evaluate(self, request: Request) -> AdmissionOutcome:
        """Run one request through identification and quota tracking.

        Args:
            request: Incoming request.

        Returns:
            AdmissionOutcome for the request.

        Raises:
            TypeError: If the identify function returns something other than
                ``Limited`` or ``Skipped``.
        """
        identity = self.options.identify(request)
        if isinstance(identity, Skipped):
            logger.debug("rate_limit.skipped", extra={"path": request.url.path})
            return BYPASSED
        if not isinstance(identity, Limited):
            raise TypeError(
                f"identify must return Limited or Skipped, got {type(identity).__name__}"
            )

        try:
            decision = await self._tracker.check(identity.identifier)
        except StoreUnavailableAppError as exc:
            return self._store_failure_outcome(request, exc)

        names = self.options.headers
        headers = {
            names.remaining: str(decision.remaining),
            names.reset: str(decision.reset_at),
            names.total: str(decision.total),
        }
        key_hash = hash_identifier(identity.identifier)

        if decision.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": key_hash,
                    "limit": decision.total,
                    "remaining": decision.remaining,
                },
            )
            return Admitted(headers=headers, decision=decision)

        now = self._clock()
        retry_after = decision.retry_after_seconds(now)
        headers[names.retry] = str(retry_after)

        body = self.options.error_msg
        if self.options.append_retry_time:
            body += format_duration(max(0.0, decision.reset_at - now) * 1000)

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": key_hash,
                "limit": decision.total,
                "remaining": decision.remaining,
                "window_s": self.options.duration,
                "retry_after_s": retry_after,
                "path": request.url.path,
            },
        )

        if self.options.log is not None:
            self.options.log(request, self.options.error_msg)

        return Rejected(status_code=429, body=body, headers=headers, decision=decision)

    def _store_failure_outcome(
        self, request: Request, exc: StoreUnavailableAppError
    ) -> AdmissionOutcome:
        policy = self.options.store_failure_policy
        logger.warning(
            "rate_limit.store_failure",
            extra={
                "policy": policy,
                "error_code": exc.code,
                "path": request.url.path,
            },
        )
        if policy == "open":
            return Admitted(headers={})
        return Rejected(
            status_code=503,
            body=STORE_UNAVAILABLE_BODY,
            headers={},
            code="rate_limit_unavailable",
        )

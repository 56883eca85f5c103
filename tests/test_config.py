"""Tests for settings-driven options and store selection."""

import pytest
from pydantic import ValidationError
from starlette.requests import Request

from quota_gate.adapters.rate_limit.factory import create_quota_store
from quota_gate.adapters.rate_limit.in_memory import InMemoryQuotaStore
from quota_gate.adapters.rate_limit.redis_store import RedisQuotaStore
from quota_gate.core import rate_limit
from quota_gate.core.admission import (
    SKIP,
    Limited,
    RateLimitHeaders,
    RateLimitOptions,
    build_identifier,
    client_ip,
    parse_paths,
)
from quota_gate.core.app_factory import create_app
from quota_gate.core.config import RateLimitSettings, RedisSettings, settings
from quota_gate.core.errors import ConfigurationAppError


def _request(path: str = "/v1/ping", headers: dict[str, str] | None = None) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "query_string": b"",
            "client": ("10.0.0.7", 5000),
            "server": ("testserver", 80),
            "scheme": "http",
        }
    )


def test_defaults_match_documented_values() -> None:
    options = RateLimitOptions()

    assert options.duration == 3600
    assert options.max == 2500
    assert options.headers == RateLimitHeaders(
        remaining="X-RateLimit-Remaining",
        reset="X-RateLimit-Reset",
        total="X-RateLimit-Limit",
        retry="X-Retry-After",
    )
    assert options.error_msg == "Rate limit exceeded, retry in "
    assert options.append_retry_time is True
    assert options.raise_on_reject is False
    assert options.log is None


def test_from_settings_maps_every_field() -> None:
    rl = RateLimitSettings(
        duration_seconds=120,
        max_requests=5,
        header_remaining="X-Left",
        header_reset="X-Reset-At",
        header_total="X-Quota",
        header_retry="Retry-After",
        error_msg="Slow down, retry in ",
        append_retry_time=False,
        raise_on_reject=True,
        store_failure_policy="open",
        key_namespace="edge",
    )

    options = RateLimitOptions.from_settings(rl)

    assert options.policy.duration == 120
    assert options.policy.max == 5
    assert options.headers.remaining == "X-Left"
    assert options.headers.retry == "Retry-After"
    assert options.error_msg == "Slow down, retry in "
    assert options.append_retry_time is False
    assert options.raise_on_reject is True
    assert options.store_failure_policy == "open"
    assert options.namespace == "edge"


def test_settings_identifier_skips_exempt_paths() -> None:
    options = RateLimitOptions.from_settings(RateLimitSettings(exempt_paths="/health, /metrics"))

    assert options.identify(_request("/metrics")) is SKIP
    assert options.identify(_request("/v1/ping")) == Limited("ip:10.0.0.7")


def test_settings_identifier_uses_api_key_when_configured() -> None:
    options = RateLimitOptions.from_settings(RateLimitSettings(identifier="api_key"))

    keyed = options.identify(_request(headers={"X-API-Key": "secret-key"}))
    anonymous = options.identify(_request())

    assert isinstance(keyed, Limited)
    assert keyed.identifier.startswith("api_key:")
    assert "secret-key" not in keyed.identifier
    assert anonymous == Limited("ip:10.0.0.7")


def test_settings_identifier_trusts_forwarded_for_only_when_enabled() -> None:
    headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}

    trusting = RateLimitOptions.from_settings(RateLimitSettings(trust_forwarded_for=True))
    default = RateLimitOptions.from_settings(RateLimitSettings())

    assert trusting.identify(_request(headers=headers)) == Limited("ip:203.0.113.9")
    assert default.identify(_request(headers=headers)) == Limited("ip:10.0.0.7")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"duration": 0},
        {"max": -1},
        {"store_failure_policy": "maybe"},
        {"identify": "ip"},
        {"log": "print"},
    ],
)
def test_invalid_options_fail_at_construction(kwargs: dict) -> None:
    with pytest.raises(ConfigurationAppError):
        RateLimitOptions(**kwargs)


def test_blank_header_name_rejected() -> None:
    with pytest.raises(ConfigurationAppError):
        RateLimitHeaders(remaining=" ")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"duration_seconds": 0},
        {"max_requests": -1},
        {"backend": "memcached"},
        {"store_failure_policy": "sometimes"},
    ],
)
def test_invalid_settings_rejected(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        RateLimitSettings(**kwargs)


def test_limited_requires_non_empty_identifier() -> None:
    with pytest.raises(ValueError):
        Limited("")


def test_parse_paths() -> None:
    assert parse_paths("/health, /metrics ,") == ("/health", "/metrics")
    assert parse_paths("") == ()


def test_store_factory_selects_backend() -> None:
    memory = create_quota_store(RateLimitSettings(backend="memory"))
    redis_store = create_quota_store(
        RateLimitSettings(backend="redis"),
        RedisSettings(url="redis://localhost:6390/0", timeout_seconds=0.2),
    )

    assert isinstance(memory, InMemoryQuotaStore)
    assert isinstance(redis_store, RedisQuotaStore)


def test_store_factory_rejects_unknown_backend() -> None:
    rl = RateLimitSettings.model_construct(backend="memcached")

    with pytest.raises(ConfigurationAppError):
        create_quota_store(rl)


def test_api_key_identifier_hashes_key_and_falls_back_to_address() -> None:
    identify = build_identifier("api_key")

    keyed = identify(_request(headers={"X-API-Key": "k-1"}))
    other_key = identify(_request(headers={"X-API-Key": "k-2"}))

    assert isinstance(keyed, Limited)
    assert keyed != other_key
    assert "k-1" not in keyed.identifier
    assert identify(_request()) == client_ip(_request()) == Limited("ip:10.0.0.7")


def test_debug_setting_reaches_app(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.app, "debug", True)

    assert create_app(enabled=False).debug is True


def test_module_gate_is_built_once_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(rate_limit, "_gate", None)

    gate = rate_limit.get_admission_gate()

    assert rate_limit.get_admission_gate() is gate
    assert isinstance(gate.store, InMemoryQuotaStore)
    assert gate.options.max == RateLimitSettings().max_requests

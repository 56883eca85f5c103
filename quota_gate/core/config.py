"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Static type checkers treat BaseSettings fields as constructor arguments,
    which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Fixed-window admission limits and response shaping."""

    enabled: bool = Field(
        True,
        description="Install the rate limit middleware",
    )
    duration_seconds: float = Field(
        3600,
        description="Window length in seconds",
        gt=0,
    )
    max_requests: int = Field(
        2500,
        description="Maximum admitted requests per identifier and window",
        ge=0,
    )
    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter store backend (memory is per-process only)",
    )
    key_namespace: str = Field(
        "limit",
        description="Prefix for counter keys in the store",
        min_length=1,
    )
    header_remaining: str = Field("X-RateLimit-Remaining")
    header_reset: str = Field("X-RateLimit-Reset")
    header_total: str = Field("X-RateLimit-Limit")
    header_retry: str = Field("X-Retry-After")
    error_msg: str = Field(
        "Rate limit exceeded, retry in ",
        description="Rejection body prefix",
    )
    append_retry_time: bool = Field(
        True,
        description="Append a human-readable retry duration to the rejection body",
    )
    raise_on_reject: bool = Field(
        False,
        description="Raise RateLimitRejectedAppError instead of writing the rejection directly",
    )
    store_failure_policy: Literal["open", "closed"] = Field(
        "closed",
        description="Admit (open) or deny (closed) requests when the store is unavailable",
    )
    identifier: Literal["ip", "api_key"] = Field(
        "ip",
        description="How the client identifier is derived from the request",
    )
    exempt_paths: str = Field(
        "/health",
        description="Comma-separated request paths that bypass limiting",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For hop as the client address",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Connection settings for the shared counter store."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    timeout_seconds: float = Field(
        0.5,
        description="Upper bound for a single counter round trip",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_000_000, description="Rotate log file after this size (0 disables)")
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    ratelimit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Nested settings are created via default_factory so env loading works.
settings = Settings()

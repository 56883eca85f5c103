"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before settings are imported so no local .env file
leaks into the test run.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATELIMIT_BACKEND", "memory")
os.environ.setdefault("RATELIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def clock() -> Mock:
    """Deterministic UNIX clock; tests move it with ``clock.return_value``."""
    return Mock(return_value=1_000.0)

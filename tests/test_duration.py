"""Tests for human-readable duration formatting."""

import pytest

from quota_gate.utils.duration import format_duration


@pytest.mark.parametrize(
    ("milliseconds", "expected"),
    [
        (0, "0 ms"),
        (500, "500 ms"),
        (1_000, "1 second"),
        (1_499, "1 second"),
        (1_500, "2 seconds"),
        (45_000, "45 seconds"),
        (60_000, "1 minute"),
        (80_000, "1 minute"),
        (90_000, "2 minutes"),
        (3_600_000, "1 hour"),
        (5_400_000, "2 hours"),
        (86_400_000, "1 day"),
        (3 * 86_400_000, "3 days"),
        (-60_000, "-1 minute"),
    ],
)
def test_format_duration(milliseconds: float, expected: str) -> None:
    assert format_duration(milliseconds) == expected

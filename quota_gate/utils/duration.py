"""Human-readable durations for rejection messages."""

from __future__ import annotations

import math

_SECOND = 1000
_MINUTE = _SECOND * 60
_HOUR = _MINUTE * 60
_DAY = _HOUR * 24

_UNITS = (
    (_DAY, "day"),
    (_HOUR, "hour"),
    (_MINUTE, "minute"),
    (_SECOND, "second"),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_duration(milliseconds: float) -> str:
    """Format a duration in the long form, e.g. ``"2 hours"`` or ``"1 minute"``.

    The largest unit not exceeding the duration is used and the value is
    rounded to it. Units are pluralized from 1.5 upwards, so 90 seconds reads
    as ``"2 minutes"`` while 80 seconds reads as ``"1 minute"``. Sub-second
    values are reported in milliseconds.

    Args:
        milliseconds: Duration in milliseconds (negative values are allowed).

    Returns:
        Formatted duration string.

    Examples:
        >>> format_duration(3_600_000)
        '1 hour'
        >>> format_duration(125_000)
        '2 minutes'
        >>> format_duration(500)
        '500 ms'
    """
    abs_ms = abs(milliseconds)
    for unit_ms, name in _UNITS:
        if abs_ms >= unit_ms:
            value = _round_half_up(milliseconds / unit_ms)
            plural = "s" if abs_ms >= unit_ms * 1.5 else ""
            return f"{value} {name}{plural}"
    return f"{_round_half_up(milliseconds)} ms"

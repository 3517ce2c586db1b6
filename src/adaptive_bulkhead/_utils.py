"""
Duration helpers for the adaptive bulkhead configuration.

These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

from datetime import timedelta

_NANOS_PER_SECOND = 1_000_000_000
_NANOS_PER_MICROSECOND = 1_000


def to_nanos(duration: timedelta) -> int:
    """
    Convert a duration to whole nanoseconds.

    Uses integer arithmetic on the timedelta components, so the result is
    exact (no float rounding), even for very long windows.

    Example:
        >>> to_nanos(timedelta(seconds=50))
        50000000000
        >>> to_nanos(timedelta(milliseconds=1))
        1000000
    """
    whole_seconds = duration.days * 86_400 + duration.seconds
    return whole_seconds * _NANOS_PER_SECOND + duration.microseconds * _NANOS_PER_MICROSECOND


def as_duration(value: timedelta | float) -> timedelta:
    """
    Normalize a duration given as a timedelta or as a number of seconds.

    No range check is done here: zero and negative durations are returned
    as-is and left for the caller to validate.

    Raises:
        TypeError: If value is neither a timedelta nor a number.

    Example:
        >>> as_duration(50)
        datetime.timedelta(seconds=50)
        >>> as_duration(timedelta(minutes=15))
        datetime.timedelta(seconds=900)
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    raise TypeError(
        f"Expected a timedelta or a number of seconds, got {type(value).__name__}: {value!r}"
    )

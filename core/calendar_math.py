"""Pure calendar arithmetic for resolved dates.

Nothing in here reads the clock: callers pass the reference instant so the
results stay deterministic and easy to test.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

_ONE_DAY = timedelta(days=1)


class ComputeFailure(ValueError):
    """Raised when a date or reference instant cannot be used for arithmetic."""


def parse_iso_date(value: str) -> date:
    """Return the ``date`` for a strict ``YYYY-MM-DD`` string."""

    if not isinstance(value, str) or len(value) != 10:
        raise ComputeFailure(f"Not an ISO calendar date: {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ComputeFailure(f"Invalid calendar date: {value!r}") from exc


def resolve_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ComputeFailure(f"Unknown timezone: {tz_name!r}") from exc


def day_count(date_iso: str, reference: datetime, tz_name: str = "UTC") -> int:
    """Return whole days between the date's local midnight and ``reference``.

    The midnight is taken in ``tz_name``. Partial days are floored, so the date
    of today yields 0 and yesterday yields 1; a future date is negative.
    """

    if reference.tzinfo is None or reference.utcoffset() is None:
        raise ComputeFailure("Reference instant must be timezone-aware.")
    target = parse_iso_date(date_iso)
    midnight = datetime.combine(target, time.min, tzinfo=resolve_zone(tz_name))
    return (reference - midnight) // _ONE_DAY


def weekday(date_iso: str) -> str:
    """Return the English weekday name for a proleptic Gregorian date."""

    return WEEKDAY_NAMES[parse_iso_date(date_iso).weekday()]


__all__ = ["ComputeFailure", "WEEKDAY_NAMES", "day_count", "parse_iso_date", "resolve_zone", "weekday"]

"""Occurrence math for once/daily/weekly rules.

Every function here is pure: the reference instant is always passed in, and
results are timezone-aware datetimes.  Day arithmetic happens on local
wall-clock dates, so an ``09:00`` rule stays at 09:00 across DST changes.

``tz=None`` means the host's local zone, looked up on every call.  Invalid
time strings never raise; the functions log a warning and return ``None``.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from datetime import time as dtime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import tzinfo

logger = logging.getLogger(__name__)

_HH_MM = re.compile(r"^\s*(\d{1,2}):(\d{1,2})(?::\d{1,2}(?:\.\d+)?)?\s*$")

DAYS_IN_WEEK = 7


def parse_time_of_day(time_str: str | None) -> tuple[int, int] | None:
    """Extract ``(hour, minute)`` from ``HH:MM`` or an ISO date-time string."""
    if not isinstance(time_str, str) or not time_str.strip():
        logger.warning("Invalid time string %r: empty", time_str)
        return None

    candidate = time_str.strip()
    if "T" in candidate:
        _, _, clock = candidate.partition("T")
        if ":" not in clock:
            logger.warning("Invalid ISO time string %r: no time portion", time_str)
            return None
        candidate = clock[:5]

    match = _HH_MM.match(candidate)
    if match is None:
        logger.warning("Invalid time string %r (parsed as %r)", time_str, candidate)
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        logger.warning("Time out of range in %r: %02d:%02d", time_str, hour, minute)
        return None
    return hour, minute


def once_anchor(time_str: str | None, tz: tzinfo | None = None) -> datetime | None:
    """Return the absolute instant named by a full local date-time string.

    A bare ``HH:MM`` names no particular day, so it yields ``None``.
    """
    if not isinstance(time_str, str) or not re.search(r"\d[T ]\d", time_str):
        logger.warning("One-time schedule needs a full date-time, got %r", time_str)
        return None
    try:
        parsed = datetime.fromisoformat(time_str.strip())
    except ValueError:
        logger.warning("Invalid date-time string %r", time_str)
        return None
    if parsed.tzinfo is not None:
        return parsed
    return _localize(parsed, tz)


def next_daily(
    time_str: str | None,
    from_: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """Next instant at the rule's hour:minute strictly after *from_*."""
    parsed = parse_time_of_day(time_str)
    if parsed is None:
        return None
    hour, minute = parsed

    from_ = _aware(from_)
    day = _wall(from_, tz).date()
    candidate = _at(day, hour, minute, tz)
    if candidate <= from_:
        candidate = _at(day + timedelta(days=1), hour, minute, tz)
    return candidate


def next_weekly(
    time_str: str | None,
    days_of_week: Iterable[int] | None,
    from_: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """Earliest instant on any of *days_of_week* strictly after *from_*.

    Weekdays use ISO numbering: Monday=1 .. Sunday=7.
    """
    days = set(days_of_week or ())
    if not days:
        logger.warning("Weekly rule has no days of week")
        return None
    if any(not isinstance(d, int) or not 1 <= d <= DAYS_IN_WEEK for d in days):
        logger.warning("Weekly rule has invalid days of week: %s", sorted(days, key=str))
        return None

    parsed = parse_time_of_day(time_str)
    if parsed is None:
        return None
    hour, minute = parsed

    from_ = _aware(from_)
    today = _wall(from_, tz).date()
    current = today.isoweekday()

    earliest: datetime | None = None
    for dow in days:
        offset = (dow - current) % DAYS_IN_WEEK
        candidate = _at(today + timedelta(days=offset), hour, minute, tz)
        if candidate <= from_:
            candidate = _at(today + timedelta(days=offset + DAYS_IN_WEEK), hour, minute, tz)
        if earliest is None or candidate < earliest:
            earliest = candidate
    return earliest


# -- Internal ------------------------------------------------------------------


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


def _wall(value: datetime, tz: tzinfo | None) -> datetime:
    """Naive wall-clock reading of *value* in *tz* (host zone when None)."""
    return value.astimezone(tz).replace(tzinfo=None)


def _localize(naive: datetime, tz: tzinfo | None) -> datetime:
    if tz is None:
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


def _at(day: date, hour: int, minute: int, tz: tzinfo | None) -> datetime:
    return _localize(datetime.combine(day, dtime(hour, minute)), tz)

"""
Period identifiers and boundaries for hourly and daily buckets.

An hour period id is ``YYYY-MM-DD-HH`` and a day period id is
``YYYY-MM-DD``, both expressed in the collection time zone. Naive
datetimes are interpreted in that zone; aware ones are converted to it.

CHANGELOG:
- 2026-10-16: Step hours on the UTC timeline across DST changes (STORY-113)
- 2026-10-03: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, tzinfo

from historian.src.models import Granularity

HOUR_FORMAT = "%Y-%m-%d-%H"
DAY_FORMAT = "%Y-%m-%d"

_FORMATS: dict[Granularity, str] = {
    Granularity.HOUR: HOUR_FORMAT,
    Granularity.DAY: DAY_FORMAT,
}

_HOUR = timedelta(hours=1)


def localize(ts: datetime, tz: tzinfo = UTC) -> datetime:
    """Return *ts* expressed in *tz* (naive values are assumed to be in *tz*)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def period_id(granularity: Granularity, ts: datetime, tz: tzinfo = UTC) -> str:
    """Return the id of the period containing *ts*."""
    return localize(ts, tz).strftime(_FORMATS[granularity])


def previous_period_id(
    granularity: Granularity,
    now: datetime,
    tz: tzinfo = UTC,
) -> str:
    """Return the id of the period that completed most recently before *now*.

    Hours are stepped back on the UTC timeline, so a flush firing just after
    a DST gap still targets the hour that actually closed. The repeated hour
    of a fall-back night shares one id and is only reported once it has
    closed for the second time.
    """
    local = localize(now, tz)
    if granularity is Granularity.DAY:
        return (local.date() - timedelta(days=1)).strftime(DAY_FORMAT)

    current = period_id(granularity, local, tz)
    instant = local.astimezone(UTC) - _HOUR
    pid = period_id(granularity, instant, tz)
    while pid == current:
        instant -= _HOUR
        pid = period_id(granularity, instant, tz)
    return pid


def period_bounds(
    granularity: Granularity,
    pid: str,
    tz: tzinfo = UTC,
) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` bounds of a period id.

    An hour that occurs twice on a fall-back night ends after its second
    occurrence.

    Raises:
        ValueError: If *pid* does not match the granularity's format.
    """
    start = datetime.strptime(pid, _FORMATS[granularity]).replace(tzinfo=tz)
    if granularity is Granularity.DAY:
        # Calendar arithmetic keeps DST days at their wall-clock length.
        return start, datetime.combine(start.date() + timedelta(days=1), start.timetz())

    end = start.astimezone(UTC) + _HOUR
    while period_id(granularity, end, tz) == pid:
        end += _HOUR
    return start, end.astimezone(tz)


def period_end(granularity: Granularity, pid: str, tz: tzinfo = UTC) -> datetime:
    return period_bounds(granularity, pid, tz)[1]


def date_key(pid: str) -> str:
    """Return the ``YYYY-MM-DD`` part of an hour or day period id."""
    return pid[:10]


def seconds_until_next_boundary(
    granularity: Granularity,
    now: datetime,
    tz: tzinfo = UTC,
) -> float:
    """Seconds from *now* until the start of the next period.

    For ``DAY`` this is the time until the next local midnight.
    """
    local = localize(now, tz)
    _, end = period_bounds(granularity, period_id(granularity, local, tz), tz)
    return max(0.0, (end.astimezone(UTC) - local.astimezone(UTC)).total_seconds())

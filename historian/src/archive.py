"""
Persistence adapter: merges rolled-up buckets into JSON archive documents.

Archive layout in the blob store (all paths relative to the store root)::

    historical-data/{building}/{unit}/{YYYY}/{MM}/hourly-{YYYY-MM-DD}.json
    historical-data/{building}/{unit}/{YYYY}/{MM}/daily-{YYYY-MM-DD}.json
    historical-data/{building}/{unit}/{YYYY}/monthly-{YYYY}-{MM}.json

- hourly document: ``{periodId: AggregatedBucket}`` for one date.
- daily document: a single ``AggregatedBucket``.
- monthly document: ``{"days": {dateKey: AggregatedBucket}, "summary": {...}}``.

Every write is a read-modify-write of the whole document (last writer
wins). Re-running a flush for an already archived period overwrites the
entry with the same key, so the result is identical. The monthly summary is
always recomputed from every day present.

On the write path an absent document is an empty baseline. An unreadable
one is logged and replaced. On the read path (``read_range``) a range with
no document at all raises :class:`ArchiveNotFoundError`.

CHANGELOG:
- 2026-10-09: read_range returns rolling windows instead of fixed files (STORY-109)
- 2026-10-05: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import TypeVar

from pydantic import TypeAdapter, ValidationError

from historian.src.blobstore import BlobNotFoundError, BlobStore
from historian.src.metrics import summarize_days
from historian.src.models import (
    AggregatedBucket,
    Granularity,
    MonthlyArchive,
    MonthlySummary,
    RangeResult,
)
from historian.src.periods import date_key, localize, period_bounds

logger = logging.getLogger(__name__)

ARCHIVE_ROOT = "historical-data"

RANGE_SPECS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
"""Supported ``read_range`` specs and the window each one covers."""

_HOURLY_DOC = TypeAdapter(dict[str, AggregatedBucket])

T = TypeVar("T")


class ArchiveNotFoundError(LookupError):
    """No archive document exists for the requested range."""


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def _split_date(key: str) -> tuple[str, str]:
    year, month, _ = key.split("-", 2)
    return year, month


def hourly_path(building_id: str, unit_id: str, day: str) -> str:
    year, month = _split_date(day)
    return f"{ARCHIVE_ROOT}/{building_id}/{unit_id}/{year}/{month}/hourly-{day}.json"


def daily_path(building_id: str, unit_id: str, day: str) -> str:
    year, month = _split_date(day)
    return f"{ARCHIVE_ROOT}/{building_id}/{unit_id}/{year}/{month}/daily-{day}.json"


def monthly_path(building_id: str, unit_id: str, year: str, month: str) -> str:
    return (
        f"{ARCHIVE_ROOT}/{building_id}/{unit_id}/{year}/monthly-{year}-{month}.json"
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class ArchiveStore:
    """Reads and writes hourly, daily and monthly archives in a blob store.

    Args:
        store: Any :class:`~historian.src.blobstore.BlobStore`.
        tz: Collection time zone, used to interpret period ids and range
            windows.
    """

    def __init__(self, store: BlobStore, *, tz: tzinfo = UTC) -> None:
        self._store = store
        self._tz = tz

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def append_hourly(
        self,
        building_id: str,
        unit_id: str,
        period_id: str,
        bucket: AggregatedBucket,
    ) -> None:
        """Insert or overwrite one hour in the unit's hourly document."""
        path = hourly_path(building_id, unit_id, date_key(period_id))
        document = await self._load(path, _HOURLY_DOC.validate_json) or {}
        document[period_id] = bucket
        await self._store.put(path, _HOURLY_DOC.dump_json(document, indent=2))
        logger.info("Saved hourly data: %s/%s/%s", building_id, unit_id, period_id)

    async def append_daily(
        self,
        building_id: str,
        unit_id: str,
        day: str,
        bucket: AggregatedBucket,
    ) -> MonthlySummary | None:
        """Write the daily document, then fold the day into the monthly archive.

        Returns:
            The recomputed monthly summary.
        """
        await self._store.put(
            daily_path(building_id, unit_id, day),
            bucket.model_dump_json(indent=2).encode("utf-8"),
        )
        logger.info("Saved daily data: %s/%s/%s", building_id, unit_id, day)

        year, month = _split_date(day)
        path = monthly_path(building_id, unit_id, year, month)
        archive = await self._load(path, MonthlyArchive.model_validate_json)
        archive = archive or MonthlyArchive()
        archive.days[day] = bucket
        archive.summary = summarize_days(archive.days.values())
        await self._store.put(path, archive.model_dump_json(indent=2).encode("utf-8"))
        logger.info(
            "Updated monthly summary: %s/%s/%s-%s", building_id, unit_id, year, month
        )
        return archive.summary

    async def recompute_monthly_summary(
        self,
        building_id: str,
        unit_id: str,
        year: str | int,
        month: str | int,
    ) -> MonthlySummary | None:
        """Recompute and store the summary of a monthly archive.

        Returns:
            The new summary, or ``None`` when no monthly archive exists (in
            which case nothing is written).
        """
        year, month = f"{int(year):04d}", f"{int(month):02d}"
        path = monthly_path(building_id, unit_id, year, month)
        archive = await self._load(path, MonthlyArchive.model_validate_json)
        if archive is None:
            return None
        archive.summary = summarize_days(archive.days.values())
        await self._store.put(path, archive.model_dump_json(indent=2).encode("utf-8"))
        return archive.summary

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def load_hourly(
        self, building_id: str, unit_id: str, day: str
    ) -> dict[str, AggregatedBucket] | None:
        return await self._load(
            hourly_path(building_id, unit_id, day), _HOURLY_DOC.validate_json
        )

    async def load_daily(
        self, building_id: str, unit_id: str, day: str
    ) -> AggregatedBucket | None:
        return await self._load(
            daily_path(building_id, unit_id, day), AggregatedBucket.model_validate_json
        )

    async def load_monthly(
        self, building_id: str, unit_id: str, year: str, month: str
    ) -> MonthlyArchive | None:
        return await self._load(
            monthly_path(building_id, unit_id, year, month),
            MonthlyArchive.model_validate_json,
        )

    async def read_range(
        self,
        building_id: str,
        unit_id: str,
        range_spec: str,
        now: datetime | None = None,
    ) -> RangeResult:
        """Return the archived buckets of a unit for a rolling window.

        ``24h`` returns the hourly buckets that started in the last 24 hours.
        ``7d`` and ``30d`` return the daily buckets of the last 7 or 30
        complete days with a summary recomputed over that selection.

        Raises:
            ValueError: If *range_spec* is not one of ``RANGE_SPECS``.
            ArchiveNotFoundError: If no archive document covers the window.
        """
        if range_spec not in RANGE_SPECS:
            raise ValueError(
                f"Invalid time range '{range_spec}' (expected one of "
                f"{', '.join(RANGE_SPECS)})"
            )
        local_now = localize(now or datetime.now(tz=UTC), self._tz)
        window_start = local_now - RANGE_SPECS[range_spec]

        if range_spec == "24h":
            return await self._read_hourly_window(
                building_id, unit_id, window_start, local_now
            )
        return await self._read_daily_window(
            building_id, unit_id, range_spec, window_start.date(), local_now.date()
        )

    async def _read_hourly_window(
        self,
        building_id: str,
        unit_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> RangeResult:
        days = sorted({window_start.date().isoformat(), window_end.date().isoformat()})
        found = False
        buckets: dict[str, AggregatedBucket] = {}
        for day in days:
            document = await self.load_hourly(building_id, unit_id, day)
            if document is None:
                continue
            found = True
            for pid, bucket in document.items():
                start, _ = period_bounds(Granularity.HOUR, pid, self._tz)
                if window_start <= start < window_end:
                    buckets[pid] = bucket

        if not found:
            raise ArchiveNotFoundError(
                f"No hourly archive for {building_id}/{unit_id} in the last 24h"
            )
        return RangeResult(range="24h", buckets=dict(sorted(buckets.items())))

    async def _read_daily_window(
        self,
        building_id: str,
        unit_id: str,
        range_spec: str,
        first_day: date,
        today: date,
    ) -> RangeResult:
        wanted = [
            (first_day + timedelta(days=offset)).isoformat()
            for offset in range((today - first_day).days)
        ]
        months = sorted({_split_date(day) for day in wanted})

        found = False
        buckets: dict[str, AggregatedBucket] = {}
        for year, month in months:
            archive = await self.load_monthly(building_id, unit_id, year, month)
            if archive is None:
                continue
            found = True
            buckets.update(
                (day, bucket) for day, bucket in archive.days.items() if day in wanted
            )

        if not found:
            raise ArchiveNotFoundError(
                f"No monthly archive for {building_id}/{unit_id} "
                f"in the last {range_spec}"
            )
        ordered = dict(sorted(buckets.items()))
        return RangeResult(
            range=range_spec,
            buckets=ordered,
            summary=summarize_days(ordered.values()),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load(self, path: str, parse: Callable[[bytes], T]) -> T | None:
        """Load and parse a document; ``None`` when absent or unreadable."""
        try:
            raw = await self._store.get(path)
        except BlobNotFoundError:
            return None
        try:
            return parse(raw)
        except ValidationError:
            logger.warning("Archive document %s is unreadable, ignoring it", path)
            return None

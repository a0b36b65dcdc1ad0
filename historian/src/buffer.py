"""
In-memory aggregation buffer for unit readings, bucketed by hour and day.

Every snapshot delivered for a building is turned into one Reading per
active unit, appended to that unit's current hour bucket and current day
bucket. The rollup scheduler later drains completed buckets. Buckets whose
period ended more than the retention horizon (48 h by default) before the
latest ingest are purged, so a missed flush cannot grow the buffer without
bound.

Operations:
- ingest(building_id, units, now): buffer one reading per active unit.
- drain_bucket(building_id, unit_id, granularity, period_id): remove and
  return a bucket's readings ([] when absent).
- pending_units(building_id, granularity, period_id): units with data.
- discard_building(building_id): drop all buffered data of a building.
- key_count(building_id=None): number of buckets held.

All access to the internal map happens under one lock with no awaits
inside, so a drain never observes a half-applied ingest even when the
telemetry source delivers on another thread.

CHANGELOG:
- 2026-10-07: Purge across all buildings on ingest (STORY-107)
- 2026-10-03: Initial creation (STORY-105)

TODO:
- None
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any

from historian.src.models import Granularity, Reading
from historian.src.normalizer import reading_from_snapshot, snapshot_from_document
from historian.src.periods import localize, period_end, period_id

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=48)


@dataclass(frozen=True)
class BucketKey:
    """Routes a reading to its in-memory bucket."""

    building_id: str
    unit_id: str
    granularity: Granularity
    period_id: str


class AggregationBuffer:
    """Thread-safe per-(building, unit, period) store of recent readings.

    Args:
        retention: Buckets whose period ended more than this long before
            the ``now`` of an ingest are purged.
        tz: Time zone in which period ids are computed.
    """

    def __init__(
        self,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        tz: tzinfo = UTC,
    ) -> None:
        self._retention = retention
        self._tz = tz
        self._buckets: dict[BucketKey, list[Reading]] = {}
        self._lock = threading.Lock()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ingest(
        self,
        building_id: str,
        units: Mapping[str, Any] | None,
        now: datetime,
    ) -> int:
        """Buffer one reading per active unit, then purge expired buckets.

        Args:
            building_id: Building the snapshot belongs to.
            units: Full map of unit id to unit document (or snapshot).
            now: Ingest time; used as the reading timestamp and to route
                the reading into its hour and day buckets.

        Returns:
            Number of units whose reading was buffered.
        """
        local_now = localize(now, self._tz)
        hour_id = period_id(Granularity.HOUR, local_now, self._tz)
        day_id = period_id(Granularity.DAY, local_now, self._tz)

        readings: list[tuple[str, Reading]] = []
        for unit_id, doc in (units or {}).items():
            snapshot = snapshot_from_document(doc)
            if not snapshot.is_active:
                continue
            readings.append((str(unit_id), reading_from_snapshot(snapshot, local_now)))

        with self._lock:
            for unit_id, reading in readings:
                for granularity, pid in (
                    (Granularity.HOUR, hour_id),
                    (Granularity.DAY, day_id),
                ):
                    key = BucketKey(building_id, unit_id, granularity, pid)
                    self._buckets.setdefault(key, []).append(reading)
            purged = self._purge_locked(local_now)

        if purged:
            logger.warning(
                "Purged %d unflushed bucket(s) older than the %s retention horizon",
                purged,
                self._retention,
            )
        return len(readings)

    def drain_bucket(
        self,
        building_id: str,
        unit_id: str,
        granularity: Granularity,
        period_id: str,
    ) -> list[Reading]:
        """Atomically remove and return a bucket's readings.

        Returns:
            The readings in arrival order, or an empty list when the bucket
            holds no data (unknown buildings included).
        """
        key = BucketKey(building_id, unit_id, Granularity(granularity), period_id)
        with self._lock:
            return self._buckets.pop(key, [])

    def pending_units(
        self,
        building_id: str,
        granularity: Granularity,
        period_id: str,
    ) -> list[str]:
        """Return the ids of units holding readings for the given period."""
        granularity = Granularity(granularity)
        with self._lock:
            return [
                key.unit_id
                for key, readings in self._buckets.items()
                if key.building_id == building_id
                and key.granularity is granularity
                and key.period_id == period_id
                and readings
            ]

    def discard_building(self, building_id: str) -> int:
        """Drop every bucket of *building_id*; returns the bucket count."""
        with self._lock:
            keys = [k for k in self._buckets if k.building_id == building_id]
            for key in keys:
                del self._buckets[key]
        return len(keys)

    def key_count(self, building_id: str | None = None) -> int:
        with self._lock:
            if building_id is None:
                return len(self._buckets)
            return sum(1 for k in self._buckets if k.building_id == building_id)

    def purge_expired(self, now: datetime) -> int:
        """Purge buckets past the retention horizon relative to *now*."""
        with self._lock:
            return self._purge_locked(localize(now, self._tz))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _purge_locked(self, now: datetime) -> int:
        horizon = now.astimezone(UTC) - self._retention
        expired = [
            key
            for key in self._buckets
            if period_end(key.granularity, key.period_id, self._tz).astimezone(UTC)
            < horizon
        ]
        for key in expired:
            del self._buckets[key]
        return len(expired)

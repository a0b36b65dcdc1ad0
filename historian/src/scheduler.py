"""
Rollup scheduler: drains completed buckets and forwards them for archiving.

For each collecting building two recurring triggers run as asyncio tasks:

1. **Hourly trigger**: flushes the hour that completed most recently.
2. **Daily trigger**: flushes the day that completed most recently and folds
   it into the monthly archive.

In production the triggers fire a short grace delay after every wall-clock
hour boundary and after local midnight. With fixed intervals configured
(development) they fire every ``hourly_interval_s`` / ``daily_interval_s``
seconds instead.

Delivery is at-most-once: a bucket is drained before it is forwarded, and a
failed forward is logged with the dropped sample count and never
re-buffered. A failure for one unit does not stop the other units, and an
exception in one flush never ends its trigger loop.

CHANGELOG:
- 2026-10-08: Wall-clock aligned triggers with grace delay (STORY-108)
- 2026-10-05: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from historian.src.metrics import aggregate_readings
from historian.src.models import Granularity
from historian.src.periods import previous_period_id, seconds_until_next_boundary

if TYPE_CHECKING:
    from historian.src.archive import ArchiveStore
    from historian.src.buffer import AggregationBuffer
    from historian.src.health import HealthWriter

logger = logging.getLogger(__name__)

DEFAULT_GRACE_S: float = 5.0
"""Delay after a period boundary before its flush runs."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class RollupScheduler:
    """Periodically moves buffered buckets into the archive.

    Args:
        buffer: The aggregation buffer to drain.
        archive: Persistence adapter receiving the rolled-up buckets.
        hourly_interval_s: Fixed hourly trigger interval, or ``None`` to
            align on wall-clock hour boundaries.
        daily_interval_s: Fixed daily trigger interval, or ``None`` to
            align on local midnight.
        grace_s: Delay after a boundary before an aligned trigger fires.
        clock: Returns the current time (aware). Defaults to UTC now.
        health: Optional HealthWriter notified after every flush.
    """

    def __init__(
        self,
        buffer: AggregationBuffer,
        archive: ArchiveStore,
        *,
        hourly_interval_s: float | None = None,
        daily_interval_s: float | None = None,
        grace_s: float = DEFAULT_GRACE_S,
        clock: Callable[[], datetime] | None = None,
        health: HealthWriter | None = None,
    ) -> None:
        self._buffer = buffer
        self._archive = archive
        self._intervals: dict[Granularity, float | None] = {
            Granularity.HOUR: hourly_interval_s,
            Granularity.DAY: daily_interval_s,
        }
        self._grace_s = grace_s
        self._clock = clock or _utcnow
        self._health = health

    # ------------------------------------------------------------------
    # Flush operations
    # ------------------------------------------------------------------

    async def flush_hourly(self, building_id: str, now: datetime | None = None) -> int:
        """Flush the most recently completed hour of *building_id*.

        Returns:
            Number of buckets persisted.
        """
        return await self._flush(building_id, Granularity.HOUR, now)

    async def flush_daily(self, building_id: str, now: datetime | None = None) -> int:
        """Flush the most recently completed day of *building_id*.

        Returns:
            Number of buckets persisted.
        """
        return await self._flush(building_id, Granularity.DAY, now)

    async def _flush(
        self,
        building_id: str,
        granularity: Granularity,
        now: datetime | None,
    ) -> int:
        pid = previous_period_id(granularity, now or self._clock(), self._buffer.tz)
        persisted = 0

        for unit_id in self._buffer.pending_units(building_id, granularity, pid):
            readings = self._buffer.drain_bucket(building_id, unit_id, granularity, pid)
            bucket = aggregate_readings(readings)
            if bucket is None:
                continue
            try:
                if granularity is Granularity.HOUR:
                    await self._archive.append_hourly(building_id, unit_id, pid, bucket)
                else:
                    await self._archive.append_daily(building_id, unit_id, pid, bucket)
            except Exception:
                logger.error(
                    "Dropped %s bucket %s/%s/%s (%d samples): archive write failed",
                    granularity,
                    building_id,
                    unit_id,
                    pid,
                    len(readings),
                    exc_info=True,
                )
                continue
            persisted += 1

        if persisted:
            logger.info(
                "Flushed %d %s bucket(s) for building=%s period=%s",
                persisted,
                granularity,
                building_id,
                pid,
            )
        if self._health is not None:
            try:
                self._health.record_flush(self._buffer.key_count())
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)
        return persisted

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def schedule(self, building_id: str) -> list[asyncio.Task[None]]:
        """Start the hourly and daily triggers of *building_id*.

        Must be called with a running event loop. Cancelling the returned
        tasks stops the triggers; no flush starts after cancellation.
        """
        loop = asyncio.get_running_loop()
        return [
            loop.create_task(
                self._trigger_loop(building_id, granularity),
                name=f"rollup-{granularity}-{building_id}",
            )
            for granularity in (Granularity.HOUR, Granularity.DAY)
        ]

    def next_delay(self, granularity: Granularity) -> float:
        """Seconds to sleep before the next trigger of *granularity*."""
        interval = self._intervals[Granularity(granularity)]
        if interval is not None:
            return interval
        return (
            seconds_until_next_boundary(granularity, self._clock(), self._buffer.tz)
            + self._grace_s
        )

    async def _trigger_loop(self, building_id: str, granularity: Granularity) -> None:
        logger.info(
            "Rollup trigger started (building=%s, %s)", building_id, granularity
        )
        try:
            while True:
                await asyncio.sleep(self.next_delay(granularity))
                try:
                    await self._flush(building_id, granularity, None)
                except Exception:
                    logger.error(
                        "Rollup %s flush error for building=%s",
                        granularity,
                        building_id,
                        exc_info=True,
                    )
        finally:
            logger.info(
                "Rollup trigger stopped (building=%s, %s)", building_id, granularity
            )

"""
Unit tests for the rollup scheduler.

Tests verify:
- flush_hourly / flush_daily drain the previous completed period only.
- Persisted buckets reach the archive; the live period stays buffered.
- A failing archive write drops that unit's data (at-most-once), is logged,
  and does not stop the other units.
- Trigger delays: fixed interval or next boundary plus grace.
- Trigger loops keep running after a flush error and stop on cancel.

CHANGELOG:
- 2026-10-16: Hourly triggers across DST transitions (STORY-113)
- 2026-10-08: Add trigger loop tests (STORY-108)
- 2026-10-05: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from historian.src.archive import ArchiveStore
from historian.src.blobstore import MemoryBlobStore
from historian.src.buffer import AggregationBuffer
from historian.src.models import Granularity
from historian.src.scheduler import RollupScheduler

PREV_HOUR = datetime(2026, 10, 14, 9, 20, tzinfo=UTC)
NOW = datetime(2026, 10, 14, 10, 0, 5, tzinfo=UTC)
BERLIN = ZoneInfo("Europe/Berlin")


def _fill(buffer: AggregationBuffer, unit_doc, *unit_ids: str) -> None:
    for minute in (0, 20):
        buffer.ingest(
            "b1",
            {unit_id: unit_doc(power=250 + minute) for unit_id in unit_ids},
            PREV_HOUR + timedelta(minutes=minute),
        )


class TestFlushHourly:
    @pytest.mark.asyncio
    async def test_persists_previous_hour(self, unit_doc) -> None:
        buffer = AggregationBuffer()
        archive = ArchiveStore(MemoryBlobStore())
        scheduler = RollupScheduler(buffer, archive)
        _fill(buffer, unit_doc, "unit_001", "unit_002")
        buffer.ingest("b1", {"unit_001": unit_doc()}, NOW)  # live hour

        persisted = await scheduler.flush_hourly("b1", now=NOW)

        assert persisted == 2
        document = await archive.load_hourly("b1", "unit_001", "2026-10-14")
        assert document["2026-10-14-09"].sample_count == 2
        assert document["2026-10-14-09"].power.avg == 260
        assert buffer.pending_units("b1", Granularity.HOUR, "2026-10-14-09") == []
        assert buffer.pending_units("b1", Granularity.HOUR, "2026-10-14-10") == [
            "unit_001"
        ]

    @pytest.mark.asyncio
    async def test_nothing_pending_persists_nothing(self) -> None:
        archive = AsyncMock(spec=ArchiveStore)
        scheduler = RollupScheduler(AggregationBuffer(), archive)

        assert await scheduler.flush_hourly("b1", now=NOW) == 0
        archive.append_hourly.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_write_is_dropped_and_logged(
        self, unit_doc, caplog: pytest.LogCaptureFixture
    ) -> None:
        buffer = AggregationBuffer()
        archive = AsyncMock(spec=ArchiveStore)
        archive.append_hourly.side_effect = [RuntimeError("store down"), None]
        scheduler = RollupScheduler(buffer, archive)
        _fill(buffer, unit_doc, "unit_001", "unit_002")

        with caplog.at_level(logging.ERROR):
            persisted = await scheduler.flush_hourly("b1", now=NOW)

        assert persisted == 1
        assert archive.append_hourly.await_count == 2
        assert "(2 samples)" in caplog.text
        # Not re-buffered.
        assert buffer.pending_units("b1", Granularity.HOUR, "2026-10-14-09") == []

    @pytest.mark.asyncio
    async def test_health_notified(self, unit_doc) -> None:
        buffer = AggregationBuffer()
        health = MagicMock()
        scheduler = RollupScheduler(
            buffer, ArchiveStore(MemoryBlobStore()), health=health
        )
        _fill(buffer, unit_doc, "unit_001")

        await scheduler.flush_hourly("b1", now=NOW)

        health.record_flush.assert_called_once_with(buffer.key_count())


class TestFlushDaily:
    @pytest.mark.asyncio
    async def test_persists_previous_day_and_monthly(self, unit_doc) -> None:
        buffer = AggregationBuffer()
        archive = ArchiveStore(MemoryBlobStore())
        scheduler = RollupScheduler(buffer, archive)
        _fill(buffer, unit_doc, "unit_001")

        persisted = await scheduler.flush_daily(
            "b1", now=datetime(2026, 10, 15, 0, 0, 5, tzinfo=UTC)
        )

        assert persisted == 1
        daily = await archive.load_daily("b1", "unit_001", "2026-10-14")
        monthly = await archive.load_monthly("b1", "unit_001", "2026", "10")
        assert daily.sample_count == 2
        assert monthly.summary.total_days == 1

    @pytest.mark.asyncio
    async def test_live_day_is_not_flushed(self, unit_doc) -> None:
        buffer = AggregationBuffer()
        archive = AsyncMock(spec=ArchiveStore)
        scheduler = RollupScheduler(buffer, archive)
        _fill(buffer, unit_doc, "unit_001")

        assert await scheduler.flush_daily("b1", now=NOW) == 0
        archive.append_daily.assert_not_awaited()


class TestNextDelay:
    def test_fixed_interval(self) -> None:
        scheduler = RollupScheduler(
            AggregationBuffer(),
            AsyncMock(spec=ArchiveStore),
            hourly_interval_s=600,
            daily_interval_s=3600,
        )

        assert scheduler.next_delay(Granularity.HOUR) == 600
        assert scheduler.next_delay(Granularity.DAY) == 3600

    def test_aligned_to_boundary_plus_grace(self) -> None:
        scheduler = RollupScheduler(
            AggregationBuffer(),
            AsyncMock(spec=ArchiveStore),
            grace_s=5,
            clock=lambda: datetime(2026, 10, 14, 23, 59, 0, tzinfo=UTC),
        )

        assert scheduler.next_delay(Granularity.HOUR) == 65
        assert scheduler.next_delay(Granularity.DAY) == 65


class TestTriggers:
    @pytest.mark.asyncio
    async def test_loop_survives_flush_errors(self, monkeypatch) -> None:
        scheduler = RollupScheduler(
            AggregationBuffer(),
            AsyncMock(spec=ArchiveStore),
            hourly_interval_s=0.01,
            daily_interval_s=3600,
        )
        calls: list[Granularity] = []

        async def _failing_flush(building_id, granularity, now):
            calls.append(granularity)
            raise RuntimeError("boom")

        monkeypatch.setattr(scheduler, "_flush", _failing_flush)

        tasks = scheduler.schedule("b1")
        await asyncio.sleep(0.1)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        assert calls.count(Granularity.HOUR) >= 2
        assert Granularity.DAY not in calls
        assert all(task.cancelled() for task in tasks)

    @pytest.mark.asyncio
    async def test_no_flush_after_cancel(self, monkeypatch) -> None:
        scheduler = RollupScheduler(
            AggregationBuffer(),
            AsyncMock(spec=ArchiveStore),
            hourly_interval_s=0.05,
            daily_interval_s=0.05,
        )
        flush = AsyncMock(return_value=0)
        monkeypatch.setattr(scheduler, "_flush", flush)

        tasks = scheduler.schedule("b1")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.sleep(0.1)

        flush.assert_not_awaited()
        assert [task.get_name() for task in tasks] == [
            "rollup-hour-b1",
            "rollup-day-b1",
        ]


class TestAlignedTriggersAcrossDst:
    """Hourly triggers in Europe/Berlin across both 2026 DST transitions."""

    async def _run_cycles(
        self,
        scheduler: RollupScheduler,
        clock,
        cycles: int,
        ingest: dict[int, list[datetime]],
        buffer: AggregationBuffer,
        unit_doc,
    ) -> list[datetime]:
        fires: list[datetime] = []
        for cycle in range(cycles):
            for ts in ingest.get(cycle, []):
                buffer.ingest("b1", {"unit_001": unit_doc()}, ts)
            clock.now += timedelta(seconds=scheduler.next_delay(Granularity.HOUR))
            fires.append(clock.now)
            await scheduler.flush_hourly("b1")
        return fires

    @pytest.mark.asyncio
    async def test_hour_before_spring_gap_is_archived(self, unit_doc, clock) -> None:
        buffer = AggregationBuffer(tz=BERLIN)
        archive = ArchiveStore(MemoryBlobStore(), tz=BERLIN)
        clock.now = datetime(2026, 3, 29, 0, 30, tzinfo=UTC)  # 01:30 CET
        scheduler = RollupScheduler(buffer, archive, grace_s=5, clock=clock)

        fires = await self._run_cycles(
            scheduler, clock, 2, {0: [clock.now]}, buffer, unit_doc
        )

        assert fires == [
            datetime(2026, 3, 29, 1, 0, 5, tzinfo=UTC),  # 03:00:05 CEST
            datetime(2026, 3, 29, 2, 0, 5, tzinfo=UTC),
        ]
        assert buffer.pending_units("b1", Granularity.HOUR, "2026-03-29-01") == []
        document = await archive.load_hourly("b1", "unit_001", "2026-03-29")
        assert list(document) == ["2026-03-29-01"]

    @pytest.mark.asyncio
    async def test_repeated_autumn_hour_is_archived_once(
        self, unit_doc, clock
    ) -> None:
        buffer = AggregationBuffer(tz=BERLIN)
        archive = ArchiveStore(MemoryBlobStore(), tz=BERLIN)
        clock.now = datetime(2026, 10, 24, 23, 30, tzinfo=UTC)  # 01:30 CEST
        scheduler = RollupScheduler(buffer, archive, grace_s=5, clock=clock)
        ingest = {
            0: [clock.now],
            1: [
                datetime(2026, 10, 25, 0, 30, tzinfo=UTC),  # 02:30 CEST
                datetime(2026, 10, 25, 1, 30, tzinfo=UTC),  # 02:30 CET
            ],
        }

        fires = await self._run_cycles(scheduler, clock, 2, ingest, buffer, unit_doc)

        assert fires == [
            datetime(2026, 10, 25, 0, 0, 5, tzinfo=UTC),  # 02:00:05 CEST
            datetime(2026, 10, 25, 2, 0, 5, tzinfo=UTC),  # 03:00:05 CET
        ]
        document = await archive.load_hourly("b1", "unit_001", "2026-10-25")
        assert sorted(document) == ["2026-10-25-01", "2026-10-25-02"]
        assert document["2026-10-25-02"].sample_count == 2

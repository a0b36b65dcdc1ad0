"""
Unit tests for period ids and boundaries.

CHANGELOG:
- 2026-10-16: DST transition cases (STORY-113)
- 2026-10-03: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from historian.src.models import Granularity
from historian.src.periods import (
    date_key,
    period_bounds,
    period_id,
    previous_period_id,
    seconds_until_next_boundary,
)

LAGOS = ZoneInfo("Africa/Lagos")  # UTC+1, no DST
BERLIN = ZoneInfo("Europe/Berlin")


class TestPeriodId:
    def test_hour_and_day_format(self) -> None:
        ts = datetime(2026, 10, 14, 9, 59, 59, tzinfo=UTC)

        assert period_id(Granularity.HOUR, ts) == "2026-10-14-09"
        assert period_id(Granularity.DAY, ts) == "2026-10-14"

    def test_aware_timestamp_converted_to_zone(self) -> None:
        ts = datetime(2026, 10, 14, 23, 30, tzinfo=UTC)

        assert period_id(Granularity.HOUR, ts, LAGOS) == "2026-10-15-00"
        assert period_id(Granularity.DAY, ts, LAGOS) == "2026-10-15"

    def test_naive_timestamp_taken_as_local(self) -> None:
        ts = datetime(2026, 10, 14, 23, 30)

        assert period_id(Granularity.HOUR, ts, LAGOS) == "2026-10-14-23"


class TestPreviousPeriodId:
    def test_previous_hour(self) -> None:
        now = datetime(2026, 10, 14, 10, 0, 5, tzinfo=UTC)

        assert previous_period_id(Granularity.HOUR, now) == "2026-10-14-09"

    def test_previous_hour_across_midnight(self) -> None:
        now = datetime(2026, 10, 15, 0, 0, 5, tzinfo=UTC)

        assert previous_period_id(Granularity.HOUR, now) == "2026-10-14-23"

    def test_previous_day_across_month(self) -> None:
        now = datetime(2026, 11, 1, 0, 0, 5, tzinfo=UTC)

        assert previous_period_id(Granularity.DAY, now) == "2026-10-31"


class TestPeriodBounds:
    def test_hour_bounds(self) -> None:
        start, end = period_bounds(Granularity.HOUR, "2026-10-14-09")

        assert start == datetime(2026, 10, 14, 9, tzinfo=UTC)
        assert end == datetime(2026, 10, 14, 10, tzinfo=UTC)

    def test_day_bounds_in_zone(self) -> None:
        start, end = period_bounds(Granularity.DAY, "2026-10-14", LAGOS)

        assert start == datetime(2026, 10, 13, 23, tzinfo=UTC)
        assert end == datetime(2026, 10, 14, 23, tzinfo=UTC)

    def test_bad_id_raises(self) -> None:
        with pytest.raises(ValueError):
            period_bounds(Granularity.HOUR, "2026-10-14")


class TestHelpers:
    def test_date_key(self) -> None:
        assert date_key("2026-10-14-09") == "2026-10-14"
        assert date_key("2026-10-14") == "2026-10-14"

    def test_seconds_until_next_hour(self) -> None:
        now = datetime(2026, 10, 14, 9, 59, 30, tzinfo=UTC)

        assert seconds_until_next_boundary(Granularity.HOUR, now) == 30

    def test_seconds_until_local_midnight(self) -> None:
        now = datetime(2026, 10, 14, 22, 0, tzinfo=UTC)  # 23:00 in Lagos

        assert seconds_until_next_boundary(Granularity.DAY, now, LAGOS) == 3600


class TestDaylightSaving:
    """Europe/Berlin: 2026-03-29 skips 02:00, 2026-10-25 repeats 02:00."""

    def test_previous_hour_after_spring_gap(self) -> None:
        now = datetime(2026, 3, 29, 1, 0, 5, tzinfo=UTC)  # 03:00:05 CEST

        assert previous_period_id(Granularity.HOUR, now, BERLIN) == "2026-03-29-01"

    def test_hour_before_gap_ends_at_gap(self) -> None:
        start, end = period_bounds(Granularity.HOUR, "2026-03-29-01", BERLIN)

        assert start == datetime(2026, 3, 29, 0, tzinfo=UTC)
        assert end == datetime(2026, 3, 29, 1, tzinfo=UTC)

    def test_repeated_hour_spans_both_occurrences(self) -> None:
        start, end = period_bounds(Granularity.HOUR, "2026-10-25-02", BERLIN)

        assert start == datetime(2026, 10, 25, 0, tzinfo=UTC)
        assert end == datetime(2026, 10, 25, 2, tzinfo=UTC)

    def test_repeated_hour_is_not_reported_while_live(self) -> None:
        now = datetime(2026, 10, 25, 1, 0, 5, tzinfo=UTC)  # 02:00:05 CET

        assert previous_period_id(Granularity.HOUR, now, BERLIN) == "2026-10-25-01"

    def test_repeated_hour_reported_after_second_close(self) -> None:
        now = datetime(2026, 10, 25, 2, 0, 5, tzinfo=UTC)  # 03:00:05 CET

        assert previous_period_id(Granularity.HOUR, now, BERLIN) == "2026-10-25-02"

    def test_next_boundary_in_spring_gap_hour(self) -> None:
        now = datetime(2026, 3, 29, 0, 30, tzinfo=UTC)  # 01:30 CET

        assert seconds_until_next_boundary(Granularity.HOUR, now, BERLIN) == 1800

    def test_next_boundary_skips_repeated_hour(self) -> None:
        now = datetime(2026, 10, 25, 0, 30, tzinfo=UTC)  # 02:30 CEST

        assert seconds_until_next_boundary(Granularity.HOUR, now, BERLIN) == 5400

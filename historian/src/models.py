"""
Pydantic models for unit telemetry, rollups and archive documents.

Defines the typed shapes that flow through the historian:

- ``UnitSnapshot`` / ``Reading``: live unit state and the immutable sample
  taken from it on ingest.
- ``AggregatedBucket``: statistical rollup of one hour or one day of
  readings for a unit. This is the unit of persistence.
- ``MonthlyArchive`` / ``MonthlySummary``: the monthly document holding
  every daily bucket plus a summary recomputed from them.
- Derived views for the live dashboard (``BuildingStats``, ``LiveView``,
  ``ActionableStatus``, ``ActionableInsights``) and ``CollectorStatus``.

Serialising any of these with ``model_dump(mode="json")`` yields the archive
wire format.

CHANGELOG:
- 2026-10-16: Building counts, average voltage and offline units (STORY-114)
- 2026-10-09: Add RangeResult and ActionableInsights (STORY-109)
- 2026-10-02: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Granularity(StrEnum):
    """Bucket granularity used for buffering and archiving."""

    HOUR = "hour"
    DAY = "day"


class UnitStatus(StrEnum):
    """Live status classification of a unit, most severe first."""

    INACTIVE = "inactive"
    CRITICAL = "critical"
    WARNING = "warning"
    ACTIVE = "active"


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class Reading(BaseModel):
    """One telemetry sample for a unit at an instant.

    Attributes:
        ts: Time the sample was taken (injected by the ingesting caller).
        power_w: Instantaneous power draw in watts.
        current_a: Current in amperes.
        voltage_v: Voltage in volts.
        remaining_credit: Prepaid credit left on the meter.
        remaining_energy_kwh: Prepaid energy left on the meter in kWh.
    """

    model_config = ConfigDict(frozen=True)

    ts: datetime
    power_w: float = 0.0
    current_a: float = 0.0
    voltage_v: float = 0.0
    remaining_credit: float = 0.0
    remaining_energy_kwh: float = 0.0


class UnitSnapshot(BaseModel):
    """Live state of one unit as delivered by the telemetry source.

    Numeric fields are already coerced (see
    :func:`historian.src.normalizer.snapshot_from_document`). The raw
    access code is never kept, only a short hash of it.
    """

    model_config = ConfigDict(frozen=True)

    power_w: float = 0.0
    current_a: float = 0.0
    voltage_v: float = 0.0
    remaining_credit: float = 0.0
    remaining_energy_kwh: float = 0.0
    is_active: bool = True
    name: str = ""
    access_code_hash: str | None = None
    tenant_info: dict[str, Any] | None = None
    timestamp: str | None = None


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


class MetricStats(BaseModel):
    """Average, minimum and maximum of one metric over a bucket."""

    model_config = ConfigDict(frozen=True)

    avg: float
    min: float
    max: float


class PowerStats(MetricStats):
    """Power statistics, with the raw sum kept for energy estimates."""

    sum: float


class LevelStats(BaseModel):
    """First and last value of a draining level (credit, energy).

    ``consumed`` is ``max(0, start - end)``: a top-up during the period
    makes the delta negative and is clamped to zero.
    """

    model_config = ConfigDict(frozen=True)

    start: float
    end: float
    consumed: float


class AggregatedBucket(BaseModel):
    """Summarized form of the readings of one unit for one period."""

    model_config = ConfigDict(frozen=True)

    sample_count: int
    period_start: datetime
    period_end: datetime
    power: PowerStats
    current: MetricStats
    voltage: MetricStats
    credit: LevelStats
    energy: LevelStats


class MonthlySummary(BaseModel):
    """Summary of every daily bucket present in a monthly archive."""

    total_days: int
    avg_daily_power: float
    total_energy_consumed: float
    total_credit_consumed: float
    peak_power: float
    min_power: float


class MonthlyArchive(BaseModel):
    """Monthly archive document: daily buckets keyed by ``YYYY-MM-DD``."""

    days: dict[str, AggregatedBucket] = Field(default_factory=dict)
    summary: MonthlySummary | None = None


class RangeResult(BaseModel):
    """Archived buckets answering a historical range query."""

    range: str
    buckets: dict[str, AggregatedBucket] = Field(default_factory=dict)
    summary: MonthlySummary | None = None


# ---------------------------------------------------------------------------
# Derived live views
# ---------------------------------------------------------------------------


class BuildingStats(BaseModel):
    """Building-level aggregates; amounts are formatted with two decimals."""

    total_units: int = 0
    active_units: int = 0
    total_power: str = "0.00"
    avg_current: str = "0.00"
    avg_voltage: str = "0.00"
    total_credit: str = "0.00"
    total_remaining_energy: str = "0.00"
    low_credit_units: int = 0
    critical_units: int = 0


class ActionableStatus(BaseModel):
    """Privacy-preserving unit status: never carries a currency amount."""

    model_config = ConfigDict(frozen=True)

    status_label: str
    action_text: str
    priority: int


class InsightItem(BaseModel):
    unit: str
    issue: str
    action: str
    since: str | None = None


class ActionableInsights(BaseModel):
    """Report-style action list for a whole building."""

    immediate: list[InsightItem] = Field(default_factory=list)
    attention: list[InsightItem] = Field(default_factory=list)
    operational: int = 0
    recommendations: list[str] = Field(default_factory=list)


class LiveView(BaseModel):
    """Stats, alerts and statuses computed from the latest snapshot."""

    building_id: str
    updated_at: datetime
    stats: BuildingStats
    alerts: list[str] = Field(default_factory=list)
    statuses: dict[str, UnitStatus] = Field(default_factory=dict)
    offline_units: list[str] = Field(default_factory=list)


class CollectorStatus(BaseModel):
    """Observability snapshot of the collection controller."""

    initialized: bool
    active_building_ids: list[str]
    buffered_key_count: int
    timer_count: int

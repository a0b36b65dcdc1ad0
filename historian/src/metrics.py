"""
Metrics engine: derived building stats, unit statuses, alerts and rollups.

Everything here is a pure function over a snapshot of units (a mapping of
unit id to unit document or :class:`~historian.src.models.UnitSnapshot`)
or over a list of readings. Nothing raises on malformed input: every unit
passes through the normalizer, so missing or non-numeric fields count as 0.

Operations:
- compute_building_stats(units): totals and averages, two-decimal strings.
- classify_unit_status(unit): inactive > critical > warning > active.
- collect_alerts(units): ordered credit / high-consumption alert strings.
- stale_units(units, now) / offline_alerts(units, now): units with no
  update for more than two hours.
- derive_actionable_status(unit): currency-free status label and action.
- actionable_insights(units): report-style immediate/attention lists.
- aggregate_readings(readings): rollup of one bucket (avg/min/max/consumed).
- summarize_days(days): monthly summary, always a full recompute.

CHANGELOG:
- 2026-10-16: Building unit counts and offline detection (STORY-114)
- 2026-10-09: Add actionable_insights for building reports (STORY-109)
- 2026-10-05: Add aggregate_readings and summarize_days (STORY-104)
- 2026-10-02: Initial creation (STORY-103)

TODO:
- None
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from historian.src.models import (
    ActionableInsights,
    ActionableStatus,
    AggregatedBucket,
    BuildingStats,
    InsightItem,
    LevelStats,
    MetricStats,
    MonthlySummary,
    PowerStats,
    Reading,
    UnitSnapshot,
    UnitStatus,
)
from historian.src.normalizer import snapshot_from_document

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

CRITICAL_CREDIT: float = 500.0
"""Credit strictly below this is critical."""

WARNING_CREDIT: float = 1000.0
"""Credit strictly below this (and not critical) needs attention."""

HIGH_POWER_W: float = 1500.0
"""Power strictly above this raises a high-consumption warning."""

OFFLINE_AFTER = timedelta(hours=2)
"""A unit whose last update is older than this is reported offline."""

CURRENCY_SYMBOL = "₦"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _snapshots(units: Mapping[str, Any] | None) -> list[tuple[str, UnitSnapshot]]:
    """Normalize a units mapping into ``(unit_id, snapshot)`` pairs in order."""
    if not units or not isinstance(units, Mapping):
        return []
    return [
        (str(unit_id), snapshot_from_document(doc)) for unit_id, doc in units.items()
    ]


def _fmt2(value: float) -> str:
    return f"{value:.2f}"


def _fmt_amount(value: float) -> str:
    """Render an amount without a trailing ``.0`` for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _unit_label(unit_id: str) -> str:
    return unit_id.replace("unit_", "House ")


# ---------------------------------------------------------------------------
# Live building view
# ---------------------------------------------------------------------------


def compute_building_stats(units: Mapping[str, Any] | None) -> BuildingStats:
    """Compute building-level totals for a snapshot of units.

    Args:
        units: Mapping of unit id to unit document or snapshot. ``None`` or
            an empty mapping yields all-zero stats.

    Returns:
        :class:`BuildingStats` with unit counts and two-decimal strings.
        ``active_units`` counts units drawing power. ``low_credit_units``
        includes the ``critical_units``.
    """
    pairs = _snapshots(units)
    if not pairs:
        return BuildingStats()

    snapshots = [snapshot for _, snapshot in pairs]
    return BuildingStats(
        total_units=len(snapshots),
        active_units=sum(1 for s in snapshots if s.power_w > 0),
        total_power=_fmt2(sum(s.power_w for s in snapshots)),
        avg_current=_fmt2(_average([s.current_a for s in snapshots])),
        avg_voltage=_fmt2(_average([s.voltage_v for s in snapshots])),
        total_credit=_fmt2(sum(s.remaining_credit for s in snapshots)),
        total_remaining_energy=_fmt2(sum(s.remaining_energy_kwh for s in snapshots)),
        low_credit_units=sum(
            1 for s in snapshots if s.remaining_credit < WARNING_CREDIT
        ),
        critical_units=sum(
            1 for s in snapshots if s.remaining_credit < CRITICAL_CREDIT
        ),
    )


def classify_unit_status(unit: Any) -> UnitStatus:
    """Classify a unit, in fixed priority order.

    ``inactive`` when the unit is missing or explicitly deactivated, else
    ``critical`` when credit is below 500, else ``warning`` when credit is
    below 1000 or power is above 1500 W, else ``active``. Both warning
    conditions together are still only a warning.
    """
    if unit is None:
        return UnitStatus.INACTIVE
    snapshot = snapshot_from_document(unit)
    if not snapshot.is_active:
        return UnitStatus.INACTIVE
    if snapshot.remaining_credit < CRITICAL_CREDIT:
        return UnitStatus.CRITICAL
    if snapshot.remaining_credit < WARNING_CREDIT or snapshot.power_w > HIGH_POWER_W:
        return UnitStatus.WARNING
    return UnitStatus.ACTIVE


def collect_alerts(units: Mapping[str, Any] | None) -> list[str]:
    """Return alert strings for every unit, in the mapping's order.

    Each unit contributes at most one credit alert (critical or warning) and,
    independently, one high-consumption alert.
    """
    alerts: list[str] = []
    for unit_id, snapshot in _snapshots(units):
        amount = f"{CURRENCY_SYMBOL}{_fmt_amount(snapshot.remaining_credit)}"
        if snapshot.remaining_credit < CRITICAL_CREDIT:
            alerts.append(f"{unit_id}: Critical - Low credit ({amount})")
        elif snapshot.remaining_credit < WARNING_CREDIT:
            alerts.append(f"{unit_id}: Warning - Low credit ({amount})")

        if snapshot.power_w > HIGH_POWER_W:
            alerts.append(
                f"{unit_id}: High consumption detected ({snapshot.power_w:.2f}W)"
            )
    return alerts


# ---------------------------------------------------------------------------
# Offline detection
# ---------------------------------------------------------------------------


def parse_unit_timestamp(value: str | None) -> datetime | None:
    """Parse a unit ``timestamp`` (epoch milliseconds or ISO 8601).

    Naive ISO values are taken as UTC. Returns ``None`` when missing or
    unparseable.
    """
    if not value:
        return None
    try:
        millis = float(value)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed
    try:
        return datetime.fromtimestamp(millis / 1000, tz=UTC)
    except (ValueError, OverflowError, OSError):
        return None


def stale_units(
    units: Mapping[str, Any] | None,
    now: datetime,
    *,
    max_age: timedelta = OFFLINE_AFTER,
) -> dict[str, float]:
    """Return ``{unit_id: hours since last update}`` for units gone quiet.

    A unit is stale when its ``timestamp`` is more than *max_age* before
    *now*. Units without a usable timestamp are never reported.
    """
    stale: dict[str, float] = {}
    for unit_id, snapshot in _snapshots(units):
        last_update = parse_unit_timestamp(snapshot.timestamp)
        if last_update is None:
            continue
        age = now - last_update
        if age > max_age:
            stale[unit_id] = age.total_seconds() / 3600
    return stale


def offline_alerts(
    units: Mapping[str, Any] | None,
    now: datetime,
    *,
    max_age: timedelta = OFFLINE_AFTER,
) -> list[str]:
    """Alert strings for stale units, with whole hours since last update."""
    return [
        f"{unit_id}: No data received for {math.floor(hours)} hours"
        for unit_id, hours in stale_units(units, now, max_age=max_age).items()
    ]


_DISCONNECTED = ActionableStatus(
    status_label="Disconnected",
    action_text="Service interruption - requires intervention",
    priority=3,
)
_CRITICAL = ActionableStatus(
    status_label="Critical",
    action_text="Contact tenant for credit top-up",
    priority=2,
)
_ATTENTION = ActionableStatus(
    status_label="Attention Required",
    action_text="Low credit notification recommended",
    priority=1,
)
_OPERATIONAL = ActionableStatus(
    status_label="Operational",
    action_text="No action required",
    priority=0,
)


def derive_actionable_status(unit: Any) -> ActionableStatus:
    """Return a currency-free status for tenant-facing or shared views.

    Zero credit means the meter has cut the supply, so it is reported as
    ``Disconnected``, above ``Critical``.
    """
    credit = snapshot_from_document(unit).remaining_credit
    if credit == 0:
        return _DISCONNECTED
    if credit < CRITICAL_CREDIT:
        return _CRITICAL
    if credit < WARNING_CREDIT:
        return _ATTENTION
    return _OPERATIONAL


def actionable_insights(units: Mapping[str, Any] | None) -> ActionableInsights:
    """Build the immediate/attention action lists of a building report."""
    pairs = _snapshots(units)
    insights = ActionableInsights()

    for unit_id, snapshot in pairs:
        label = _unit_label(unit_id)
        status = derive_actionable_status(snapshot)

        if status is _DISCONNECTED:
            insights.immediate.append(
                InsightItem(
                    unit=label,
                    issue="Service Interruption",
                    action="Immediate restoration required",
                    since=snapshot.timestamp,
                )
            )
        elif status is _CRITICAL:
            insights.immediate.append(
                InsightItem(
                    unit=label,
                    issue="Critical Low Credit",
                    action="Contact tenant immediately for credit top-up",
                )
            )
        elif status is _ATTENTION:
            insights.attention.append(
                InsightItem(
                    unit=label,
                    issue="Low Credit Warning",
                    action="Send notification to tenant for credit top-up",
                )
            )
        else:
            insights.operational += 1

        if snapshot.power_w > HIGH_POWER_W:
            insights.attention.append(
                InsightItem(
                    unit=label,
                    issue=f"High Power Consumption ({snapshot.power_w:.2f}W)",
                    action="Monitor for potential issues or anomalies",
                )
            )

    if insights.immediate:
        insights.recommendations.append(
            "Priority: Address disconnected units immediately to restore service"
        )
    if len(insights.immediate) + len(insights.attention) > 3:
        insights.recommendations.append(
            "Consider implementing automated credit alerts for tenants"
        )
    if insights.operational == len(pairs):
        insights.recommendations.append(
            "All units operational - maintain regular monitoring schedule"
        )
    return insights


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


def _metric_stats(values: Sequence[float]) -> MetricStats:
    return MetricStats(avg=_average(values), min=min(values), max=max(values))


def _level_stats(values: Sequence[float]) -> LevelStats:
    start, end = values[0], values[-1]
    return LevelStats(start=start, end=end, consumed=max(0.0, start - end))


def aggregate_readings(readings: Sequence[Reading]) -> AggregatedBucket | None:
    """Roll a bucket of readings up into an :class:`AggregatedBucket`.

    Readings are expected in arrival order: the first and last reading give
    the period bounds and the start/end credit and energy levels.

    Args:
        readings: Readings of one unit for one period.

    Returns:
        The aggregated bucket, or ``None`` when *readings* is empty.
    """
    if not readings:
        return None

    powers = [r.power_w for r in readings]
    power = _metric_stats(powers)

    return AggregatedBucket(
        sample_count=len(readings),
        period_start=readings[0].ts,
        period_end=readings[-1].ts,
        power=PowerStats(avg=power.avg, min=power.min, max=power.max, sum=sum(powers)),
        current=_metric_stats([r.current_a for r in readings]),
        voltage=_metric_stats([r.voltage_v for r in readings]),
        credit=_level_stats([r.remaining_credit for r in readings]),
        energy=_level_stats([r.remaining_energy_kwh for r in readings]),
    )


def summarize_days(days: Iterable[AggregatedBucket]) -> MonthlySummary | None:
    """Reduce every daily bucket of a month into a :class:`MonthlySummary`.

    Always a full recompute over every day present, never an incremental
    patch of a previous summary.

    Returns:
        The summary, or ``None`` when there are no days.
    """
    buckets = list(days)
    if not buckets:
        return None
    return MonthlySummary(
        total_days=len(buckets),
        avg_daily_power=_average([b.power.avg for b in buckets]),
        total_energy_consumed=sum(b.energy.consumed for b in buckets),
        total_credit_consumed=sum(b.credit.consumed for b in buckets),
        peak_power=max(b.power.max for b in buckets),
        min_power=min(b.power.min for b in buckets),
    )

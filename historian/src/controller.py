"""
Collection controller: per-building lifecycle of subscription and triggers.

``start(building_id)`` subscribes to the telemetry source, routes every
snapshot into the aggregation buffer and the live view, and starts the
hourly and daily rollup triggers. ``stop(building_id)`` cancels both
triggers, cancels the subscription exactly once and discards the
building's buffered data.

There is no module-level state: every collaborator lives in a
:class:`HistorianContext` that is injected into the controller.
``open_context(settings)`` builds one from :class:`HistorianSettings`.

Lifecycle guarantees:
- ``start`` on a running building restarts it (old run torn down first).
- ``stop`` on a stopped or unknown building is a no-op returning False.
- Snapshots delivered for a stopped or superseded run are ignored.
- A failing snapshot callback is logged and never reaches the source.

CHANGELOG:
- 2026-10-16: Offline units in the live view (STORY-114)
- 2026-10-10: Replace module singleton with injected context (STORY-111)
- 2026-10-06: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING, Any

from historian.src.archive import ArchiveStore
from historian.src.blobstore import (
    BlobStore,
    HttpBlobStore,
    MemoryBlobStore,
    SqliteBlobStore,
)
from historian.src.buffer import AggregationBuffer
from historian.src.health import HealthWriter
from historian.src.metrics import (
    classify_unit_status,
    collect_alerts,
    compute_building_stats,
    offline_alerts,
    stale_units,
)
from historian.src.models import CollectorStatus, LiveView
from historian.src.scheduler import RollupScheduler
from historian.src.source import RealtimeDbSource, Subscription, TelemetrySource

if TYPE_CHECKING:
    from historian.src.config import HistorianSettings

logger = logging.getLogger(__name__)


@dataclass
class HistorianContext:
    """Every collaborator the controller needs, built once per process."""

    buffer: AggregationBuffer
    scheduler: RollupScheduler
    archive: ArchiveStore
    store: BlobStore
    source: TelemetrySource
    health: HealthWriter | None = None


@dataclass
class _Collection:
    run_id: int
    subscription: Subscription
    tasks: list[asyncio.Task[None]] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Context construction
# ---------------------------------------------------------------------------


@contextlib.asynccontextmanager
async def open_context(
    settings: HistorianSettings,
    *,
    source: TelemetrySource | None = None,
    store: BlobStore | None = None,
) -> AsyncIterator[HistorianContext]:
    """Build a :class:`HistorianContext` from settings.

    Opens the configured blob store and realtime database source, and closes
    both on exit. A *source* or *store* passed in is used as-is and left
    open.
    """
    tz = settings.tz
    async with contextlib.AsyncExitStack() as stack:
        if store is None:
            if settings.blob_backend == "sqlite":
                store = await stack.enter_async_context(
                    SqliteBlobStore(settings.blob_sqlite_path)
                )
            elif settings.blob_backend == "http":
                store = await stack.enter_async_context(
                    HttpBlobStore(settings.blob_base_url, settings.blob_token)
                )
            else:
                store = MemoryBlobStore()

        if source is None:
            db_source = RealtimeDbSource(
                settings.realtime_db_url,
                settings.realtime_db_token,
                poll_interval_s=settings.poll_interval_s,
            )
            stack.push_async_callback(db_source.close)
            source = db_source

        health = HealthWriter(settings.health_path)
        buffer = AggregationBuffer(
            retention=timedelta(hours=settings.retention_hours), tz=tz
        )
        archive = ArchiveStore(store, tz=tz)
        scheduler = RollupScheduler(
            buffer,
            archive,
            hourly_interval_s=settings.hourly_interval_s,
            daily_interval_s=settings.daily_interval_s,
            grace_s=settings.flush_grace_s,
            health=health,
        )
        yield HistorianContext(
            buffer=buffer,
            scheduler=scheduler,
            archive=archive,
            store=store,
            source=source,
            health=health,
        )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class CollectionController:
    """Starts and stops data collection per building.

    Args:
        context: Injected collaborators.
        clock: Returns the current time (aware); stamps ingested readings.
    """

    def __init__(
        self,
        context: HistorianContext,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ctx = context
        self._clock = clock or _utcnow
        self._initialized = False
        self._collections: dict[str, _Collection] = {}
        self._live: dict[str, LiveView] = {}
        self._latest_units: dict[str, dict[str, Any]] = {}
        self._run_ids = itertools.count(1)
        self._cancelled_tasks: set[asyncio.Task[None]] = set()

    @property
    def context(self) -> HistorianContext:
        return self._ctx

    def initialize(self) -> None:
        """Mark the controller ready. Calling it again does nothing."""
        if self._initialized:
            return
        self._initialized = True
        logger.info("Historical data collection initialized")

    def start(self, building_id: str) -> None:
        """Start (or restart) collection for *building_id*.

        Must be called with a running event loop.
        """
        self.initialize()
        if building_id in self._collections:
            logger.info("Restarting data collection for building=%s", building_id)
            self.stop(building_id)

        run_id = next(self._run_ids)
        subscription = self._ctx.source.subscribe(
            building_id, partial(self._on_snapshot, building_id, run_id)
        )
        tasks = self._ctx.scheduler.schedule(building_id)
        self._collections[building_id] = _Collection(run_id, subscription, tasks)
        logger.info("Started data collection for building=%s", building_id)
        self._publish_active_buildings()

    def stop(self, building_id: str) -> bool:
        """Stop collection for *building_id* and discard its buffered data.

        Returns:
            False when the building was not collecting.
        """
        collection = self._collections.pop(building_id, None)
        if collection is None:
            return False

        for task in collection.tasks:
            task.cancel()
            self._cancelled_tasks.add(task)
            task.add_done_callback(self._cancelled_tasks.discard)
        collection.subscription.cancel()
        discarded = self._ctx.buffer.discard_building(building_id)
        self._live.pop(building_id, None)
        self._latest_units.pop(building_id, None)

        logger.info(
            "Stopped data collection for building=%s (discarded %d bucket(s))",
            building_id,
            discarded,
        )
        self._publish_active_buildings()
        return True

    def stop_all(self) -> int:
        """Stop every running building; returns how many were stopped."""
        stopped = [b for b in list(self._collections) if self.stop(b)]
        return len(stopped)

    async def aclose(self) -> None:
        """Stop everything and wait for the cancelled triggers to finish."""
        self.stop_all()
        pending = list(self._cancelled_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def status(self) -> CollectorStatus:
        return CollectorStatus(
            initialized=self._initialized,
            active_building_ids=sorted(self._collections),
            buffered_key_count=self._ctx.buffer.key_count(),
            timer_count=sum(
                1
                for collection in self._collections.values()
                for task in collection.tasks
                if not task.done()
            ),
        )

    def is_collecting(self, building_id: str) -> bool:
        return building_id in self._collections

    def live_view(self, building_id: str) -> LiveView | None:
        """Stats, alerts and statuses from the latest snapshot, if any."""
        return self._live.get(building_id)

    def latest_units(self, building_id: str) -> dict[str, Any] | None:
        return self._latest_units.get(building_id)

    # ------------------------------------------------------------------
    # Snapshot handling
    # ------------------------------------------------------------------

    def _on_snapshot(
        self,
        building_id: str,
        run_id: int,
        units: Mapping[str, Any] | None,
    ) -> None:
        collection = self._collections.get(building_id)
        if collection is None or collection.run_id != run_id:
            logger.debug("Ignoring snapshot for stale run of building=%s", building_id)
            return

        try:
            now = self._clock()
            units = dict(units or {})
            buffered = self._ctx.buffer.ingest(building_id, units, now)
            self._latest_units[building_id] = units
            self._live[building_id] = LiveView(
                building_id=building_id,
                updated_at=now,
                stats=compute_building_stats(units),
                alerts=collect_alerts(units) + offline_alerts(units, now),
                statuses={
                    str(unit_id): classify_unit_status(doc)
                    for unit_id, doc in units.items()
                },
                offline_units=list(stale_units(units, now)),
            )
            logger.debug("Buffered %d unit(s) for building=%s", buffered, building_id)
            if self._ctx.health is not None:
                self._ctx.health.record_ingest(self._ctx.buffer.key_count())
        except Exception:
            logger.error(
                "Failed to process snapshot for building=%s", building_id, exc_info=True
            )

    def _publish_active_buildings(self) -> None:
        if self._ctx.health is None:
            return
        try:
            self._ctx.health.set_active_buildings(self._collections)
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)

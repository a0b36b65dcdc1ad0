"""
Read-only HTTP API over the live view and the archive.

Routes:
- ``GET /health``: collector status.
- ``GET /v1/buildings/{building_id}/live``: latest stats, alerts and
  statuses (404 before the first snapshot).
- ``GET /v1/buildings/{building_id}/insights``: report-style action list
  for the latest snapshot (404 before the first snapshot).
- ``GET /v1/history/{building_id}/{unit_id}?range=24h|7d|30d``: archived
  buckets (404 when nothing is archived, 422 for an unknown range).

``create_app(controller, archive)`` wires an existing controller (embedding
shells, tests). The module-level ``app`` builds its own context from
:class:`HistorianSettings` in the lifespan and starts collection for every
configured building.

CHANGELOG:
- 2026-10-11: Add insights route (STORY-112)
- 2026-10-09: Initial creation (STORY-109)

TODO:
- None
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any, Literal

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request

from historian.src.archive import ArchiveNotFoundError, ArchiveStore
from historian.src.controller import CollectionController, open_context
from historian.src.metrics import actionable_insights
from historian.src.models import ActionableInsights, LiveView, RangeResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _controller(request: Request) -> CollectionController:
    return request.app.state.controller


def _archive(request: Request) -> ArchiveStore:
    return request.app.state.archive


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Return ``{"status": "ok"}`` plus the collector status."""
    status = _controller(request).status()
    return {"status": "ok", **status.model_dump()}


@router.get("/v1/buildings/{building_id}/live", response_model=LiveView)
async def get_live(request: Request, building_id: str) -> LiveView:
    view = _controller(request).live_view(building_id)
    if view is None:
        raise HTTPException(
            status_code=404, detail=f"No live data for building '{building_id}'"
        )
    return view


@router.get("/v1/buildings/{building_id}/insights", response_model=ActionableInsights)
async def get_insights(request: Request, building_id: str) -> ActionableInsights:
    units = _controller(request).latest_units(building_id)
    if units is None:
        raise HTTPException(
            status_code=404, detail=f"No live data for building '{building_id}'"
        )
    return actionable_insights(units)


@router.get("/v1/history/{building_id}/{unit_id}", response_model=RangeResult)
async def get_history(
    request: Request,
    building_id: str,
    unit_id: str,
    range_spec: Annotated[
        Literal["24h", "7d", "30d"],
        Query(alias="range", description="Time range: 24h, 7d or 30d."),
    ] = "24h",
) -> RangeResult:
    """Return the archived buckets of a unit for the requested range."""
    try:
        return await _archive(request).read_range(building_id, unit_id, range_spec)
    except ArchiveNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the historian from settings and collect configured buildings.

    Startup:
        - Loads HistorianSettings (pydantic ValidationError on bad config).
        - Opens the context and starts every configured building.

    Shutdown:
        - Stops every building and closes the context.
    """
    from historian.src.config import HistorianSettings

    settings = HistorianSettings()
    async with open_context(settings) as context:
        controller = CollectionController(context)
        controller.initialize()
        for building_id in settings.building_ids:
            controller.start(building_id)
        app.state.controller = controller
        app.state.archive = context.archive
        logger.info("Historian API ready (%d building(s))", len(settings.building_ids))
        try:
            yield
        finally:
            await controller.aclose()
            logger.info("Historian API shutting down")


def create_app(
    controller: CollectionController | None = None,
    archive: ArchiveStore | None = None,
) -> FastAPI:
    """Create the API app.

    Args:
        controller: Controller to serve. When omitted the app builds its
            own from settings at startup.
        archive: Archive to read history from. Defaults to the
            controller's archive.
    """
    application = FastAPI(
        title="Property Energy Historian API",
        description="Live unit metrics and archived energy history.",
        version="0.1.0",
        lifespan=lifespan if controller is None else None,
    )
    if controller is not None:
        application.state.controller = controller
        application.state.archive = archive or controller.context.archive
    application.include_router(router)
    return application


app = create_app()

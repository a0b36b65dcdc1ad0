"""
Historian daemon entrypoint.

Loads settings, opens the historian context (blob store, realtime database
source, buffer, scheduler, archive), starts collection for every configured
building and runs until SIGTERM/SIGINT sets a shared asyncio.Event. On
shutdown every building is stopped (triggers cancelled, subscriptions
cancelled) and the context is closed.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-10: Start every configured building from settings (STORY-111)
- 2026-10-06: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from historian.src.controller import CollectionController, open_context

if TYPE_CHECKING:
    from historian.src.config import HistorianSettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def configure_logging(level: str | int = logging.INFO) -> None:
    """Configure structured JSON logging on the root logger (stderr)."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: HistorianSettings) -> None:
    """Log a config summary at startup with secrets masked."""
    logger.info(
        "Historian starting with config: "
        "building_ids=%s, realtime_db_url=%s, poll_interval_s=%s, "
        "blob_backend=%s, blob_sqlite_path=%s, blob_base_url=%s, "
        "timezone=%s, environment=%s, hourly_interval_s=%s, "
        "daily_interval_s=%s, flush_grace_s=%s, retention_hours=%s, "
        "health_path=%s, realtime_db_token_masked=%s, blob_token_masked=%s",
        ",".join(settings.building_ids),
        settings.realtime_db_url,
        settings.poll_interval_s,
        settings.blob_backend,
        settings.blob_sqlite_path,
        settings.blob_base_url,
        settings.timezone,
        settings.environment,
        settings.hourly_interval_s,
        settings.daily_interval_s,
        settings.flush_grace_s,
        settings.retention_hours,
        settings.health_path,
        _masked_token(settings.realtime_db_token),
        _masked_token(settings.blob_token),
    )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run(
    controller: CollectionController,
    building_ids: list[str],
    shutdown_event: asyncio.Event,
) -> None:
    """Collect *building_ids* until *shutdown_event* is set, then stop all."""
    controller.initialize()
    for building_id in building_ids:
        controller.start(building_id)
    if not building_ids:
        logger.warning("No BUILDING_IDS configured, nothing to collect")

    await shutdown_event.wait()
    logger.info("Stopping data collection for %d building(s)", len(building_ids))
    await controller.aclose()
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build the context, run until a signal.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from historian.src.config import HistorianSettings

    settings = HistorianSettings()
    configure_logging(settings.log_level.upper())
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    async with open_context(settings) as context:
        controller = CollectionController(context)
        await run(controller, settings.building_ids, shutdown_event)


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the historian daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

"""
Health file writer for the historian daemon.

Writes a JSON health file at a configurable path with four fields:
- last_ingest_ts: ISO timestamp of the most recent buffered snapshot.
- last_flush_ts: ISO timestamp of the most recent rollup flush.
- buffered_key_count: Number of buckets currently held in memory.
- active_buildings: Building ids with a running collection.

The file is rewritten on every state change, giving
Docker HEALTHCHECK or monitoring a simple liveness signal.

CHANGELOG:
- 2026-10-10: Track active buildings (STORY-111)
- 2026-10-06: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes historian health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_ingest_ts: str | None = None
        self._last_flush_ts: str | None = None
        self._buffered_key_count: int = 0
        self._active_buildings: list[str] = []

    def record_ingest(self, buffered_key_count: int) -> None:
        """Record an ingest event and write health file."""
        self._last_ingest_ts = datetime.now(tz=UTC).isoformat()
        self._buffered_key_count = buffered_key_count
        self._write()

    def record_flush(self, buffered_key_count: int) -> None:
        """Record a flush event and write health file."""
        self._last_flush_ts = datetime.now(tz=UTC).isoformat()
        self._buffered_key_count = buffered_key_count
        self._write()

    def set_active_buildings(self, building_ids: Iterable[str]) -> None:
        """Update the list of collecting buildings and write health file."""
        self._active_buildings = sorted(building_ids)
        self._write()

    def snapshot(self) -> dict[str, object]:
        return {
            "last_ingest_ts": self._last_ingest_ts,
            "last_flush_ts": self._last_flush_ts,
            "buffered_key_count": self._buffered_key_count,
            "active_buildings": list(self._active_buildings),
        }

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        self.path.write_text(json.dumps(self.snapshot()))

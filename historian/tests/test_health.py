"""
Unit tests for the historian health writer.

Tests verify:
- record_ingest / record_flush write timestamps and the buffered key count.
- set_active_buildings writes a sorted building list.
- The file always contains all four fields.

CHANGELOG:
- 2026-10-10: Track active buildings (STORY-111)
- 2026-10-06: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from historian.src.health import HealthWriter


def _read(path: Path) -> dict:
    return json.loads(path.read_text())


class TestHealthWriter:
    def test_record_ingest(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)

        writer.record_ingest(4)

        data = _read(path)
        assert "T" in data["last_ingest_ts"]
        assert data["last_flush_ts"] is None
        assert data["buffered_key_count"] == 4

    def test_record_flush_keeps_ingest_ts(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)
        writer.record_ingest(4)
        ingest_ts = _read(path)["last_ingest_ts"]

        writer.record_flush(2)

        data = _read(path)
        assert data["last_ingest_ts"] == ingest_ts
        assert data["last_flush_ts"] is not None
        assert data["buffered_key_count"] == 2

    def test_active_buildings_sorted(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"
        writer = HealthWriter(path)

        writer.set_active_buildings({"b2": None, "b1": None})

        assert _read(path)["active_buildings"] == ["b1", "b2"]

    def test_all_fields_present(self, tmp_path: Path) -> None:
        path = tmp_path / "health.json"

        HealthWriter(path).set_active_buildings([])

        assert set(_read(path)) == {
            "last_ingest_ts",
            "last_flush_ts",
            "buffered_key_count",
            "active_buildings",
        }

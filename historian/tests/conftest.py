"""
Shared test fixtures for historian tests.

All historian env vars are cleaned before each test to ensure isolation, and
the working directory moves to tmp_path so no .env file is picked up.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

# All HistorianSettings environment variable names, used for cleanup.
_ALL_HISTORIAN_ENV_VARS = (
    "BUILDING_IDS",
    "REALTIME_DB_URL",
    "REALTIME_DB_TOKEN",
    "POLL_INTERVAL_S",
    "BLOB_BACKEND",
    "BLOB_SQLITE_PATH",
    "BLOB_BASE_URL",
    "BLOB_TOKEN",
    "TIMEZONE",
    "ENVIRONMENT",
    "HOURLY_INTERVAL_S",
    "DAILY_INTERVAL_S",
    "FLUSH_GRACE_S",
    "RETENTION_HOURS",
    "HEALTH_PATH",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_historian_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all historian env vars and isolate from .env files."""
    for var in _ALL_HISTORIAN_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables."""
    env = {"REALTIME_DB_URL": "https://property-db.example.com"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def unit_doc() -> Callable[..., dict[str, Any]]:
    """Factory for raw unit documents as the realtime database sends them."""

    def _make(
        power: Any = 250,
        credit: Any = 3000,
        current: Any = 1.2,
        voltage: Any = 230,
        remaining_units: Any = 40,
        **extra: Any,
    ) -> dict[str, Any]:
        doc = {
            "power": power,
            "current": current,
            "voltage": voltage,
            "remaining_credit": credit,
            "remaining_units": remaining_units,
        }
        doc.update(extra)
        return doc

    return _make


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 14, 10, 15, tzinfo=UTC))

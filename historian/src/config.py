"""
Historian configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded URLs or credentials.

CHANGELOG:
- 2026-10-10: Development environment defaults for trigger intervals (STORY-111)
- 2026-10-02: Initial creation (STORY-102)

TODO:
- None
"""

from typing import Annotated, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

DEVELOPMENT_HOURLY_INTERVAL_S = 600
DEVELOPMENT_DAILY_INTERVAL_S = 3600


class HistorianSettings(BaseSettings):
    """Historian daemon configuration.

    Attributes:
        building_ids: Buildings to collect, comma-separated in the env var.
        realtime_db_url: Realtime database base URL (must be HTTPS).
        realtime_db_token: Database secret / token (``auth`` query param).
        poll_interval_s: Seconds between realtime database polls (min 1).
        blob_backend: ``sqlite``, ``http`` or ``memory``.
        blob_sqlite_path: SQLite file for the ``sqlite`` backend.
        blob_base_url: Object storage base URL for the ``http`` backend.
        blob_token: Bearer token for the ``http`` backend.
        timezone: IANA zone in which hour and day periods are computed.
        environment: ``production`` aligns triggers on wall-clock
            boundaries; ``development`` flushes on short fixed intervals.
        hourly_interval_s: Fixed hourly trigger interval (None = aligned).
        daily_interval_s: Fixed daily trigger interval (None = aligned).
        flush_grace_s: Delay after a boundary before an aligned flush.
        retention_hours: Buffer retention horizon (min 25).
        health_path: Health JSON file path.
        log_level: Root log level.
    """

    building_ids: Annotated[list[str], NoDecode] = []
    realtime_db_url: str
    realtime_db_token: str = ""
    poll_interval_s: float = 5.0
    blob_backend: Literal["sqlite", "http", "memory"] = "sqlite"
    blob_sqlite_path: str = "/data/historical.db"
    blob_base_url: str = ""
    blob_token: str = ""
    timezone: str = "UTC"
    environment: Literal["production", "development"] = "production"
    hourly_interval_s: float | None = None
    daily_interval_s: float | None = None
    flush_grace_s: float = 5.0
    retention_hours: int = 48
    health_path: str = "/data/health.json"
    log_level: str = "INFO"

    @field_validator("building_ids", mode="before")
    @classmethod
    def split_building_ids(cls, v: object) -> object:
        """Accept ``"b1, b2"`` as well as a list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("realtime_db_url")
    @classmethod
    def realtime_db_url_must_be_https(cls, v: str) -> str:
        if not v.lower().startswith("https://"):
            raise ValueError(f"REALTIME_DB_URL must use HTTPS (got: '{v[:20]}...').")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: float) -> float:
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"TIMEZONE '{v}' is not a known IANA zone") from exc
        return v

    @field_validator("retention_hours")
    @classmethod
    def retention_must_cover_a_day(cls, v: int) -> int:
        """A day bucket must survive until its flush after midnight."""
        if v < 25:
            raise ValueError("RETENTION_HOURS must be >= 25")
        return v

    @field_validator("hourly_interval_s", "daily_interval_s", "flush_grace_s")
    @classmethod
    def intervals_must_be_positive(cls, v: float | None) -> float | None:
        if v is not None and v < 0:
            raise ValueError("Trigger intervals and grace delay must be >= 0")
        return v

    @model_validator(mode="after")
    def _check_blob_backend(self) -> "HistorianSettings":
        """The http backend needs an HTTPS base URL."""
        if self.blob_backend == "http" and not self.blob_base_url.lower().startswith(
            "https://"
        ):
            raise ValueError(
                "BLOB_BASE_URL must be an HTTPS URL when BLOB_BACKEND=http"
            )
        return self

    @model_validator(mode="after")
    def _development_intervals(self) -> "HistorianSettings":
        """Default to short fixed intervals in development."""
        if self.environment == "development":
            if self.hourly_interval_s is None:
                self.hourly_interval_s = DEVELOPMENT_HOURLY_INTERVAL_S
            if self.daily_interval_s is None:
                self.daily_interval_s = DEVELOPMENT_DAILY_INTERVAL_S
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

"""
Path-addressed blob stores for archive documents.

The persistence adapter only needs ``get(path)`` and ``put(path, data)``.
Three implementations are provided:

- ``MemoryBlobStore``: a dict, for tests and embedded use.
- ``SqliteBlobStore``: a single-table async SQLite store in WAL mode,
  upserting by path. Survives restarts.
- ``HttpBlobStore``: GET/PUT against an HTTPS object-storage endpoint
  (``{base_url}/{path}``) with Bearer token authentication.

``get`` raises :class:`BlobNotFoundError` for an absent path; any other
failure raises :class:`BlobStoreError`.

CHANGELOG:
- 2026-10-08: Add HttpBlobStore (STORY-108)
- 2026-10-04: Initial creation with memory and SQLite stores (STORY-106)

TODO:
- None
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import aiosqlite
import httpx

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    """The blob store could not complete a read or write."""


class BlobNotFoundError(BlobStoreError):
    """No blob exists at the requested path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Blob not found: {path}")
        self.path = path


class BlobStore(Protocol):
    """Contract of a path-addressed blob store."""

    async def get(self, path: str) -> bytes: ...

    async def put(self, path: str, data: bytes) -> None: ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class MemoryBlobStore:
    """Blob store backed by a plain dict."""

    def __init__(self, blobs: dict[str, bytes] | None = None) -> None:
        self.blobs: dict[str, bytes] = dict(blobs or {})

    async def get(self, path: str) -> bytes:
        try:
            return self.blobs[path]
        except KeyError:
            raise BlobNotFoundError(path) from None

    async def put(self, path: str, data: bytes) -> None:
        self.blobs[path] = bytes(data)

    def paths(self) -> list[str]:
        return sorted(self.blobs)


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS blobs (
    path TEXT PRIMARY KEY,
    data BLOB NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_UPSERT_SQL = """\
INSERT INTO blobs (path, data) VALUES (?, ?)
ON CONFLICT(path) DO UPDATE SET data = excluded.data, updated_at = datetime('now');
"""

_SELECT_SQL = "SELECT data FROM blobs WHERE path = ?;"


class SqliteBlobStore:
    """Durable blob store backed by a local SQLite database file.

    Args:
        path: Filesystem path for the SQLite database file.
              Accepts ``str`` or ``pathlib.Path``.

    Usage::

        async with SqliteBlobStore("/data/historical.db") as store:
            await store.put("historical-data/b1/u1/...json", b"{}")
            data = await store.get("historical-data/b1/u1/...json")
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema."""
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SqliteBlobStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, path: str) -> bytes:
        """Return the blob stored at *path*.

        Raises:
            BlobNotFoundError: If nothing is stored at *path*.
            BlobStoreError: If the store is closed or the query fails.
        """
        db = self._require_open()
        try:
            cursor = await db.execute(_SELECT_SQL, (path,))
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise BlobStoreError(f"Failed to read {path}: {exc}") from exc
        if row is None:
            raise BlobNotFoundError(path)
        return bytes(row[0])

    async def put(self, path: str, data: bytes) -> None:
        """Store *data* at *path*, replacing any previous blob."""
        db = self._require_open()
        try:
            await db.execute(_UPSERT_SQL, (path, bytes(data)))
            await db.commit()
        except aiosqlite.Error as exc:
            raise BlobStoreError(f"Failed to write {path}: {exc}") from exc

    def _require_open(self) -> aiosqlite.Connection:
        if self._db is None:
            raise BlobStoreError("Blob store not opened. Call open() or use async with")
        return self._db


# ---------------------------------------------------------------------------
# HTTPS object storage
# ---------------------------------------------------------------------------

_DEFAULT_TIMEOUT_S = 10.0


class HttpBlobStore:
    """Blob store speaking plain GET/PUT to an HTTPS object-storage endpoint.

    ``get`` maps a 404 response to :class:`BlobNotFoundError`; any other
    non-2xx status, timeout or connection error raises
    :class:`BlobStoreError`. TLS certificate verification is always on.

    Args:
        base_url: Base URL of the bucket. Must start with ``https://``.
        token: Bearer token sent with every request (empty = none).
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).

    Raises:
        ValueError: If *base_url* does not start with ``https://``.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url.lower().startswith("https://"):
            raise ValueError(f"Blob store URL must use HTTPS (got: '{base_url}').")
        self._base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout_s,
            verify=True,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpBlobStore:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def get(self, path: str) -> bytes:
        try:
            response = await self._client.get(self._url(path))
        except httpx.TransportError as exc:
            raise BlobStoreError(f"Failed to read {path}: {exc}") from exc

        if response.status_code == 404:
            raise BlobNotFoundError(path)
        if not response.is_success:
            raise BlobStoreError(f"Failed to read {path} (HTTP {response.status_code})")
        return response.content

    async def put(self, path: str, data: bytes) -> None:
        try:
            response = await self._client.put(
                self._url(path),
                content=data,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TransportError as exc:
            raise BlobStoreError(f"Failed to write {path}: {exc}") from exc

        if not response.is_success:
            raise BlobStoreError(
                f"Failed to write {path} (HTTP {response.status_code})"
            )
        logger.debug("Stored %d bytes at %s", len(data), path)

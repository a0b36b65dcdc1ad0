"""
Telemetry sources: push the full unit map of a building to a callback.

A source delivers the *whole* ``{unitId: unitDocument}`` map of a building
every time any unit changes. Two implementations are provided:

- ``InMemorySource``: in-process pub/sub. Shells that already receive
  realtime updates (and the tests) publish into it.
- ``RealtimeDbSource``: polls the hosted realtime database REST endpoint
  ``{base_url}/buildings/{building_id}/units.json`` with httpx and delivers
  the map only when it changed. ``null`` (no data yet) is skipped.
  Failures back off exponentially (1s -> 2s -> 4s -> ... -> 60s max) and
  never end the polling task.

Every ``subscribe`` returns a :class:`Subscription` whose ``cancel()`` runs
its teardown exactly once.

CHANGELOG:
- 2026-10-08: Add RealtimeDbSource (STORY-108)
- 2026-10-06: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Mapping[str, Any]], None]

_INITIAL_BACKOFF_S = 1.0
_DEFAULT_MAX_BACKOFF_S = 60.0
_DEFAULT_TIMEOUT_S = 10.0


class Subscription:
    """Cancellable handle returned by ``TelemetrySource.subscribe``.

    Args:
        on_cancel: Teardown run by the first ``cancel()`` call.
    """

    def __init__(self, on_cancel: Callable[[], object] | None = None) -> None:
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> bool:
        """Stop delivery. Returns False when already cancelled."""
        if not self._active:
            return False
        self._active = False
        if self._on_cancel is not None:
            self._on_cancel()
        return True


class TelemetrySource(Protocol):
    """Contract of a telemetry pub/sub source."""

    def subscribe(
        self, building_id: str, on_snapshot: SnapshotCallback
    ) -> Subscription: ...


# ---------------------------------------------------------------------------
# In-process source
# ---------------------------------------------------------------------------


class InMemorySource:
    """Synchronous in-process pub/sub keyed by building id."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[SnapshotCallback]] = {}

    def subscribe(
        self, building_id: str, on_snapshot: SnapshotCallback
    ) -> Subscription:
        callbacks = self._subscribers.setdefault(building_id, [])
        callbacks.append(on_snapshot)

        def _remove() -> None:
            callbacks.remove(on_snapshot)
            if not callbacks:
                self._subscribers.pop(building_id, None)

        return Subscription(_remove)

    def publish(self, building_id: str, units: Mapping[str, Any]) -> int:
        """Deliver *units* to every subscriber of *building_id*.

        Returns:
            Number of subscribers the snapshot was delivered to.
        """
        callbacks = list(self._subscribers.get(building_id, ()))
        for callback in callbacks:
            callback(units)
        return len(callbacks)

    def subscriber_count(self, building_id: str) -> int:
        return len(self._subscribers.get(building_id, ()))


# ---------------------------------------------------------------------------
# Hosted realtime database (REST polling)
# ---------------------------------------------------------------------------


class RealtimeDbSource:
    """Polls a realtime database REST endpoint for each subscribed building.

    Args:
        base_url: Database base URL. Must start with ``https://``.
        auth_token: Database secret or ID token, sent as the ``auth`` query
            parameter (empty = unauthenticated).
        poll_interval_s: Seconds between successful polls.
        max_backoff_s: Cap of the exponential backoff after failures.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).

    Raises:
        ValueError: If *base_url* does not start with ``https://``.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str = "",
        *,
        poll_interval_s: float = 5.0,
        max_backoff_s: float = _DEFAULT_MAX_BACKOFF_S,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url.lower().startswith("https://"):
            raise ValueError(
                f"Realtime database URL must use HTTPS (got: '{base_url}')."
            )
        self._base_url = base_url.rstrip("/")
        self._auth_token = auth_token
        self._poll_interval_s = poll_interval_s
        self._max_backoff_s = max_backoff_s
        self._client = httpx.AsyncClient(
            timeout=timeout_s, verify=True, transport=transport
        )
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(
        self, building_id: str, on_snapshot: SnapshotCallback
    ) -> Subscription:
        """Start a polling task for *building_id*.

        Must be called with a running event loop.
        """
        task = asyncio.get_running_loop().create_task(
            self._poll_loop(building_id, on_snapshot),
            name=f"realtime-db-{building_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return Subscription(task.cancel)

    async def fetch(self, building_id: str) -> Mapping[str, Any] | None:
        """Fetch the current unit map of *building_id* (``None`` = no data).

        Raises:
            httpx.HTTPError: On network errors or a non-2xx response.
            ValueError: If the body is not a JSON object or ``null``.
        """
        params = {"auth": self._auth_token} if self._auth_token else None
        response = await self._client.get(
            f"{self._base_url}/buildings/{building_id}/units.json", params=params
        )
        response.raise_for_status()
        body = response.json()
        if body is None or isinstance(body, Mapping):
            return body
        raise ValueError(f"Expected a JSON object for {building_id}, got {type(body)}")

    async def close(self) -> None:
        """Cancel every polling task and close the HTTP client."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._client.aclose()

    async def _poll_loop(self, building_id: str, on_snapshot: SnapshotCallback) -> None:
        last: Mapping[str, Any] | None = None
        backoff = _INITIAL_BACKOFF_S
        logger.info(
            "Realtime database polling started (building=%s, interval=%ss)",
            building_id,
            self._poll_interval_s,
        )
        while True:
            try:
                units = await self.fetch(building_id)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Realtime database poll failed for building=%s: %s "
                    "(retrying in %.1fs)",
                    building_id,
                    exc,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._max_backoff_s)
                continue

            backoff = _INITIAL_BACKOFF_S
            if units is not None and units != last:
                last = units
                try:
                    on_snapshot(units)
                except Exception:
                    logger.error(
                        "Snapshot callback failed for building=%s",
                        building_id,
                        exc_info=True,
                    )
            await asyncio.sleep(self._poll_interval_s)

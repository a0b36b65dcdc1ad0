"""
Pure normalizer that converts raw unit documents into typed snapshots.

The realtime database delivers each unit as an untyped document, e.g.::

    {"power": "250.5", "current": 2, "voltage": 230,
     "remaining_credit": 3000, "remaining_units": 41.2,
     "isActive": true, "name": "Flat 1", "accessCode": "A1B2C3"}

Any numeric field may be missing, null, a numeric string or garbage. This
module is the only place where such values are coerced: everything past
this boundary works on :class:`~historian.src.models.UnitSnapshot` and
:class:`~historian.src.models.Reading` with well-typed floats.

These are pure functions: no side effects, no I/O, no clock. The reading
timestamp is passed in by the caller.

CHANGELOG:
- 2026-10-16: Read leading numbers from strings; empty isActive deactivates (STORY-115)
- 2026-10-06: Hash access codes instead of carrying them (STORY-106)
- 2026-10-02: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from historian.src.models import Reading, UnitSnapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mapping from UnitSnapshot numeric field names to source document keys.
# ---------------------------------------------------------------------------

_NUMERIC_FIELD_MAP: dict[str, str] = {
    "power_w": "power",
    "current_a": "current",
    "voltage_v": "voltage",
    "remaining_credit": "remaining_credit",
    "remaining_energy_kwh": "remaining_units",
}
"""Maps UnitSnapshot field name -> key in the source unit document."""


_NUMERIC_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
"""Leading decimal number of a string, e.g. ``250`` in ``"250W"``."""


def coerce_numeric(value: Any) -> float:
    """Parse a value as a float, falling back to 0.0.

    Strings are read up to the end of their leading decimal number, so
    ``"250W"`` is 250 and ``"1_000"`` is 1. ``None``, booleans, strings
    without a leading number, NaN and infinities all coerce to ``0.0``.
    Never raises.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value.lstrip())
        if match is None:
            return 0.0
        value = match.group()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _coerce_active(value: Any) -> bool:
    """Interpret the ``isActive`` flag; a missing flag means active.

    Falsy values (``False``, ``0``, ``""``, NaN) deactivate, as do the
    strings ``"false"``, ``"0"``, ``"no"`` and ``"off"``.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no", "off")
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def hash_access_code(code: Any) -> str | None:
    """Return a short non-reversible fingerprint of an access code."""
    if code is None or code == "":
        return None
    return hashlib.sha256(str(code).encode("utf-8")).hexdigest()[:16]


def snapshot_from_document(doc: Any) -> UnitSnapshot:
    """Convert a raw unit document into a :class:`UnitSnapshot`.

    Args:
        doc: Unit document from the telemetry source. An existing
            ``UnitSnapshot`` is returned unchanged; anything that is not a
            mapping yields an empty (all-zero, active) snapshot.

    Returns:
        The typed snapshot. Never raises.
    """
    if isinstance(doc, UnitSnapshot):
        return doc
    if not isinstance(doc, Mapping):
        if doc is not None:
            logger.warning(
                "Unit document is not a mapping (%s), using defaults",
                type(doc).__name__,
            )
        return UnitSnapshot()

    fields: dict[str, float] = {
        field_name: coerce_numeric(doc.get(key))
        for field_name, key in _NUMERIC_FIELD_MAP.items()
    }

    tenant_info = doc.get("tenantInfo")
    timestamp = doc.get("timestamp")
    name = doc.get("name")

    return UnitSnapshot(
        **fields,
        is_active=_coerce_active(doc.get("isActive")),
        name=str(name) if name is not None else "",
        access_code_hash=hash_access_code(doc.get("accessCode")),
        tenant_info=dict(tenant_info) if isinstance(tenant_info, Mapping) else None,
        timestamp=str(timestamp) if timestamp is not None else None,
    )


def reading_from_snapshot(snapshot: UnitSnapshot, ts: datetime) -> Reading:
    """Take an immutable :class:`Reading` from a snapshot at time *ts*."""
    return Reading(
        ts=ts,
        power_w=snapshot.power_w,
        current_a=snapshot.current_a,
        voltage_v=snapshot.voltage_v,
        remaining_credit=snapshot.remaining_credit,
        remaining_energy_kwh=snapshot.remaining_energy_kwh,
    )

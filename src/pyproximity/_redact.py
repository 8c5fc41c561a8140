"""Helpers for safe debug logging.

pyproximity handles precise user positions and presence documents that may
carry auth material.  This module coarsens coordinates and redacts sensitive
fields before they reach a log line.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "token",
        "accesstoken",
        "refreshtoken",
        "idtoken",
        "authorization",
        "cookie",
        "email",
        "phone",
    }
)

_COORDINATE_KEYS: frozenset[str] = frozenset(
    {
        "lat",
        "lon",
        "lng",
        "_lat",
        "_long",
        "latitude",
        "longitude",
    }
)

#: Decimal places kept for coordinates in logs (~110 m).
COORDINATE_LOG_PRECISION = 3


def coarsen_coordinate(value: float, *, precision: int = COORDINATE_LOG_PRECISION) -> float:
    """Round a latitude/longitude for logging."""
    return round(float(value), precision)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            elif lowered in _COORDINATE_KEYS and isinstance(v, (int, float)) and not isinstance(v, bool):
                redacted[key] = coarsen_coordinate(v)
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    # Fallback: represent unknown objects without dumping internals.
    return repr(value)

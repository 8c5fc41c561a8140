"""Base model and parsing helpers for pyproximity models.

Every model inherits from :class:`ProximityBaseModel`, which is frozen so a
value handed to a consumer can never change underneath it.  Timestamps from
location sources and presence documents arrive in several shapes; they are
all coerced to timezone-aware UTC datetimes by :func:`parse_timestamp`.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

from pyproximity._constants import MS_TIMESTAMP_THRESHOLD


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _from_epoch(value: float) -> datetime:
    if value >= MS_TIMESTAMP_THRESHOLD:
        value = value / 1000.0
    return datetime.fromtimestamp(value, tz=UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a timestamp to a UTC datetime.

    Accepts:

    * ``datetime`` (naive values are assumed to be UTC)
    * epoch seconds **or** milliseconds (int/float/numeric string)
    * ISO-8601 strings (a trailing ``Z`` is understood)
    * Firestore-style ``{"seconds": ..., "nanoseconds": ...}`` mappings

    Returns ``None`` when the value is ``None`` or cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, Mapping):
        seconds = safe_float(value.get("seconds", value.get("_seconds")))
        if seconds is None:
            return None
        nanos = safe_float(value.get("nanoseconds", value.get("_nanoseconds"))) or 0.0
        return datetime.fromtimestamp(seconds + nanos / 1e9, tz=UTC)
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            return None
        return _from_epoch(float(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        numeric = safe_float(text)
        if numeric is not None:
            return _from_epoch(numeric) if numeric >= 0 else None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parse_timestamp(parsed)
    return None


UtcTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Required timestamp coerced to a UTC datetime."""

OptionalUtcTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Optional timestamp; unparseable input becomes ``None``."""


class ProximityBaseModel(BaseModel):
    """Base for all pyproximity value objects."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

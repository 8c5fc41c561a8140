"""Location models: coordinates, raw fixes and debounced stable locations."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import AliasChoices, Field, model_validator

from pyproximity.models._base import OptionalUtcTimestamp, ProximityBaseModel, UtcTimestamp


class Coordinate(ProximityBaseModel):
    """A point on the globe in decimal degrees.

    Accepts the key spellings seen in presence documents (``lat``/``_lat``,
    ``lon``/``lng``/``_long``) in addition to the field names.
    """

    latitude: float = Field(
        ...,
        ge=-90.0,
        le=90.0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("latitude", "lat", "_lat"),
    )
    longitude: float = Field(
        ...,
        ge=-180.0,
        le=180.0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("longitude", "lon", "lng", "_long"),
    )


class RawFix(Coordinate):
    """A single position sample from the platform location source.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    accuracy_m : float
        Reported horizontal accuracy radius in meters.
    captured_at : datetime
        When the sample was taken (UTC).  Epoch seconds or milliseconds
        are accepted and converted.
    """

    accuracy_m: float = Field(
        default=0.0,
        ge=0.0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("accuracy_m", "accuracy", "accuracyMeters"),
    )
    captured_at: UtcTimestamp = Field(
        ...,
        validation_alias=AliasChoices("captured_at", "capturedAt", "timestamp"),
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_coords(cls, values: Any) -> Any:
        """Flatten a W3C ``GeolocationPosition``-like ``{"coords": {...}, "timestamp": ...}``."""
        if not isinstance(values, dict):
            return values
        nested = values.get("coords")
        if not isinstance(nested, dict):
            return values
        merged = dict(nested)
        merged.update({k: v for k, v in values.items() if k != "coords"})
        return merged


class StableLocation(RawFix):
    """A debounced location accepted by :class:`~pyproximity.state.debouncer.StableLocationDebouncer`.

    Instances are frozen; the debouncer replaces the held instance instead of
    mutating it (see :meth:`mark_stale`).  ``accepted_at`` is the debouncer's
    clock reading at acceptance; staleness is still measured from
    ``captured_at``.
    """

    accepted_at: OptionalUtcTimestamp = None
    is_stale: bool = False
    is_weak_signal: bool = False

    @classmethod
    def from_fix(
        cls,
        fix: RawFix,
        *,
        weak_signal_accuracy_m: float,
        accepted_at: datetime | None = None,
    ) -> StableLocation:
        return cls(
            latitude=fix.latitude,
            longitude=fix.longitude,
            accuracy_m=fix.accuracy_m,
            captured_at=fix.captured_at,
            accepted_at=accepted_at or fix.captured_at,
            is_stale=False,
            is_weak_signal=fix.accuracy_m > weak_signal_accuracy_m,
        )

    def mark_stale(self) -> StableLocation:
        if self.is_stale:
            return self
        return self.model_copy(update={"is_stale": True})

    def stale_deadline(self, stale_after_ms: int) -> datetime:
        return self.captured_at + timedelta(milliseconds=stale_after_ms)

    def age_ms(self, now: datetime) -> float:
        return (now - self.captured_at).total_seconds() * 1000.0

"""Presence update model consumed from the counterpart's presence feed."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from pyproximity.models._base import OptionalUtcTimestamp, ProximityBaseModel, safe_float, safe_str
from pyproximity.models.location import Coordinate


def _coerce_coordinate(value: Any) -> Coordinate | None:
    if value is None or isinstance(value, Coordinate):
        return value
    if not isinstance(value, Mapping):
        return None
    # Firestore GeoPoints serialise with either public or underscored keys;
    # a zero coordinate is a valid value, so test for presence not truthiness.
    lat = safe_float(value.get("latitude", value.get("_lat", value.get("lat"))))
    lon = safe_float(
        value.get("longitude", value.get("_long", value.get("lng", value.get("lon")))),
    )
    if lat is None or lon is None:
        return None
    try:
        return Coordinate(latitude=lat, longitude=lon)
    except ValidationError:
        return None


class PresenceUpdate(ProximityBaseModel):
    """One snapshot from a presence feed.

    Missing or malformed values become ``None``; a presence document never
    fails to parse because absent data is not an error.

    Parameters
    ----------
    user_id : str
        Counterpart the snapshot belongs to.
    location : Coordinate or None
        Last known location of the counterpart.
    last_seen_at : datetime or None
        Time of the counterpart's last heartbeat.
    """

    user_id: str = Field(default="", validation_alias=AliasChoices("user_id", "userId", "uid", "id"))
    location: Coordinate | None = None
    last_seen_at: OptionalUtcTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("last_seen_at", "lastSeen", "lastSeenAt", "last_seen"),
    )

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, value: Any) -> str:
        return safe_str(value) or ""

    @field_validator("location", mode="before")
    @classmethod
    def _coerce_location(cls, value: Any) -> Coordinate | None:
        return _coerce_coordinate(value)


def parse_presence_payload(payload: Any, *, user_id: str = "") -> PresenceUpdate:
    """Build a :class:`PresenceUpdate` from a presence document.

    A payload that is not a mapping (e.g. a deleted document) yields an
    update with no location and no heartbeat.
    """
    if not isinstance(payload, Mapping):
        return PresenceUpdate(user_id=user_id)
    data = dict(payload)
    if user_id:
        data["user_id"] = user_id
    return PresenceUpdate.model_validate(data)

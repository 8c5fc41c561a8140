"""Data models for pyproximity."""

from pyproximity.models._base import (
    OptionalUtcTimestamp,
    ProximityBaseModel,
    UtcTimestamp,
    parse_timestamp,
)
from pyproximity.models.location import Coordinate, RawFix, StableLocation
from pyproximity.models.presence import PresenceUpdate, parse_presence_payload
from pyproximity.models.proximity import CommunicationMode, PairProximityState, ProximityState

__all__ = [
    "CommunicationMode",
    "Coordinate",
    "OptionalUtcTimestamp",
    "PairProximityState",
    "PresenceUpdate",
    "ProximityBaseModel",
    "ProximityState",
    "RawFix",
    "StableLocation",
    "UtcTimestamp",
    "parse_presence_payload",
    "parse_timestamp",
]

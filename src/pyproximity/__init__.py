"""pyproximity - Proximity-based communication mode engine (live voice vs. cloud memo)."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyproximity")
except PackageNotFoundError:
    __version__ = "0+local"
from pyproximity.config import ProximityConfig
from pyproximity.exceptions import (
    LocationError,
    LocationPermissionDeniedError,
    LocationTimeoutError,
    PositionUnavailableError,
    ProximityConfigError,
    ProximityError,
    SubscriptionFailureError,
)
from pyproximity.geo import bucket_key, distance_km, format_distance_label, haversine_km, haversine_m, is_same_bucket
from pyproximity.models import (
    CommunicationMode,
    Coordinate,
    PairProximityState,
    PresenceUpdate,
    ProximityState,
    RawFix,
    StableLocation,
)
from pyproximity.monitor import ProximityMonitor
from pyproximity.state.debouncer import StableLocationDebouncer
from pyproximity.state.engine import ProximityModeEngine, derive_pair_state, derive_proximity_state
from pyproximity.tracker import PairTracker

__all__ = [
    "__version__",
    "CommunicationMode",
    "Coordinate",
    "LocationError",
    "LocationPermissionDeniedError",
    "LocationTimeoutError",
    "PairProximityState",
    "PairTracker",
    "PositionUnavailableError",
    "PresenceUpdate",
    "ProximityConfig",
    "ProximityConfigError",
    "ProximityError",
    "ProximityModeEngine",
    "ProximityMonitor",
    "ProximityState",
    "RawFix",
    "StableLocation",
    "StableLocationDebouncer",
    "SubscriptionFailureError",
    "bucket_key",
    "derive_pair_state",
    "derive_proximity_state",
    "distance_km",
    "format_distance_label",
    "haversine_km",
    "haversine_m",
    "is_same_bucket",
]

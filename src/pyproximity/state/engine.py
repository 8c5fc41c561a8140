"""Proximity mode derivation.

A pure derivation, not a state machine: the mode is recomputed from the
current inputs every time any of them changes, and recomputing with the
same inputs always yields an equal :class:`ProximityState`.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from pyproximity._constants import DEFAULT_DISTANCE_THRESHOLD_KM, DEFAULT_HEARTBEAT_TIMEOUT_MS
from pyproximity.config import ProximityConfig
from pyproximity.geo.bucket import bucket_key, is_same_bucket
from pyproximity.geo.distance import LatLon, distance_km, format_distance_label
from pyproximity.models.proximity import CommunicationMode, PairProximityState, ProximityState
from pyproximity.state.policy import determine_mode, is_counterpart_online


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _pair_distance_km(a: LatLon | None, b: LatLon | None) -> float | None:
    if a is None or b is None:
        return None
    return distance_km(a, b)


def derive_proximity_state(
    own_location: LatLon | None,
    counterpart_location: LatLon | None,
    counterpart_last_seen_at: datetime | None,
    *,
    now: datetime,
    distance_threshold_km: float = DEFAULT_DISTANCE_THRESHOLD_KM,
    heartbeat_timeout_ms: float = DEFAULT_HEARTBEAT_TIMEOUT_MS,
) -> ProximityState:
    """Derive the communication state between self and a counterpart.

    Missing data never raises; it yields ``UNAVAILABLE`` with no distance.
    """
    online = is_counterpart_online(
        counterpart_last_seen_at,
        now=now,
        heartbeat_timeout_ms=heartbeat_timeout_ms,
    )
    km = _pair_distance_km(own_location, counterpart_location)
    return ProximityState(
        mode=determine_mode(km, threshold_km=distance_threshold_km, is_counterpart_online=online),
        distance_km=km,
        distance_label=format_distance_label(km),
        is_counterpart_online=online,
    )


def derive_pair_state(
    location_a: LatLon | None,
    last_seen_a: datetime | None,
    location_b: LatLon | None,
    last_seen_b: datetime | None,
    *,
    now: datetime,
    distance_threshold_km: float = DEFAULT_DISTANCE_THRESHOLD_KM,
    heartbeat_timeout_ms: float = DEFAULT_HEARTBEAT_TIMEOUT_MS,
) -> PairProximityState:
    """Derive the communication state between two remote users."""
    a_online = is_counterpart_online(last_seen_a, now=now, heartbeat_timeout_ms=heartbeat_timeout_ms)
    b_online = is_counterpart_online(last_seen_b, now=now, heartbeat_timeout_ms=heartbeat_timeout_ms)
    km = _pair_distance_km(location_a, location_b)
    return PairProximityState(
        mode=determine_mode(
            km,
            threshold_km=distance_threshold_km,
            is_counterpart_online=a_online and b_online,
        ),
        distance_km=km,
        distance_label=format_distance_label(km),
        user_a_online=a_online,
        user_b_online=b_online,
    )


class ProximityModeEngine:
    """Config-bound front end to :func:`derive_proximity_state`.

    The engine holds one :class:`ProximityConfig` snapshot.  Each
    evaluation reads that snapshot exactly once, so a concurrent
    :meth:`reconfigure` can never produce a half-old, half-new result.
    """

    def __init__(
        self,
        config: ProximityConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or ProximityConfig()
        self._clock = clock

    @property
    def config(self) -> ProximityConfig:
        return self._config

    def reconfigure(self, config: ProximityConfig) -> None:
        self._config = config

    def evaluate(
        self,
        own_location: LatLon | None,
        counterpart_location: LatLon | None,
        counterpart_last_seen_at: datetime | None,
        *,
        now: datetime | None = None,
    ) -> ProximityState:
        config = self._config
        return derive_proximity_state(
            own_location,
            counterpart_location,
            counterpart_last_seen_at,
            now=now or self._clock(),
            distance_threshold_km=config.distance_threshold_km,
            heartbeat_timeout_ms=config.heartbeat_timeout_ms,
        )

    def evaluate_pair(
        self,
        location_a: LatLon | None,
        last_seen_a: datetime | None,
        location_b: LatLon | None,
        last_seen_b: datetime | None,
        *,
        now: datetime | None = None,
    ) -> PairProximityState:
        config = self._config
        return derive_pair_state(
            location_a,
            last_seen_a,
            location_b,
            last_seen_b,
            now=now or self._clock(),
            distance_threshold_km=config.distance_threshold_km,
            heartbeat_timeout_ms=config.heartbeat_timeout_ms,
        )

    def determine_mode(self, distance_km: float | None, is_counterpart_online: bool) -> CommunicationMode:
        return determine_mode(
            distance_km,
            threshold_km=self._config.distance_threshold_km,
            is_counterpart_online=is_counterpart_online,
        )

    def bucket_key(self, lat: float, lon: float) -> str:
        """Grid cell key on the configured ``bucket_cell_size_deg``."""
        return bucket_key(lat, lon, self._config.bucket_cell_size_deg)

    def is_same_bucket(self, lat1: float, lon1: float, lat2: float, lon2: float) -> bool:
        return is_same_bucket(lat1, lon1, lat2, lon2, self._config.bucket_cell_size_deg)

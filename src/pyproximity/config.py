"""Engine configuration for pyproximity."""

from __future__ import annotations

import dataclasses
import math
import os
from typing import Any

from pyproximity._constants import (
    DEFAULT_BUCKET_CELL_SIZE_DEG,
    DEFAULT_DISTANCE_THRESHOLD_KM,
    DEFAULT_HEARTBEAT_TIMEOUT_MS,
    DEFAULT_LOCATION_FALLBACK_TIMEOUT_S,
    DEFAULT_LOCATION_TIMEOUT_S,
    DEFAULT_MIN_INTERVAL_MS,
    DEFAULT_MOVEMENT_THRESHOLD_M,
    DEFAULT_PRESENCE_MAX_RETRIES,
    DEFAULT_PRESENCE_RETRY_INITIAL_S,
    DEFAULT_PRESENCE_RETRY_MAX_S,
    DEFAULT_STALE_AFTER_MS,
    DEFAULT_WEAK_SIGNAL_ACCURACY_M,
)
from pyproximity.exceptions import ProximityConfigError

# Fields that must be finite and strictly positive.
_POSITIVE_FIELDS: tuple[str, ...] = (
    "movement_threshold_m",
    "min_interval_ms",
    "stale_after_ms",
    "distance_threshold_km",
    "heartbeat_timeout_ms",
    "weak_signal_accuracy_m",
    "bucket_cell_size_deg",
    "location_timeout_s",
    "location_fallback_timeout_s",
    "presence_retry_initial_s",
    "presence_retry_max_s",
)

_ENV_CONFIG_MAP: dict[str, str] = {
    "PROXIMITY_MOVEMENT_THRESHOLD_M": "movement_threshold_m",
    "PROXIMITY_MIN_INTERVAL_MS": "min_interval_ms",
    "PROXIMITY_STALE_AFTER_MS": "stale_after_ms",
    "PROXIMITY_DISTANCE_THRESHOLD_KM": "distance_threshold_km",
    "PROXIMITY_HEARTBEAT_TIMEOUT_MS": "heartbeat_timeout_ms",
    "PROXIMITY_WEAK_SIGNAL_ACCURACY_M": "weak_signal_accuracy_m",
    "PROXIMITY_BUCKET_CELL_SIZE_DEG": "bucket_cell_size_deg",
    "PROXIMITY_LOCATION_TIMEOUT_S": "location_timeout_s",
    "PROXIMITY_LOCATION_FALLBACK_TIMEOUT_S": "location_fallback_timeout_s",
    "PROXIMITY_PRESENCE_RETRY_INITIAL_S": "presence_retry_initial_s",
    "PROXIMITY_PRESENCE_RETRY_MAX_S": "presence_retry_max_s",
    "PROXIMITY_PRESENCE_MAX_RETRIES": "presence_max_retries",
}

_INT_FIELDS: frozenset[str] = frozenset(
    {"min_interval_ms", "stale_after_ms", "heartbeat_timeout_ms", "presence_max_retries"}
)


def _parse_env_number(env_key: str, field_name: str, raw: str) -> int | float:
    text = raw.strip()
    try:
        if field_name in _INT_FIELDS:
            return int(float(text))
        return float(text)
    except ValueError as exc:
        raise ProximityConfigError(f"{env_key}={raw!r} is not a number") from exc


@dataclasses.dataclass(frozen=True)
class ProximityConfig:
    """Engine configuration.

    A single explicit object shared read-only by every tracked pair.
    Reconfiguration means building a new instance and handing it over as a
    whole, so an evaluation never sees a mix of old and new values.

    Parameters
    ----------
    movement_threshold_m : float
        Minimum distance (meters) from the last stable location before a new
        fix is accepted.
    min_interval_ms : int
        Minimum time between two accepted stable locations.
    stale_after_ms : int
        A stable location is flagged stale when nothing newer has been
        accepted within this interval of its capture time.
    distance_threshold_km : float
        At or below this distance an online counterpart is reachable live.
    heartbeat_timeout_ms : int
        A counterpart whose last heartbeat is older than this is offline.
    weak_signal_accuracy_m : float
        Fixes with a worse reported accuracy are flagged ``is_weak_signal``.
    bucket_cell_size_deg : float
        Grid cell size used for area bucket keys.
    location_timeout_s : float
        Upper bound for the high-accuracy location fetch.
    location_fallback_timeout_s : float
        Upper bound for the low-accuracy fetch tried when the
        high-accuracy one times out or finds no position.
    presence_retry_initial_s : float
        First backoff delay used by presence feed adapters.
    presence_retry_max_s : float
        Backoff ceiling used by presence feed adapters.
    presence_max_retries : int
        Consecutive feed failures tolerated before the failure propagates.
        ``0`` disables retries.
    """

    movement_threshold_m: float = DEFAULT_MOVEMENT_THRESHOLD_M
    min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS
    stale_after_ms: int = DEFAULT_STALE_AFTER_MS
    distance_threshold_km: float = DEFAULT_DISTANCE_THRESHOLD_KM
    heartbeat_timeout_ms: int = DEFAULT_HEARTBEAT_TIMEOUT_MS
    weak_signal_accuracy_m: float = DEFAULT_WEAK_SIGNAL_ACCURACY_M
    bucket_cell_size_deg: float = DEFAULT_BUCKET_CELL_SIZE_DEG
    location_timeout_s: float = DEFAULT_LOCATION_TIMEOUT_S
    location_fallback_timeout_s: float = DEFAULT_LOCATION_FALLBACK_TIMEOUT_S
    presence_retry_initial_s: float = DEFAULT_PRESENCE_RETRY_INITIAL_S
    presence_retry_max_s: float = DEFAULT_PRESENCE_RETRY_MAX_S
    presence_max_retries: int = DEFAULT_PRESENCE_MAX_RETRIES

    def __post_init__(self) -> None:
        for field_name in _POSITIVE_FIELDS:
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ProximityConfigError(f"{field_name} must be a number, got {value!r}")
            if not math.isfinite(value) or value <= 0:
                raise ProximityConfigError(f"{field_name} must be finite and > 0, got {value!r}")

        retries = self.presence_max_retries
        if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
            raise ProximityConfigError(f"presence_max_retries must be an int >= 0, got {retries!r}")

        if self.presence_retry_max_s < self.presence_retry_initial_s:
            raise ProximityConfigError("presence_retry_max_s must be >= presence_retry_initial_s")

    @property
    def distance_threshold_m(self) -> float:
        return self.distance_threshold_km * 1000.0

    def with_overrides(self, **overrides: Any) -> ProximityConfig:
        """Return a validated copy with *overrides* applied."""
        try:
            return dataclasses.replace(self, **overrides)
        except TypeError as exc:
            raise ProximityConfigError(str(exc)) from exc

    @classmethod
    def from_env(cls, **overrides: Any) -> ProximityConfig:
        """Create configuration from environment variables.

        Reads optional ``PROXIMITY_*`` variables (for example
        ``PROXIMITY_DISTANCE_THRESHOLD_KM``). Explicit keyword arguments
        override environment values.

        Raises
        ------
        ProximityConfigError
            If a variable is not numeric or a resulting value is invalid.
        """
        env = os.environ

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _parse_env_number(env_key, field_name, val)

        config_kwargs.update(overrides)

        try:
            return cls(**config_kwargs)
        except TypeError as exc:
            raise ProximityConfigError(str(exc)) from exc

"""Stable location debouncer.

Turns a noisy, frequent stream of raw fixes into rare, meaningful stable
location changes so downstream work (network writes, room searches) does
not thrash on GPS jitter.  This is the only component allowed to replace
the current :class:`~pyproximity.models.location.StableLocation`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from pyproximity.config import ProximityConfig
from pyproximity.geo.distance import haversine_m
from pyproximity.models.location import RawFix, StableLocation
from pyproximity.state.events import DebounceDecision, FixDisposition
from pyproximity.state.policy import elapsed_ms, evaluate_fix

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StableLocationDebouncer:
    """Filter raw fixes down to significant stable-location changes.

    Time gates are measured on fix capture times, so a recorded track
    replays to the same result.  The injected *clock* is only used for
    wall-clock questions such as the remaining cooldown and staleness.
    """

    def __init__(
        self,
        config: ProximityConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or ProximityConfig()
        self._clock = clock
        self._location: StableLocation | None = None
        self._pending_fix: RawFix | None = None
        self._last_decision: DebounceDecision | None = None
        self._distance_since_last_update_m = 0.0
        self._force_armed = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def config(self) -> ProximityConfig:
        return self._config

    @property
    def location(self) -> StableLocation | None:
        """The current stable location, or ``None`` before the first fix."""
        return self._location

    @property
    def pending_fix(self) -> RawFix | None:
        """Latest fix held back by the cooldown gate."""
        return self._pending_fix

    @property
    def last_decision(self) -> DebounceDecision | None:
        return self._last_decision

    @property
    def distance_since_last_update_m(self) -> float:
        return self._distance_since_last_update_m

    @property
    def is_force_armed(self) -> bool:
        return self._force_armed

    @property
    def stale_deadline(self) -> datetime | None:
        """When the current stable location becomes stale, if it is not already."""
        if self._location is None or self._location.is_stale:
            return None
        return self._location.stale_deadline(self._config.stale_after_ms)

    def cooldown_remaining_ms(self, now: datetime | None = None) -> float:
        """Milliseconds until the time gate opens again (for UI feedback)."""
        if self._location is None:
            return 0.0
        now = now or self._clock()
        remaining = self._config.min_interval_ms - elapsed_ms(self._location.captured_at, now)
        return max(0.0, remaining)

    def is_significant_move(self, lat: float, lon: float) -> bool:
        """Whether a fix at (*lat*, *lon*) would pass the distance gate."""
        if self._location is None:
            return True
        moved = haversine_m(self._location.latitude, self._location.longitude, lat, lon)
        return moved >= self._config.movement_threshold_m

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reconfigure(self, config: ProximityConfig) -> None:
        """Swap in a new config object; the next fix is judged by it alone."""
        self._config = config

    def reset(self) -> None:
        """Forget the current stable location (next fix is a cold start)."""
        self._location = None
        self._pending_fix = None
        self._last_decision = None
        self._distance_since_last_update_m = 0.0
        self._force_armed = False

    def force_update(self) -> None:
        """Let exactly the next fix bypass the time and distance gates.

        Debouncing is not disabled: the fix after the forced one is judged
        normally against the new baseline.
        """
        _logger.debug("Force update armed")
        self._force_armed = True

    def accept_forced(self, fix: RawFix) -> StableLocation | None:
        """Arm a forced update and ingest *fix* in one step.

        Returns ``None`` only when *fix* is older than the current stable
        location.
        """
        self.force_update()
        return self.ingest(fix)

    def ingest(self, fix: RawFix) -> StableLocation | None:
        """Run *fix* through the debounce gates.

        Returns the new stable location when the fix is accepted, ``None``
        otherwise.  :attr:`last_decision` records why.
        """
        config = self._config
        decision = evaluate_fix(
            baseline=self._location,
            fix=fix,
            movement_threshold_m=config.movement_threshold_m,
            min_interval_ms=config.min_interval_ms,
            force=self._force_armed,
        )
        self._last_decision = decision

        if decision.disposition is FixDisposition.OUT_OF_ORDER:
            # An armed bypass belongs to the fix it was armed for, kept or not.
            self._force_armed = False
            _logger.debug(
                "Discarding out-of-order fix captured %.0fms before the stable location",
                -(decision.elapsed_ms or 0.0),
            )
            return None

        if decision.distance_m is not None:
            self._distance_since_last_update_m = decision.distance_m

        if decision.disposition is FixDisposition.COOLDOWN:
            self._pending_fix = fix
            _logger.debug("Cooldown: %.0fms remaining", decision.cooldown_remaining_ms)
            return None

        if decision.disposition is FixDisposition.INSUFFICIENT_MOVEMENT:
            _logger.debug(
                "Minor movement (%.0fm < %.0fm) - skipping update",
                decision.distance_m or 0.0,
                config.movement_threshold_m,
            )
            return None

        stable = StableLocation.from_fix(
            fix,
            weak_signal_accuracy_m=config.weak_signal_accuracy_m,
            accepted_at=self._clock(),
        )
        self._location = stable
        self._pending_fix = None
        self._distance_since_last_update_m = 0.0
        self._force_armed = False

        if decision.disposition is FixDisposition.COLD_START:
            _logger.info("Initial stable location accepted (accuracy=%.0fm)", stable.accuracy_m)
        else:
            _logger.info(
                "Stable location accepted (%s): moved %.0fm",
                decision.disposition.value,
                decision.distance_m or 0.0,
            )
        if stable.is_weak_signal:
            _logger.debug(
                "Weak signal: accuracy %.0fm above %.0fm",
                stable.accuracy_m,
                config.weak_signal_accuracy_m,
            )
        return stable

    def check_stale(self, now: datetime | None = None) -> StableLocation | None:
        """Flag the current stable location stale once its deadline passes.

        Returns the replaced (stale) location the first time the deadline is
        reached, ``None`` otherwise.
        """
        deadline = self.stale_deadline
        if deadline is None or self._location is None:
            return None
        now = now or self._clock()
        if now < deadline:
            return None
        self._location = self._location.mark_stale()
        _logger.debug("Stable location is stale (no update for %dms)", self._config.stale_after_ms)
        return self._location

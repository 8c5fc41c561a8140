"""Deterministic gate and mode policy.

This module contains *no* state and no clock access.  Callers pass in
everything a decision depends on, which keeps every rule replayable and
unit-testable in isolation.
"""

from __future__ import annotations

from datetime import datetime

from pyproximity.geo.distance import distance_m
from pyproximity.models.location import RawFix, StableLocation
from pyproximity.models.proximity import CommunicationMode
from pyproximity.state.events import DebounceDecision, FixDisposition

# Haversine of a point projected exactly N meters away comes back a few
# nanometers short; treat that as N.
_DISTANCE_EPSILON_M = 1e-6


def elapsed_ms(since: datetime, until: datetime) -> float:
    return (until - since).total_seconds() * 1000.0


def evaluate_fix(
    *,
    baseline: StableLocation | None,
    fix: RawFix,
    movement_threshold_m: float,
    min_interval_ms: float,
    force: bool = False,
) -> DebounceDecision:
    """Run *fix* through the debounce gates against *baseline*.

    Gates, in order:

    1. fixes captured before the baseline are discarded (monotonicity)
    2. no baseline: accept (cold start)
    3. a forced update accepts the fix regardless of time and distance
    4. less than *min_interval_ms* since the baseline: cooldown
    5. less than *movement_threshold_m* from the baseline: minor movement
    6. otherwise accept
    """
    if baseline is None:
        return DebounceDecision(disposition=FixDisposition.COLD_START)

    elapsed = elapsed_ms(baseline.captured_at, fix.captured_at)
    if elapsed < 0:
        return DebounceDecision(disposition=FixDisposition.OUT_OF_ORDER, elapsed_ms=elapsed)

    distance = distance_m(baseline, fix)

    if force:
        return DebounceDecision(disposition=FixDisposition.FORCED, distance_m=distance, elapsed_ms=elapsed)

    if elapsed < min_interval_ms:
        return DebounceDecision(
            disposition=FixDisposition.COOLDOWN,
            distance_m=distance,
            elapsed_ms=elapsed,
            cooldown_remaining_ms=min_interval_ms - elapsed,
        )

    if distance + _DISTANCE_EPSILON_M < movement_threshold_m:
        return DebounceDecision(
            disposition=FixDisposition.INSUFFICIENT_MOVEMENT,
            distance_m=distance,
            elapsed_ms=elapsed,
        )

    return DebounceDecision(disposition=FixDisposition.ACCEPTED, distance_m=distance, elapsed_ms=elapsed)


def is_counterpart_online(
    last_seen_at: datetime | None,
    *,
    now: datetime,
    heartbeat_timeout_ms: float,
) -> bool:
    """Online means a heartbeat strictly within the last *heartbeat_timeout_ms*."""
    if last_seen_at is None:
        return False
    return elapsed_ms(last_seen_at, now) < heartbeat_timeout_ms


def determine_mode(
    distance_km: float | None,
    *,
    threshold_km: float,
    is_counterpart_online: bool,
) -> CommunicationMode:
    """Map a distance and the counterpart's online flag to a mode.

    An offline counterpart always gets cloud memos, however close they are.
    """
    if distance_km is None:
        return CommunicationMode.UNAVAILABLE

    if not is_counterpart_online:
        return CommunicationMode.CLOUD_MEMO

    if distance_km <= threshold_km:
        return CommunicationMode.LIVE

    return CommunicationMode.CLOUD_MEMO

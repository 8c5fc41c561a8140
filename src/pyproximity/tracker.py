"""Per-pair proximity pipeline.

A :class:`PairTracker` owns everything needed to keep one
(self, counterpart) pair's communication mode current:

* a :class:`~pyproximity.state.debouncer.StableLocationDebouncer` for our
  own fixes,
* a task consuming the counterpart's presence feed,
* timers for stable-location staleness and heartbeat expiry,
* a :class:`~pyproximity.state.engine.ProximityModeEngine` that recomputes
  the :class:`~pyproximity.models.ProximityState` whenever an input changes.

Pairs share nothing but the read-only config object.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from pyproximity.config import ProximityConfig
from pyproximity.exceptions import (
    LocationError,
    LocationPermissionDeniedError,
    PositionUnavailableError,
    ProximityError,
    SubscriptionFailureError,
)
from pyproximity.location import LocationSource, fetch_fix, is_terminal
from pyproximity.models.location import Coordinate, RawFix, StableLocation
from pyproximity.models.presence import PresenceUpdate
from pyproximity.models.proximity import ProximityState
from pyproximity.presence.tracker import PresenceTracker
from pyproximity.state.debouncer import StableLocationDebouncer
from pyproximity.state.engine import ProximityModeEngine

_logger = logging.getLogger(__name__)

StableLocationCallback = Callable[[str, StableLocation], None]
ProximityStateCallback = Callable[[str, ProximityState], None]
LocationErrorCallback = Callable[[str, LocationError], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PairTracker:
    """Async pipeline for one (self, counterpart) pair.

    Usage::

        async with PairTracker(config, "user-42", presence=feed, location_source=gps,
                               on_proximity_state=show_mode) as tracker:
            tracker.set_consent(True)
            tracker.ingest(fix)
            await tracker.force_update()

    Callbacks receive the counterpart id first and run on the event loop.
    None of them fire after :meth:`close`.
    """

    def __init__(
        self,
        config: ProximityConfig,
        counterpart_id: str,
        *,
        presence: PresenceTracker | None = None,
        location_source: LocationSource | None = None,
        on_stable_location: StableLocationCallback | None = None,
        on_proximity_state: ProximityStateCallback | None = None,
        on_location_error: LocationErrorCallback | None = None,
        consent_granted: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._counterpart_id = counterpart_id
        self._presence = presence
        self._location_source = location_source
        self._on_stable_location = on_stable_location
        self._on_proximity_state = on_proximity_state
        self._on_location_error = on_location_error
        self._consent_granted = consent_granted
        self._clock = clock

        self._debouncer = StableLocationDebouncer(config, clock=clock)
        self._engine = ProximityModeEngine(config, clock=clock)

        self._counterpart_location: Coordinate | None = None
        self._counterpart_last_seen_at: datetime | None = None
        self._state: ProximityState | None = None
        self._location_error: LocationError | None = None
        self._presence_error: SubscriptionFailureError | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._presence_task: asyncio.Task[None] | None = None
        self._force_task: asyncio.Task[StableLocation] | None = None
        self._stale_handle: asyncio.TimerHandle | None = None
        self._heartbeat_handle: asyncio.TimerHandle | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PairTracker:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def start(self) -> None:
        """Bind to the running loop and subscribe to the counterpart's presence."""
        if self._closed:
            raise ProximityError("PairTracker is closed")
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        if self._presence is not None:
            self._presence_task = self._loop.create_task(
                self._consume_presence(self._presence),
                name=f"pyproximity-presence-{self._counterpart_id}",
            )
        self.recompute()

    def close(self) -> None:
        """Cancel timers and feeds synchronously; no callback fires afterwards."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timer("_stale_handle")
        self._cancel_timer("_heartbeat_handle")
        for task in (self._presence_task, self._force_task):
            if task is not None and not task.done():
                task.cancel()
        _logger.debug("Pair tracker for %s closed", self._counterpart_id)

    async def aclose(self) -> None:
        """Close and wait until the presence subscription is released."""
        self.close()
        pending = [t for t in (self._presence_task, self._force_task) if t is not None]
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError, ProximityError):
                await task
        self._presence_task = None
        self._force_task = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def counterpart_id(self) -> str:
        return self._counterpart_id

    @property
    def config(self) -> ProximityConfig:
        return self._config

    @property
    def state(self) -> ProximityState | None:
        """Last derived proximity state."""
        return self._state

    @property
    def stable_location(self) -> StableLocation | None:
        return self._debouncer.location

    @property
    def area_key(self) -> str | None:
        """Grid cell of the stable location on the configured cell size."""
        location = self._debouncer.location
        if location is None:
            return None
        return self._engine.bucket_key(location.latitude, location.longitude)

    @property
    def debouncer(self) -> StableLocationDebouncer:
        return self._debouncer

    @property
    def consent_granted(self) -> bool:
        return self._consent_granted

    @property
    def location_error(self) -> LocationError | None:
        """Terminal location error blocking fix ingestion, if any."""
        return self._location_error

    @property
    def presence_error(self) -> SubscriptionFailureError | None:
        return self._presence_error

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_force_update_in_flight(self) -> bool:
        return self._force_task is not None and not self._force_task.done()

    def cooldown_remaining_ms(self) -> float:
        return self._debouncer.cooldown_remaining_ms()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_consent(self, granted: bool) -> None:
        """Record the user's location consent.

        Granting consent clears an earlier permission-denied error;
        revoking it stops fix ingestion.
        """
        self._consent_granted = granted
        if granted and isinstance(self._location_error, LocationPermissionDeniedError):
            self._location_error = None
        _logger.info("Location consent %s for pair %s", "granted" if granted else "revoked", self._counterpart_id)

    def reconfigure(self, config: ProximityConfig) -> None:
        """Swap the whole config object at once and re-derive the state."""
        self._config = config
        self._debouncer.reconfigure(config)
        self._engine.reconfigure(config)
        if self._closed:
            return
        self._schedule_stale_check()
        self._schedule_heartbeat_expiry()
        self.recompute()

    def ingest(self, fix: RawFix) -> StableLocation | None:
        """Feed one raw fix; returns the new stable location if accepted."""
        if self._closed:
            return None
        if not self._consent_granted:
            _logger.debug("Dropping fix: location consent not granted")
            return None
        if self._location_error is not None:
            _logger.debug("Dropping fix: location blocked by %s", type(self._location_error).__name__)
            return None

        stable = self._debouncer.ingest(fix)
        if stable is not None:
            self._handle_stable_location(stable)
        return stable

    def report_location_error(self, error: LocationError) -> None:
        """Report an error pushed by the location source (e.g. a watch callback)."""
        if self._closed:
            return
        if is_terminal(error):
            self._location_error = error
            _logger.warning("Location tracking stopped for pair %s: %s", self._counterpart_id, error)
        else:
            _logger.warning("Transient location error for pair %s: %s", self._counterpart_id, error)
        self._emit_location_error(error)

    def retry(self) -> None:
        """Clear a terminal location error so fixes are accepted again."""
        if self._location_error is not None:
            _logger.info("Location retry requested for pair %s", self._counterpart_id)
        self._location_error = None

    def apply_presence(self, update: PresenceUpdate) -> ProximityState | None:
        """Apply a presence snapshot and re-derive the state."""
        if self._closed:
            return None
        self._counterpart_location = update.location
        self._counterpart_last_seen_at = update.last_seen_at
        self._presence_error = None
        self._schedule_heartbeat_expiry()
        return self.recompute()

    async def force_update(self) -> StableLocation:
        """Fetch a fresh fix now, bypassing the debounce gates once.

        Concurrent calls share the single in-flight fetch.

        Raises
        ------
        LocationPermissionDeniedError
            If consent has not been granted or the platform denied access.
        PositionUnavailableError
            If no position could be determined.
        LocationTimeoutError
            If neither the high-accuracy nor the fallback fetch answered in time.
        """
        if self._closed:
            raise ProximityError("PairTracker is closed")
        if not self._consent_granted:
            raise LocationPermissionDeniedError("Location consent not granted")
        if self._location_source is None:
            raise ProximityError("No location source configured for force_update()")

        task = self._force_task
        if task is None or task.done():
            loop = self._loop or asyncio.get_running_loop()
            task = loop.create_task(
                self._run_force_update(self._location_source),
                name=f"pyproximity-force-{self._counterpart_id}",
            )
            self._force_task = task
        else:
            _logger.debug("Force update already in flight; coalescing")
        return await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def recompute(self) -> ProximityState:
        """Re-derive the proximity state; emits only when it changed."""
        state = self._engine.evaluate(
            self._debouncer.location,
            self._counterpart_location,
            self._counterpart_last_seen_at,
        )
        previous = self._state
        if state == previous:
            return state
        self._state = state
        if previous is None or previous.mode != state.mode:
            _logger.info(
                "Pair %s mode %s -> %s (%s, online=%s)",
                self._counterpart_id,
                previous.mode.value if previous is not None else "none",
                state.mode.value,
                state.distance_label,
                state.is_counterpart_online,
            )
        if not self._closed and self._on_proximity_state is not None:
            try:
                self._on_proximity_state(self._counterpart_id, state)
            except Exception:
                _logger.debug("on_proximity_state callback failed", exc_info=True)
        return state

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_force_update(self, source: LocationSource) -> StableLocation:
        _logger.debug("Force update requested for pair %s", self._counterpart_id)
        try:
            fix = await fetch_fix(
                source,
                timeout_s=self._config.location_timeout_s,
                fallback_timeout_s=self._config.location_fallback_timeout_s,
            )
        except LocationError as exc:
            self.report_location_error(exc)
            raise

        self._location_error = None
        stable = self._debouncer.accept_forced(fix)
        if stable is None:
            # Older than what we already hold; keep the current location.
            current = self._debouncer.location
            if current is None:
                raise PositionUnavailableError("Forced fix was discarded and no stable location exists")
            return current
        self._handle_stable_location(stable)
        return stable

    async def _consume_presence(self, presence: PresenceTracker) -> None:
        try:
            async with contextlib.aclosing(presence.subscribe(self._counterpart_id)) as updates:
                async for update in updates:
                    self.apply_presence(update)
        except ProximityError as exc:
            # Keep serving the last state; staleness tells consumers it is aging.
            if isinstance(exc, SubscriptionFailureError):
                self._presence_error = exc
            else:
                failure = SubscriptionFailureError(str(exc), user_id=self._counterpart_id)
                failure.__cause__ = exc
                self._presence_error = failure
            _logger.warning("Presence feed for %s failed: %s", self._counterpart_id, exc)

    def _handle_stable_location(self, stable: StableLocation) -> None:
        self._emit_stable_location(stable)
        self._schedule_stale_check()
        self.recompute()

    def _emit_stable_location(self, stable: StableLocation) -> None:
        if self._closed or self._on_stable_location is None:
            return
        try:
            self._on_stable_location(self._counterpart_id, stable)
        except Exception:
            _logger.debug("on_stable_location callback failed", exc_info=True)

    def _emit_location_error(self, error: LocationError) -> None:
        if self._closed or self._on_location_error is None:
            return
        try:
            self._on_location_error(self._counterpart_id, error)
        except Exception:
            _logger.debug("on_location_error callback failed", exc_info=True)

    def _cancel_timer(self, attr: str) -> None:
        handle: asyncio.TimerHandle | None = getattr(self, attr)
        if handle is not None:
            handle.cancel()
            setattr(self, attr, None)

    def _delay_until(self, deadline: datetime) -> float:
        return max(0.0, (deadline - self._clock()).total_seconds())

    def _schedule_stale_check(self) -> None:
        self._cancel_timer("_stale_handle")
        if self._loop is None or self._closed:
            return
        deadline = self._debouncer.stale_deadline
        if deadline is None:
            return
        self._stale_handle = self._loop.call_later(self._delay_until(deadline), self._on_stale_timer)

    def _on_stale_timer(self) -> None:
        self._stale_handle = None
        if self._closed:
            return
        stale = self._debouncer.check_stale()
        if stale is None:
            # Clock and loop time drifted apart; try again at the deadline.
            self._schedule_stale_check()
            return
        self._emit_stable_location(stale)

    def _schedule_heartbeat_expiry(self) -> None:
        self._cancel_timer("_heartbeat_handle")
        if self._loop is None or self._closed or self._counterpart_last_seen_at is None:
            return
        expires_at = self._counterpart_last_seen_at + timedelta(milliseconds=self._config.heartbeat_timeout_ms)
        if expires_at <= self._clock():
            return
        self._heartbeat_handle = self._loop.call_later(self._delay_until(expires_at), self._on_heartbeat_expired)

    def _on_heartbeat_expired(self) -> None:
        self._heartbeat_handle = None
        if self._closed:
            return
        state = self.recompute()
        if state.is_counterpart_online:
            # Fired a little early relative to the injected clock.
            self._schedule_heartbeat_expiry()

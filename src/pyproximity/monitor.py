"""Supervisor for many independent pair pipelines."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any

from pyproximity.config import ProximityConfig
from pyproximity.exceptions import ProximityError
from pyproximity.location import LocationSource
from pyproximity.presence.tracker import PresenceTracker
from pyproximity.tracker import (
    LocationErrorCallback,
    PairTracker,
    ProximityStateCallback,
    StableLocationCallback,
)

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ProximityMonitor:
    """Track many (self, counterpart) pairs with one shared config.

    Each pair runs its own :class:`PairTracker` (its own presence task and
    timers); pairs never share mutable state.  :meth:`reconfigure` hands
    the same new config object to every pair in one synchronous step.

    Usage::

        async with ProximityMonitor(config, presence=feed, location_source=gps) as monitor:
            tracker = monitor.track("chat-1", "user-42", on_proximity_state=update_ui)
    """

    def __init__(
        self,
        config: ProximityConfig | None = None,
        *,
        presence: PresenceTracker | None = None,
        location_source: LocationSource | None = None,
        consent_granted: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or ProximityConfig()
        self._presence = presence
        self._location_source = location_source
        self._consent_granted = consent_granted
        self._clock = clock
        self._pairs: dict[str, PairTracker] = {}
        self._closed = False

    async def __aenter__(self) -> ProximityMonitor:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    @property
    def config(self) -> ProximityConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, pair_id: object) -> bool:
        return pair_id in self._pairs

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._pairs))

    def get(self, pair_id: str) -> PairTracker | None:
        return self._pairs.get(pair_id)

    def track(
        self,
        pair_id: str,
        counterpart_id: str,
        *,
        on_stable_location: StableLocationCallback | None = None,
        on_proximity_state: ProximityStateCallback | None = None,
        on_location_error: LocationErrorCallback | None = None,
    ) -> PairTracker:
        """Start tracking a pair; must be called from a running event loop."""
        if self._closed:
            raise ProximityError("ProximityMonitor is closed")
        if pair_id in self._pairs:
            raise ProximityError(f"Pair {pair_id!r} is already tracked")

        tracker = PairTracker(
            self._config,
            counterpart_id,
            presence=self._presence,
            location_source=self._location_source,
            on_stable_location=on_stable_location,
            on_proximity_state=on_proximity_state,
            on_location_error=on_location_error,
            consent_granted=self._consent_granted,
            clock=self._clock,
        )
        tracker.start()
        self._pairs[pair_id] = tracker
        _logger.debug("Tracking pair %s (counterpart=%s)", pair_id, counterpart_id)
        return tracker

    async def untrack(self, pair_id: str) -> None:
        tracker = self._pairs.pop(pair_id, None)
        if tracker is None:
            return
        await tracker.aclose()
        _logger.debug("Stopped tracking pair %s", pair_id)

    def set_consent(self, granted: bool) -> None:
        """Apply a consent change to every pair (and to pairs tracked later)."""
        self._consent_granted = granted
        for tracker in self._pairs.values():
            tracker.set_consent(granted)

    def reconfigure(self, config: ProximityConfig) -> None:
        """Replace the shared config for every pair.

        Runs without awaiting, so no pair evaluates between two pairs being
        switched over.
        """
        self._config = config
        for tracker in self._pairs.values():
            tracker.reconfigure(config)
        _logger.info("Reconfigured %d pair(s)", len(self._pairs))

    async def aclose(self) -> None:
        self._closed = True
        pairs = list(self._pairs.values())
        self._pairs.clear()
        for tracker in pairs:
            tracker.close()
        await asyncio.gather(*(tracker.aclose() for tracker in pairs))

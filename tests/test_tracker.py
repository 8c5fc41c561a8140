"""Tests for the per-pair async pipeline."""

from __future__ import annotations

import asyncio
import math
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pyproximity.config import ProximityConfig
from pyproximity.exceptions import (
    LocationError,
    LocationPermissionDeniedError,
    LocationTimeoutError,
    PositionUnavailableError,
    ProximityError,
    SubscriptionFailureError,
)
from pyproximity.models import CommunicationMode, PresenceUpdate, ProximityState, RawFix, StableLocation
from pyproximity.presence.mqtt import MqttPresenceTracker
from pyproximity.presence.tracker import InMemoryPresenceTracker
from pyproximity.state.events import FixDisposition
from pyproximity.tracker import PairTracker

_T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
_PEER = "user-42"


class _Clock:
    def __init__(self, now: datetime = _T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _Recorder:
    def __init__(self) -> None:
        self.states: list[ProximityState] = []
        self.locations: list[StableLocation] = []
        self.errors: list[LocationError] = []

    def on_state(self, counterpart_id: str, state: ProximityState) -> None:
        assert counterpart_id == _PEER
        self.states.append(state)

    def on_location(self, counterpart_id: str, location: StableLocation) -> None:
        self.locations.append(location)

    def on_error(self, counterpart_id: str, error: LocationError) -> None:
        self.errors.append(error)

    @property
    def modes(self) -> list[CommunicationMode]:
        return [s.mode for s in self.states]


class _Source:
    """Location source that blocks until released and counts fetches."""

    def __init__(self, fix: RawFix | None = None, *, error: LocationError | None = None, gated: bool = False) -> None:
        self.fix = fix
        self.error = error
        self.calls = 0
        self.accuracies: list[bool] = []
        self.release = asyncio.Event()
        if not gated:
            self.release.set()

    async def get_current_fix(self, *, timeout_s: float, high_accuracy: bool = True) -> RawFix:
        self.calls += 1
        self.accuracies.append(high_accuracy)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        assert self.fix is not None
        return self.fix


def _fix(north_m: float = 0.0, *, at: datetime = _T0, accuracy: float = 10.0) -> RawFix:
    return RawFix(
        latitude=math.degrees(north_m / 6_371_000.0),
        longitude=0.0,
        accuracy_m=accuracy,
        captured_at=at,
    )


def _presence_doc(north_km: float, *, seen: datetime) -> dict[str, Any]:
    return {
        "location": {"latitude": math.degrees(north_km / 6371.0), "longitude": 0.0},
        "lastSeen": seen.isoformat(),
    }


def _tracker(
    recorder: _Recorder,
    *,
    config: ProximityConfig | None = None,
    presence: InMemoryPresenceTracker | None = None,
    source: _Source | None = None,
    clock: Any = None,
    consent: bool = True,
) -> PairTracker:
    return PairTracker(
        config or ProximityConfig(),
        _PEER,
        presence=presence,
        location_source=source,
        on_stable_location=recorder.on_location,
        on_proximity_state=recorder.on_state,
        on_location_error=recorder.on_error,
        consent_granted=consent,
        clock=clock or _Clock(),
    )


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ------------------------------------------------------------------
# Mode changes
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_presence_flip_moves_live_to_cloud_memo() -> None:
    recorder = _Recorder()
    presence = InMemoryPresenceTracker()

    async with _tracker(recorder, presence=presence) as tracker:
        tracker.ingest(_fix())
        presence.publish(_PEER, _presence_doc(1.5, seen=_T0))
        await _settle()
        presence.publish(_PEER, _presence_doc(1.5, seen=_T0 - timedelta(minutes=20)))
        await _settle()

    assert recorder.modes == [
        CommunicationMode.UNAVAILABLE,
        CommunicationMode.LIVE,
        CommunicationMode.CLOUD_MEMO,
    ]
    assert recorder.states[-1].distance_label == "1.5km"
    assert not recorder.states[-1].is_counterpart_online


@pytest.mark.asyncio
async def test_state_emitted_only_on_change() -> None:
    recorder = _Recorder()
    async with _tracker(recorder) as tracker:
        tracker.ingest(_fix())
        update = PresenceUpdate.model_validate(_presence_doc(2.0, seen=_T0))
        tracker.apply_presence(update)
        tracker.apply_presence(update)
        tracker.recompute()

    assert recorder.modes == [CommunicationMode.UNAVAILABLE, CommunicationMode.LIVE]
    assert tracker.state is not None and tracker.state.distance_label == "2.0km"


@pytest.mark.asyncio
async def test_reconfigure_rederives_state() -> None:
    recorder = _Recorder()
    async with _tracker(recorder) as tracker:
        tracker.ingest(_fix())
        tracker.apply_presence(PresenceUpdate.model_validate(_presence_doc(3.0, seen=_T0)))
        tracker.reconfigure(ProximityConfig(distance_threshold_km=2.0))

    assert recorder.modes[-2:] == [CommunicationMode.LIVE, CommunicationMode.CLOUD_MEMO]
    assert tracker.config.distance_threshold_km == 2.0
    assert tracker.debouncer.config.distance_threshold_km == 2.0


@pytest.mark.asyncio
async def test_heartbeat_expiry_downgrades_without_new_input() -> None:
    recorder = _Recorder()
    config = ProximityConfig(heartbeat_timeout_ms=50)

    async with PairTracker(config, _PEER, on_proximity_state=recorder.on_state, consent_granted=True) as tracker:
        now = datetime.now(UTC)
        tracker.ingest(_fix(at=now))
        tracker.apply_presence(PresenceUpdate.model_validate(_presence_doc(1.5, seen=now)))
        await asyncio.sleep(0.3)

    assert recorder.modes == [CommunicationMode.UNAVAILABLE, CommunicationMode.LIVE, CommunicationMode.CLOUD_MEMO]


# ------------------------------------------------------------------
# Own location
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ingest_requires_consent() -> None:
    recorder = _Recorder()
    async with _tracker(recorder, consent=False) as tracker:
        assert tracker.ingest(_fix()) is None
        with pytest.raises(LocationPermissionDeniedError):
            await tracker.force_update()

        tracker.set_consent(True)
        assert tracker.ingest(_fix()) is not None

    assert len(recorder.locations) == 1


@pytest.mark.asyncio
async def test_stale_location_is_reemitted() -> None:
    recorder = _Recorder()
    config = ProximityConfig(stale_after_ms=20)

    async with PairTracker(config, _PEER, on_stable_location=recorder.on_location, consent_granted=True) as tracker:
        tracker.ingest(_fix(at=datetime.now(UTC)))
        await asyncio.sleep(0.2)

    assert [loc.is_stale for loc in recorder.locations] == [False, True]
    assert tracker.stable_location is not None and tracker.stable_location.is_stale


# ------------------------------------------------------------------
# Forced updates
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_force_update_bypasses_gates_once() -> None:
    recorder = _Recorder()
    source = _Source(_fix(5.0, at=_T0 + timedelta(milliseconds=100)))

    async with _tracker(recorder, source=source) as tracker:
        tracker.ingest(_fix())
        forced = await tracker.force_update()

        assert forced.latitude == source.fix.latitude  # type: ignore[union-attr]
        assert tracker.debouncer.last_decision is not None
        assert tracker.debouncer.last_decision.disposition is FixDisposition.FORCED

        assert tracker.ingest(_fix(15.0, at=_T0 + timedelta(milliseconds=200))) is None
        assert tracker.stable_location == forced

    assert len(recorder.locations) == 2


@pytest.mark.asyncio
async def test_area_key_follows_configured_cell_size() -> None:
    config = ProximityConfig(bucket_cell_size_deg=0.1)

    async with _tracker(_Recorder(), config=config) as tracker:
        assert tracker.area_key is None

        tracker.ingest(RawFix(latitude=1.052, longitude=2.052, accuracy_m=10.0, captured_at=_T0))
        assert tracker.area_key == "10_20"

        tracker.reconfigure(ProximityConfig(bucket_cell_size_deg=1.0))
        assert tracker.area_key == "1_2"


@pytest.mark.asyncio
async def test_concurrent_force_updates_share_one_fetch() -> None:
    recorder = _Recorder()
    source = _Source(_fix(), gated=True)

    async with _tracker(recorder, source=source) as tracker:
        first = asyncio.create_task(tracker.force_update())
        second = asyncio.create_task(tracker.force_update())
        await _settle()
        assert tracker.is_force_update_in_flight

        source.release.set()
        results = await asyncio.gather(first, second)

    assert results[0] == results[1]
    assert source.calls == 1
    assert len(recorder.locations) == 1


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_fetch() -> None:
    recorder = _Recorder()
    source = _Source(_fix(), gated=True)

    async with _tracker(recorder, source=source) as tracker:
        impatient = asyncio.create_task(tracker.force_update())
        await _settle()
        impatient.cancel()
        await _settle()

        patient = asyncio.create_task(tracker.force_update())
        await _settle()
        source.release.set()
        location = await patient

    assert impatient.cancelled()
    assert source.calls == 1
    assert tracker.stable_location == location


@pytest.mark.asyncio
async def test_terminal_error_blocks_until_retry() -> None:
    recorder = _Recorder()
    source = _Source(error=PositionUnavailableError("no fix"))

    async with _tracker(recorder, source=source) as tracker:
        with pytest.raises(PositionUnavailableError):
            await tracker.force_update()

        assert isinstance(tracker.location_error, PositionUnavailableError)
        assert tracker.ingest(_fix()) is None

        tracker.retry()
        assert tracker.location_error is None
        assert tracker.ingest(_fix()) is not None

    assert len(recorder.errors) == 1


@pytest.mark.asyncio
async def test_timeout_is_reported_but_not_terminal() -> None:
    recorder = _Recorder()
    source = _Source(_fix(), gated=True)

    config = ProximityConfig(location_timeout_s=0.01, location_fallback_timeout_s=0.01)

    async with _tracker(recorder, source=source, config=config) as tracker:
        with pytest.raises(LocationTimeoutError):
            await tracker.force_update()
        assert source.accuracies == [True, False]

        assert tracker.location_error is None
        assert tracker.ingest(_fix()) is not None

    assert [type(e) for e in recorder.errors] == [LocationTimeoutError]


@pytest.mark.asyncio
async def test_pushed_permission_error_cleared_by_consent() -> None:
    recorder = _Recorder()
    async with _tracker(recorder) as tracker:
        tracker.report_location_error(LocationPermissionDeniedError("revoked"))
        assert tracker.ingest(_fix()) is None

        tracker.set_consent(True)
        assert tracker.location_error is None
        assert tracker.ingest(_fix()) is not None


@pytest.mark.asyncio
async def test_force_update_without_source() -> None:
    async with _tracker(_Recorder()) as tracker:
        with pytest.raises(ProximityError):
            await tracker.force_update()


# ------------------------------------------------------------------
# Presence failures and teardown
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_subscription_failure_keeps_last_state() -> None:
    recorder = _Recorder()
    presence = InMemoryPresenceTracker()

    async with _tracker(recorder, presence=presence) as tracker:
        tracker.ingest(_fix())
        presence.publish(_PEER, _presence_doc(1.5, seen=_T0))
        await _settle()
        presence.fail(_PEER, "connection lost")
        await _settle()

        assert isinstance(tracker.presence_error, SubscriptionFailureError)
        assert tracker.state is not None and tracker.state.mode is CommunicationMode.LIVE

    assert recorder.modes == [CommunicationMode.UNAVAILABLE, CommunicationMode.LIVE]


@pytest.mark.asyncio
async def test_feed_that_cannot_subscribe_is_reported_as_failure() -> None:
    recorder = _Recorder()
    tracker = PairTracker(
        ProximityConfig(),
        _PEER,
        presence=MqttPresenceTracker("broker.invalid"),
        on_proximity_state=recorder.on_state,
        consent_granted=True,
        clock=_Clock(),
    )

    async with tracker:
        await _settle()

        error = tracker.presence_error
        assert isinstance(error, SubscriptionFailureError)
        assert error.user_id == _PEER
        assert isinstance(error.__cause__, ProximityError)
        assert tracker.ingest(_fix()) is not None

    assert recorder.modes == [CommunicationMode.UNAVAILABLE]

@pytest.mark.asyncio
async def test_teardown_releases_subscription_and_silences_callbacks() -> None:
    recorder = _Recorder()
    presence = InMemoryPresenceTracker()
    tracker = _tracker(recorder, presence=presence)
    tracker.start()
    await _settle()
    assert presence.subscriber_count(_PEER) == 1

    await tracker.aclose()
    emitted = len(recorder.states)

    assert presence.subscriber_count(_PEER) == 0
    assert tracker.is_closed
    presence.publish(_PEER, _presence_doc(1.0, seen=_T0))
    assert tracker.ingest(_fix()) is None
    assert tracker.apply_presence(PresenceUpdate()) is None
    await _settle()
    assert len(recorder.states) == emitted
    assert recorder.locations == []

    with pytest.raises(ProximityError):
        await tracker.force_update()
    with pytest.raises(ProximityError):
        tracker.start()


@pytest.mark.asyncio
async def test_close_during_force_update() -> None:
    recorder = _Recorder()
    source = _Source(_fix(), gated=True)
    tracker = _tracker(recorder, source=source)
    tracker.start()

    pending = asyncio.create_task(tracker.force_update())
    await _settle()
    await tracker.aclose()

    with pytest.raises(asyncio.CancelledError):
        await pending
    assert recorder.locations == []

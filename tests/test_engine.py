"""Tests for proximity mode derivation."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest

from pyproximity.config import ProximityConfig
from pyproximity.models import CommunicationMode, Coordinate
from pyproximity.state.engine import ProximityModeEngine, derive_pair_state, derive_proximity_state
from pyproximity.state.policy import determine_mode, is_counterpart_online

_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
_HOME = Coordinate(latitude=0.0, longitude=0.0)


def _north_km(km: float) -> Coordinate:
    return Coordinate(latitude=math.degrees(km / 6371.0), longitude=0.0)


def _seen(seconds_ago: float) -> datetime:
    return _NOW - timedelta(seconds=seconds_ago)


# ------------------------------------------------------------------
# Policy
# ------------------------------------------------------------------


class TestDetermineMode:
    def test_missing_distance_is_unavailable_even_when_online(self) -> None:
        assert determine_mode(None, threshold_km=5.0, is_counterpart_online=True) is CommunicationMode.UNAVAILABLE

    def test_offline_counterpart_is_cloud_memo_even_when_close(self) -> None:
        assert determine_mode(0.1, threshold_km=5.0, is_counterpart_online=False) is CommunicationMode.CLOUD_MEMO

    @pytest.mark.parametrize(
        ("km", "mode"),
        [
            (0.0, CommunicationMode.LIVE),
            (4.9, CommunicationMode.LIVE),
            (5.0, CommunicationMode.LIVE),
            (5.1, CommunicationMode.CLOUD_MEMO),
            (500.0, CommunicationMode.CLOUD_MEMO),
        ],
    )
    def test_threshold_for_online_counterpart(self, km: float, mode: CommunicationMode) -> None:
        assert determine_mode(km, threshold_km=5.0, is_counterpart_online=True) is mode


class TestHeartbeat:
    def test_recent_heartbeat_is_online(self) -> None:
        assert is_counterpart_online(_seen(30), now=_NOW, heartbeat_timeout_ms=600_000)

    def test_heartbeat_at_timeout_is_offline(self) -> None:
        assert not is_counterpart_online(_seen(600), now=_NOW, heartbeat_timeout_ms=600_000)

    def test_missing_heartbeat_is_offline(self) -> None:
        assert not is_counterpart_online(None, now=_NOW, heartbeat_timeout_ms=600_000)


# ------------------------------------------------------------------
# Derivation
# ------------------------------------------------------------------


class TestDeriveProximityState:
    def test_unavailable_without_own_location(self) -> None:
        state = derive_proximity_state(None, _north_km(1.0), _seen(5), now=_NOW)

        assert state.mode is CommunicationMode.UNAVAILABLE
        assert state.distance_km is None
        assert state.distance_label == "unknown"
        assert state.is_counterpart_online

    def test_unavailable_without_counterpart_location(self) -> None:
        state = derive_proximity_state(_HOME, None, _seen(5), now=_NOW)
        assert state.mode is CommunicationMode.UNAVAILABLE

    def test_live_when_close_and_online(self) -> None:
        state = derive_proximity_state(_HOME, _north_km(4.9), _seen(5), now=_NOW)

        assert state.mode is CommunicationMode.LIVE
        assert state.distance_km == pytest.approx(4.9)
        assert state.distance_label == "4.9km"

    def test_cloud_memo_when_far(self) -> None:
        state = derive_proximity_state(_HOME, _north_km(5.1), _seen(5), now=_NOW)
        assert state.mode is CommunicationMode.CLOUD_MEMO

    def test_cloud_memo_when_offline(self) -> None:
        state = derive_proximity_state(_HOME, _north_km(0.2), _seen(3600), now=_NOW)

        assert state.mode is CommunicationMode.CLOUD_MEMO
        assert not state.is_counterpart_online
        assert state.distance_label == "200m"

    def test_same_inputs_give_equal_states(self) -> None:
        args = (_HOME, _north_km(3.0), _seen(10))
        assert derive_proximity_state(*args, now=_NOW) == derive_proximity_state(*args, now=_NOW)

    def test_approaching_counterpart_switches_to_live(self) -> None:
        modes = [
            derive_proximity_state(_HOME, _north_km(km), _seen(1), now=_NOW).mode
            for km in (6.0, 5.5, 5.1, 4.9, 4.5)
        ]
        assert modes == [
            CommunicationMode.CLOUD_MEMO,
            CommunicationMode.CLOUD_MEMO,
            CommunicationMode.CLOUD_MEMO,
            CommunicationMode.LIVE,
            CommunicationMode.LIVE,
        ]


class TestDerivePairState:
    def test_live_requires_both_online(self) -> None:
        state = derive_pair_state(_HOME, _seen(5), _north_km(1.0), _seen(3600), now=_NOW)

        assert state.mode is CommunicationMode.CLOUD_MEMO
        assert state.user_a_online
        assert not state.user_b_online

    def test_live_when_both_online_and_close(self) -> None:
        state = derive_pair_state(_HOME, _seen(5), _north_km(1.2), _seen(5), now=_NOW)

        assert state.mode is CommunicationMode.LIVE
        assert state.distance_label == "1.2km"

    def test_unavailable_without_location(self) -> None:
        state = derive_pair_state(None, _seen(5), _north_km(1.0), _seen(5), now=_NOW)
        assert state.mode is CommunicationMode.UNAVAILABLE


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class TestProximityModeEngine:
    def test_uses_config_threshold(self) -> None:
        engine = ProximityModeEngine(ProximityConfig(distance_threshold_km=2.0), clock=lambda: _NOW)

        assert engine.evaluate(_HOME, _north_km(3.0), _seen(5)).mode is CommunicationMode.CLOUD_MEMO
        assert engine.determine_mode(1.5, True) is CommunicationMode.LIVE

    def test_reconfigure_swaps_whole_config(self) -> None:
        engine = ProximityModeEngine(clock=lambda: _NOW)
        before = engine.evaluate(_HOME, _north_km(3.0), _seen(120))

        engine.reconfigure(ProximityConfig(distance_threshold_km=2.0, heartbeat_timeout_ms=60_000))
        after = engine.evaluate(_HOME, _north_km(3.0), _seen(120))

        assert before.mode is CommunicationMode.LIVE
        assert after.mode is CommunicationMode.CLOUD_MEMO
        assert not after.is_counterpart_online

    def test_explicit_now_overrides_clock(self) -> None:
        engine = ProximityModeEngine(clock=lambda: _NOW + timedelta(hours=1))
        state = engine.evaluate(_HOME, _north_km(1.0), _seen(5), now=_NOW)
        assert state.is_counterpart_online

    def test_evaluate_pair(self) -> None:
        engine = ProximityModeEngine(clock=lambda: _NOW)
        state = engine.evaluate_pair(_HOME, _seen(1), _north_km(0.5), _seen(1))

        assert state.mode is CommunicationMode.LIVE
        assert state.distance_label == "500m"

    def test_bucket_key_uses_configured_cell_size(self) -> None:
        engine = ProximityModeEngine(ProximityConfig(bucket_cell_size_deg=0.1), clock=lambda: _NOW)

        assert engine.bucket_key(1.05, 2.05) == "10_20"
        assert engine.is_same_bucket(1.01, 2.01, 1.09, 2.09)
        assert not ProximityModeEngine(clock=lambda: _NOW).is_same_bucket(1.01, 2.01, 1.09, 2.09)

    def test_bucket_key_follows_reconfigure(self) -> None:
        engine = ProximityModeEngine(clock=lambda: _NOW)
        assert engine.bucket_key(1.052, 2.052) == "210_410"

        engine.reconfigure(ProximityConfig(bucket_cell_size_deg=1.0))
        assert engine.bucket_key(1.052, 2.052) == "1_2"

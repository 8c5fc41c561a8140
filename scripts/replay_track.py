#!/usr/bin/env python3
"""Replay a recorded track through the debouncer and mode engine.

Reads a JSON timeline of own fixes and counterpart presence snapshots,
feeds it through :class:`StableLocationDebouncer` and
:class:`ProximityModeEngine` exactly as a live pipeline would, and prints
every accepted stable location and every proximity change.  Useful for
tuning thresholds against real GPS recordings.

Input format
------------
A JSON list (or ``{"events": [...]}``) of timeline entries, in order::

    {"type": "fix", "lat": 52.52, "lon": 13.40, "accuracy": 12, "timestamp": 1767225600000}
    {"type": "force", "lat": 52.53, "lon": 13.41, "accuracy": 8, "timestamp": 1767225603000}
    {"type": "presence", "at": 1767225601000,
     "location": {"latitude": 52.5, "longitude": 13.4}, "lastSeen": 1767225600000}

``force`` entries model a manual refresh.  Presence entries are evaluated
at their ``at`` time (default: ``lastSeen``).

Usage
-----
::

    python scripts/replay_track.py track.json
    python scripts/replay_track.py track.json --threshold-km 2 --json -o out.json

Thresholds default to ``PROXIMITY_*`` environment variables.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyproximity import ProximityConfig, ProximityConfigError, RawFix  # noqa: E402
from pyproximity.models import PresenceUpdate, parse_presence_payload, parse_timestamp  # noqa: E402
from pyproximity.state.debouncer import StableLocationDebouncer  # noqa: E402
from pyproximity.state.engine import ProximityModeEngine  # noqa: E402

# ── helpers ──────────────────────────────────────────────────


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _load_events(path: Path) -> list[dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a JSON list of events")
    return [item for item in data if isinstance(item, dict)]


def replay(events: list[dict[str, Any]], config: ProximityConfig) -> list[dict[str, Any]]:
    """Run *events* through the pipeline; return one record per observable change."""
    debouncer = StableLocationDebouncer(config)
    engine = ProximityModeEngine(config)
    presence: PresenceUpdate | None = None
    last_state = None
    records: list[dict[str, Any]] = []

    for index, event in enumerate(events):
        kind = str(event.get("type", "fix"))
        now: datetime | None

        if kind == "presence":
            presence = parse_presence_payload(event, user_id=str(event.get("user_id", "counterpart")))
            now = parse_timestamp(event.get("at")) or presence.last_seen_at
        elif kind in ("fix", "force"):
            fix = RawFix.model_validate(event)
            now = fix.captured_at
            stable = debouncer.accept_forced(fix) if kind == "force" else debouncer.ingest(fix)
            decision = debouncer.last_decision
            if stable is not None:
                records.append(
                    {
                        "index": index,
                        "at": now.isoformat(),
                        "event": "stable_location",
                        "disposition": decision.disposition.value if decision else None,
                        "latitude": stable.latitude,
                        "longitude": stable.longitude,
                        "accuracy_m": stable.accuracy_m,
                        "is_weak_signal": stable.is_weak_signal,
                    }
                )
            elif decision is not None:
                records.append(
                    {
                        "index": index,
                        "at": now.isoformat(),
                        "event": "rejected",
                        "disposition": decision.disposition.value,
                        "distance_m": decision.distance_m,
                        "cooldown_remaining_ms": decision.cooldown_remaining_ms,
                    }
                )
        else:
            logging.getLogger(__name__).warning("Skipping unknown event type %r at index %d", kind, index)
            continue

        if now is None:
            continue

        stale = debouncer.check_stale(now)
        if stale is not None:
            records.append({"index": index, "at": now.isoformat(), "event": "stale"})

        state = engine.evaluate(
            debouncer.location,
            presence.location if presence else None,
            presence.last_seen_at if presence else None,
            now=now,
        )
        if state != last_state:
            last_state = state
            records.append(
                {
                    "index": index,
                    "at": now.isoformat(),
                    "event": "proximity",
                    "mode": state.mode.value,
                    "distance_km": state.distance_km,
                    "distance_label": state.distance_label,
                    "is_counterpart_online": state.is_counterpart_online,
                }
            )

    return records


def _format_record(record: dict[str, Any]) -> str:
    kind = record["event"]
    prefix = f"  [{record['index']:>4}] {record['at']}"
    if kind == "stable_location":
        weak = " (weak signal)" if record["is_weak_signal"] else ""
        return (
            f"{prefix}  STABLE   {record['latitude']:.5f},{record['longitude']:.5f} "
            f"±{record['accuracy_m']:.0f}m [{record['disposition']}]{weak}"
        )
    if kind == "rejected":
        distance = record["distance_m"]
        moved = f"{distance:.0f}m" if distance is not None else "-"
        return f"{prefix}  rejected {record['disposition']} moved={moved} cooldown={record['cooldown_remaining_ms']:.0f}ms"
    if kind == "stale":
        return f"{prefix}  STALE"
    return (
        f"{prefix}  MODE     {record['mode']} ({record['distance_label']}, "
        f"online={record['is_counterpart_online']})"
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Replay a recorded GPS/presence timeline through the proximity engine.",
    )
    parser.add_argument("track", help="JSON timeline file")
    parser.add_argument("--movement-m", type=float, help="Movement threshold in meters")
    parser.add_argument("--interval-ms", type=int, help="Minimum interval between stable locations")
    parser.add_argument("--threshold-km", type=float, help="Live-mode distance threshold")
    parser.add_argument("--heartbeat-ms", type=int, help="Counterpart heartbeat timeout")
    parser.add_argument("--rejections", action="store_true", help="Also print rejected fixes")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict[str, Any] = {}
    if args.movement_m is not None:
        overrides["movement_threshold_m"] = args.movement_m
    if args.interval_ms is not None:
        overrides["min_interval_ms"] = args.interval_ms
    if args.threshold_km is not None:
        overrides["distance_threshold_km"] = args.threshold_km
    if args.heartbeat_ms is not None:
        overrides["heartbeat_timeout_ms"] = args.heartbeat_ms

    try:
        config = ProximityConfig.from_env(**overrides)
    except ProximityConfigError as exc:
        parser.error(str(exc))

    records = replay(_load_events(Path(args.track)), config)
    if not args.rejections:
        records = [r for r in records if r["event"] != "rejected"]

    if args.json_mode:
        payload = json.dumps(records, indent=2, default=str, ensure_ascii=False)
    else:
        out = [_section(f"replay {args.track}")]
        out.append(
            f"  movement={config.movement_threshold_m:.0f}m interval={config.min_interval_ms}ms "
            f"threshold={config.distance_threshold_km}km heartbeat={config.heartbeat_timeout_ms}ms"
        )
        out.extend(_format_record(r) for r in records)
        payload = "\n".join(out)

    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"Output written to {args.output}", file=sys.stderr)
    else:
        print(payload)


if __name__ == "__main__":
    main()

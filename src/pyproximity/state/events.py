"""Debounce decision records.

Every fix handed to the debouncer produces exactly one
:class:`DebounceDecision`, whether or not it changes the stable location.
They are what the debouncer logs and what consumers can inspect for
feedback such as "moved 12 m, waiting for 50 m".
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class FixDisposition(StrEnum):
    COLD_START = "cold_start"
    ACCEPTED = "accepted"
    FORCED = "forced"
    OUT_OF_ORDER = "out_of_order"
    COOLDOWN = "cooldown"
    INSUFFICIENT_MOVEMENT = "insufficient_movement"


_ACCEPTING: frozenset[FixDisposition] = frozenset(
    {FixDisposition.COLD_START, FixDisposition.ACCEPTED, FixDisposition.FORCED}
)


class DebounceDecision(BaseModel):
    """Outcome of running one fix through the debounce gates."""

    model_config = ConfigDict(frozen=True)

    disposition: FixDisposition
    distance_m: float | None = Field(
        default=None,
        description="Distance from the current baseline, when one exists.",
    )
    elapsed_ms: float | None = Field(
        default=None,
        description="Time since the last accepted fix, by capture time.",
    )
    cooldown_remaining_ms: float = Field(default=0.0, ge=0.0)

    @property
    def accepted(self) -> bool:
        return self.disposition in _ACCEPTING

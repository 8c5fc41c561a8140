"""Communication mode and derived proximity state models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from pyproximity.models._base import ProximityBaseModel


class CommunicationMode(StrEnum):
    """How two parties can talk to each other right now."""

    LIVE = "live"
    CLOUD_MEMO = "cloud-memo"
    UNAVAILABLE = "unavailable"


class ProximityState(ProximityBaseModel):
    """Derived communication state between self and one counterpart.

    Recomputed from scratch on every input change; it has no lifecycle of
    its own.  Two states built from the same inputs compare equal.

    Parameters
    ----------
    mode : CommunicationMode
        Current communication mode.
    distance_km : float or None
        Great-circle distance between the parties, ``None`` when either
        location is unknown.
    distance_label : str
        Human-readable distance (``"850m"``, ``"4.9km"``, ``"12km"``).
    is_counterpart_online : bool
        Whether the counterpart's last heartbeat is recent enough.
    """

    mode: CommunicationMode
    distance_km: float | None = Field(default=None, ge=0.0)
    distance_label: str
    is_counterpart_online: bool = False


class PairProximityState(ProximityBaseModel):
    """Derived communication state between two remote users.

    Used for views that look at a pair from the outside (group or admin
    views).  Live mode needs both users online.
    """

    mode: CommunicationMode
    distance_km: float | None = Field(default=None, ge=0.0)
    distance_label: str
    user_a_online: bool = False
    user_b_online: bool = False

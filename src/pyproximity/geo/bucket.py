"""Coarse grid buckets for "same area" checks.

A bucket key quantizes a coordinate onto a fixed grid so two nearby points
can be compared by string equality instead of float comparison.  Upstream
this keeps area-scoped resources (e.g. one room per area) idempotent.
"""

from __future__ import annotations

import math

from pyproximity._constants import DEFAULT_BUCKET_CELL_SIZE_DEG
from pyproximity.exceptions import ProximityConfigError


def _validate_cell_size(cell_size_degrees: float) -> None:
    if not math.isfinite(cell_size_degrees) or cell_size_degrees <= 0:
        raise ProximityConfigError(f"cell_size_degrees must be finite and > 0, got {cell_size_degrees!r}")


def bucket_key(lat: float, lon: float, cell_size_degrees: float = DEFAULT_BUCKET_CELL_SIZE_DEG) -> str:
    """Return the grid cell key ``"{floor(lat/cell)}_{floor(lon/cell)}"``.

    The default cell of 0.005 degrees is roughly 500 m at the equator.
    """
    _validate_cell_size(cell_size_degrees)
    return f"{math.floor(lat / cell_size_degrees)}_{math.floor(lon / cell_size_degrees)}"


def is_same_bucket(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    cell_size_degrees: float = DEFAULT_BUCKET_CELL_SIZE_DEG,
) -> bool:
    """Return ``True`` when both points fall into the same grid cell."""
    return bucket_key(lat1, lon1, cell_size_degrees) == bucket_key(lat2, lon2, cell_size_degrees)

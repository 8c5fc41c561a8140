"""Pure geometry helpers: great-circle distance and area buckets."""

from pyproximity.geo.bucket import bucket_key, is_same_bucket
from pyproximity.geo.distance import (
    distance_km,
    distance_m,
    format_distance_label,
    haversine_km,
    haversine_m,
)

__all__ = [
    "bucket_key",
    "distance_km",
    "distance_m",
    "format_distance_label",
    "haversine_km",
    "haversine_m",
    "is_same_bucket",
]

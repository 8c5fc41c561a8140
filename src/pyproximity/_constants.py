"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Earth model (spherical, mean radius)
# ------------------------------------------------------------------

EARTH_RADIUS_M = 6_371_000.0
EARTH_RADIUS_KM = 6_371.0

# ------------------------------------------------------------------
# Debounce defaults
# ------------------------------------------------------------------

DEFAULT_MOVEMENT_THRESHOLD_M = 50.0
DEFAULT_MIN_INTERVAL_MS = 5_000
DEFAULT_STALE_AFTER_MS = 60_000
DEFAULT_WEAK_SIGNAL_ACCURACY_M = 100.0

# ------------------------------------------------------------------
# Mode derivation defaults
# ------------------------------------------------------------------

DEFAULT_DISTANCE_THRESHOLD_KM = 5.0
DEFAULT_HEARTBEAT_TIMEOUT_MS = 10 * 60 * 1000

# ------------------------------------------------------------------
# Area buckets (0.005 degrees is roughly 500 m at the equator)
# ------------------------------------------------------------------

DEFAULT_BUCKET_CELL_SIZE_DEG = 0.005

# ------------------------------------------------------------------
# External collaborators
# ------------------------------------------------------------------

DEFAULT_LOCATION_TIMEOUT_S = 10.0
DEFAULT_LOCATION_FALLBACK_TIMEOUT_S = 20.0
DEFAULT_PRESENCE_RETRY_INITIAL_S = 1.0
DEFAULT_PRESENCE_RETRY_MAX_S = 60.0
DEFAULT_PRESENCE_MAX_RETRIES = 5
DEFAULT_PRESENCE_TOPIC_PREFIX = "presence"

UNKNOWN_DISTANCE_LABEL = "unknown"

# Threshold to distinguish epoch seconds from milliseconds.
MS_TIMESTAMP_THRESHOLD = 1_000_000_000_000

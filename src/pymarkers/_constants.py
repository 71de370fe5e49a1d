"""Internal constants shared across the library."""

# Mean Earth radius used by the haversine formula.
EARTH_RADIUS_M = 6_371_000.0

# ------------------------------------------------------------------
# Reconciliation defaults
# ------------------------------------------------------------------

MATCH_RADIUS_MIN_M = 150.0
MATCH_RADIUS_MAX_M = 300.0
CONFIRMATION_THRESHOLD = 10

# Absorbs float noise so that a marker placed "exactly" on a band edge
# still counts as inside the inclusive bound.
DISTANCE_EPSILON_M = 1e-6

LATITUDE_RANGE: tuple[float, float] = (-90.0, 90.0)
LONGITUDE_RANGE: tuple[float, float] = (-180.0, 180.0)

# ------------------------------------------------------------------
# Timeouts (seconds)
# ------------------------------------------------------------------

LOCK_TIMEOUT_S = 5.0
STORAGE_TIMEOUT_S = 5.0
MAX_REPLANS = 3

import os

# --------------------------------------------------
# GEOCELLS
# --------------------------------------------------

# geohash6 ~ 600m square, the privacy floor for every venue id
VENUE_GEOHASH_PRECISION = 6

# default search radius for neighboring cells
DEFAULT_NEIGHBOR_RADIUS_METERS = 1000

METERS_PER_DEGREE_LAT = 111000

EARTH_RADIUS_METERS = 6371000

# --------------------------------------------------
# REGISTRY
# --------------------------------------------------

# a pattern ping counts as active for this long
ACTIVE_PATTERN_WINDOW_MINUTES = 30

# labels returned in venue metadata
RECENT_LABEL_LIMIT = 5

# use_count thresholds for display activity
HIGH_ACTIVITY_USE_COUNT = 50
MEDIUM_ACTIVITY_USE_COUNT = 10

# client side lookup cache
VENUE_CACHE_TTL_SECONDS = 300

VENUE_CLIENT_TIMEOUT_SECONDS = 10

# --------------------------------------------------
# PRESENCE
# --------------------------------------------------

# max speed difference that still counts as a collision
COLLISION_SPEED_TOLERANCE = int(os.getenv("COLLISION_SPEED_TOLERANCE", "1"))

# roster size buckets: quiet <= 2, active <= 8, busy above
QUIET_VENUE_MAX_USERS = 2
ACTIVE_VENUE_MAX_USERS = 8

PRESENCE_TOPIC_PREFIX = "venue:"

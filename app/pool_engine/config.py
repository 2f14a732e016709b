"""
Pool engine configuration constants.

Sweep lock keys, retry limits, and the XP reward formula weights
used by the matcher and the judge.
"""

from app.config import settings

# Redis keys for the per-sweep distributed locks
LOCK_KEY_MATCH = "pool:lock:match"
LOCK_KEY_JUDGE = "pool:lock:judge"
LOCK_KEY_EXPIRE = "pool:lock:expire"

# Redis pub/sub channel for state transitions
EVENTS_CHANNEL = settings.POOL_EVENTS_CHANNEL

# A triggered match re-snapshots the pool at most this many times
MATCH_MAX_ATTEMPTS = settings.POOL_MATCH_MAX_ATTEMPTS

# Rows read per query; the match sweep pages through the whole pool in batches
SWEEP_BATCH_SIZE = settings.POOL_SWEEP_BATCH_SIZE

# Profile lookups in flight at once during one matcher run
PROFILE_LOOKUP_CONCURRENCY = settings.POOL_PROFILE_LOOKUP_CONCURRENCY

# Entry limits
MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = settings.POOL_MAX_PARTICIPANTS
MAX_DURATION_DAYS = settings.POOL_MAX_DURATION_DAYS
DEFAULT_WINDOW_DAYS = settings.POOL_ENTRY_DEFAULT_WINDOW_DAYS

# XP reward formula
XP_BASE = settings.POOL_XP_BASE
XP_PER_DAY = settings.POOL_XP_PER_DAY
XP_PER_EFFORT_UNIT = settings.POOL_XP_PER_EFFORT_UNIT
XP_PER_EXTRA_PARTICIPANT = settings.POOL_XP_PER_EXTRA_PARTICIPANT
XP_CAP = settings.POOL_XP_CAP

# How much of each challenge type counts as one unit of effort
EFFORT_UNIT = {
    "workouts": 1,
    "sets": 10,
    "minutes": 30,
    "distance_km": 5,
}

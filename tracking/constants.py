"""
tracking/constants.py

Threshold constants used by the inference and reward engines.
All numeric policy values must be referenced from this module.
Magic numbers in business logic are prohibited.
"""

# ── Geometry ─────────────────────────────────────────────────
EARTH_RADIUS_M: int = 6_371_000
MPS_TO_MPH: float = 2.237

# ── Implausible-speed rejection (GPS jumps) ──────────────────
MAX_PLAUSIBLE_SPEED_MPH: float = 150.0
FAST_JUMP_SPEED_MPH: float = 80.0
FAST_JUMP_WINDOW_MS: int = 5000

# ── Speed inference ──────────────────────────────────────────
MIN_DERIVED_SPEED_INTERVAL_MS: int = 2000
SPEED_HISTORY_MAX_LEN: int = 5
DRIVING_SPEED_MIN_MPH: int = 2

# ── Movement detection ───────────────────────────────────────
MOVEMENT_HISTORY_MAX_LEN: int = 10
MOVEMENT_WINDOW_MS: int = 30_000
MOVEMENT_MIN_ENTRIES: int = 3
MOVEMENT_MIN_THRESHOLD_M: float = 5.0
MOVEMENT_ACCURACY_FACTOR: float = 2.0

# ── GPS quality tiers (accuracy in meters) ───────────────────
TIER_HIGH_MAX_M: float = 3.0
TIER_MEDIUM_MAX_M: float = 10.0
BOOTSTRAP_TIER_HIGH_MAX_M: float = 5.0
BOOTSTRAP_TIER_MEDIUM_MAX_M: float = 20.0

# ── Battery heuristics ───────────────────────────────────────
BATTERY_DRAIN_MINUTES_PER_PCT: float = 14.4
BATTERY_JITTER_MIN: int = -5
BATTERY_JITTER_MAX: int = 4
BATTERY_FLOOR_PCT: int = 15
BATTERY_CEILING_PCT: int = 100
BATTERY_ERROR_MIN_PCT: int = 50
BATTERY_ERROR_MAX_PCT: int = 89

# ── Safety score ─────────────────────────────────────────────
SAFETY_SCORE_MIN: float = 0.0
SAFETY_SCORE_MAX: float = 100.0
SAFETY_SCORE_DEFAULT: float = 100.0

# ── Speed bands (mph) ────────────────────────────────────────
SPEED_LIMIT_MPH: float = 65.0
SEVERE_SPEEDING_MPH: float = 75.0
EXERCISE_MIN_MPH: float = 3.0
EXERCISE_MAX_MPH: float = 15.0

# ── Rewards per whole minute of observation ──────────────────
REWARD_WITHIN_LIMIT: int = 8
REWARD_MILD_SPEEDING: int = -3
REWARD_SEVERE_SPEEDING: int = -15
REWARD_EXERCISE: int = 5

SCORE_WITHIN_LIMIT: float = 0.2
SCORE_MILD_SPEEDING: float = -0.1
SCORE_SEVERE_SPEEDING: float = -0.8
SCORE_EXERCISE: float = 0.1

# ── Aggregate (30 h) average-speed adjustment ────────────────
AGGREGATE_MIN_DRIVING_MINUTES: float = 30 * 60
AGGREGATE_BONUS: int = 150
AGGREGATE_PENALTY: int = -300

# ── Member presence ──────────────────────────────────────────
ONLINE_WINDOW_S: int = 5 * 60
PRESENCE_DRIVING_SPEED_MPH: int = 3
PRESENCE_DEFAULT_BATTERY_PCT: int = 85
PRESENCE_DEFAULT_ACCURACY_M: float = 10.0

"""
Signal, Layer and Graph Weights Configuration.

Central configuration for every constant used in:
- Contact signal computation
- Dunbar layer classification
- Edge creation and strengthening
- Cross-workspace overlap confidence

Edit this file to tune scoring behavior. Changing the layer ladder or the
signal arithmetic breaks compatibility with previously stored signals.
"""

# =============================================================================
# CONTACT SIGNALS
# =============================================================================

RECENT_WINDOW_DAYS = 90          # Trailing window for interactions_90d
NO_CONTACT_DECAY_DAYS = 365      # decay_days for a contact never encountered

# Encounter kinds
KIND_MEETING = "meeting"
KIND_CALL = "call"
KIND_EMAIL = "email"
KIND_VOICE_NOTE = "voice_note"
ENCOUNTER_KINDS = (KIND_MEETING, KIND_CALL, KIND_EMAIL, KIND_VOICE_NOTE)

# Reciprocity: outbound-initiated kinds vs mutual kinds
OUTBOUND_KINDS = {KIND_EMAIL, KIND_CALL}
MUTUAL_KINDS = {KIND_MEETING}
RECIPROCITY_SCALE = 50           # ratio * 50, capped at 100

# Sentiment proxy (no real sentiment analysis yet)
SENTIMENT_ACTIVE_BASELINE = 70   # Some interaction in the recent window
SENTIMENT_INACTIVE_BASELINE = 30
SENTIMENT_DECAY_PER_DAY = 0.2

# Tag extraction - claim keys feeding each tag list
ROLE_TAG_KEYS = ("role", "title")
CONTEXT_TAG_KEYS = ("company", "location", "expertise", "interests")

# goal_alignment = min(100, tags * 10 + interactions_90d * 5)
GOAL_ALIGNMENT_PER_TAG = 10
GOAL_ALIGNMENT_PER_INTERACTION = 5

# capacity_cost = 100 - clamp(2 * interactions_90d + (100 - decay_days), 0, 50)
CAPACITY_PER_INTERACTION = 2
CAPACITY_RELIEF_CAP = 50

SCORE_MIN = 0
SCORE_MAX = 100


# =============================================================================
# DUNBAR LAYERS
# =============================================================================
# strength = 10 * (recency * W_RECENCY + frequency * W_FREQUENCY + sentiment * W_SENTIMENT)

LAYER_RECENCY_WEIGHT = 0.3
LAYER_FREQUENCY_WEIGHT = 0.4
LAYER_SENTIMENT_WEIGHT = 0.3

LAYER_RECENCY_WINDOW_DAYS = 365      # recency factor reaches 0 here
LAYER_FREQUENCY_TARGET = 12          # interactions_90d for full frequency factor
MONTHS_IN_WINDOW = 3                 # monthly_frequency = interactions_90d / 3

# Ladder: (layer, min strength, min monthly frequency), evaluated top-down.
# Both bars must be cleared ("use it or lose it").
LAYER_THRESHOLDS = [
    (1, 8.0, 8.0),
    (2, 7.0, 2.0),
    (3, 5.0, 0.5),
    (4, 3.0, 0.1),
]
FALLBACK_LAYER = 5

# Expected contact cadence (days) per interaction frequency label
EXPECTED_CADENCE_DAYS = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
    "quarterly": 90,
    "annual": 365,
}

HEALTH_HIGH_THRESHOLD = 7
HEALTH_MEDIUM_THRESHOLD = 4
HEALTH_RECENCY_WINDOW_DAYS = 30


# =============================================================================
# GRAPH EDGES
# =============================================================================

EDGE_TYPE_ENCOUNTER = "encounter"
EDGE_TYPE_INTRO = "intro"
EDGE_TYPE_GOAL_LINK = "goal_link"
EDGE_TYPES = (EDGE_TYPE_ENCOUNTER, EDGE_TYPE_INTRO, EDGE_TYPE_GOAL_LINK)

EDGE_STRENGTH_MIN = 0
EDGE_STRENGTH_MAX = 10

ENCOUNTER_EDGE_INITIAL_STRENGTH = 5   # First shared encounter
ENCOUNTER_EDGE_INCREMENT = 1          # Each further shared encounter
INTRO_EDGE_STRENGTH = 8               # Accepted intros are high-signal
GOAL_LINK_EDGE_STRENGTH = 6


# =============================================================================
# OVERLAP DETECTION
# =============================================================================

OVERLAP_BASIS_EMAIL = "email"
OVERLAP_BASIS_NAME = "name"

EMAIL_MATCH_CONFIDENCE = 95
NAME_MATCH_CONFIDENCE = 70

OVERLAP_STATE_ACTIVE = "active"
OVERLAP_STATE_DISMISSED = "dismissed"

EMAIL_MATCH_RECOMMENDATION = "Sync notes to avoid duplicate outreach"
NAME_MATCH_RECOMMENDATION = "Verify if same person and sync notes"

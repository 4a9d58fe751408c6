"""
Numeric tables for the match engine.

Pause tokens, recency penalties, difficulty curves, selection tables and
structural limits. No logic lives here.
"""

from __future__ import annotations

from dataclasses import dataclass

from simon.logic.enums import DifficultyCurve, RoundType

STATE_VERSION = "1.0.0"

# pause tokens embedded in narration scripts, in milliseconds
PAUSE_DURATIONS: dict[str, int] = {
    "micro": 500,
    "small": 1000,
    "medium": 2000,
    "large": 3000,
    "xlarge": 4000,
}
DEFAULT_PAUSE = "medium"

# rounds since last use -> weight factor; 4 or more rounds means no penalty
RECENCY_PENALTIES: dict[int, float] = {
    0: 0.2,
    1: 0.4,
    2: 0.7,
    3: 0.9,
}
RECENCY_WINDOW = 4
ASSUMED_ROUND_SECONDS = 3 * 60

PATTERN_PENALTY = 0.3
PATTERN_BREAK_BONUS = 1.5
MIN_ITEM_WEIGHT = 0.1

NEVER_USED_BONUS = 2.0
UNDERUSED_BONUS = 1.5
OVERUSED_PENALTY = 0.7

# history limits
RECENT_PLAYS_LIMIT = 5
RECENT_SELECTIONS_LIMIT = 10
PARTNER_HISTORY_LIMIT = 3
ITEM_HISTORY_LIMIT = 5
DETECTOR_SEQUENCE_LIMIT = 10
EVENT_HISTORY_LIMIT = 100
STATE_HISTORY_LIMIT = 50

# fairness
MAX_ROUNDS_WITHOUT_SELECTION = 5
SELECTION_BOOST_FACTOR = 2.0
WAITING_RAMP_PER_ROUND = 0.1
RECENT_PARTNER_PENALTY = 0.5
CROSS_TEAM_BONUS = 1.2

MIN_PLAYERS = 2
MAX_PLAYERS = 100
MAX_PLAYERS_PER_TEAM_ROUND = 5

# pattern structure
MAX_CONSECUTIVE_ROUNDS = 6
GENTLE_MIN_RELAX_RATIO = 0.2
INTENSE_MAX_RELAX_RATIO = 0.3
CONSISTENT_PACING_MAX_VARIANCE = 2.0

DIFFICULTY_CURVES: dict[DifficultyCurve, tuple[int, ...]] = {
    DifficultyCurve.GENTLE: (1, 1, 2, 2, 3, 3, 3, 4, 4, 5),
    DifficultyCurve.STEADY: (2, 3, 3, 3, 3, 3, 3, 3, 4, 4),
    DifficultyCurve.ROLLER_COASTER: (1, 3, 2, 4, 2, 5, 3, 4, 3, 5),
}
DEFAULT_TARGET_DIFFICULTY = 3
MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5

# round count -> estimated match length in minutes
MATCH_LENGTHS: dict[int, int] = {
    5: 12,
    10: 25,
    15: 35,
    30: 70,
}
DEFAULT_MATCH_MINUTES = 30


@dataclass(frozen=True)
class SelectableOption:
    """A weighted candidate with an intrinsic difficulty contribution."""

    name: str
    weight: float
    difficulty: int


SUB_VARIANTS: tuple[SelectableOption, ...] = (
    SelectableOption("normal", 40, 0),
    SelectableOption("backwards", 20, 1),
    SelectableOption("crabWalk", 20, 2),
    SelectableOption("hop", 15, 2),
    SelectableOption("slowMotion", 5, 1),
)
DEFAULT_SUB_VARIANT = "normal"
MAX_SUB_VARIANT_DIFFICULTY = 2

MODIFIERS: tuple[SelectableOption, ...] = (
    SelectableOption("blindfold", 10, 2),
    SelectableOption("teamChant", 30, 1),
    SelectableOption("animalNoises", 25, 1),
    SelectableOption("sillyVoices", 25, 1),
    SelectableOption("countdown", 10, 1),
)

VARIANT_DIFFICULTIES: dict[str, int] = {
    "tag": 0,
    "mirror": 1,
    "balance": 1,
    "speed": 1,
    "relay": 1,
    "capture": 2,
    "collective": 1,
}

VARIANT_BASE_WEIGHT = 100

ROUND_BASE_DURATIONS: dict[RoundType, int] = {
    RoundType.DUEL: 90,
    RoundType.TEAM: 180,
    RoundType.FREE_FOR_ALL: 150,
    RoundType.ASYMMETRIC: 120,
}
DEFAULT_ROUND_DURATION = 90
CEREMONY_DURATION = 90
RELAX_DURATION = 90

EARLY_MATCH_THRESHOLD = 0.33
LATE_MATCH_THRESHOLD = 0.67

# role -> exact count, or REST_ROLE to absorb everyone left over
REST_ROLE = "rest"
ASYMMETRIC_ROLE_TEMPLATES: dict[str, dict[str, int | str]] = {
    "infection": {"infected": 1, "survivors": REST_ROLE},
    "protector": {"protector": 1, "protected": 3, "hunters": REST_ROLE},
    "hunter": {"hunter": 2, "prey": REST_ROLE},
}
DEFAULT_ASYMMETRIC_TEMPLATE: dict[str, int | str] = {"special": 1, "others": REST_ROLE}

"""Enumerations shared by every layer of the match engine."""

from enum import StrEnum


class BlockType(StrEnum):
    """Segment kinds a match pattern is built from."""

    CEREMONY = "ceremony"
    ROUND = "round"
    RELAX = "relax"


class CeremonyType(StrEnum):
    OPENING = "opening"
    CLOSING = "closing"


class MatchStatus(StrEnum):
    SETUP = "setup"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class PlayerStatus(StrEnum):
    ACTIVE = "active"
    BREAK = "break"
    DEPARTED = "departed"


class RoundType(StrEnum):
    DUEL = "duel"
    TEAM = "team"
    FREE_FOR_ALL = "freeForAll"
    ASYMMETRIC = "asymmetric"


class RelaxActivity(StrEnum):
    STRETCHING = "stretching"
    BREATHING = "breathing"
    GROUP_ACTIVITY = "groupActivity"


class DifficultyCurve(StrEnum):
    """Named difficulty progressions across the rounds of a match."""

    GENTLE = "gentle"
    STEADY = "steady"
    ROLLER_COASTER = "roller_coaster"


class DifficultyLevel(StrEnum):
    GENTLE = "gentle"
    MODERATE = "moderate"
    INTENSE = "intense"


class GameFocus(StrEnum):
    COMPETITIVE = "competitive"
    COLLABORATIVE = "collaborative"
    SILLY = "silly"
    PHYSICAL = "physical"
    CREATIVE = "creative"


class Pacing(StrEnum):
    """Pattern pacing preference."""

    CONSISTENT = "consistent"
    VARIED = "varied"


class VarietyCategory(StrEnum):
    """Groups of selectable items compared against each other for variety."""

    ROUND_TYPE = "round_type"
    VARIANT = "variant"
    SUB_VARIANT = "sub_variant"
    MODIFIER = "modifier"
    DEFAULT = "default"

"""Player-facing match configuration and the per-level difficulty table."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from simon.logic.constants import DEFAULT_MATCH_MINUTES, MATCH_LENGTHS
from simon.logic.enums import DifficultyCurve, DifficultyLevel, GameFocus


class TeamSelection(StrEnum):
    MANUAL = "manual"
    RANDOM = "random"
    BALANCED = "balanced"
    CAPTAINS = "captains"


class TeamConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    team_count: int = Field(default=2, ge=1)
    team_selection: TeamSelection = TeamSelection.MANUAL
    team_names: list[str] = Field(default_factory=lambda: ["Red Team", "Blue Team"])


class AccessibilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visual_accommodations: bool = False  # excludes blindfold modifiers
    mobility_accommodations: bool = False
    audio_accommodations: bool = False


class MatchConfig(BaseModel):
    """Choices a player makes before a match."""

    model_config = ConfigDict(extra="forbid")

    match_length: int = Field(default=10, ge=1)
    difficulty_curve: DifficultyCurve = DifficultyCurve.GENTLE
    difficulty_level: DifficultyLevel = DifficultyLevel.MODERATE
    game_focus: list[GameFocus] = Field(default_factory=lambda: [GameFocus.COMPETITIVE, GameFocus.SILLY])
    team_config: TeamConfig = Field(default_factory=TeamConfig)
    accessibility: AccessibilityConfig = Field(default_factory=AccessibilityConfig)

    @field_validator("game_focus")
    @classmethod
    def dedupe_focus(cls, v: list[GameFocus]) -> list[GameFocus]:
        return list(dict.fromkeys(v))

    @property
    def estimated_minutes(self) -> int:
        return estimated_match_minutes(self.match_length)


class DifficultySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_difficulty: int = Field(ge=1, le=5)
    pause_multiplier: float = Field(gt=0)
    modifier_probability: float = Field(ge=0, le=1)


DIFFICULTY_SETTINGS: dict[DifficultyLevel, DifficultySettings] = {
    DifficultyLevel.GENTLE: DifficultySettings(max_difficulty=3, pause_multiplier=1.2, modifier_probability=0.1),
    DifficultyLevel.MODERATE: DifficultySettings(max_difficulty=4, pause_multiplier=1.0, modifier_probability=0.3),
    DifficultyLevel.INTENSE: DifficultySettings(max_difficulty=5, pause_multiplier=0.8, modifier_probability=0.5),
}


def get_difficulty_settings(level: DifficultyLevel | str) -> DifficultySettings:
    """Settings for a difficulty level; unknown levels fall back to moderate."""
    try:
        return DIFFICULTY_SETTINGS[DifficultyLevel(level)]
    except ValueError:
        return DIFFICULTY_SETTINGS[DifficultyLevel.MODERATE]


def estimated_match_minutes(round_count: int) -> int:
    return MATCH_LENGTHS.get(round_count, DEFAULT_MATCH_MINUTES)

"""
Pydantic models for match engine data structures.

Contains the pattern, block context, play and selection context models that
cross component boundaries. All are frozen: a Play is built once by the
selectors and never mutated afterwards (scripts are attached through
model_copy).
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from simon.logic.constants import DEFAULT_TARGET_DIFFICULTY
from simon.logic.enums import BlockType, CeremonyType, RelaxActivity, RoundType

Scripts = dict[str, str | list[str]]


class Pattern(BaseModel):
    """An ordered block-type sequence chosen for one match."""

    model_config = ConfigDict(frozen=True)

    id: str
    sequence: tuple[BlockType, ...]
    adjusted: bool = False
    original_round_count: int | None = None

    @property
    def round_count(self) -> int:
        return sum(1 for block in self.sequence if block == BlockType.ROUND)

    @property
    def relax_count(self) -> int:
        return sum(1 for block in self.sequence if block == BlockType.RELAX)


class PatternStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_blocks: int
    rounds: int
    relax_blocks: int
    ceremonies: int
    max_consecutive_rounds: int
    average_rounds_between_relax: float


class BlockContext(BaseModel):
    """Derived facts about one position in a pattern.

    Progress flags are always present; the remaining fields are filled only
    for the block type they describe.
    """

    model_config = ConfigDict(frozen=True)

    progress: float
    is_early_match: bool
    is_mid_match: bool
    is_late_match: bool

    # ceremony
    ceremony_type: CeremonyType | None = None
    is_opening: bool = False
    is_closing: bool = False

    # round
    round_number: int | None = None
    total_rounds: int | None = None
    is_first_round: bool = False
    is_last_round: bool = False
    rounds_since_relax: int | None = None

    # relax
    relax_number: int | None = None
    total_relax: int | None = None
    rounds_before: int | None = None
    rounds_after: int | None = None


class BlockInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: BlockType
    index: int
    is_first: bool
    is_last: bool
    sequence_position: str
    context: BlockContext


class PlayerRef(BaseModel):
    """Player identity as carried inside a play roster."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    team: str | None = None


class PerformanceHints(BaseModel):
    model_config = ConfigDict(frozen=True)

    difficulty: int = DEFAULT_TARGET_DIFFICULTY
    round_number: int = 0
    total_rounds: int = 0
    is_near_end: bool = False
    build_suspense: bool = False


class RoundPlay(BaseModel):
    """A fully-specified round activity."""

    model_config = ConfigDict(frozen=True)

    block_type: Literal[BlockType.ROUND] = BlockType.ROUND
    play_id: str
    round_type: RoundType
    variant: str
    sub_variant: str
    modifier: str | None = None
    # role -> players; duel uses player1/player2, team uses team1..teamN,
    # free-for-all uses "all", asymmetric uses the variant's role names
    players: dict[str, list[PlayerRef]] = Field(default_factory=dict)
    duration: int
    difficulty: int
    scripts: Scripts = Field(default_factory=dict)
    performance_hints: PerformanceHints = Field(default_factory=PerformanceHints)

    @property
    def player_ids(self) -> list[str]:
        """Unique ids of every player named in the roster, in roster order."""
        seen: dict[str, None] = {}
        for members in self.players.values():
            for member in members:
                seen.setdefault(member.id)
        return list(seen)


class CeremonyPlay(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_type: Literal[BlockType.CEREMONY] = BlockType.CEREMONY
    ceremony_type: CeremonyType
    duration: int
    scripts: Scripts = Field(default_factory=dict)


class RelaxPlay(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_type: Literal[BlockType.RELAX] = BlockType.RELAX
    activity: RelaxActivity
    duration: int
    scripts: Scripts = Field(default_factory=dict)


Play = Annotated[RoundPlay | CeremonyPlay | RelaxPlay, Field(discriminator="block_type")]


class SelectionContext(BaseModel):
    """Everything the selectors and the script assembler know about the current moment."""

    model_config = ConfigDict(frozen=True)

    match_id: str | None = None
    current_round: int = 0
    total_rounds: int = 0
    time_elapsed: float = 0.0
    match_duration: int = 1800  # seconds
    team_names: list[str] = Field(default_factory=lambda: ["Team 1", "Team 2"])
    team_names_by_id: dict[str, str] = Field(default_factory=dict)
    personality_style: str = "enthusiastic"

    is_first_round: bool = False
    is_last_round: bool = False
    is_early_match: bool = False
    is_mid_match: bool = False
    is_late_match: bool = False

    active_players: list[PlayerRef] = Field(default_factory=list)
    team_roster: dict[str, list[str]] = Field(default_factory=dict)
    recent_plays: list[str] = Field(default_factory=list)
    target_difficulty: int = DEFAULT_TARGET_DIFFICULTY
    difficulty_curve: str = "gentle"
    rounds_since_relax: int = 0

    @property
    def player_count(self) -> int:
        return len(self.active_players)

"""Builders shared by the match engine tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from simon.logic.enums import BlockType
from simon.logic.types import Pattern, PlayerRef, SelectionContext

if TYPE_CHECKING:
    from collections.abc import Sequence

    from simon.state.players import PlayerRegistry

C = BlockType.CEREMONY
R = BlockType.ROUND
X = BlockType.RELAX


class FakeClock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_pattern(*blocks: BlockType, pattern_id: str = "test") -> Pattern:
    return Pattern(id=pattern_id, sequence=tuple(blocks))


def make_refs(*names: str, teams: Sequence[str | None] = ("red", "blue")) -> list[PlayerRef]:
    return [
        PlayerRef(id=f"p{position}", name=name, team=teams[position % len(teams)] if teams else None)
        for position, name in enumerate(names)
    ]


def make_context(
    players: Sequence[PlayerRef] = (),
    *,
    current_round: int = 1,
    total_rounds: int = 10,
    target_difficulty: int = 3,
    **overrides: object,
) -> SelectionContext:
    return SelectionContext(
        active_players=list(players),
        current_round=current_round,
        total_rounds=total_rounds,
        target_difficulty=target_difficulty,
        **overrides,
    )


def add_players(registry: PlayerRegistry, names: Sequence[str], teams: Sequence[str] = ("red", "blue")) -> None:
    for position, name in enumerate(names):
        registry.add_player(name, teams[position % len(teams)] if teams else None)

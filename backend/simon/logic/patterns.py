"""
Block sequencing patterns.

A pattern is the ordered list of ceremony/round/relax blocks for one match.
Patterns are registered per round count; a request for an unregistered
count borrows the nearest registered table and stretches or shrinks its
round blocks until the count matches.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from statistics import pvariance
from typing import TYPE_CHECKING, Any

import structlog

from simon.logic.constants import (
    CONSISTENT_PACING_MAX_VARIANCE,
    GENTLE_MIN_RELAX_RATIO,
    INTENSE_MAX_RELAX_RATIO,
    MAX_CONSECUTIVE_ROUNDS,
)
from simon.logic.enums import BlockType, DifficultyLevel, Pacing
from simon.logic.exceptions import ConfigurationError
from simon.logic.types import Pattern, PatternStats
from simon.messaging.events import PatternSelectedEvent

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from simon.messaging.bus import EventBus

logger = structlog.get_logger()

C = BlockType.CEREMONY
R = BlockType.ROUND
X = BlockType.RELAX


def _build(*runs: int) -> list[BlockType]:
    """Ceremony, then runs of rounds separated by relax blocks, then ceremony."""
    sequence = [C]
    for position, run in enumerate(runs):
        if position > 0:
            sequence.append(X)
        sequence.extend([R] * run)
    sequence.append(C)
    return sequence


def generate_quarters_pattern(rounds: int) -> list[BlockType]:
    """Four near-equal stretches separated by three relax blocks."""
    quarter, remainder = divmod(rounds, 4)
    runs = [quarter + (1 if index < remainder else 0) for index in range(4)]
    return _build(*[run for run in runs if run > 0])


def generate_wave_pattern(rounds: int) -> list[BlockType]:
    """Stretches that swell and ebb (3, 4, 5, 5, 4, 3), leftovers in a final stretch."""
    runs: list[int] = []
    added = 0
    for wave in (3, 4, 5, 5, 4, 3):
        if added >= rounds:
            break
        size = min(wave, rounds - added)
        runs.append(size)
        added += size
    if added < rounds:
        runs.append(rounds - added)
    return _build(*runs)


def generate_sprint_pattern(rounds: int) -> list[BlockType]:
    """Alternating sprints of five and three rounds."""
    runs: list[int] = []
    added = 0
    sprint = 0
    while added < rounds:
        size = min((5, 3)[sprint % 2], rounds - added)
        runs.append(size)
        added += size
        sprint += 1
    return _build(*runs)


def default_pattern_table() -> dict[int, list[dict[str, Any]]]:
    """Registered patterns keyed by round count, in the plain form stored in config."""
    table = {
        5: {
            "burst": _build(2, 3),
            "steady": _build(3, 2),
            "gentle": _build(1, 4),
        },
        10: {
            "classic": _build(3, 3, 4),
            "rhythm": _build(2, 2, 2, 2, 2),
            "building": _build(1, 2, 3, 4),
        },
        15: {
            "three-acts": _build(4, 5, 6),
            "regular": _build(3, 3, 3, 3, 3),
            "endurance": _build(2, 4, 4, 5),
        },
        30: {
            "quarters": generate_quarters_pattern(30),
            "waves": generate_wave_pattern(30),
            "sprint": generate_sprint_pattern(30),
        },
    }
    return {
        count: [{"id": pattern_id, "sequence": [block.value for block in sequence]} for pattern_id, sequence in entries.items()]
        for count, entries in table.items()
    }


@dataclass(frozen=True)
class PatternPreferences:
    difficulty: DifficultyLevel | None = None
    pacing: Pacing | None = None
    pattern_id: str | None = None


def _count(sequence: Iterable[BlockType], block_type: BlockType) -> int:
    return sum(1 for block in sequence if block == block_type)


def _tidy_relax_blocks(sequence: list[BlockType]) -> list[BlockType]:
    """Drop relax blocks that no longer sit between two rounds."""
    tidy: list[BlockType] = []
    for index, block in enumerate(sequence):
        if block == X:
            previous = tidy[-1] if tidy else None
            following = sequence[index + 1] if index + 1 < len(sequence) else None
            if previous != R or following != R:
                continue
        tidy.append(block)
    return tidy


class PatternSelector:
    def __init__(self, bus: EventBus | None = None, rng: random.Random | None = None) -> None:
        self._bus = bus
        self._rng = rng or random.Random()  # noqa: S311
        self.available_patterns: dict[int, list[Pattern]] = {}
        self.selected_pattern: Pattern | None = None

    def initialize(self, patterns: Mapping[int | str, Sequence[Mapping[str, Any]]]) -> None:
        """Register the pattern table (round count -> list of {id, sequence})."""
        self.available_patterns = {
            int(round_count): [
                Pattern(id=entry["id"], sequence=tuple(BlockType(block) for block in entry["sequence"]))
                for entry in entries
            ]
            for round_count, entries in patterns.items()
        }
        logger.info("pattern selector initialized", round_counts=sorted(self.available_patterns))

    def select_pattern(self, round_count: int, preferences: PatternPreferences | None = None) -> Pattern:
        preferences = preferences or PatternPreferences()
        patterns = self.available_patterns.get(round_count) or self.find_nearest_patterns(round_count)
        if not patterns:
            raise ConfigurationError(f"no patterns available for {round_count} rounds")

        eligible = self.filter_patterns(patterns, preferences)
        if not eligible:
            logger.warning("no patterns match preferences, using all", round_count=round_count)
            eligible = patterns

        selected: Pattern | None = None
        if preferences.pattern_id is not None:
            selected = next((pattern for pattern in eligible if pattern.id == preferences.pattern_id), None)
            if selected is None:
                logger.warning("requested pattern not found", pattern_id=preferences.pattern_id)
        if selected is None:
            selected = self._rng.choice(eligible)

        for warning in self.validate_pattern(selected):
            logger.warning("pattern validation failed", pattern_id=selected.id, problem=warning)

        self.selected_pattern = selected
        logger.info("pattern selected", pattern_id=selected.id, blocks=len(selected.sequence))
        if self._bus is not None:
            self._bus.emit(PatternSelectedEvent(pattern=selected))
        return selected

    def find_nearest_patterns(self, round_count: int) -> list[Pattern]:
        if not self.available_patterns:
            return []
        closest = min(sorted(self.available_patterns), key=lambda count: abs(count - round_count))
        logger.info("using nearest pattern table", requested=round_count, nearest=closest)
        return [self.adjust_pattern_length(pattern, round_count) for pattern in self.available_patterns[closest]]

    def adjust_pattern_length(self, pattern: Pattern, target_rounds: int) -> Pattern:
        """Add rounds just before the closing ceremony, or remove rounds from the end."""
        current_rounds = pattern.round_count
        if current_rounds == target_rounds:
            return pattern

        sequence = list(pattern.sequence)
        if current_rounds < target_rounds:
            closing = len(sequence) - 1
            sequence[closing:closing] = [R] * (target_rounds - current_rounds)
        else:
            to_remove = current_rounds - target_rounds
            for index in range(len(sequence) - 2, -1, -1):
                if to_remove == 0:
                    break
                if sequence[index] == R:
                    del sequence[index]
                    to_remove -= 1
            sequence = _tidy_relax_blocks(sequence)

        return Pattern(
            id=f"{pattern.id}_adjusted",
            sequence=tuple(sequence),
            adjusted=True,
            original_round_count=current_rounds,
        )

    def filter_patterns(self, patterns: Sequence[Pattern], preferences: PatternPreferences) -> list[Pattern]:
        eligible = []
        for pattern in patterns:
            if preferences.difficulty is not None and pattern.round_count > 0:
                relax_ratio = pattern.relax_count / pattern.round_count
                if preferences.difficulty == DifficultyLevel.GENTLE and relax_ratio < GENTLE_MIN_RELAX_RATIO:
                    continue
                if preferences.difficulty == DifficultyLevel.INTENSE and relax_ratio > INTENSE_MAX_RELAX_RATIO:
                    continue
            if preferences.pacing == Pacing.CONSISTENT and not self.has_consistent_pacing(pattern):
                continue
            eligible.append(pattern)
        return eligible

    def has_consistent_pacing(self, pattern: Pattern) -> bool:
        """Low variance in the spacing between consecutive rounds."""
        positions = [index for index, block in enumerate(pattern.sequence) if block == R]
        intervals = [b - a for a, b in zip(positions, positions[1:], strict=False)]
        if not intervals:
            return True
        return pvariance(intervals) < CONSISTENT_PACING_MAX_VARIANCE

    def validate_pattern(self, pattern: Pattern) -> list[str]:
        """Structural problems with a pattern; empty when the pattern is well formed."""
        sequence = pattern.sequence
        problems = []
        if not sequence or sequence[0] != C:
            problems.append("pattern must start with a ceremony")
        if not sequence or sequence[-1] != C:
            problems.append("pattern must end with a ceremony")
        if len(sequence) >= 2 and sequence[-2] == X:  # noqa: PLR2004
            problems.append("pattern cannot place a relax block right before the closing ceremony")

        run = 0
        for block in sequence:
            run = run + 1 if block == R else 0
            if run > MAX_CONSECUTIVE_ROUNDS:
                problems.append(f"too many consecutive rounds (max {MAX_CONSECUTIVE_ROUNDS})")
                break
        return problems

    def get_pattern_stats(self, pattern: Pattern) -> PatternStats:
        consecutive = 0
        max_consecutive = 0
        since_relax = 0
        relax_intervals: list[int] = []
        for block in pattern.sequence:
            if block == R:
                consecutive += 1
                since_relax += 1
                max_consecutive = max(max_consecutive, consecutive)
                continue
            consecutive = 0
            if block == X and since_relax > 0:
                relax_intervals.append(since_relax)
                since_relax = 0

        return PatternStats(
            total_blocks=len(pattern.sequence),
            rounds=pattern.round_count,
            relax_blocks=pattern.relax_count,
            ceremonies=_count(pattern.sequence, C),
            max_consecutive_rounds=max_consecutive,
            average_rounds_between_relax=sum(relax_intervals) / len(relax_intervals) if relax_intervals else 0.0,
        )

    def get_available_patterns(self, round_count: int) -> list[Pattern]:
        return list(self.available_patterns.get(round_count, []))

    def clear_selection(self) -> None:
        self.selected_pattern = None

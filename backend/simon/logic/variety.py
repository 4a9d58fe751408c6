"""
Variety enforcement for weighted selections.

Every candidate weight passes through three multiplicative factors before a
weighted draw: recency (recently used items are suppressed), pattern
(continuing an alternation, repetition or cycle is suppressed, breaking one
is encouraged) and diversity (items used less than their peers are
boosted). The product is floored so nothing ever becomes impossible.

Items are compared only within their own category: a variant is never
weighed against a round type.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from statistics import fmean, pstdev
from typing import TYPE_CHECKING, Any

import structlog

from simon.logic.constants import (
    ASSUMED_ROUND_SECONDS,
    DETECTOR_SEQUENCE_LIMIT,
    ITEM_HISTORY_LIMIT,
    NEVER_USED_BONUS,
    OVERUSED_PENALTY,
    PATTERN_BREAK_BONUS,
    PATTERN_PENALTY,
    RECENCY_PENALTIES,
    RECENCY_WINDOW,
    UNDERUSED_BONUS,
)
from simon.logic.enums import VarietyCategory
from simon.logic.rng import WeightModifier, apply_weight_modifiers

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = structlog.get_logger()

MAX_NGRAM = 4


def get_recency_penalty(rounds_since: int) -> float:
    if rounds_since >= RECENCY_WINDOW:
        return 1.0
    return RECENCY_PENALTIES[max(0, rounds_since)]


@dataclass(frozen=True)
class VarietyContext:
    """
    What the caller knows about the moment of selection.

    When rounds_since is given it overrides any estimate. Otherwise the gap
    is derived from recorded round numbers when current_round is known, and
    from wall-clock time as a last resort.
    """

    current_round: int = 0
    rounds_since: int | None = None


@dataclass(frozen=True)
class UsageRecord:
    timestamp: float
    round: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DetectedPattern:
    kind: str  # "alternating" or "repeating"
    items: tuple[str, ...]


class PatternDetector:
    """Watches the raw selection sequence of one category for emergent patterns."""

    def __init__(self, max_sequence_length: int = DETECTOR_SEQUENCE_LIMIT) -> None:
        self.recent_sequence: deque[str] = deque(maxlen=max_sequence_length)
        self.ngram_counts: dict[str, int] = {}

    def would_create_pattern(self, item_id: str) -> bool:
        """True if selecting item_id would extend an alternation, a triple repeat or a cycle."""
        sequence = list(self.recent_sequence)
        if len(sequence) < 2:  # noqa: PLR2004
            return False

        if len(sequence) >= 3:  # noqa: PLR2004
            first, second, third = sequence[-3:]
            if first == third and second == item_id and first != item_id:
                return True

        if sequence[-2] == item_id and sequence[-1] == item_id:
            return True

        return self.detect_cycle(sequence, item_id) is not None

    def would_break_pattern(self, item_id: str) -> bool:
        pattern = self.detect_current_pattern()
        if pattern is None:
            return False
        expected = self.predict_next(pattern)
        return expected is not None and expected != item_id

    def record_selection(self, item_id: str) -> None:
        self.recent_sequence.append(item_id)
        sequence = list(self.recent_sequence)
        for n in range(2, min(MAX_NGRAM, len(sequence)) + 1):
            ngram = "-".join(sequence[-n:])
            self.ngram_counts[ngram] = self.ngram_counts.get(ngram, 0) + 1

    def detect_cycle(self, sequence: Sequence[str], next_item: str) -> int | None:
        """Shortest period (>= 2) that the tail of sequence + next_item repeats at least twice."""
        candidate = [*sequence, next_item]
        for period in range(2, len(candidate) // 2 + 1):
            tail = candidate[-2 * period :]
            if tail[:period] == tail[period:]:
                return period
        return None

    def detect_current_pattern(self) -> DetectedPattern | None:
        if len(self.recent_sequence) < 3:  # noqa: PLR2004
            return None
        first, second, third = list(self.recent_sequence)[-3:]
        if first == third and first != second:
            return DetectedPattern(kind="alternating", items=(first, second))
        if first == second == third:
            return DetectedPattern(kind="repeating", items=(first,))
        return None

    def predict_next(self, pattern: DetectedPattern) -> str | None:
        if pattern.kind == "repeating":
            return pattern.items[0]
        last = self.recent_sequence[-1]
        return next((item for item in pattern.items if item != last), None)

    def clear(self) -> None:
        self.recent_sequence.clear()
        self.ngram_counts.clear()

    def export(self) -> dict[str, Any]:
        return {"sequence": list(self.recent_sequence), "ngrams": dict(self.ngram_counts)}

    def import_data(self, data: Mapping[str, Any]) -> None:
        self.recent_sequence.clear()
        self.recent_sequence.extend(data.get("sequence", []))
        self.ngram_counts = dict(data.get("ngrams", {}))


@dataclass
class _CategoryState:
    history: dict[str, list[UsageRecord]] = field(default_factory=dict)
    detector: PatternDetector = field(default_factory=PatternDetector)


class VarietyEnforcer:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._categories: dict[VarietyCategory, _CategoryState] = {}

    def detector(self, category: VarietyCategory = VarietyCategory.DEFAULT) -> PatternDetector:
        return self._state(category).detector

    def adjust_weight(
        self,
        item_id: str,
        base_weight: float,
        context: VarietyContext | None = None,
        category: VarietyCategory = VarietyCategory.DEFAULT,
    ) -> float:
        breakdown = apply_weight_modifiers(
            base_weight,
            [
                WeightModifier(self.get_recency_factor(item_id, context, category), "recency"),
                WeightModifier(self.get_pattern_factor(item_id, category), "pattern"),
                WeightModifier(self.get_diversity_factor(item_id, category), "diversity"),
            ],
        )
        if abs(breakdown.final_weight - base_weight) > base_weight * 0.5:
            logger.debug(
                "variety adjusted weight",
                item=item_id,
                category=category,
                base=base_weight,
                adjusted=round(breakdown.final_weight, 2),
            )
        return breakdown.final_weight

    def get_recency_factor(
        self,
        item_id: str,
        context: VarietyContext | None = None,
        category: VarietyCategory = VarietyCategory.DEFAULT,
    ) -> float:
        history = self._state(category).history.get(item_id)
        if not history:
            return 1.0
        return get_recency_penalty(self._rounds_since(history[0], context))

    def get_pattern_factor(self, item_id: str, category: VarietyCategory = VarietyCategory.DEFAULT) -> float:
        detector = self._state(category).detector
        if detector.would_create_pattern(item_id):
            return PATTERN_PENALTY
        if detector.would_break_pattern(item_id):
            return PATTERN_BREAK_BONUS
        return 1.0

    def get_diversity_factor(self, item_id: str, category: VarietyCategory = VarietyCategory.DEFAULT) -> float:
        usage = self.get_usage_statistics(category)
        item_usage = usage.get(item_id, 0)
        if item_usage == 0:
            return NEVER_USED_BONUS
        average = fmean(usage.values())
        if item_usage < average * 0.5:
            return UNDERUSED_BONUS
        if item_usage > average * 1.5:
            return OVERUSED_PENALTY
        return 1.0

    def record_selection(
        self,
        item_id: str,
        context: VarietyContext | None = None,
        category: VarietyCategory = VarietyCategory.DEFAULT,
    ) -> None:
        state = self._state(category)
        history = state.history.setdefault(item_id, [])
        history.insert(0, UsageRecord(timestamp=self._clock(), round=context.current_round if context else 0))
        del history[ITEM_HISTORY_LIMIT:]
        state.detector.record_selection(item_id)

    def get_usage_statistics(self, category: VarietyCategory | None = None) -> dict[str, int]:
        """Recorded uses per item, for one category or across all of them."""
        if category is not None:
            return {item: len(history) for item, history in self._state(category).history.items()}
        usage: dict[str, int] = {}
        for state in self._categories.values():
            for item, history in state.history.items():
                usage[item] = usage.get(item, 0) + len(history)
        return usage

    def get_variety_score(self) -> float:
        """1 minus the coefficient of variation of usage counts, clamped to [0, 1]."""
        counts = list(self.get_usage_statistics().values())
        if not counts:
            return 1.0
        mean = fmean(counts)
        return max(0.0, min(1.0, 1 - pstdev(counts) / mean))

    def clear_history(self) -> None:
        self._categories.clear()

    def export(self) -> dict[str, Any]:
        return {
            category.value: {
                "history": {
                    item: [record.to_dict() for record in records] for item, records in state.history.items()
                },
                "detector": state.detector.export(),
            }
            for category, state in self._categories.items()
        }

    def import_data(self, data: Mapping[str, Any]) -> None:
        self._categories.clear()
        for category_name, payload in data.items():
            state = self._state(VarietyCategory(category_name))
            state.history = {
                item: [UsageRecord(timestamp=float(r["timestamp"]), round=int(r["round"])) for r in records]
                for item, records in payload.get("history", {}).items()
            }
            state.detector.import_data(payload.get("detector", {}))

    def _state(self, category: VarietyCategory) -> _CategoryState:
        return self._categories.setdefault(category, _CategoryState())

    def _rounds_since(self, last_used: UsageRecord, context: VarietyContext | None) -> int:
        if context is not None and context.rounds_since is not None:
            return context.rounds_since
        if context is not None and context.current_round > 0 and last_used.round > 0:
            # rounds played in between; the round right after last use counts as 0
            return max(0, context.current_round - last_used.round - 1)
        return int((self._clock() - last_used.timestamp) // ASSUMED_ROUND_SECONDS)

"""
Random selection primitives.

Every weighted decision in the engine (round type, variant, player, pattern)
goes through weighted_choice so that a seeded random.Random reproduces a
whole match.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from simon.logic.constants import MIN_ITEM_WEIGHT

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

T = TypeVar("T")


def create_rng(seed: int | None = None) -> random.Random:
    """Create the engine RNG; a fixed seed makes selection deterministic."""
    if seed is None:
        return random.Random()  # noqa: S311
    return random.Random(seed)  # noqa: S311


def weighted_choice(items: Sequence[T], weights: Sequence[float], rng: random.Random) -> T | None:
    """
    Pick one item with probability proportional to its weight.

    Draws r in [0, total) and subtracts weights in order until r <= 0.
    A single item is returned without consuming randomness; an all-zero
    weight list falls back to a uniform index.
    """
    if len(items) != len(weights):
        raise ValueError(f"items and weights differ in length: {len(items)} != {len(weights)}")
    if not items:
        return None
    if len(items) == 1:
        return items[0]

    total = sum(weights)
    if total == 0:
        return items[int(rng.random() * len(items))]

    remainder = rng.random() * total
    for item, weight in zip(items, weights, strict=True):
        remainder -= weight
        if remainder <= 0:
            return item
    return items[-1]


def weighted_sample(
    items: Sequence[T],
    weights: Sequence[float],
    count: int,
    rng: random.Random,
) -> list[T]:
    """Select up to `count` distinct items, re-drawing from the remaining pool each time."""
    remaining = list(zip(items, weights, strict=True))
    selected: list[T] = []
    while len(selected) < count and remaining:
        index = weighted_choice(range(len(remaining)), [w for _, w in remaining], rng)
        if index is None:
            break
        item, _ = remaining.pop(index)
        selected.append(item)
    return selected


def normalize_weights(weights: Mapping[str, float]) -> dict[str, float]:
    """Scale weights so they sum to 100."""
    if not weights:
        return {}
    total = sum(weights.values())
    if total == 0:
        equal = 100 / len(weights)
        return dict.fromkeys(weights, equal)
    return {key: weight / total * 100 for key, weight in weights.items()}


def weight_entropy(weights: Mapping[str, float]) -> float:
    """Normalised Shannon entropy of a weight distribution (0 = one item dominates, 1 = uniform)."""
    values = list(weights.values())
    if len(values) <= 1:
        return 0.0
    total = sum(values)
    if total == 0:
        return 1.0
    entropy = 0.0
    for weight in values:
        if weight > 0:
            probability = weight / total
            entropy -= probability * math.log2(probability)
    return entropy / math.log2(len(values))


@dataclass(frozen=True)
class WeightModifier:
    factor: float
    reason: str = ""


@dataclass(frozen=True)
class AppliedModifier:
    factor: float
    reason: str
    resulting_weight: float


@dataclass(frozen=True)
class WeightBreakdown:
    """Result of applying a chain of multiplicative modifiers to a base weight."""

    base_weight: float
    final_weight: float
    total_modifier: float
    applied: tuple[AppliedModifier, ...] = field(default_factory=tuple)


def apply_weight_modifiers(base_weight: float, modifiers: Sequence[WeightModifier]) -> WeightBreakdown:
    """
    Multiply a base weight by each modifier, skipping neutral (1.0) factors.

    The final weight is floored at MIN_ITEM_WEIGHT; total_modifier reports the
    unfloored product relative to the base weight.
    """
    weight = base_weight
    applied: list[AppliedModifier] = []
    for modifier in modifiers:
        if modifier.factor == 1.0:
            continue
        weight *= modifier.factor
        applied.append(AppliedModifier(factor=modifier.factor, reason=modifier.reason, resulting_weight=weight))

    total_modifier = weight / base_weight if base_weight else 0.0
    return WeightBreakdown(
        base_weight=base_weight,
        final_weight=max(MIN_ITEM_WEIGHT, weight),
        total_modifier=total_modifier,
        applied=tuple(applied),
    )

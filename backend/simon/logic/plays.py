"""
Play selection for ROUND blocks.

A play is built by a cascade of weighted draws: round type, variant,
sub-variant, optional modifier, then players. Duration and difficulty are
derived from the choices. Each candidate weight passes through the variety
enforcer for its category; player weights come from the registry's fairness
ramp.

Ceremony and relax blocks need no cascade; build_ceremony_play and
build_relax_play produce their plays directly.
"""

from __future__ import annotations

import math
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from simon.logic.constants import (
    ASYMMETRIC_ROLE_TEMPLATES,
    CEREMONY_DURATION,
    CROSS_TEAM_BONUS,
    DEFAULT_ASYMMETRIC_TEMPLATE,
    DEFAULT_ROUND_DURATION,
    DEFAULT_SUB_VARIANT,
    DEFAULT_TARGET_DIFFICULTY,
    MAX_DIFFICULTY,
    MAX_PLAYERS_PER_TEAM_ROUND,
    MAX_SUB_VARIANT_DIFFICULTY,
    MIN_DIFFICULTY,
    MODIFIERS,
    RECENT_PARTNER_PENALTY,
    RECENT_PLAYS_LIMIT,
    RELAX_DURATION,
    REST_ROLE,
    ROUND_BASE_DURATIONS,
    SUB_VARIANTS,
    VARIANT_BASE_WEIGHT,
    VARIANT_DIFFICULTIES,
)
from simon.logic.enums import CeremonyType, RelaxActivity, RoundType, VarietyCategory
from simon.logic.exceptions import (
    InsufficientPlayersError,
    NoEligibleRoundTypeError,
    NoVariantsConfiguredError,
)
from simon.logic.rng import weighted_choice, weighted_sample
from simon.logic.types import CeremonyPlay, PerformanceHints, PlayerRef, RelaxPlay, RoundPlay
from simon.logic.variety import VarietyContext
from simon.messaging.events import BlockSelectionStartedEvent, PlaySelectedEvent, SystemErrorEvent
from simon.state.store import StateKey

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from simon.logic.config_loader import ConfigLoader
    from simon.logic.types import SelectionContext
    from simon.logic.variety import VarietyEnforcer
    from simon.messaging.bus import EventBus
    from simon.state.players import PlayerRegistry
    from simon.state.store import StateStore

logger = structlog.get_logger()

_SUB_VARIANT_DIFFICULTY = {option.name: option.difficulty for option in SUB_VARIANTS}
_MODIFIER_DIFFICULTY = {option.name: option.difficulty for option in MODIFIERS}


def play_identifier(round_type: RoundType, variant: str, sub_variant: str, modifier: str | None) -> str:
    """Stable id for a play combination; the default sub-variant is left out."""
    parts = [round_type.value, variant]
    if sub_variant != DEFAULT_SUB_VARIANT:
        parts.append(sub_variant)
    if modifier:
        parts.append(modifier)
    return "-".join(parts)


def variant_key(round_type: RoundType | str, variant: str) -> str:
    return f"{round_type}-{variant}"


def calculate_difficulty(variant: str, sub_variant: str, modifier: str | None) -> int:
    """1 + variant + sub-variant + modifier contributions, clamped to 1..5."""
    difficulty = 1 + VARIANT_DIFFICULTIES.get(variant, 0) + _SUB_VARIANT_DIFFICULTY.get(sub_variant, 0)
    if modifier:
        difficulty += _MODIFIER_DIFFICULTY.get(modifier, 0)
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, difficulty))


def build_ceremony_play(ceremony_type: CeremonyType, duration: int = CEREMONY_DURATION) -> CeremonyPlay:
    return CeremonyPlay(ceremony_type=ceremony_type, duration=duration)


def build_relax_play(rng: random.Random, duration: int = RELAX_DURATION) -> RelaxPlay:
    """Relax block with an activity chosen uniformly."""
    return RelaxPlay(activity=rng.choice(list(RelaxActivity)), duration=duration)


@dataclass(frozen=True)
class RecentPlay:
    id: str
    timestamp: float
    play: RoundPlay


class PlaySelector:
    def __init__(
        self,
        config: ConfigLoader,
        registry: PlayerRegistry,
        variety: VarietyEnforcer,
        *,
        bus: EventBus | None = None,
        store: StateStore | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._registry = registry
        self._variety = variety
        self._bus = bus
        self._store = store
        self._rng = rng or random.Random()  # noqa: S311
        self._clock = clock
        self._recent_plays: deque[RecentPlay] = deque(maxlen=RECENT_PLAYS_LIMIT)

    def select_play(self, context: SelectionContext) -> RoundPlay:
        """Run the full selection cascade for one round and record the result."""
        self._emit(
            BlockSelectionStartedEvent(round_number=context.current_round, target_difficulty=context.target_difficulty),
        )
        try:
            round_type = self.select_round_type(context)
            variant = self.select_variant(round_type, context)
            sub_variant = self.select_sub_variant(context)
            modifier = self.select_modifier(sub_variant, context)
            players = self.select_players(round_type, variant, context)
        except Exception as e:
            logger.exception("play selection failed", round_number=context.current_round)
            self._emit(SystemErrorEvent(system="play_selector", error=str(e)))
            raise

        play = RoundPlay(
            play_id=play_identifier(round_type, variant, sub_variant, modifier),
            round_type=round_type,
            variant=variant,
            sub_variant=sub_variant,
            modifier=modifier,
            players=players,
            duration=self.calculate_duration(round_type, context),
            difficulty=calculate_difficulty(variant, sub_variant, modifier),
            performance_hints=PerformanceHints(
                difficulty=context.target_difficulty or DEFAULT_TARGET_DIFFICULTY,
                round_number=context.current_round,
                total_rounds=context.total_rounds,
                is_near_end=context.current_round >= context.total_rounds - 2,
                build_suspense=self.should_build_suspense(context),
            ),
        )

        self._record(play, context)
        logger.info(
            "play selected",
            play_id=play.play_id,
            round_number=context.current_round,
            difficulty=play.difficulty,
            duration=play.duration,
        )
        self._emit(PlaySelectedEvent(play=play))
        return play

    # --- Cascade steps ---

    def select_round_type(self, context: SelectionContext) -> RoundType:
        player_count = context.player_count
        candidates: list[RoundType] = []
        weights: list[float] = []
        for name, settings in self._config.get("round_types", {}).items():
            if not settings.get("min_players", 0) <= player_count <= settings.get("max_players", player_count):
                continue
            try:
                round_type = RoundType(name)
            except ValueError:
                logger.warning("unknown round type in config", round_type=name)
                continue
            weight = settings.get("weight", 10) * self._player_count_multiplier(player_count, name)
            candidates.append(round_type)
            weights.append(self._adjust(name, weight, context, VarietyCategory.ROUND_TYPE))

        selected = weighted_choice(candidates, weights, self._rng)
        if selected is None:
            raise NoEligibleRoundTypeError(f"no round type accepts {player_count} players")
        return selected

    def select_variant(self, round_type: RoundType, context: SelectionContext) -> str:
        variants: list[str] = self._config.get(f"round_types.{round_type}.variants", [])
        if not variants:
            raise NoVariantsConfiguredError(f"no variants configured for round type {round_type}")
        weights = [
            self._adjust(variant_key(round_type, variant), VARIANT_BASE_WEIGHT, context, VarietyCategory.VARIANT)
            for variant in variants
        ]
        selected = weighted_choice(variants, weights, self._rng)
        return selected if selected is not None else variants[0]

    def select_sub_variant(self, context: SelectionContext) -> str:
        target = context.target_difficulty or DEFAULT_TARGET_DIFFICULTY
        budget = min(MAX_SUB_VARIANT_DIFFICULTY, target - 1)
        options = [option for option in SUB_VARIANTS if option.difficulty <= budget]
        weights = [self._adjust(option.name, option.weight, context, VarietyCategory.SUB_VARIANT) for option in options]
        selected = weighted_choice([option.name for option in options], weights, self._rng)
        return selected if selected is not None else DEFAULT_SUB_VARIANT

    def select_modifier(self, sub_variant: str, context: SelectionContext) -> str | None:
        """Optional twist; the chance scales with target difficulty."""
        target = context.target_difficulty or DEFAULT_TARGET_DIFFICULTY
        probability = self._config.get("difficulty.modifier_probability", 0.3) * (target / 3)
        if self._rng.random() > probability:
            return None

        excluded = set(self._config.get("exclude_modifiers", []))
        budget = max(0, MAX_DIFFICULTY - _SUB_VARIANT_DIFFICULTY.get(sub_variant, 0) - 1)
        options = [option for option in MODIFIERS if option.name not in excluded and option.difficulty <= budget]
        if not options:
            return None
        weights = [self._adjust(option.name, option.weight, context, VarietyCategory.MODIFIER) for option in options]
        return weighted_choice([option.name for option in options], weights, self._rng)

    def select_players(self, round_type: RoundType, variant: str, context: SelectionContext) -> dict[str, list[PlayerRef]]:
        players = context.active_players
        if round_type == RoundType.DUEL:
            return self.select_duel_players(players)
        if round_type == RoundType.TEAM:
            return self.select_team_players(players, context)
        if round_type == RoundType.FREE_FOR_ALL:
            return {"all": list(players)}
        return self.select_asymmetric_players(players, variant)

    def select_duel_players(self, players: Sequence[PlayerRef]) -> dict[str, list[PlayerRef]]:
        """
        Pick two players by fairness weight.

        The second pick is steered away from the first player's recent
        partners and toward the other team, but never forbidden.
        """
        if len(players) < 2:  # noqa: PLR2004
            raise InsufficientPlayersError("not enough players for a duel")
        weights = self._fairness_weights(players)
        player1 = weighted_choice(list(players), [weights[p.id] for p in players], self._rng)
        if player1 is None:
            raise InsufficientPlayersError("not enough players for a duel")

        pool = [player for player in players if player.id != player1.id]
        pool_weights = []
        for player in pool:
            weight = weights[player.id]
            if self._registry.were_recent_partners(player1.id, player.id):
                weight *= RECENT_PARTNER_PENALTY
            if player.team != player1.team:
                weight *= CROSS_TEAM_BONUS
            pool_weights.append(weight)
        player2 = weighted_choice(pool, pool_weights, self._rng)
        if player2 is None:
            raise InsufficientPlayersError("not enough players for a duel")
        return {"player1": [player1], "player2": [player2]}

    def select_team_players(
        self,
        players: Sequence[PlayerRef],
        context: SelectionContext,
    ) -> dict[str, list[PlayerRef]]:
        by_id = {player.id: player for player in players}
        teams = [
            [by_id[player_id] for player_id in member_ids if player_id in by_id]
            for member_ids in context.team_roster.values()
        ]
        teams = [team for team in teams if team]

        if len(teams) < 2:  # noqa: PLR2004
            half = len(players) // 2
            return {"team1": list(players[:half]), "team2": list(players[half:])}

        per_team = min(MAX_PLAYERS_PER_TEAM_ROUND, len(players) // len(teams))
        roster: dict[str, list[PlayerRef]] = {}
        for position, members in enumerate(teams, start=1):
            if len(members) <= per_team:
                roster[f"team{position}"] = members
            else:
                weights = self._fairness_weights(members)
                roster[f"team{position}"] = weighted_sample(
                    members,
                    [weights[member.id] for member in members],
                    per_team,
                    self._rng,
                )
        return roster

    def select_asymmetric_players(self, players: Sequence[PlayerRef], variant: str) -> dict[str, list[PlayerRef]]:
        """Fill exact-count roles by fairness weight; the rest role takes whoever remains."""
        template = ASYMMETRIC_ROLE_TEMPLATES.get(variant, DEFAULT_ASYMMETRIC_TEMPLATE)
        weights = self._fairness_weights(players)
        remaining = list(players)
        roles: dict[str, list[PlayerRef]] = {}
        for role, count in template.items():
            if count == REST_ROLE:
                roles[role] = list(remaining)
                remaining = []
                continue
            chosen = weighted_sample(remaining, [weights[p.id] for p in remaining], int(count), self._rng)
            roles[role] = chosen
            chosen_ids = {player.id for player in chosen}
            remaining = [player for player in remaining if player.id not in chosen_ids]
        return roles

    # --- Derived values ---

    def calculate_duration(self, round_type: RoundType, context: SelectionContext) -> int:
        base = self._config.get(
            f"timing.durations.rounds.{round_type}",
            ROUND_BASE_DURATIONS.get(round_type, DEFAULT_ROUND_DURATION),
        )
        target = context.target_difficulty
        bucket = "hard" if target > 3 else "easy" if target < 3 else "medium"  # noqa: PLR2004
        difficulty_multiplier = self._config.get(f"timing.multipliers.difficulty.{bucket}", 1.0)

        if context.is_late_match:
            progress_multiplier = self._config.get("timing.multipliers.progression.late", 0.8)
        elif context.is_early_match:
            progress_multiplier = self._config.get("timing.multipliers.progression.early", 1.2)
        else:
            progress_multiplier = 1.0
        # halves round up
        return math.floor(base * difficulty_multiplier * progress_multiplier + 0.5)

    def should_build_suspense(self, context: SelectionContext) -> bool:
        return (
            context.is_first_round
            or context.is_last_round
            or context.current_round == context.total_rounds // 2
        )

    # --- History ---

    def get_recent_plays(self) -> list[RecentPlay]:
        """Most recent first."""
        return list(self._recent_plays)

    def clear_history(self) -> None:
        self._recent_plays.clear()
        if self._store is not None:
            self._store.set(StateKey.RECENT_PLAYS, [])

    def _record(self, play: RoundPlay, context: SelectionContext) -> None:
        self._recent_plays.appendleft(RecentPlay(id=play.play_id, timestamp=self._clock(), play=play))
        if self._store is not None:
            self._store.set(StateKey.RECENT_PLAYS, [recent.id for recent in self._recent_plays])

        variety_context = VarietyContext(current_round=context.current_round)
        self._variety.record_selection(play.round_type.value, variety_context, VarietyCategory.ROUND_TYPE)
        self._variety.record_selection(
            variant_key(play.round_type, play.variant),
            variety_context,
            VarietyCategory.VARIANT,
        )
        self._variety.record_selection(play.sub_variant, variety_context, VarietyCategory.SUB_VARIANT)
        if play.modifier:
            self._variety.record_selection(play.modifier, variety_context, VarietyCategory.MODIFIER)

        player_ids = play.player_ids
        for player_id in player_ids:
            partners = [other for other in player_ids if other != player_id]
            self._registry.record_selection(player_id, context.current_round, play.play_id, partners)

    # --- Helpers ---

    def _adjust(self, item_id: str, weight: float, context: SelectionContext, category: VarietyCategory) -> float:
        if not self._config.get("features.variety_enforcement", True):
            return weight
        return self._variety.adjust_weight(item_id, weight, VarietyContext(current_round=context.current_round), category)

    def _fairness_weights(self, players: Sequence[PlayerRef]) -> dict[str, float]:
        if not self._config.get("features.player_rotation", True):
            return {player.id: 1.0 for player in players}
        weights = self._registry.get_selection_weights([player.id for player in players])
        return {player.id: weights.get(player.id, 1.0) for player in players}

    def _player_count_multiplier(self, player_count: int, round_type: str) -> float:
        adjustments = self._config.get("weights.player_count_adjustments", {})
        small = adjustments.get("small", {})
        large = adjustments.get("large", {})
        if small and player_count <= small.get("threshold", 0):
            return small.get("multipliers", {}).get(round_type, 1.0)
        if large and player_count >= large.get("threshold", float("inf")):
            return large.get("multipliers", {}).get(round_type, 1.0)
        return 1.0

    def _emit(self, event: BlockSelectionStartedEvent | PlaySelectedEvent | SystemErrorEvent) -> None:
        if self._bus is not None:
            self._bus.emit(event)

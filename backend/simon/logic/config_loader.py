"""
Match configuration: player choices merged over developer tables.

Players pick a handful of options (length, difficulty, focus, teams,
accessibility). Developers own the detailed tables (round types, weights,
timing multipliers, pattern tables). The merged view is the developer
configuration with the player's choices applied to it, and is what every
other component reads through dotted-path lookups such as
``round_types.duel.weight``.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from simon.logic.constants import DIFFICULTY_CURVES, PAUSE_DURATIONS
from simon.logic.enums import DifficultyCurve, GameFocus
from simon.logic.exceptions import ConfigurationError
from simon.logic.patterns import default_pattern_table
from simon.logic.settings import MatchConfig, estimated_match_minutes, get_difficulty_settings
from simon.messaging.events import ConfigLoadedEvent, ConfigUpdatedEvent

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from simon.messaging.bus import EventBus

logger = structlog.get_logger()

_MISSING = object()


def default_developer_config() -> dict[str, Any]:
    return {
        "block_sequencing": {"patterns": default_pattern_table()},
        "round_types": {
            "duel": {
                "weight": 30,
                "min_players": 2,
                "max_players": 4,
                "variants": ["tag", "mirror", "balance", "speed"],
            },
            "team": {
                "weight": 25,
                "min_players": 4,
                "max_players": 40,
                "variants": ["relay", "capture", "collective"],
            },
            "freeForAll": {
                "weight": 35,
                "min_players": 3,
                "max_players": 100,
                "variants": ["elimination", "collection", "freeze"],
            },
            "asymmetric": {
                "weight": 10,
                "min_players": 3,
                "max_players": 30,
                "variants": ["infection", "protector", "hunter"],
            },
        },
        "weights": {
            "player_count_adjustments": {
                "small": {"threshold": 6, "multipliers": {"duel": 1.5, "team": 0.8, "freeForAll": 0.7}},
                "large": {"threshold": 20, "multipliers": {"duel": 0.5, "team": 1.5, "freeForAll": 1.5}},
            },
        },
        "scripts": {
            "personality": {
                "style": "enthusiastic",
                "formality": "casual",
                "humor": "moderate",
                "pace": "dynamic",
            },
        },
        "timing": {
            "pause_tokens": dict(PAUSE_DURATIONS),
            "durations": {
                "rounds": {
                    "duel": 90,
                    "team": 180,
                    "freeForAll": 150,
                    "asymmetric": 120,
                },
                "ceremony": 90,
                "relax": 90,
            },
            "multipliers": {
                "difficulty": {"easy": 1.2, "medium": 1.0, "hard": 0.8},
                "progression": {"early": 1.2, "middle": 1.0, "late": 0.8, "overtime": 0.6},
            },
        },
        "features": {
            "predetermined_patterns": True,
            "variety_enforcement": True,
            "player_rotation": True,
            "multi_language_audio": False,
        },
        "system": {
            "debug_mode": False,
            "verbose_logging": False,
            "mock_tts": False,
            "checkpoint_interval": 60000,
        },
    }


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base; lists and scalars are replaced."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _walk(tree: Any, path: str) -> Any:
    current = tree
    for key in path.split("."):
        if not isinstance(current, dict):
            return _MISSING
        if key in current:
            current = current[key]
        elif key.isdigit() and int(key) in current:
            current = current[int(key)]
        else:
            return _MISSING
    return current


class ConfigLoader:
    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus
        self.player_config = MatchConfig()
        self.developer_config = default_developer_config()
        self.merged_config: dict[str, Any] = {}
        self._update_merged_config()

    # --- Loading ---

    def load_player_config(self, config: MatchConfig | Mapping[str, Any]) -> MatchConfig:
        """Validate and apply player choices; unspecified fields keep their defaults."""
        if isinstance(config, MatchConfig):
            self.player_config = config.model_copy(deep=True)
        else:
            self.player_config = MatchConfig.model_validate(deep_merge(MatchConfig().model_dump(), config))
        self._update_merged_config()
        self._emit(ConfigLoadedEvent(source="player"))
        return self.player_config

    def load_developer_config(self, config: Mapping[str, Any]) -> dict[str, Any]:
        self.developer_config = deep_merge(default_developer_config(), config)
        self._update_merged_config()
        self._emit(ConfigLoadedEvent(source="developer"))
        return self.developer_config

    def load_developer_config_file(self, path: Path) -> dict[str, Any]:
        """Load developer overrides from a YAML file."""
        with path.open() as f:
            data = yaml.safe_load(f)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"developer config {path} must be a mapping")
        logger.info("developer config file loaded", path=str(path))
        return self.load_developer_config(data)

    def load_config(
        self,
        player: MatchConfig | Mapping[str, Any] | None = None,
        developer: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        if player is not None:
            self.load_player_config(player)
        if developer is not None:
            self.load_developer_config(developer)
        return self.merged_config

    # --- Lookups ---

    def get(self, path: str, default: Any = None) -> Any:
        """Dotted-path lookup into the merged view."""
        value = _walk(self.merged_config, path)
        return default if value is _MISSING else value

    def get_all(self) -> dict[str, Any]:
        return copy.deepcopy(self.merged_config)

    def get_player_config(self) -> MatchConfig:
        return self.player_config.model_copy(deep=True)

    def get_developer_config(self) -> dict[str, Any]:
        return copy.deepcopy(self.developer_config)

    def update(self, path: str, value: Any) -> None:
        """Set one value in the merged view, creating intermediate mappings."""
        *parents, last = path.split(".")
        current = self.merged_config
        for key in parents:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[last] = value
        self._emit(ConfigUpdatedEvent(path=path))

    def reset(self) -> None:
        self.player_config = MatchConfig()
        self.developer_config = default_developer_config()
        self._update_merged_config()

    def export(self) -> dict[str, Any]:
        return {
            "player": self.player_config.model_dump(mode="json"),
            "developer": copy.deepcopy(self.developer_config),
            "merged": copy.deepcopy(self.merged_config),
        }

    def import_data(self, data: Mapping[str, Any]) -> dict[str, Any]:
        if data.get("developer") is not None:
            self.load_developer_config(data["developer"])
        if data.get("player") is not None:
            self.load_player_config(data["player"])
        return self.merged_config

    # --- Merging ---

    def _update_merged_config(self) -> None:
        self.merged_config = copy.deepcopy(self.developer_config)
        self._apply_player_preferences()
        self._calculate_derived_values()
        self._emit(ConfigUpdatedEvent())

    def _apply_player_preferences(self) -> None:
        player = self.player_config
        merged = self.merged_config

        merged["match"] = {
            "round_count": player.match_length,
            "difficulty_curve": player.difficulty_curve.value,
            "difficulty_level": player.difficulty_level.value,
            "estimated_duration": estimated_match_minutes(player.match_length),
        }
        merged["difficulty"] = get_difficulty_settings(player.difficulty_level).model_dump()
        merged["teams"] = player.team_config.model_dump(mode="json")

        excluded = list(merged.get("exclude_modifiers", []))
        if player.accessibility.visual_accommodations and "blindfold" not in excluded:
            excluded.append("blindfold")
        merged["exclude_modifiers"] = excluded

        round_types = merged.get("round_types", {})
        if GameFocus.COMPETITIVE in player.game_focus:
            _scale_weight(round_types, "duel", 1.3)
            _scale_weight(round_types, "team", 1.2)
        if GameFocus.COLLABORATIVE in player.game_focus:
            _scale_weight(round_types, "team", 1.5)
            _scale_weight(round_types, "asymmetric", 0.7)
        if GameFocus.SILLY in player.game_focus:
            difficulty = merged["difficulty"]
            difficulty["modifier_probability"] = min(1.0, difficulty["modifier_probability"] * 1.5)

    def _calculate_derived_values(self) -> None:
        merged = self.merged_config
        round_count = merged["match"]["round_count"]
        patterns = merged.get("block_sequencing", {}).get("patterns", {})
        merged["available_patterns"] = copy.deepcopy(patterns.get(round_count) or patterns.get(10, []))
        merged["total_round_type_weight"] = sum(
            round_type.get("weight", 0) for round_type in merged.get("round_types", {}).values()
        )
        curve = merged["match"]["difficulty_curve"]
        merged["difficulty_curve_array"] = list(
            DIFFICULTY_CURVES.get(DifficultyCurve(curve), DIFFICULTY_CURVES[DifficultyCurve.GENTLE]),
        )

    def _emit(self, event: ConfigLoadedEvent | ConfigUpdatedEvent) -> None:
        if self._bus is not None:
            self._bus.emit(event)


def _scale_weight(round_types: dict[str, Any], name: str, factor: float) -> None:
    entry = round_types.get(name)
    if isinstance(entry, dict) and "weight" in entry:
        entry["weight"] *= factor

import pytest
from pydantic import ValidationError

from simon.logic.config_loader import ConfigLoader, deep_merge
from simon.logic.enums import DifficultyLevel, GameFocus
from simon.logic.exceptions import ConfigurationError
from simon.logic.settings import MatchConfig, get_difficulty_settings
from simon.messaging.events import EventType


class TestMerging:
    def test_deep_merge_replaces_lists_and_scalars(self):
        base = {"a": {"b": 1, "c": [1, 2]}, "d": 1}

        merged = deep_merge(base, {"a": {"c": [3]}, "d": 2})

        assert merged == {"a": {"b": 1, "c": [3]}, "d": 2}
        assert base["a"]["c"] == [1, 2]

    def test_defaults_are_derived(self, config):
        assert config.get("match.round_count") == 10
        assert config.get("match.estimated_duration") == 25
        assert config.get("difficulty.max_difficulty") == 4
        assert [entry["id"] for entry in config.get("available_patterns")] == ["classic", "rhythm", "building"]
        assert config.get("difficulty_curve_array") == [1, 1, 2, 2, 3, 3, 3, 4, 4, 5]

    def test_dotted_lookup_handles_integer_keys(self, config):
        assert config.get("block_sequencing.patterns.5.0.id", "missing") == "missing"
        assert len(config.get("block_sequencing.patterns.5")) == 3
        assert config.get("round_types.duel.nothing", 7) == 7


class TestPlayerConfig:
    def test_focus_scales_round_type_weights(self, config):
        config.load_player_config({"game_focus": [GameFocus.COLLABORATIVE]})

        assert config.get("round_types.team.weight") == pytest.approx(37.5)
        assert config.get("round_types.asymmetric.weight") == pytest.approx(7)
        assert config.get("round_types.duel.weight") == 30

    def test_default_focus_includes_silly_boost(self, config):
        assert config.get("difficulty.modifier_probability") == pytest.approx(0.45)
        assert config.get("round_types.duel.weight") == pytest.approx(39)

    def test_intense_level_and_unregistered_length(self, config, bus):
        config.load_player_config(MatchConfig(match_length=7, difficulty_level=DifficultyLevel.INTENSE, game_focus=[]))

        assert config.get("difficulty.pause_multiplier") == 0.8
        assert config.get("match.estimated_duration") == 30
        assert [entry["id"] for entry in config.get("available_patterns")] == ["classic", "rhythm", "building"]
        assert bus.get_history(EventType.CONFIG_LOADED)[-1].event.source == "player"

    def test_invalid_player_config_rejected(self, config):
        with pytest.raises(ValidationError):
            config.load_player_config({"match_length": 0})
        with pytest.raises(ValidationError):
            config.load_player_config({"unknown_option": True})

    def test_player_config_is_copied(self, config):
        config.load_player_config({"team_config": {"team_names": ["Sharks", "Jets"]}})
        copy = config.get_player_config()
        copy.team_config.team_names.append("Owls")

        assert config.get("teams.team_names") == ["Sharks", "Jets"]


class TestDeveloperConfig:
    def test_developer_overrides_keep_other_defaults(self, config):
        config.load_developer_config({"round_types": {"duel": {"weight": 1}}})

        assert config.get("round_types.duel.variants") == ["tag", "mirror", "balance", "speed"]
        assert config.get("round_types.team.min_players") == 4

    def test_yaml_file(self, config, tmp_path):
        path = tmp_path / "developer.yaml"
        path.write_text("timing:\n  durations:\n    ceremony: 45\nsystem:\n  mock_tts: true\n")

        config.load_developer_config_file(path)

        assert config.get("timing.durations.ceremony") == 45
        assert config.get("system.mock_tts") is True

    def test_yaml_must_be_mapping(self, config, tmp_path):
        path = tmp_path / "developer.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            config.load_developer_config_file(path)


class TestUpdateAndExport:
    def test_update_creates_paths_and_emits(self, config, bus):
        config.update("custom.nested.value", 3)

        assert config.get("custom.nested.value") == 3
        assert bus.get_history(EventType.CONFIG_UPDATED)[-1].event.path == "custom.nested.value"

    def test_export_import_round_trip(self, config, bus):
        config.load_player_config({"match_length": 15, "difficulty_curve": "steady"})
        config.load_developer_config({"timing": {"durations": {"relax": 30}}})

        fresh = ConfigLoader(bus=bus)
        fresh.import_data(config.export())

        assert fresh.get_all() == config.get_all()

    def test_reset(self, config):
        config.load_player_config({"match_length": 30})
        config.reset()

        assert config.get("match.round_count") == 10


class TestDifficultySettings:
    def test_unknown_level_falls_back_to_moderate(self):
        assert get_difficulty_settings("extreme") == get_difficulty_settings(DifficultyLevel.MODERATE)

    def test_focus_is_deduplicated(self):
        config = MatchConfig(game_focus=["silly", "silly", "physical"])

        assert config.game_focus == [GameFocus.SILLY, GameFocus.PHYSICAL]

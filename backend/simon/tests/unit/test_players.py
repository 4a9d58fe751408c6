import pytest

from simon.logic.constants import MAX_PLAYERS
from simon.logic.enums import PlayerStatus
from simon.logic.exceptions import DuplicatePlayerNameError, PlayerLimitError, UnknownPlayerError
from simon.messaging.events import EventType
from simon.state.players import PlayerRegistry
from simon.tests.helpers import add_players


class TestPlayerManagement:
    def test_add_player_joins_team(self, registry, bus):
        player = registry.add_player("Alice", "red")

        assert player.id.startswith("player_")
        assert registry.get_team_players("red") == [player]
        assert bus.get_history(EventType.PLAYER_ADDED)[0].event.name == "Alice"

    def test_duplicate_name_is_case_insensitive(self, registry):
        registry.add_player("Alice")

        with pytest.raises(DuplicatePlayerNameError, match="Alice"):
            registry.add_player("aLiCe")

    def test_departed_name_can_be_reused(self, registry):
        alice = registry.add_player("Alice")
        registry.remove_player(alice.id)

        again = registry.add_player("Alice")

        assert again.id != alice.id
        assert registry.find_player_by_name("alice") is again

    def test_registry_limit(self, registry):
        for index in range(MAX_PLAYERS):
            registry.add_player(f"P{index}")

        with pytest.raises(PlayerLimitError):
            registry.add_player("one too many")

    def test_remove_is_soft(self, registry, clock):
        alice = registry.add_player("Alice", "red")
        clock.advance(60)

        assert registry.remove_player(alice.id) is True

        assert registry.get_player(alice.id).status == PlayerStatus.DEPARTED
        assert registry.get_player(alice.id).departed_at == clock.now
        assert registry.get_team_players("red", active_only=False) == []
        assert registry.remove_player("missing") is False

    def test_break_duration_recorded(self, registry, clock):
        alice = registry.add_player("Alice")
        registry.update_player_status(alice.id, PlayerStatus.BREAK)
        clock.advance(45)
        registry.update_player_status(alice.id, PlayerStatus.ACTIVE)

        assert alice.stats.times_selected == 0
        assert alice.last_break_duration == 45
        assert registry.get_active_players() == [alice]

    def test_require_unknown_player_raises(self, registry):
        with pytest.raises(UnknownPlayerError):
            registry.require_player("nobody")


class TestFairness:
    def test_selection_weights_ramp_and_boost(self, registry):
        add_players(registry, ["Alice", "Bob"])
        alice, bob = registry.get_active_players()
        alice.stats.rounds_since_selected = 2
        bob.stats.rounds_since_selected = 5

        weights = registry.get_selection_weights()

        assert weights[alice.id] == pytest.approx(1.2)
        assert weights[bob.id] == pytest.approx(2.0 * 1.5)

    def test_record_selection_resets_wait_and_tracks_partners(self, registry):
        add_players(registry, ["Alice", "Bob", "Charlie", "Dana", "Eli"])
        alice, bob, charlie, dana, eli = registry.get_active_players()
        registry.increment_rounds_since_selected()

        registry.record_selection(alice.id, 1, "duel-tag", partners=[alice.id, bob.id])
        registry.record_selection(alice.id, 2, "duel-tag", partners=[charlie.id, dana.id, eli.id])

        assert alice.stats.rounds_since_selected == 0
        assert alice.stats.times_selected == 2
        assert bob.stats.rounds_since_selected == 1
        assert alice.stats.recent_partners == [eli.id, dana.id, charlie.id]
        assert registry.were_recent_partners(eli.id, alice.id) is True
        assert registry.were_recent_partners(alice.id, bob.id) is False

    def test_departed_players_do_not_wait(self, registry):
        add_players(registry, ["Alice", "Bob"])
        alice, bob = registry.get_active_players()
        registry.remove_player(bob.id)

        registry.increment_rounds_since_selected()

        assert alice.stats.rounds_since_selected == 1
        assert bob.stats.rounds_since_selected == 0


class TestTeams:
    def test_balance_suggestion(self, registry):
        add_players(registry, ["A", "B", "C", "D"], teams=["red"])
        registry.add_player("E", "blue")

        suggestion = registry.suggest_team_balance()

        assert suggestion.source == "red"
        assert suggestion.target == "blue"
        assert suggestion.count == 1

    def test_no_suggestion_when_balanced(self, registry):
        add_players(registry, ["A", "B", "C"])

        assert registry.suggest_team_balance() is None

    def test_create_team_once(self, registry):
        assert registry.create_team("red", "Red Team") is True
        assert registry.create_team("red") is False
        assert registry.teams["red"].name == "Red Team"


class TestRegistrySerialization:
    def test_export_import_round_trip(self, registry, bus, clock):
        registry.create_team("red", "Red Team")
        add_players(registry, ["Alice", "Bob"])
        alice = registry.find_player_by_name("Alice")
        registry.record_selection(alice.id, 1, "team-relay")

        fresh = PlayerRegistry(bus=bus, clock=clock)
        fresh.import_data(registry.export())

        assert fresh.get_player(alice.id).stats.recent_activities == ["team-relay"]
        assert fresh.teams["red"].name == "Red Team"
        assert [p.name for p in fresh.get_team_players("blue")] == ["Bob"]

    def test_statistics(self, registry):
        add_players(registry, ["Alice", "Bob", "Charlie"])
        alice, bob, charlie = registry.get_active_players()
        registry.remove_player(charlie.id)
        registry.increment_rounds_since_selected()
        registry.record_selection(alice.id, 1, "duel-tag")

        stats = registry.get_statistics()

        assert stats["total_players"] == 3
        assert stats["active_players"] == 2
        assert stats["departed"] == 1
        assert stats["average_selections_per_player"] == 0.5
        assert stats["players_waiting_longest"][0] == {"name": "Bob", "rounds_waiting": 1}

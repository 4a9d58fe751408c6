import asyncio
import logging

import pytest

from simon.app.context import AppContext
from simon.logic.enums import BlockType, DifficultyCurve, DifficultyLevel, MatchStatus
from simon.logic.exceptions import InsufficientPlayersError, OrchestratorError
from simon.logic.settings import MatchConfig
from simon.logic.types import BlockContext, BlockInfo
from simon.messaging.events import EventType, SystemErrorEvent
from simon.session.narration import RecordingNarrationTransport
from simon.state.store import StateKey
from simon.tests.helpers import add_players

FIVE_ROUNDS = MatchConfig(match_length=5)


@pytest.fixture
def orchestrator(six_players):
    six_players.orchestrator.initialize()
    return six_players.orchestrator


class TestLifecycle:
    async def test_full_match_runs_every_block(self, six_players, orchestrator, transport):
        bus = six_players.bus
        match_id = await orchestrator.start_match(FIVE_ROUNDS)

        status = await orchestrator.wait_until_finished(timeout=10)

        assert status == MatchStatus.COMPLETED
        match = six_players.match_state.get_state()
        assert match.id == match_id
        assert [block.type for block in match.block_history] == list(match.pattern_sequence)
        assert sum(1 for block in match.block_history if block.type == BlockType.ROUND) == 5
        assert all(block.play is not None for block in match.block_history if block.type == BlockType.ROUND)
        assert len(bus.get_history(EventType.BLOCK_COMPLETED)) == len(match.pattern_sequence)
        assert len(bus.get_history(EventType.MATCH_COMPLETED)) == 1
        assert six_players.block_selector.current_index == len(match.pattern_sequence) - 1
        visualization = orchestrator.get_visualization()
        assert visualization.endswith("[C]")
        assert visualization.count("✓") == len(match.pattern_sequence) - 1
        assert transport.spoken
        assert orchestrator.is_running is False
        assert orchestrator.current_match is None
        assert orchestrator.last_error is None

    async def test_rounds_select_players_and_scripts(self, six_players, orchestrator):
        await orchestrator.start_match(FIVE_ROUNDS)
        await orchestrator.wait_until_finished(timeout=10)

        rounds = six_players.match_state.get_blocks_by_type(BlockType.ROUND)
        assert [block.play.performance_hints.round_number for block in rounds] == [1, 2, 3, 4, 5]
        stats = six_players.registry.get_statistics()
        assert stats["average_selections_per_player"] > 0
        assert sum(six_players.variety.get_usage_statistics().values()) >= 5

    async def test_start_requires_initialization(self, six_players):
        with pytest.raises(OrchestratorError, match="not initialized"):
            await six_players.orchestrator.start_match()

    async def test_start_requires_two_players(self, ctx):
        ctx.orchestrator.initialize()
        ctx.registry.add_player("Solo")

        with pytest.raises(InsufficientPlayersError, match="at least 2"):
            await ctx.orchestrator.start_match()

    async def test_cannot_start_twice(self, orchestrator):
        await orchestrator.start_match(FIVE_ROUNDS)

        with pytest.raises(OrchestratorError, match="already in progress"):
            await orchestrator.start_match(FIVE_ROUNDS)

        orchestrator.end_match()
        assert await orchestrator.wait_until_finished(timeout=5) == MatchStatus.ABANDONED

    async def test_start_records_pattern_and_config(self, six_players, orchestrator):
        await orchestrator.start_match({"match_length": 5, "difficulty_level": "intense"})

        assert six_players.store.get(StateKey.SELECTED_PATTERN) == orchestrator.current_match.pattern_id
        assert six_players.store.get(StateKey.SYSTEM_READY) is True
        assert orchestrator.current_match.config["difficulty_level"] == "intense"
        assert six_players.match_state.get_state().config.pause_multiplier == 0.8
        orchestrator.end_match()

    async def test_block_logs_carry_match_context(self, six_players, orchestrator, caplog):
        caplog.set_level(logging.INFO)
        match_id = await orchestrator.start_match(FIVE_ROUNDS)
        await orchestrator.wait_until_finished(timeout=10)

        logged = [record.msg for record in caplog.records if isinstance(record.msg, dict)]
        played = [entry for entry in logged if entry["event"] == "block played"]
        sequence = six_players.match_state.get_state().pattern_sequence
        assert [entry["block_index"] for entry in played] == list(range(len(sequence)))
        assert [entry["block_type"] for entry in played] == [block.value for block in sequence]
        assert {entry["match_id"] for entry in played} == {match_id}


class TestPauseResume:
    async def test_pause_holds_the_loop(self, six_players, orchestrator):
        bus = six_players.bus
        await orchestrator.start_match(FIVE_ROUNDS)

        assert orchestrator.pause_match() is True
        assert orchestrator.pause_match() is False
        await asyncio.sleep(0.01)

        assert six_players.match_state.get_status() == MatchStatus.PAUSED
        assert six_players.match_state.get_state().blocks_completed == 1
        assert six_players.block_selector.current_index == 0

        assert orchestrator.resume_match() is True
        assert orchestrator.resume_match() is False
        assert await orchestrator.wait_until_finished(timeout=10) == MatchStatus.COMPLETED
        assert len(bus.get_history(EventType.MATCH_PAUSED)) == 1
        assert len(bus.get_history(EventType.MATCH_RESUMED)) == 1

    async def test_interrupted_block_is_still_confirmed(self, six_players, orchestrator, transport):
        transport.delay = 0.005
        await orchestrator.start_match(FIVE_ROUNDS)

        async def performing_round():
            while not (
                six_players.performance.is_performing
                and six_players.match_state.get_state().current_block is not None
                and six_players.match_state.get_state().current_block.type == BlockType.ROUND
            ):
                await asyncio.sleep(0.001)

        await asyncio.wait_for(performing_round(), timeout=5)
        orchestrator.pause_match()

        async def idle():
            while six_players.performance.is_performing:
                await asyncio.sleep(0.001)

        await asyncio.wait_for(idle(), timeout=5)
        match = six_players.match_state.get_state()
        assert match.current_block is None
        assert six_players.block_selector.current_index == match.current_block_index

        transport.delay = 0
        orchestrator.resume_match()
        assert await orchestrator.wait_until_finished(timeout=10) == MatchStatus.COMPLETED


class TestFailures:
    async def test_failed_block_stalls_until_resumed(self, six_players, orchestrator, monkeypatch):
        bus = six_players.bus
        original = six_players.play_selector.select_play
        calls = []

        def flaky(context):
            calls.append(context.current_round)
            if len(calls) == 1:
                raise RuntimeError("selector exploded")
            return original(context)

        monkeypatch.setattr(six_players.play_selector, "select_play", flaky)

        await orchestrator.start_match(FIVE_ROUNDS)
        status = await orchestrator.wait_until_finished(timeout=5)

        assert status == MatchStatus.PAUSED
        assert orchestrator.last_error == "selector exploded"
        assert orchestrator.get_status()["last_error"] == "selector exploded"
        assert six_players.block_selector.current_index == 0
        errors = [record.event for record in bus.get_history(EventType.SYSTEM_ERROR)]
        assert errors[-1].system == "orchestrator"

        assert orchestrator.resume_match() is True
        assert await orchestrator.wait_until_finished(timeout=10) == MatchStatus.COMPLETED
        assert calls[:2] == [1, 1]
        assert orchestrator.last_error is None

    async def test_narration_failure_does_not_stop_match(self, six_players, orchestrator, transport):
        bus = six_players.bus
        transport.fail_on = "!"

        await orchestrator.start_match(FIVE_ROUNDS)

        assert await orchestrator.wait_until_finished(timeout=10) == MatchStatus.COMPLETED
        assert any(record.event.system == "performance" for record in bus.get_history(EventType.SYSTEM_ERROR))

    async def test_losing_players_abandons_match(self, ctx):
        bus = ctx.bus
        ctx.orchestrator.initialize()
        add_players(ctx.registry, ["Alice", "Bob"])
        await ctx.orchestrator.start_match(FIVE_ROUNDS)

        ctx.registry.remove_player(ctx.registry.find_player_by_name("Bob").id)

        assert await ctx.orchestrator.wait_until_finished(timeout=5) == MatchStatus.ABANDONED
        assert bus.get_history(EventType.MATCH_ABANDONED)[0].event.reason == "insufficient_players"

    async def test_critical_error_ends_match(self, six_players, orchestrator):
        bus = six_players.bus
        await orchestrator.start_match(FIVE_ROUNDS)

        bus.emit(SystemErrorEvent(system="narration", error="device lost", critical=True))

        assert await orchestrator.wait_until_finished(timeout=5) == MatchStatus.ABANDONED
        assert bus.get_history(EventType.MATCH_ABANDONED)[0].event.reason == "system_error"

    async def test_non_critical_error_is_ignored(self, six_players, orchestrator):
        bus = six_players.bus
        await orchestrator.start_match(FIVE_ROUNDS)

        bus.emit(SystemErrorEvent(system="narration", error="hiccup"))

        assert orchestrator.current_match is not None
        assert await orchestrator.wait_until_finished(timeout=10) == MatchStatus.COMPLETED


def _end_by_user(ctx):
    ctx.orchestrator.end_match()


def _end_by_departures(ctx):
    for player in ctx.registry.get_active_players()[1:]:
        ctx.registry.remove_player(player.id)


def _end_by_critical_error(ctx):
    ctx.bus.emit(SystemErrorEvent(system="narration", error="device lost", critical=True))


class TestEndingMidBlock:
    async def _play_until_block(self, ctx, index):
        async def playing():
            while True:
                block = ctx.match_state.get_state().current_block
                if block is not None and block.index == index and ctx.performance.is_performing:
                    return
                await asyncio.sleep(0.001)

        await asyncio.wait_for(playing(), timeout=5)

    @pytest.mark.parametrize(
        ("end", "reason"),
        [
            (_end_by_user, "user_ended"),
            (_end_by_departures, "insufficient_players"),
            (_end_by_critical_error, "system_error"),
        ],
    )
    async def test_ending_during_final_block_abandons(self, six_players, orchestrator, transport, end, reason):
        transport.delay = 0.005
        await orchestrator.start_match(FIVE_ROUNDS)
        last_index = len(six_players.match_state.get_state().pattern_sequence) - 1
        await self._play_until_block(six_players, last_index)
        history_before = len(six_players.match_state.get_state().block_history)

        end(six_players)

        assert await orchestrator.wait_until_finished(timeout=5) == MatchStatus.ABANDONED
        await asyncio.sleep(0.05)
        match = six_players.match_state.get_state()
        assert match.status == MatchStatus.ABANDONED
        assert len(match.block_history) == history_before
        assert match.current_block is None
        assert six_players.bus.get_history(EventType.MATCH_COMPLETED) == []
        abandoned = six_players.bus.get_history(EventType.MATCH_ABANDONED)
        assert [record.event.reason for record in abandoned] == [reason]
        assert six_players.block_selector.current_index == last_index - 1

    async def test_ending_during_middle_block_keeps_history(self, six_players, orchestrator, transport):
        transport.delay = 0.005
        await orchestrator.start_match(FIVE_ROUNDS)
        await self._play_until_block(six_players, 2)
        completed_before = len(six_players.bus.get_history(EventType.BLOCK_COMPLETED))

        orchestrator.end_match()

        assert await orchestrator.wait_until_finished(timeout=5) == MatchStatus.ABANDONED
        await asyncio.sleep(0.05)
        match = six_players.match_state.get_state()
        assert [block.index for block in match.block_history] == [0, 1]
        assert match.blocks_completed == 2
        assert len(six_players.bus.get_history(EventType.BLOCK_COMPLETED)) == completed_before
        assert six_players.bus.get_history(EventType.MATCH_COMPLETED) == []
        assert six_players.block_selector.current_index == 1


class TestCheckpoints:
    async def test_restore_into_fresh_context(self, six_players, orchestrator, engine_settings):
        await orchestrator.start_match(FIVE_ROUNDS)
        checkpoint = orchestrator.create_checkpoint()
        orchestrator.end_match()
        match_id = checkpoint["match"]["match"]["id"]

        fresh = AppContext.create(engine_settings, transport=RecordingNarrationTransport())
        try:
            fresh.orchestrator.initialize()
            assert fresh.orchestrator.restore_from_checkpoint(checkpoint) is True

            assert fresh.match_state.get_status() == MatchStatus.PAUSED
            assert fresh.orchestrator.current_match.id == match_id
            assert fresh.block_selector.current_index == 0
            assert fresh.match_state.get_current_round_number() == 0
            assert len(fresh.registry.get_active_players()) == 6
            assert fresh.config.get("match.round_count") == 5

            assert fresh.orchestrator.resume_match() is True
            assert await fresh.orchestrator.wait_until_finished(timeout=10) == MatchStatus.COMPLETED
            assert fresh.match_state.get_state().blocks_completed == len(fresh.match_state.get_state().pattern_sequence)
        finally:
            fresh.close()

    async def test_restore_rejected_while_running(self, orchestrator):
        await orchestrator.start_match(FIVE_ROUNDS)
        checkpoint = orchestrator.create_checkpoint()

        with pytest.raises(OrchestratorError, match="while a match is running"):
            orchestrator.restore_from_checkpoint(checkpoint)
        orchestrator.end_match()

    async def test_restore_rejects_unknown_version(self, orchestrator):
        await orchestrator.start_match(FIVE_ROUNDS)
        orchestrator.pause_match()
        checkpoint = orchestrator.create_checkpoint()
        checkpoint["match"]["version"] = "9.9.9"

        assert orchestrator.restore_from_checkpoint(checkpoint) is False


class TestContext:
    async def test_selection_context_caps_difficulty(self, six_players, orchestrator):
        config = MatchConfig(
            match_length=10,
            difficulty_curve=DifficultyCurve.ROLLER_COASTER,
            difficulty_level=DifficultyLevel.GENTLE,
        )
        await orchestrator.start_match(config)
        orchestrator.pause_match()

        def round_info(round_number):
            return BlockInfo(
                type=BlockType.ROUND,
                index=round_number,
                is_first=False,
                is_last=False,
                sequence_position="",
                context=BlockContext(
                    progress=0.5,
                    is_early_match=False,
                    is_mid_match=True,
                    is_late_match=False,
                    round_number=round_number,
                    total_rounds=10,
                ),
            )

        sixth = orchestrator.build_selection_context(round_info(6))
        first = orchestrator.build_selection_context(round_info(1))

        assert sixth.target_difficulty == 3
        assert first.target_difficulty == 1
        assert sixth.current_round == 6
        assert sixth.team_names_by_id == {"red": "Red Team", "blue": "Blue Team"}
        assert sorted(sixth.team_roster) == ["blue", "red"]
        assert len(sixth.active_players) == 6

    async def test_status_snapshot(self, orchestrator):
        assert orchestrator.get_status()["block_progress"] is None

        await orchestrator.start_match(FIVE_ROUNDS)
        await orchestrator.wait_until_finished(timeout=10)
        status = orchestrator.get_status()

        assert status["initialized"] is True
        assert status["match_status"] == MatchStatus.COMPLETED
        assert status["block_progress"]["percent_complete"] == 100
        assert status["player_count"] == 6
        assert status["is_performing"] is False

    def test_initialize_is_idempotent(self, six_players, orchestrator):
        orchestrator.initialize()

        assert six_players.bus.listener_count(EventType.BLOCK_COMPLETED) == 1
        assert len(six_players.bus.get_history(EventType.SYSTEM_READY)) == 1
        assert six_players.store.get(StateKey.SYSTEM_READY) is True

import asyncio

import pytest

from simon.logic.enums import CeremonyType, RelaxActivity, RoundType
from simon.logic.types import CeremonyPlay, PerformanceHints, RelaxPlay, RoundPlay
from simon.messaging.events import EventType
from simon.session.narration import MockNarrationTransport, VoiceSettings
from simon.session.performance import CancellationToken, PerformanceSystem, Segment, extract_pause_segments
from simon.state.store import StateKey

ROUND_SCRIPTS = {
    "outro": "Bye",
    "during": ["one", "two"],
    "ending": "End",
    "countdown": "Ready [small] GO!",
    "rules": "Rules",
    "variant_reveal": "Reveal",
    "player_select": "A vs B [small] go",
    "intro": "Intro!",
}


def _round(scripts=None, hints=None):
    return RoundPlay(
        play_id="duel-tag",
        round_type=RoundType.DUEL,
        variant="tag",
        sub_variant="normal",
        duration=90,
        difficulty=2,
        scripts=scripts if scripts is not None else ROUND_SCRIPTS,
        performance_hints=hints or PerformanceHints(),
    )


def _closing():
    return CeremonyPlay(
        ceremony_type=CeremonyType.CLOSING,
        duration=90,
        scripts={"thanks": "Thanks", "celebration": "Hooray"},
    )


@pytest.fixture
def performance(transport, bus, store):
    return PerformanceSystem(
        transport,
        bus=bus,
        store=store,
        pause_multiplier=0,
        segment_timeout=1,
        during_line_interval=0,
    )


async def _wait_until(predicate):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=2)


class TestSequences:
    async def test_round_order_is_fixed(self, performance, transport, bus):
        assert await performance.perform(_round()) is True

        assert transport.spoken == ["Intro!", "A vs B", "go", "Reveal", "Rules", "Ready", "GO!", "one", "two", "End", "Bye"]
        assert len(bus.get_history(EventType.SCRIPT_STARTED)) == 9
        assert len(bus.get_history(EventType.SCRIPT_COMPLETED)) == 9
        completed = bus.get_history(EventType.PERFORMANCE_COMPLETED)[0].event
        assert completed.play_id == "duel-tag"
        assert completed.interrupted is False

    async def test_ceremony_order(self, performance, transport):
        opening = CeremonyPlay(
            ceremony_type=CeremonyType.OPENING,
            duration=90,
            scripts={"team_building": "Cheer", "welcome": "Welcome", "explanation": "Rules"},
        )

        await performance.perform(opening)
        await performance.perform(_closing())

        assert transport.spoken == ["Welcome", "Rules", "Cheer", "Hooray", "Thanks"]

    async def test_relax_speaks_each_instruction(self, performance, transport):
        relax = RelaxPlay(
            activity=RelaxActivity.BREATHING,
            duration=90,
            scripts={"intro": "Relax", "instructions": ["In [large] out", "Again"], "outro": "Back"},
        )

        await performance.perform(relax)

        assert transport.spoken == ["Relax", "In", "out", "Again", "Back"]

    async def test_current_performance_is_mirrored(self, performance, store):
        seen = []
        store.subscribe(StateKey.CURRENT_PERFORMANCE, lambda change: seen.append(change.new_value))

        await performance.perform(_round())

        assert seen == [{"block_type": "round", "play_id": "duel-tag"}, None]
        assert performance.is_performing is False


class TestInterrupts:
    async def test_interrupt_stops_at_next_segment(self, performance, transport, bus):
        transport.delay = 0.01
        task = asyncio.create_task(performance.perform(_round()))
        await _wait_until(lambda: transport.spoken)

        performance.interrupt()
        result = await asyncio.wait_for(task, timeout=2)

        assert result is False
        assert len(transport.spoken) < 11
        assert transport.cancel_count == 1
        assert bus.get_history(EventType.PERFORMANCE_COMPLETED)[0].event.interrupted is True

    async def test_performances_queue(self, performance, transport):
        transport.delay = 0.001

        results = await asyncio.gather(performance.perform(_closing()), performance.perform(_closing()))

        assert results == [True, True]
        assert transport.spoken == ["Hooray", "Thanks", "Hooray", "Thanks"]

    async def test_interrupt_drops_queued_performances(self, performance, transport):
        transport.delay = 0.01
        first = asyncio.create_task(performance.perform(_closing()))
        second = asyncio.create_task(performance.perform(_round()))
        await _wait_until(lambda: transport.spoken)

        performance.interrupt()

        assert await asyncio.wait_for(first, timeout=2) is False
        assert await asyncio.wait_for(second, timeout=2) is False
        assert "Intro!" not in transport.spoken

    async def test_performance_after_interrupt_runs(self, performance, transport):
        performance.interrupt()

        assert await performance.perform(_closing()) is True
        assert transport.spoken == ["Hooray", "Thanks"]


class TestFailures:
    async def test_transport_error_is_reported(self, performance, transport, bus):
        transport.fail_on = "Rules"

        assert await performance.perform(_round()) is False

        errors = bus.get_history(EventType.SYSTEM_ERROR)
        assert errors[0].event.system == "performance"
        assert "Rules" in errors[0].event.error
        assert "End" not in transport.spoken
        assert len(bus.get_history(EventType.PERFORMANCE_COMPLETED)) == 1
        assert performance.is_performing is False

    async def test_segment_timeout_moves_on(self, performance, transport, bus):
        transport.delay = 5
        performance.update_settings(segment_timeout=0.05)

        assert await performance.perform(_closing()) is True

        assert transport.spoken == ["Hooray", "Thanks"]
        assert transport.cancel_count == 2
        assert len(bus.get_history(EventType.SYSTEM_ERROR)) == 2


class TestPauses:
    async def test_pause_durations_scale(self, performance, monkeypatch):
        slept = []

        async def fake_sleep(self, seconds):
            slept.append(seconds)
            return True

        monkeypatch.setattr(CancellationToken, "sleep", fake_sleep)
        performance.update_settings(pause_multiplier=0.5)

        await performance.pause("large")
        await performance.pause("bogus")

        assert slept == [1.5, 1.0]

    def test_extract_pause_segments(self):
        assert extract_pause_segments("Ready... [small] Set... [small] GO!") == [
            Segment("text", "Ready..."),
            Segment("pause", "small"),
            Segment("text", "Set..."),
            Segment("pause", "small"),
            Segment("text", "GO!"),
        ]
        assert extract_pause_segments("[large]") == [Segment("pause", "large")]
        assert extract_pause_segments("   ") == []


class TestCancellationToken:
    async def test_cancel_wakes_sleeper(self):
        token = CancellationToken()
        sleeper = asyncio.create_task(token.sleep(10))
        await asyncio.sleep(0)

        token.cancel()

        assert await asyncio.wait_for(sleeper, timeout=1) is False
        assert await token.sleep(1) is False

    async def test_sleep_completes(self):
        token = CancellationToken()

        assert await token.sleep(0.001) is True
        assert await token.sleep(0) is True


class TestVoiceStyle:
    def test_difficulty_and_hints(self, performance):
        hard = performance.adjust_performance_style(PerformanceHints(difficulty=5, is_near_end=True))
        suspense = performance.adjust_performance_style(PerformanceHints(difficulty=3, build_suspense=True))

        assert hard.rate == pytest.approx(1.1 * 1.05)
        assert hard.pitch == pytest.approx(1.1 * 1.05)
        assert suspense.rate == 1.0
        assert suspense.pitch == pytest.approx(0.95)
        assert performance.adjust_performance_style(None) == performance.voice

    async def test_style_applies_during_round_only(self, performance, transport):
        performance.update_settings(voice=VoiceSettings(volume=0.5))

        await performance.perform(_round(scripts={"intro": "Hi"}, hints=PerformanceHints(difficulty=1)))
        await performance.perform(_closing())

        assert transport.settings[0].rate == pytest.approx(0.9)
        assert transport.settings[0].volume == 0.5
        assert transport.settings[-1] == VoiceSettings(volume=0.5)


class TestMockTransport:
    async def test_speaks_without_delay(self):
        transport = MockNarrationTransport(ms_per_char=0)

        await transport.speak("hello", VoiceSettings())

    async def test_cancel_ends_utterance_quietly(self):
        transport = MockNarrationTransport(ms_per_char=1000)
        speaking = asyncio.create_task(transport.speak("hello", VoiceSettings()))
        await asyncio.sleep(0)

        transport.cancel()

        await asyncio.wait_for(speaking, timeout=1)
        assert speaking.exception() is None

    async def test_caller_cancellation_propagates(self):
        transport = MockNarrationTransport(ms_per_char=1000)
        speaking = asyncio.create_task(transport.speak("hello", VoiceSettings()))
        await asyncio.sleep(0)

        speaking.cancel()

        with pytest.raises(asyncio.CancelledError):
            await speaking

"""
Theatrical delivery of assembled scripts.

A performance walks a play's scripts in a fixed order, speaking each line
through the narration transport and sleeping on the ``[pause]`` tokens
embedded in the text. Every performance owns a CancellationToken that is
checked before each segment and wakes any pause it is sleeping in, so an
interrupt stops delivery at the next segment boundary.

Only one performance runs at a time; concurrent perform() calls wait their
turn. interrupt() cancels the running performance and drops the waiting
ones.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import structlog

from simon.logic.constants import DEFAULT_PAUSE, PAUSE_DURATIONS
from simon.logic.enums import CeremonyType
from simon.logic.types import CeremonyPlay, RelaxPlay, RoundPlay
from simon.messaging.events import (
    PerformanceCompletedEvent,
    PerformanceStartedEvent,
    ScriptCompletedEvent,
    ScriptStartedEvent,
    SystemErrorEvent,
)
from simon.session.narration import VoiceSettings
from simon.state.store import StateKey

if TYPE_CHECKING:
    from simon.logic.types import PerformanceHints, Scripts, SelectionContext
    from simon.messaging.bus import EventBus
    from simon.messaging.events import Event
    from simon.session.narration import NarrationTransport
    from simon.state.store import StateStore

logger = structlog.get_logger()

_PAUSE_TOKEN = re.compile(r"\[(\w+)\]")

# target difficulty -> (rate, pitch)
DIFFICULTY_VOICE_STYLES: dict[int, tuple[float, float]] = {
    1: (0.9, 1.0),
    2: (0.95, 1.0),
    3: (1.0, 1.0),
    4: (1.05, 1.05),
    5: (1.1, 1.1),
}
SUSPENSE_PITCH = 0.95
NEAR_END_BOOST = 1.05

DURING_LINE_INTERVAL_SECONDS = 15.0
DEFAULT_SEGMENT_TIMEOUT_SECONDS = 30.0


class CancellationToken:
    """Cooperative cancellation flag that also wakes sleepers."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for seconds; returns False if cancelled first."""
        if self.cancelled:
            return False
        if seconds <= 0:
            await asyncio.sleep(0)
            return not self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return True
        return False


@dataclass(frozen=True)
class Segment:
    kind: Literal["text", "pause"]
    value: str


def extract_pause_segments(text: str) -> list[Segment]:
    """Split a script line into spoken text and named pauses, in order."""
    segments: list[Segment] = []
    position = 0
    for match in _PAUSE_TOKEN.finditer(text):
        spoken = text[position : match.start()].strip()
        if spoken:
            segments.append(Segment("text", spoken))
        segments.append(Segment("pause", match.group(1)))
        position = match.end()
    remainder = text[position:].strip()
    if remainder:
        segments.append(Segment("text", remainder))
    return segments


class PerformanceSystem:
    def __init__(
        self,
        transport: NarrationTransport,
        *,
        bus: EventBus | None = None,
        store: StateStore | None = None,
        voice: VoiceSettings | None = None,
        pause_multiplier: float = 1.0,
        segment_timeout: float = DEFAULT_SEGMENT_TIMEOUT_SECONDS,
        during_line_interval: float = DURING_LINE_INTERVAL_SECONDS,
    ) -> None:
        self._transport = transport
        self._bus = bus
        self._store = store
        self.voice = voice or VoiceSettings()
        self.pause_multiplier = pause_multiplier
        self.segment_timeout = segment_timeout
        self.during_line_interval = during_line_interval

        self._lock = asyncio.Lock()
        self._generation = 0
        self._token: CancellationToken | None = None
        self._style = self.voice

    @property
    def is_performing(self) -> bool:
        return self._token is not None

    async def perform(
        self,
        play: RoundPlay | CeremonyPlay | RelaxPlay,
        context: SelectionContext | None = None,
    ) -> bool:
        """
        Deliver a play's scripts; waits for any running performance first.

        Returns True when every script was delivered, False when the
        performance was interrupted, dropped from the queue or failed.
        """
        generation = self._generation
        async with self._lock:
            if generation != self._generation:
                logger.info("queued performance dropped", block_type=play.block_type)
                return False
            token = CancellationToken()
            self._token = token
            return await self._run(play, token)

    async def _run(self, play: RoundPlay | CeremonyPlay | RelaxPlay, token: CancellationToken) -> bool:
        play_id = play.play_id if isinstance(play, RoundPlay) else None
        self._style = self.adjust_performance_style(play.performance_hints if isinstance(play, RoundPlay) else None)
        self._mirror({"block_type": play.block_type.value, "play_id": play_id})
        self._emit(PerformanceStartedEvent(block_type=play.block_type, play_id=play_id))
        logger.info("performance started", block_type=play.block_type, play_id=play_id)

        failed = False
        try:
            if isinstance(play, RoundPlay):
                await self.perform_round(play.scripts, token)
            elif isinstance(play, CeremonyPlay):
                await self.perform_ceremony(play.ceremony_type, play.scripts, token)
            else:
                await self.perform_relax(play.scripts, token)
        except Exception as e:
            failed = True
            logger.exception("performance failed", block_type=play.block_type, play_id=play_id)
            self._emit(SystemErrorEvent(system="performance", error=str(e)))
        finally:
            self._token = None
            self._style = self.voice
            self._mirror(None)

        interrupted = token.cancelled
        self._emit(PerformanceCompletedEvent(block_type=play.block_type, play_id=play_id, interrupted=interrupted))
        logger.info("performance completed", block_type=play.block_type, interrupted=interrupted, failed=failed)
        return not (interrupted or failed)

    # --- Sequences ---

    async def perform_round(self, scripts: Scripts, token: CancellationToken) -> None:
        await self._say(scripts, "intro", token)
        await self.pause("medium", token)

        if "player_select" in scripts:
            await self._say(scripts, "player_select", token)
            await self.pause("small", token)

        await self._say(scripts, "variant_reveal", token)

        for key, before in (
            ("sub_variant_reveal", "small"),
            ("modifier_reveal", "medium"),
            ("rules", "small"),
            ("positioning", "medium"),
        ):
            if key in scripts:
                await self.pause(before, token)
                await self._say(scripts, key, token)

        await self.pause("large", token)
        await self._say(scripts, "countdown", token)

        during = scripts.get("during")
        if during:
            await self.pause("xlarge", token)
            lines = [during] if isinstance(during, str) else during
            for line in lines:
                if token.cancelled:
                    break
                await self.speak(line, token)
                await token.sleep(self.during_line_interval)

        await self._say(scripts, "ending", token)
        await self.pause("medium", token)
        await self._say(scripts, "outro", token)

    async def perform_ceremony(self, ceremony_type: CeremonyType, scripts: Scripts, token: CancellationToken) -> None:
        if ceremony_type == CeremonyType.OPENING:
            parts = ("welcome", "explanation", "team_building")
        else:
            parts = ("celebration", "thanks")
        for position, key in enumerate(parts):
            if position:
                await self.pause("medium", token)
            await self._say(scripts, key, token)

    async def perform_relax(self, scripts: Scripts, token: CancellationToken) -> None:
        await self._say(scripts, "intro", token)
        await self.pause("medium", token)
        instructions = scripts.get("instructions", [])
        for line in [instructions] if isinstance(instructions, str) else instructions:
            await self.speak(line, token)
            await self.pause("large", token)
        await self._say(scripts, "outro", token)

    # --- Primitives ---

    async def speak(self, text: str, token: CancellationToken | None = None) -> None:
        """Speak one script line, honouring its embedded pause tokens."""
        token = token or CancellationToken()
        if token.cancelled or not text:
            return
        self._emit(ScriptStartedEvent(text=text))
        for segment in extract_pause_segments(text):
            if token.cancelled:
                return
            if segment.kind == "pause":
                await self.pause(segment.value, token)
            else:
                await self._speak_segment(segment.value, token)
        if not token.cancelled:
            self._emit(ScriptCompletedEvent(text=text))

    async def pause(self, name: str, token: CancellationToken | None = None) -> bool:
        milliseconds = PAUSE_DURATIONS.get(name)
        if milliseconds is None:
            logger.warning("unknown pause token", name=name)
            milliseconds = PAUSE_DURATIONS[DEFAULT_PAUSE]
        return await (token or CancellationToken()).sleep(milliseconds * self.pause_multiplier / 1000)

    def adjust_performance_style(self, hints: PerformanceHints | None) -> VoiceSettings:
        """Voice settings for a play: faster and higher as difficulty rises."""
        if hints is None:
            return self.voice
        rate, pitch = DIFFICULTY_VOICE_STYLES.get(hints.difficulty, (1.0, 1.0))
        if hints.build_suspense:
            pitch *= SUSPENSE_PITCH
        if hints.is_near_end:
            rate *= NEAR_END_BOOST
            pitch *= NEAR_END_BOOST
        return self.voice.scaled(rate=rate, pitch=pitch)

    def interrupt(self) -> None:
        """Cancel the running performance and drop any queued ones."""
        self._generation += 1
        if self._token is not None:
            self._token.cancel()
        self._transport.cancel()
        logger.info("performance interrupted")

    def update_settings(
        self,
        *,
        voice: VoiceSettings | None = None,
        pause_multiplier: float | None = None,
        segment_timeout: float | None = None,
        during_line_interval: float | None = None,
    ) -> None:
        if voice is not None:
            self.voice = voice
        if pause_multiplier is not None:
            self.pause_multiplier = pause_multiplier
        if segment_timeout is not None:
            self.segment_timeout = segment_timeout
        if during_line_interval is not None:
            self.during_line_interval = during_line_interval

    async def _say(self, scripts: Scripts, key: str, token: CancellationToken) -> None:
        text = scripts.get(key)
        if isinstance(text, list):
            text = " ".join(text)
        if text:
            await self.speak(text, token)

    async def _speak_segment(self, text: str, token: CancellationToken) -> None:
        try:
            await asyncio.wait_for(self._transport.speak(text, self._style), timeout=self.segment_timeout)
        except TimeoutError:
            self._transport.cancel()
            logger.error("narration segment timed out", text=text, timeout=self.segment_timeout)
            self._emit(SystemErrorEvent(system="performance", error=f"narration timed out: {text!r}"))
            return
        if token.cancelled:
            logger.debug("narration cut short", text=text)

    def _mirror(self, current: dict[str, str | None] | None) -> None:
        if self._store is not None:
            self._store.set(StateKey.CURRENT_PERFORMANCE, current)

    def _emit(self, event: Event) -> None:
        if self._bus is not None:
            self._bus.emit(event)

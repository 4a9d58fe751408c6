"""Speech transport abstraction used by the performance system."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class VoiceSettings:
    """Voice parameters handed to the transport with every utterance."""

    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    voice: str | None = None

    def scaled(self, rate: float = 1.0, pitch: float = 1.0) -> VoiceSettings:
        return replace(self, rate=self.rate * rate, pitch=self.pitch * pitch)


class NarrationTransport(ABC):
    """
    Abstract interface for a speech synthesis backend.

    The performance system is the only caller and never issues two speak()
    calls at once.
    """

    @abstractmethod
    async def speak(self, text: str, settings: VoiceSettings) -> None:
        """
        Speak one utterance; returns once it has finished.
        """
        ...

    @abstractmethod
    def cancel(self) -> None:
        """
        Stop the utterance in flight, if any.
        """
        ...


class MockNarrationTransport(NarrationTransport):
    """Pretends to speak by waiting a fixed time per character."""

    def __init__(self, ms_per_char: float = 50) -> None:
        self._ms_per_char = ms_per_char
        self._current: asyncio.Task[None] | None = None

    async def speak(self, text: str, settings: VoiceSettings) -> None:
        logger.info("narration", text=text, rate=settings.rate, pitch=settings.pitch)
        seconds = len(text) * self._ms_per_char / 1000 / max(settings.rate, 0.1)
        self._current = asyncio.ensure_future(asyncio.sleep(seconds))
        try:
            await self._current
        except asyncio.CancelledError:
            # cancel() only stops the utterance; a cancelled caller still propagates
            if self._current is not None and self._current.cancelled() and not _task_cancelling():
                return
            raise
        finally:
            self._current = None

    def cancel(self) -> None:
        if self._current is not None and not self._current.done():
            self._current.cancel()


@dataclass
class RecordingNarrationTransport(NarrationTransport):
    """Records utterances without waiting; used by tests and dry runs."""

    spoken: list[str] = field(default_factory=list)
    settings: list[VoiceSettings] = field(default_factory=list)
    cancel_count: int = 0
    fail_on: str | None = None
    delay: float = 0.0

    async def speak(self, text: str, settings: VoiceSettings) -> None:
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError(f"synthesis failed for {text!r}")
        self.spoken.append(text)
        self.settings.append(settings)
        # yield so interrupts scheduled on the loop get a chance to run
        await asyncio.sleep(self.delay)

    def cancel(self) -> None:
        self.cancel_count += 1


def _task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0

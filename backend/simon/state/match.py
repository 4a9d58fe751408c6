"""
Match lifecycle and progress ledger.

MatchState owns the single live Match: its status transitions, the block
cursor, completed-block history and elapsed time. Other components read it
through query methods. Lifecycle changes are published on the event bus and
to local observers registered with subscribe().
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import TypeAdapter

from simon.logic.constants import DIFFICULTY_CURVES, STATE_VERSION
from simon.logic.enums import BlockType, CeremonyType, DifficultyCurve, DifficultyLevel, MatchStatus, RelaxActivity
from simon.logic.exceptions import MatchStateError, NoActiveBlockError
from simon.logic.types import CeremonyPlay, Play, RelaxPlay, RoundPlay
from simon.messaging.events import (
    BlockCompletedEvent,
    BlockStartedEvent,
    MatchAbandonedEvent,
    MatchCompletedEvent,
    MatchInitializedEvent,
    MatchPausedEvent,
    MatchResumedEvent,
    MatchStartedEvent,
    StateRestoredEvent,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from simon.logic.types import Pattern
    from simon.messaging.bus import EventBus
    from simon.messaging.events import Event

    MatchListener = Callable[[Event], None]

logger = structlog.get_logger()

_play_adapter: TypeAdapter[Play] = TypeAdapter(Play)

FINISHED_STATUSES = frozenset({MatchStatus.COMPLETED, MatchStatus.ABANDONED})


@dataclass
class MatchSetup:
    """Configuration fixed at match initialisation."""

    round_count: int = 10
    difficulty_curve: DifficultyCurve = DifficultyCurve.GENTLE
    difficulty_level: DifficultyLevel = DifficultyLevel.MODERATE
    pause_multiplier: float = 1.0
    selected_pattern: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_count": self.round_count,
            "difficulty_curve": self.difficulty_curve.value,
            "difficulty_level": self.difficulty_level.value,
            "pause_multiplier": self.pause_multiplier,
            "selected_pattern": self.selected_pattern,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MatchSetup:
        return cls(
            round_count=int(data.get("round_count", 10)),
            difficulty_curve=DifficultyCurve(data.get("difficulty_curve", DifficultyCurve.GENTLE)),
            difficulty_level=DifficultyLevel(data.get("difficulty_level", DifficultyLevel.MODERATE)),
            pause_multiplier=float(data.get("pause_multiplier", 1.0)),
            selected_pattern=data.get("selected_pattern"),
        )


@dataclass
class Block:
    """One segment of a match; finalised (duration set) when completed."""

    type: BlockType
    index: int
    start_time: float
    planned_duration: int | None = None
    duration: float | None = None
    play: RoundPlay | None = None
    ceremony_type: CeremonyType | None = None
    relax_activity: RelaxActivity | None = None

    @property
    def end_time(self) -> float | None:
        if self.duration is None:
            return None
        return self.start_time + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "index": self.index,
            "start_time": self.start_time,
            "planned_duration": self.planned_duration,
            "duration": self.duration,
            "play": self.play.model_dump(mode="json") if self.play is not None else None,
            "ceremony_type": self.ceremony_type.value if self.ceremony_type else None,
            "relax_activity": self.relax_activity.value if self.relax_activity else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Block:
        play_data = data.get("play")
        play = _play_adapter.validate_python(play_data) if play_data is not None else None
        ceremony_type = data.get("ceremony_type")
        relax_activity = data.get("relax_activity")
        return cls(
            type=BlockType(data["type"]),
            index=int(data["index"]),
            start_time=float(data["start_time"]),
            planned_duration=data.get("planned_duration"),
            duration=data.get("duration"),
            play=play if isinstance(play, RoundPlay) else None,
            ceremony_type=CeremonyType(ceremony_type) if ceremony_type else None,
            relax_activity=RelaxActivity(relax_activity) if relax_activity else None,
        )


@dataclass
class Match:
    id: str | None = None
    start_time: float | None = None
    config: MatchSetup = field(default_factory=MatchSetup)
    status: MatchStatus = MatchStatus.SETUP
    current_block_index: int = -1
    blocks_completed: int = 0
    time_elapsed: float = 0.0
    last_update_time: float | None = None
    pattern_sequence: tuple[BlockType, ...] = ()
    block_history: list[Block] = field(default_factory=list)
    current_block: Block | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time,
            "config": self.config.to_dict(),
            "status": self.status.value,
            "current_block_index": self.current_block_index,
            "blocks_completed": self.blocks_completed,
            "time_elapsed": self.time_elapsed,
            "last_update_time": self.last_update_time,
            "pattern_sequence": [block.value for block in self.pattern_sequence],
            "block_history": [block.to_dict() for block in self.block_history],
            "current_block": self.current_block.to_dict() if self.current_block else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Match:
        current = data.get("current_block")
        return cls(
            id=data.get("id"),
            start_time=data.get("start_time"),
            config=MatchSetup.from_dict(data.get("config", {})),
            status=MatchStatus(data.get("status", MatchStatus.SETUP)),
            current_block_index=int(data.get("current_block_index", -1)),
            blocks_completed=int(data.get("blocks_completed", 0)),
            time_elapsed=float(data.get("time_elapsed", 0.0)),
            last_update_time=data.get("last_update_time"),
            pattern_sequence=tuple(BlockType(block) for block in data.get("pattern_sequence", [])),
            block_history=[Block.from_dict(block) for block in data.get("block_history", [])],
            current_block=Block.from_dict(current) if current else None,
        )


def generate_match_id(now: datetime | None = None) -> str:
    now = now or datetime.now(tz=UTC)
    return f"match_{now:%Y-%m-%d_%H%M%S}_{uuid.uuid4().hex[:6]}"


class MatchState:
    """Owns the live Match and every mutation applied to it."""

    def __init__(self, bus: EventBus | None = None, clock: Callable[[], float] = time.time) -> None:
        self._bus = bus
        self._clock = clock
        self._listeners: list[MatchListener] = []
        self.match = Match()
        self.last_checkpoint: dict[str, Any] | None = None

    def reset(self) -> None:
        self.match = Match()
        self.last_checkpoint = None

    # --- Lifecycle ---

    def initialize_match(self, config: MatchSetup | None = None) -> str:
        """Create a fresh match in SETUP and return its id."""
        now = self._clock()
        match_id = generate_match_id()
        self.match = Match(
            id=match_id,
            start_time=now,
            config=replace(config) if config is not None else MatchSetup(),
            last_update_time=now,
        )
        logger.info("match initialized", match_id=match_id, round_count=self.match.config.round_count)
        self._publish(MatchInitializedEvent(match_id=match_id, round_count=self.match.config.round_count))
        return match_id

    def set_pattern(self, pattern: Pattern) -> None:
        if self.match.status != MatchStatus.SETUP:
            raise MatchStateError("cannot set pattern after match has started")
        self.match.pattern_sequence = tuple(pattern.sequence)
        self.match.config.selected_pattern = pattern.id

    def start_match(self) -> None:
        if self.match.status != MatchStatus.SETUP:
            raise MatchStateError("match already started")
        if not self.match.pattern_sequence:
            raise MatchStateError("no pattern set")
        now = self._clock()
        self.match.status = MatchStatus.IN_PROGRESS
        self.match.start_time = now
        self.match.last_update_time = now
        self._publish(
            MatchStartedEvent(
                match_id=self.match.id or "",
                pattern_id=self.match.config.selected_pattern,
                total_blocks=len(self.match.pattern_sequence),
            ),
        )

    def pause_match(self) -> bool:
        if self.match.status != MatchStatus.IN_PROGRESS:
            return False
        self.update_elapsed_time()
        self.match.status = MatchStatus.PAUSED
        self._publish(MatchPausedEvent(match_id=self.match.id))
        return True

    def resume_match(self) -> bool:
        if self.match.status != MatchStatus.PAUSED:
            return False
        self.match.status = MatchStatus.IN_PROGRESS
        self.match.last_update_time = self._clock()
        self._publish(MatchResumedEvent(match_id=self.match.id))
        return True

    def complete_match(self) -> bool:
        if self.is_finished():
            logger.warning("match already ended", match_id=self.match.id, status=self.match.status)
            return False
        self.update_elapsed_time()
        self.match.status = MatchStatus.COMPLETED
        logger.info("match completed", match_id=self.match.id, blocks=self.match.blocks_completed)
        self._publish(
            MatchCompletedEvent(
                match_id=self.match.id or "",
                blocks_completed=self.match.blocks_completed,
                time_elapsed=self.match.time_elapsed,
            ),
        )
        return True

    def abandon_match(self, reason: str) -> bool:
        if self.is_finished():
            logger.warning("match already ended", match_id=self.match.id, status=self.match.status, reason=reason)
            return False
        self.update_elapsed_time()
        self.match.status = MatchStatus.ABANDONED
        logger.info("match abandoned", match_id=self.match.id, reason=reason)
        self._publish(MatchAbandonedEvent(match_id=self.match.id or "", reason=reason))
        return True

    # --- Blocks ---

    def get_next_block_type(self) -> BlockType | None:
        next_index = self.match.current_block_index + 1
        if next_index >= len(self.match.pattern_sequence):
            return None
        return self.match.pattern_sequence[next_index]

    def start_block(self, block_type: BlockType, play: RoundPlay | CeremonyPlay | RelaxPlay | None = None) -> Block:
        if self.is_finished():
            raise MatchStateError(f"cannot start a block, match is {self.match.status}")
        self.update_elapsed_time()
        block = Block(
            type=block_type,
            index=self.match.current_block_index + 1,
            start_time=self._clock(),
            planned_duration=play.duration if play is not None else None,
            play=play if isinstance(play, RoundPlay) else None,
            ceremony_type=play.ceremony_type if isinstance(play, CeremonyPlay) else None,
            relax_activity=play.activity if isinstance(play, RelaxPlay) else None,
        )
        self.match.current_block = block
        self.match.current_block_index += 1
        self._publish(
            BlockStartedEvent(
                index=block.index,
                block_type=block_type,
                play_id=block.play.play_id if block.play else None,
            ),
        )
        return block

    def complete_block(self) -> Block:
        """Finalise the active block; completes the match after the pattern's last block."""
        block = self.match.current_block
        if block is None:
            raise NoActiveBlockError("no active block to complete")
        if self.is_finished():
            raise MatchStateError(f"cannot complete a block, match is {self.match.status}")

        block.duration = self._clock() - block.start_time
        self.match.block_history.append(block)
        self.match.blocks_completed += 1
        self.match.current_block = None
        self.update_elapsed_time()

        self._publish(BlockCompletedEvent(index=block.index, block_type=block.type, duration=block.duration))

        if self.match.current_block_index >= len(self.match.pattern_sequence) - 1:
            self.complete_match()
        return block

    def discard_current_block(self) -> Block | None:
        """Drop an unfinished block and rewind the cursor to the last completed one."""
        block = self.match.current_block
        if block is None:
            return None
        self.match.current_block = None
        self.match.current_block_index = block.index - 1
        logger.info("unfinished block discarded", index=block.index, block_type=block.type)
        return block

    # --- Queries ---

    def get_status(self) -> MatchStatus:
        return self.match.status

    def is_finished(self) -> bool:
        return self.match.status in FINISHED_STATUSES

    def get_current_round_number(self) -> int:
        """Rounds played so far, counting an in-progress round."""
        completed = sum(1 for block in self.match.block_history if block.type == BlockType.ROUND)
        current = self.match.current_block
        return completed + (1 if current is not None and current.type == BlockType.ROUND else 0)

    def get_total_rounds(self) -> int:
        return self.match.config.round_count

    def get_recent_blocks(self, count: int = 5) -> list[Block]:
        return self.match.block_history[-count:] if count > 0 else []

    def get_blocks_by_type(self, block_type: BlockType) -> list[Block]:
        return [block for block in self.match.block_history if block.type == block_type]

    def get_time_since_last_block(self, block_type: BlockType) -> float:
        blocks = self.get_blocks_by_type(block_type)
        if not blocks:
            return float("inf")
        last = blocks[-1]
        return self._clock() - (last.end_time if last.end_time is not None else last.start_time)

    def get_progress(self) -> float:
        """Completed blocks as a percentage of the pattern length."""
        if not self.match.pattern_sequence:
            return 0.0
        return self.match.blocks_completed / len(self.match.pattern_sequence) * 100

    def get_current_difficulty_target(self, round_number: int | None = None) -> int:
        """Difficulty target for a round (defaults to the current one) on the configured curve."""
        if round_number is None:
            round_number = self.get_current_round_number()
        curve = self.get_difficulty_curve(self.match.config.difficulty_curve)
        if not curve:
            return DIFFICULTY_CURVES[DifficultyCurve.GENTLE][0]
        index = min(round_number - 1, len(curve) - 1)
        return curve[max(0, index)]

    def get_difficulty_curve(self, curve_name: DifficultyCurve | str) -> list[int]:
        """Curve values sized to the match: padded with the last value or truncated."""
        try:
            curve = list(DIFFICULTY_CURVES[DifficultyCurve(curve_name)])
        except ValueError:
            curve = list(DIFFICULTY_CURVES[DifficultyCurve.GENTLE])
        total = self.match.config.round_count
        if total > len(curve):
            return curve + [curve[-1]] * (total - len(curve))
        return curve[:total]

    def get_state(self) -> Match:
        return self.match

    # --- Checkpoints ---

    def create_checkpoint(self) -> dict[str, Any]:
        checkpoint = {
            "version": STATE_VERSION,
            "timestamp": self._clock(),
            "match": self.match.to_dict(),
        }
        self.last_checkpoint = checkpoint
        return checkpoint

    def restore_from_checkpoint(self, checkpoint: Mapping[str, Any]) -> bool:
        """Replace the live match from a checkpoint; a version mismatch is logged and skipped."""
        version = checkpoint.get("version")
        if version != STATE_VERSION:
            logger.warning("checkpoint version mismatch", expected=STATE_VERSION, got=version)
            return False

        self.match = Match.from_dict(checkpoint["match"])
        self.match.last_update_time = self._clock()
        self._publish(StateRestoredEvent(source="match_state", version=version, status=self.match.status))
        return True

    def update_elapsed_time(self) -> None:
        if self.match.status == MatchStatus.IN_PROGRESS and self.match.last_update_time is not None:
            now = self._clock()
            self.match.time_elapsed += now - self.match.last_update_time
            self.match.last_update_time = now

    # --- Observers ---

    def subscribe(self, listener: MatchListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify_listeners(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("match state listener failed", event_type=event.type)

    def _publish(self, event: Event) -> None:
        self.notify_listeners(event)
        if self._bus is not None:
            self._bus.emit(event)

"""
Cursor over the selected pattern.

get_next_block() only peeks; confirm_block_start() is the single operation
that advances the cursor, so a caller can prepare a block and abandon it
without desynchronising the pattern.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from simon.logic.constants import EARLY_MATCH_THRESHOLD, LATE_MATCH_THRESHOLD
from simon.logic.enums import BlockType, CeremonyType
from simon.logic.exceptions import BlockIndexError
from simon.logic.types import BlockContext, BlockInfo
from simon.messaging.events import BlockSelectionCompletedEvent, PatternCompleteEvent
from simon.state.store import StateKey

if TYPE_CHECKING:
    from simon.logic.types import Pattern
    from simon.messaging.bus import EventBus
    from simon.state.store import StateStore

logger = structlog.get_logger()

_SYMBOLS = {
    BlockType.CEREMONY: "C",
    BlockType.ROUND: "R",
    BlockType.RELAX: "~",
}


@dataclass(frozen=True)
class BlockProgress:
    current_index: int
    total_blocks: int
    blocks_completed: int
    blocks_remaining: int
    percent_complete: float
    rounds_completed: int
    rounds_remaining: int
    current_block: BlockType | None
    next_block: BlockType | None


@dataclass(frozen=True)
class UpcomingBlock:
    type: BlockType
    index: int
    context: BlockContext


class BlockSelector:
    def __init__(self, bus: EventBus | None = None, store: StateStore | None = None) -> None:
        self._bus = bus
        self._store = store
        self.pattern: Pattern | None = None
        self.current_index = -1
        self._completion_announced = False

    def initialize(self, pattern: Pattern) -> None:
        if not pattern.sequence:
            raise BlockIndexError(f"pattern {pattern.id} has no blocks")
        self.pattern = pattern
        self.current_index = -1
        self._completion_announced = False
        if self._store is not None:
            self._store.set(StateKey.PATTERN_SEQUENCE, list(pattern.sequence))
            self._store.set(StateKey.PATTERN_INDEX, self.current_index)
        logger.info(
            "block selector initialized",
            pattern_id=pattern.id,
            sequence=" > ".join(block.value for block in pattern.sequence),
        )

    @property
    def sequence(self) -> tuple[BlockType, ...]:
        if self.pattern is None:
            raise BlockIndexError("block selector not initialized with a pattern")
        return self.pattern.sequence

    def get_next_block(self) -> BlockInfo | None:
        """Describe the block after the cursor without advancing; None once the pattern is exhausted."""
        sequence = self.sequence
        next_index = self.current_index + 1
        if next_index >= len(sequence):
            if not self._completion_announced:
                self._completion_announced = True
                if self._bus is not None:
                    self._bus.emit(PatternCompleteEvent(pattern_id=self.pattern.id, total_blocks=len(sequence)))
            return None

        block_type = sequence[next_index]
        return BlockInfo(
            type=block_type,
            index=next_index,
            is_first=next_index == 0,
            is_last=next_index == len(sequence) - 1,
            sequence_position=f"{next_index + 1} of {len(sequence)}",
            context=self.get_block_context(block_type, next_index),
        )

    def confirm_block_start(self, block_type: BlockType) -> None:
        sequence = self.sequence
        next_index = self.current_index + 1
        expected = sequence[next_index] if next_index < len(sequence) else None
        if expected != block_type:
            logger.error("block type mismatch", expected=expected, actual=block_type, index=next_index)

        self.current_index = next_index
        self._mirror_index()
        if self._bus is not None:
            self._bus.emit(
                BlockSelectionCompletedEvent(index=self.current_index, block_type=block_type, next_index=next_index + 1),
            )

    def get_block_context(self, block_type: BlockType, index: int) -> BlockContext:
        sequence = self.sequence
        progress = (index + 1) / len(sequence)
        fields: dict[str, object] = {
            "progress": progress,
            "is_early_match": progress < EARLY_MATCH_THRESHOLD,
            "is_mid_match": EARLY_MATCH_THRESHOLD <= progress < LATE_MATCH_THRESHOLD,
            "is_late_match": progress >= LATE_MATCH_THRESHOLD,
        }

        if block_type == BlockType.CEREMONY:
            fields["ceremony_type"] = CeremonyType.OPENING if index == 0 else CeremonyType.CLOSING
            fields["is_opening"] = index == 0
            fields["is_closing"] = index == len(sequence) - 1
        elif block_type == BlockType.ROUND:
            round_number = self._count_through(BlockType.ROUND, index)
            total_rounds = self.get_total_rounds()
            fields["round_number"] = round_number
            fields["total_rounds"] = total_rounds
            fields["is_first_round"] = round_number == 1
            fields["is_last_round"] = round_number == total_rounds
            fields["rounds_since_relax"] = self._rounds_before(index)
        elif block_type == BlockType.RELAX:
            fields["relax_number"] = self._count_through(BlockType.RELAX, index)
            fields["total_relax"] = sum(1 for block in sequence if block == BlockType.RELAX)
            fields["rounds_before"] = self._rounds_before(index)
            fields["rounds_after"] = self._rounds_after(index)

        return BlockContext.model_validate(fields)

    def get_round_number(self, index: int) -> int:
        """ROUND blocks up to and including index."""
        return self._count_through(BlockType.ROUND, index)

    def get_total_rounds(self) -> int:
        return sum(1 for block in self.sequence if block == BlockType.ROUND)

    def peek_upcoming(self, count: int = 3) -> list[UpcomingBlock]:
        sequence = self.sequence
        start = self.current_index + 1
        return [
            UpcomingBlock(type=sequence[index], index=index, context=self.get_block_context(sequence[index], index))
            for index in range(start, min(start + count, len(sequence)))
        ]

    def get_progress(self) -> BlockProgress:
        """Cursor-based progress; percent_complete counts confirmed blocks over the pattern length."""
        sequence = self.sequence
        completed = self.current_index + 1
        rounds_completed = self.get_round_number(self.current_index)
        return BlockProgress(
            current_index=self.current_index,
            total_blocks=len(sequence),
            blocks_completed=completed,
            blocks_remaining=len(sequence) - completed,
            percent_complete=completed / len(sequence) * 100,
            rounds_completed=rounds_completed,
            rounds_remaining=self.get_total_rounds() - rounds_completed,
            current_block=sequence[self.current_index] if self.current_index >= 0 else None,
            next_block=sequence[completed] if completed < len(sequence) else None,
        )

    def skip_to_index(self, index: int) -> BlockContext:
        """Move the cursor directly to a confirmed position (checkpoint restore)."""
        sequence = self.sequence
        if not 0 <= index < len(sequence):
            raise BlockIndexError(f"invalid index {index} for pattern of length {len(sequence)}")
        self.current_index = index
        self._completion_announced = False
        self._mirror_index()
        logger.info("block selector skipped", index=index)
        return self.get_block_context(sequence[index], index)

    def reset(self) -> None:
        self.current_index = -1
        self._completion_announced = False
        self._mirror_index()

    def get_pattern_visualization(self, *, in_progress: bool = False) -> str:
        """
        Compact progress line: confirmed blocks ticked, one block bracketed.

        Blocks are confirmed once played, so the bracket sits on the last
        confirmed block unless in_progress says the next one is playing.
        """
        if self.pattern is None:
            return ""
        marker = self.current_index + 1 if in_progress else self.current_index
        parts = []
        for index, block in enumerate(self.pattern.sequence):
            symbol = _SYMBOLS[block]
            if index == marker:
                parts.append(f"[{symbol}]")
            elif index < marker:
                parts.append(f"✓{symbol}")
            else:
                parts.append(symbol)
        return " ".join(parts)

    def _count_through(self, block_type: BlockType, index: int) -> int:
        return sum(1 for block in self.sequence[: index + 1] if block == block_type)

    def _rounds_before(self, index: int) -> int:
        count = 0
        for block in reversed(self.sequence[:index]):
            if block == BlockType.RELAX:
                break
            if block == BlockType.ROUND:
                count += 1
        return count

    def _rounds_after(self, index: int) -> int:
        count = 0
        for block in self.sequence[index + 1 :]:
            if block == BlockType.RELAX:
                break
            if block == BlockType.ROUND:
                count += 1
        return count

    def _mirror_index(self) -> None:
        if self._store is not None:
            self._store.set(StateKey.PATTERN_INDEX, self.current_index)

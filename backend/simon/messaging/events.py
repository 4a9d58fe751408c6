"""Engine event models.

One frozen model per topic, discriminated by `type`. Handlers registered on
the EventBus receive these models directly and can match on the class
instead of trusting a loose payload shape.

All layers import exclusively from this module for event types.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from simon.logic.enums import BlockType, MatchStatus, PlayerStatus
from simon.logic.types import Pattern, RoundPlay

# ---------------------------------------------------------------------------
# Topic enum
# ---------------------------------------------------------------------------


class EventType(StrEnum):
    """Event topics published on the bus."""

    MATCH_INITIALIZED = "match:initialized"
    MATCH_STARTED = "match:started"
    MATCH_COMPLETED = "match:completed"
    MATCH_ABANDONED = "match:abandoned"
    MATCH_PAUSED = "match:paused"
    MATCH_RESUMED = "match:resumed"

    BLOCK_STARTED = "block:started"
    BLOCK_COMPLETED = "block:completed"
    BLOCK_SELECTION_STARTED = "block:selection:started"
    BLOCK_SELECTION_COMPLETED = "block:selection:completed"

    PATTERN_SELECTED = "pattern:selected"
    PATTERN_COMPLETE = "pattern:complete"

    PLAY_SELECTED = "play:selected"

    PERFORMANCE_STARTED = "performance:started"
    PERFORMANCE_COMPLETED = "performance:completed"
    SCRIPT_STARTED = "script:started"
    SCRIPT_COMPLETED = "script:completed"

    PLAYER_ADDED = "player:added"
    PLAYER_REMOVED = "player:removed"
    PLAYER_STATUS_CHANGED = "player:status:changed"
    PLAYER_SELECTED = "player:selected"

    STATE_RESTORED = "state:restored"
    STATE_ERROR = "state:error"

    CONFIG_LOADED = "config:loaded"
    CONFIG_UPDATED = "config:updated"

    SYSTEM_ERROR = "system:error"
    SYSTEM_READY = "system:ready"


# ---------------------------------------------------------------------------
# Event models
# ---------------------------------------------------------------------------


class EngineEvent(BaseModel):
    """Base class for all engine events."""

    model_config = ConfigDict(frozen=True)

    type: EventType


class MatchInitializedEvent(EngineEvent):
    type: Literal[EventType.MATCH_INITIALIZED] = EventType.MATCH_INITIALIZED
    match_id: str
    round_count: int


class MatchStartedEvent(EngineEvent):
    type: Literal[EventType.MATCH_STARTED] = EventType.MATCH_STARTED
    match_id: str
    pattern_id: str | None
    total_blocks: int


class MatchCompletedEvent(EngineEvent):
    type: Literal[EventType.MATCH_COMPLETED] = EventType.MATCH_COMPLETED
    match_id: str
    blocks_completed: int
    time_elapsed: float


class MatchAbandonedEvent(EngineEvent):
    type: Literal[EventType.MATCH_ABANDONED] = EventType.MATCH_ABANDONED
    match_id: str
    reason: str


class MatchPausedEvent(EngineEvent):
    type: Literal[EventType.MATCH_PAUSED] = EventType.MATCH_PAUSED
    match_id: str | None = None


class MatchResumedEvent(EngineEvent):
    type: Literal[EventType.MATCH_RESUMED] = EventType.MATCH_RESUMED
    match_id: str | None = None


class BlockStartedEvent(EngineEvent):
    type: Literal[EventType.BLOCK_STARTED] = EventType.BLOCK_STARTED
    index: int
    block_type: BlockType
    play_id: str | None = None


class BlockCompletedEvent(EngineEvent):
    type: Literal[EventType.BLOCK_COMPLETED] = EventType.BLOCK_COMPLETED
    index: int
    block_type: BlockType
    duration: float


class BlockSelectionStartedEvent(EngineEvent):
    type: Literal[EventType.BLOCK_SELECTION_STARTED] = EventType.BLOCK_SELECTION_STARTED
    round_number: int
    target_difficulty: int


class BlockSelectionCompletedEvent(EngineEvent):
    type: Literal[EventType.BLOCK_SELECTION_COMPLETED] = EventType.BLOCK_SELECTION_COMPLETED
    index: int
    block_type: BlockType
    next_index: int


class PatternSelectedEvent(EngineEvent):
    type: Literal[EventType.PATTERN_SELECTED] = EventType.PATTERN_SELECTED
    pattern: Pattern


class PatternCompleteEvent(EngineEvent):
    type: Literal[EventType.PATTERN_COMPLETE] = EventType.PATTERN_COMPLETE
    pattern_id: str | None
    total_blocks: int


class PlaySelectedEvent(EngineEvent):
    type: Literal[EventType.PLAY_SELECTED] = EventType.PLAY_SELECTED
    play: RoundPlay


class PerformanceStartedEvent(EngineEvent):
    type: Literal[EventType.PERFORMANCE_STARTED] = EventType.PERFORMANCE_STARTED
    block_type: BlockType
    play_id: str | None = None


class PerformanceCompletedEvent(EngineEvent):
    type: Literal[EventType.PERFORMANCE_COMPLETED] = EventType.PERFORMANCE_COMPLETED
    block_type: BlockType
    play_id: str | None = None
    interrupted: bool = False


class ScriptStartedEvent(EngineEvent):
    type: Literal[EventType.SCRIPT_STARTED] = EventType.SCRIPT_STARTED
    text: str


class ScriptCompletedEvent(EngineEvent):
    type: Literal[EventType.SCRIPT_COMPLETED] = EventType.SCRIPT_COMPLETED
    text: str


class PlayerAddedEvent(EngineEvent):
    type: Literal[EventType.PLAYER_ADDED] = EventType.PLAYER_ADDED
    player_id: str
    name: str
    team_id: str | None = None


class PlayerRemovedEvent(EngineEvent):
    type: Literal[EventType.PLAYER_REMOVED] = EventType.PLAYER_REMOVED
    player_id: str
    name: str


class PlayerStatusChangedEvent(EngineEvent):
    type: Literal[EventType.PLAYER_STATUS_CHANGED] = EventType.PLAYER_STATUS_CHANGED
    player_id: str
    old_status: PlayerStatus
    new_status: PlayerStatus


class PlayerSelectedEvent(EngineEvent):
    type: Literal[EventType.PLAYER_SELECTED] = EventType.PLAYER_SELECTED
    player_id: str
    round_number: int
    activity: str


class StateRestoredEvent(EngineEvent):
    type: Literal[EventType.STATE_RESTORED] = EventType.STATE_RESTORED
    source: str
    version: str | None = None
    status: MatchStatus | None = None


class StateErrorEvent(EngineEvent):
    type: Literal[EventType.STATE_ERROR] = EventType.STATE_ERROR
    error: str
    keys: list[str] = Field(default_factory=list)


class ConfigLoadedEvent(EngineEvent):
    type: Literal[EventType.CONFIG_LOADED] = EventType.CONFIG_LOADED
    source: Literal["player", "developer"]


class ConfigUpdatedEvent(EngineEvent):
    type: Literal[EventType.CONFIG_UPDATED] = EventType.CONFIG_UPDATED
    path: str | None = None


class SystemErrorEvent(EngineEvent):
    type: Literal[EventType.SYSTEM_ERROR] = EventType.SYSTEM_ERROR
    system: str
    error: str
    critical: bool = False


class SystemReadyEvent(EngineEvent):
    type: Literal[EventType.SYSTEM_READY] = EventType.SYSTEM_READY
    system: str


Event = (
    MatchInitializedEvent
    | MatchStartedEvent
    | MatchCompletedEvent
    | MatchAbandonedEvent
    | MatchPausedEvent
    | MatchResumedEvent
    | BlockStartedEvent
    | BlockCompletedEvent
    | BlockSelectionStartedEvent
    | BlockSelectionCompletedEvent
    | PatternSelectedEvent
    | PatternCompleteEvent
    | PlaySelectedEvent
    | PerformanceStartedEvent
    | PerformanceCompletedEvent
    | ScriptStartedEvent
    | ScriptCompletedEvent
    | PlayerAddedEvent
    | PlayerRemovedEvent
    | PlayerStatusChangedEvent
    | PlayerSelectedEvent
    | StateRestoredEvent
    | StateErrorEvent
    | ConfigLoadedEvent
    | ConfigUpdatedEvent
    | SystemErrorEvent
    | SystemReadyEvent
)

_event_adapter: TypeAdapter[Event] = TypeAdapter(Annotated[Event, Field(discriminator="type")])


def parse_event(data: dict[str, object]) -> Event:
    """Rebuild a typed event from its model_dump() form."""
    return _event_adapter.validate_python(data)

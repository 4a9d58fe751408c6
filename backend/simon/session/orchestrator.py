"""
Top-level match coordinator.

The orchestrator owns no game rules of its own. It wires the selectors, the
match ledger, the player registry and the performance system together and
drives one block at a time: peek the next block, build its play, assemble
scripts, start the block, perform it, complete it, and only then confirm it
on the block cursor. Completing a block publishes `block:completed`, whose
handler schedules the next turn.

A block that fails is reported as `system:error` and the loop stalls with
the match paused; resume_match() retries the same block because it was never
confirmed. There is no automatic retry.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import structlog

from simon.logic.constants import EARLY_MATCH_THRESHOLD, LATE_MATCH_THRESHOLD, MAX_DIFFICULTY, MIN_PLAYERS
from simon.logic.enums import BlockType, CeremonyType, MatchStatus
from simon.logic.exceptions import InsufficientPlayersError, OrchestratorError
from simon.logic.patterns import PatternPreferences
from simon.logic.plays import build_ceremony_play, build_relax_play
from simon.logic.settings import MatchConfig
from simon.logic.types import Pattern, SelectionContext
from simon.messaging.events import EventType, SystemErrorEvent, SystemReadyEvent
from simon.state.match import MatchSetup
from simon.state.store import StateKey

if TYPE_CHECKING:
    import random
    from collections.abc import Callable, Mapping

    from simon.logic.blocks import BlockSelector
    from simon.logic.config_loader import ConfigLoader
    from simon.logic.patterns import PatternSelector
    from simon.logic.plays import PlaySelector
    from simon.logic.scripts import ScriptAssembler
    from simon.logic.types import BlockInfo, CeremonyPlay, RelaxPlay, RoundPlay
    from simon.logic.variety import VarietyEnforcer
    from simon.messaging.bus import EventBus
    from simon.messaging.events import (
        BlockCompletedEvent,
        MatchAbandonedEvent,
        MatchCompletedEvent,
        PlayerAddedEvent,
        PlayerRemovedEvent,
    )
    from simon.session.performance import PerformanceSystem
    from simon.state.match import MatchState
    from simon.state.players import PlayerRegistry
    from simon.state.store import StateStore

logger = structlog.get_logger()

DEFAULT_TEAM_NAMES = ["Team 1", "Team 2"]


@dataclass
class CurrentMatch:
    id: str
    config: dict[str, Any]
    pattern_id: str
    start_time: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CurrentMatch:
        return cls(
            id=data["id"],
            config=dict(data.get("config", {})),
            pattern_id=data["pattern_id"],
            start_time=float(data["start_time"]),
        )


class MatchOrchestrator:
    def __init__(
        self,
        *,
        bus: EventBus,
        store: StateStore,
        config: ConfigLoader,
        match_state: MatchState,
        registry: PlayerRegistry,
        pattern_selector: PatternSelector,
        block_selector: BlockSelector,
        play_selector: PlaySelector,
        variety: VarietyEnforcer,
        scripts: ScriptAssembler,
        performance: PerformanceSystem,
        rng: random.Random,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bus = bus
        self._store = store
        self._config = config
        self._match_state = match_state
        self._registry = registry
        self._pattern_selector = pattern_selector
        self._block_selector = block_selector
        self._play_selector = play_selector
        self._variety = variety
        self._scripts = scripts
        self._performance = performance
        self._rng = rng
        self._clock = clock

        self.initialized = False
        self.is_running = False
        self.current_match: CurrentMatch | None = None
        self.last_error: str | None = None

        self._base_pause_multiplier = performance.pause_multiplier
        self._processing = False
        self._settled = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    def initialize(self) -> None:
        """Register patterns and subscribe to the events that drive the loop."""
        if self.initialized:
            return
        try:
            self._pattern_selector.initialize(self._config.get("block_sequencing.patterns", {}))
        except Exception as e:
            logger.exception("orchestrator initialization failed")
            self._bus.emit(SystemErrorEvent(system="orchestrator", error=str(e), critical=True))
            raise

        self._unsubscribers = [
            self._bus.on(EventType.BLOCK_COMPLETED, self._on_block_completed),
            self._bus.on(EventType.MATCH_COMPLETED, self._on_match_completed),
            self._bus.on(EventType.MATCH_ABANDONED, self._on_match_abandoned),
            self._bus.on(EventType.PLAYER_ADDED, self._on_player_added),
            self._bus.on(EventType.PLAYER_REMOVED, self._on_player_removed),
            self._bus.on(EventType.SYSTEM_ERROR, self._on_system_error),
        ]
        self.initialized = True
        self._store.set(StateKey.SYSTEM_READY, True)
        self._bus.emit(SystemReadyEvent(system="orchestrator"))
        logger.info("orchestrator initialized")

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for task in list(self._tasks):
            task.cancel()
        self._performance.interrupt()
        self.is_running = False
        self.initialized = False

    # --- Match lifecycle ---

    async def start_match(self, config: MatchConfig | Mapping[str, Any] | None = None) -> str:
        """Configure, select a pattern and play the first block; returns the match id."""
        if not self.initialized:
            raise OrchestratorError("orchestrator not initialized")
        if self.is_running:
            raise OrchestratorError("match already in progress")

        active = self._registry.get_active_players()
        if len(active) < MIN_PLAYERS:
            raise InsufficientPlayersError(f"need at least {MIN_PLAYERS} active players, have {len(active)}")

        try:
            self._reset_match_state()
            player_config = self._config.load_player_config(config if config is not None else MatchConfig())
            setup = MatchSetup(
                round_count=player_config.match_length,
                difficulty_curve=player_config.difficulty_curve,
                difficulty_level=player_config.difficulty_level,
                pause_multiplier=float(self._config.get("difficulty.pause_multiplier", 1.0)),
            )
            self._performance.update_settings(pause_multiplier=self._base_pause_multiplier * setup.pause_multiplier)

            match_id = self._match_state.initialize_match(setup)
            pattern = self._pattern_selector.select_pattern(
                setup.round_count,
                PatternPreferences(difficulty=setup.difficulty_level),
            )
            self._block_selector.initialize(pattern)
            self._match_state.set_pattern(pattern)
            self._store.set(StateKey.SELECTED_PATTERN, pattern.id)

            self.current_match = CurrentMatch(
                id=match_id,
                config=player_config.model_dump(mode="json"),
                pattern_id=pattern.id,
                start_time=self._clock(),
            )
            self.last_error = None
            self._settled.clear()
            self.is_running = True
            self._match_state.start_match()
        except Exception:
            logger.exception("failed to start match")
            self.is_running = False
            raise

        logger.info("match starting", match_id=match_id, pattern_id=pattern.id, players=len(active))
        await self.process_next_block()
        return match_id

    async def process_next_block(self) -> None:
        """Play the block after the cursor, if the match is running and no block is in flight."""
        if not self.is_running or self._processing:
            return

        self._processing = True
        try:
            block_info = self._block_selector.get_next_block()
            if block_info is None:
                return
            with structlog.contextvars.bound_contextvars(
                match_id=self.current_match.id if self.current_match else None,
                block_index=block_info.index,
                block_type=block_info.type,
            ):
                if block_info.type == BlockType.CEREMONY:
                    completed = await self._process_ceremony_block(block_info)
                elif block_info.type == BlockType.ROUND:
                    completed = await self._process_round_block(block_info)
                else:
                    completed = await self._process_relax_block(block_info)
                # confirm only once the block has been played in full
                if completed:
                    self._block_selector.confirm_block_start(block_info.type)
                    logger.info("block played")
        except Exception as e:
            logger.exception("block processing failed")
            self._stall(str(e))
        finally:
            self._processing = False

    async def _process_ceremony_block(self, block_info: BlockInfo) -> bool:
        ceremony_type = block_info.context.ceremony_type or CeremonyType.OPENING
        duration = int(self._config.get("timing.durations.ceremony", 90))
        context = self.build_context()
        play = build_ceremony_play(ceremony_type, duration)
        return await self._run_block(play, context)

    async def _process_round_block(self, block_info: BlockInfo) -> bool:
        context = self.build_selection_context(block_info)
        play = self._play_selector.select_play(context)
        if self._config.get("features.player_rotation", True):
            self._registry.increment_rounds_since_selected()
        return await self._run_block(play, context)

    async def _process_relax_block(self, block_info: BlockInfo) -> bool:
        duration = int(self._config.get("timing.durations.relax", 90))
        context = self.build_context()
        play = build_relax_play(self._rng, duration)
        return await self._run_block(play, context)

    async def _run_block(self, play: RoundPlay | CeremonyPlay | RelaxPlay, context: SelectionContext) -> bool:
        """Play one block; returns False when the match ended while it was playing."""
        play = play.model_copy(update={"scripts": self._scripts.assemble_scripts(play, context)})
        self._match_state.start_block(play.block_type, play)
        completed = await self._performance.perform(play, context)
        if not completed:
            logger.info("block performance cut short", block_type=play.block_type)
        if self._match_state.is_finished():
            # ended mid-block: the unfinished block never reaches the history
            self._match_state.discard_current_block()
            logger.info("block dropped, match already ended", block_type=play.block_type)
            return False
        self._match_state.complete_block()
        return True

    def pause_match(self) -> bool:
        if not self.is_running:
            return False
        logger.info("pausing match", match_id=self.current_match.id if self.current_match else None)
        self.is_running = False
        self._match_state.pause_match()
        self._performance.interrupt()
        return True

    def resume_match(self) -> bool:
        """Continue a paused match with the next unconfirmed block."""
        if self.is_running or self.current_match is None:
            return False
        if not self._match_state.resume_match():
            return False
        logger.info("resuming match", match_id=self.current_match.id)
        self.is_running = True
        self.last_error = None
        self._settled.clear()
        self._schedule_next_block()
        return True

    def end_match(self, reason: str = "user_ended") -> None:
        if self.current_match is None:
            return
        logger.info("ending match", match_id=self.current_match.id, reason=reason)
        self.is_running = False
        self._performance.interrupt()
        if reason == "completed":
            self._match_state.complete_match()
        else:
            self._match_state.abandon_match(reason)
        self.current_match = None
        self._settled.set()

    async def wait_until_finished(self, timeout: float | None = None) -> MatchStatus:
        """Wait until the match completes, is abandoned or stalls on an error."""
        await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self._match_state.get_status()

    # --- Context ---

    def build_context(self) -> SelectionContext:
        progress = self._match_state.get_progress()
        current_round = self._match_state.get_current_round_number()
        total_rounds = self._match_state.get_total_rounds()
        team_names = list(self._config.get("teams.team_names") or DEFAULT_TEAM_NAMES)
        return SelectionContext(
            match_id=self.current_match.id if self.current_match else None,
            current_round=current_round,
            total_rounds=total_rounds,
            time_elapsed=self._match_state.get_state().time_elapsed,
            match_duration=int(self._config.get("match.estimated_duration", 30)) * 60,
            team_names=team_names,
            team_names_by_id=self._team_names_by_id(team_names),
            personality_style=self._config.get("scripts.personality.style", "enthusiastic"),
            is_first_round=current_round == 1,
            is_last_round=current_round == total_rounds,
            is_early_match=progress < EARLY_MATCH_THRESHOLD * 100,
            is_mid_match=EARLY_MATCH_THRESHOLD * 100 <= progress < LATE_MATCH_THRESHOLD * 100,
            is_late_match=progress >= LATE_MATCH_THRESHOLD * 100,
            active_players=[player.to_ref() for player in self._registry.get_active_players()],
            difficulty_curve=self._config.get("match.difficulty_curve", "gentle"),
        )

    def build_selection_context(self, block_info: BlockInfo) -> SelectionContext:
        """Match context overlaid with the round's block context, roster, history and difficulty target."""
        base = self.build_context()
        block = block_info.context
        round_number = block.round_number or base.current_round + 1
        target = self._match_state.get_current_difficulty_target(round_number)
        max_difficulty = int(self._config.get("difficulty.max_difficulty", MAX_DIFFICULTY))
        return base.model_copy(
            update={
                "current_round": round_number,
                "total_rounds": block.total_rounds or base.total_rounds,
                "is_first_round": block.is_first_round,
                "is_last_round": block.is_last_round,
                "is_early_match": block.is_early_match,
                "is_mid_match": block.is_mid_match,
                "is_late_match": block.is_late_match,
                "team_roster": self.build_team_roster(),
                "recent_plays": [recent.id for recent in self._play_selector.get_recent_plays()],
                "target_difficulty": min(target, max_difficulty),
                "rounds_since_relax": block.rounds_since_relax or 0,
            },
        )

    def build_team_roster(self) -> dict[str, list[str]]:
        return {team.id: [player.id for player in team.players] for team in self._registry.get_active_teams()}

    def _team_names_by_id(self, configured: list[str]) -> dict[str, str]:
        names: dict[str, str] = {}
        for position, team_id in enumerate(self._registry.teams):
            team = self._registry.teams[team_id]
            if team.name:
                names[team_id] = team.name
            elif position < len(configured):
                names[team_id] = configured[position]
        return names

    # --- Checkpoints ---

    def create_checkpoint(self) -> dict[str, Any]:
        return {
            "orchestrator": {
                "is_running": self.is_running,
                "current_match": self.current_match.to_dict() if self.current_match else None,
            },
            "match": self._match_state.create_checkpoint(),
            "players": self._registry.export(),
            "variety": self._variety.export(),
            "config": self._config.export(),
        }

    def restore_from_checkpoint(self, checkpoint: Mapping[str, Any]) -> bool:
        """
        Rebuild every component from a checkpoint.

        A restored match in progress comes back paused, with any unfinished
        block discarded; resume_match() continues from the next block.
        """
        if self.is_running:
            raise OrchestratorError("cannot restore while a match is running")
        if not self._match_state.restore_from_checkpoint(checkpoint["match"]):
            return False

        self._config.import_data(checkpoint.get("config", {}))
        self._registry.import_data(checkpoint.get("players", {}))
        self._variety.import_data(checkpoint.get("variety", {}))

        orchestrator = checkpoint.get("orchestrator", {})
        current = orchestrator.get("current_match")
        self.current_match = CurrentMatch.from_dict(current) if current else None
        self.is_running = False

        self._match_state.discard_current_block()
        match = self._match_state.get_state()
        if match.config.selected_pattern and match.pattern_sequence:
            self._block_selector.initialize(Pattern(id=match.config.selected_pattern, sequence=match.pattern_sequence))
            if match.current_block_index >= 0:
                self._block_selector.skip_to_index(match.current_block_index)

        if match.status == MatchStatus.IN_PROGRESS:
            self._match_state.pause_match()
        if match.status in (MatchStatus.COMPLETED, MatchStatus.ABANDONED):
            self._settled.set()
        else:
            self._settled.clear()
        logger.info("orchestrator restored", match_id=match.id, status=match.status)
        return True

    # --- Status ---

    def get_status(self) -> dict[str, Any]:
        has_pattern = self._block_selector.pattern is not None
        return {
            "initialized": self.initialized,
            "is_running": self.is_running,
            "current_match": (
                {
                    "id": self.current_match.id,
                    "start_time": self.current_match.start_time,
                    "pattern": self.current_match.pattern_id,
                }
                if self.current_match
                else None
            ),
            "match_status": self._match_state.get_status(),
            "block_progress": asdict(self._block_selector.get_progress()) if has_pattern else None,
            "player_count": len(self._registry.get_active_players()),
            "is_performing": self._performance.is_performing,
            "last_error": self.last_error,
        }

    def get_visualization(self) -> str:
        playing = self._match_state.get_state().current_block is not None
        return self._block_selector.get_pattern_visualization(in_progress=playing)

    # --- Event handlers ---

    def _on_block_completed(self, event: BlockCompletedEvent) -> None:
        if self.is_running:
            self._schedule_next_block()

    def _on_match_completed(self, event: MatchCompletedEvent) -> None:
        logger.info("match completed successfully", match_id=event.match_id)
        self.is_running = False
        self.current_match = None
        self._settled.set()

    def _on_match_abandoned(self, event: MatchAbandonedEvent) -> None:
        logger.info("match abandoned", match_id=event.match_id, reason=event.reason)
        self.is_running = False
        self.current_match = None
        self._settled.set()

    def _on_player_added(self, event: PlayerAddedEvent) -> None:
        logger.info("player joined", name=event.name, running=self.is_running)

    def _on_player_removed(self, event: PlayerRemovedEvent) -> None:
        active = self._registry.get_active_players()
        logger.info("player left", name=event.name, active=len(active))
        if self.current_match is not None and len(active) < MIN_PLAYERS:
            logger.warning("not enough players, ending match", active=len(active))
            self.end_match("insufficient_players")

    def _on_system_error(self, event: SystemErrorEvent) -> None:
        if event.critical and self.current_match is not None:
            logger.error("critical system error, ending match", system=event.system, error=event.error)
            self.end_match("system_error")

    # --- Internals ---

    def _schedule_next_block(self) -> None:
        task = asyncio.get_running_loop().create_task(self.process_next_block())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _stall(self, error: str) -> None:
        """Stop the loop after a failed block; an operator must resume or end the match."""
        self.last_error = error
        self.is_running = False
        self._match_state.pause_match()
        self._bus.emit(SystemErrorEvent(system="orchestrator", error=error))
        self._settled.set()
        logger.error("match stalled, waiting for resume or end", error=error)

    def _reset_match_state(self) -> None:
        """Forget the previous match; the player registry is kept."""
        self._match_state.reset()
        self._variety.clear_history()
        self._play_selector.clear_history()
        self._block_selector.reset()
        self._store.clear()
        self._store.set(StateKey.SYSTEM_READY, self.initialized)

"""
Explicitly constructed owner of every engine component.

Each AppContext builds its own bus, store, ledgers, selectors and
orchestrator, so two contexts never share state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from simon.app.settings import EngineSettings
from simon.logic.blocks import BlockSelector
from simon.logic.config_loader import ConfigLoader
from simon.logic.exceptions import ConfigurationError
from simon.logic.patterns import PatternSelector
from simon.logic.plays import PlaySelector
from simon.logic.rng import create_rng
from simon.logic.scripts import ScriptAssembler
from simon.logic.variety import VarietyEnforcer
from simon.messaging.bus import EventBus
from simon.session.narration import MockNarrationTransport
from simon.session.orchestrator import MatchOrchestrator
from simon.session.performance import PerformanceSystem
from simon.state.match import MatchState
from simon.state.players import PlayerRegistry
from simon.state.store import StateStore

if TYPE_CHECKING:
    import random
    from collections.abc import Callable

    from simon.session.narration import NarrationTransport

logger = structlog.get_logger()


@dataclass
class AppContext:
    settings: EngineSettings
    rng: random.Random
    bus: EventBus
    store: StateStore
    config: ConfigLoader
    match_state: MatchState
    registry: PlayerRegistry
    variety: VarietyEnforcer
    pattern_selector: PatternSelector
    block_selector: BlockSelector
    play_selector: PlaySelector
    scripts: ScriptAssembler
    performance: PerformanceSystem
    orchestrator: MatchOrchestrator

    @classmethod
    def create(
        cls,
        settings: EngineSettings | None = None,
        *,
        transport: NarrationTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> AppContext:
        settings = settings or EngineSettings()
        rng = create_rng(settings.seed)
        bus = EventBus()
        store = StateStore(bus=bus)

        config = ConfigLoader(bus=bus)
        if settings.developer_config_path:
            config.load_developer_config_file(Path(settings.developer_config_path))

        if transport is None:
            if not (settings.mock_tts or config.get("system.mock_tts", False)):
                raise ConfigurationError("no narration transport supplied and mock TTS is disabled")
            transport = MockNarrationTransport(ms_per_char=settings.mock_ms_per_char)

        match_state = MatchState(bus=bus, clock=clock)
        registry = PlayerRegistry(bus=bus, clock=clock)
        variety = VarietyEnforcer(clock=clock)
        pattern_selector = PatternSelector(bus=bus, rng=rng)
        block_selector = BlockSelector(bus=bus, store=store)
        play_selector = PlaySelector(config, registry, variety, bus=bus, store=store, rng=rng, clock=clock)
        scripts = ScriptAssembler(config, rng)
        performance = PerformanceSystem(
            transport,
            bus=bus,
            store=store,
            pause_multiplier=settings.pause_multiplier,
            segment_timeout=settings.segment_timeout_seconds,
            during_line_interval=settings.during_line_interval_seconds,
        )
        orchestrator = MatchOrchestrator(
            bus=bus,
            store=store,
            config=config,
            match_state=match_state,
            registry=registry,
            pattern_selector=pattern_selector,
            block_selector=block_selector,
            play_selector=play_selector,
            variety=variety,
            scripts=scripts,
            performance=performance,
            rng=rng,
            clock=clock,
        )
        logger.debug("app context created", seed=settings.seed, mock_tts=settings.mock_tts)
        return cls(
            settings=settings,
            rng=rng,
            bus=bus,
            store=store,
            config=config,
            match_state=match_state,
            registry=registry,
            variety=variety,
            pattern_selector=pattern_selector,
            block_selector=block_selector,
            play_selector=play_selector,
            scripts=scripts,
            performance=performance,
            orchestrator=orchestrator,
        )

    def close(self) -> None:
        self.orchestrator.close()
        self.bus.remove_all_listeners()

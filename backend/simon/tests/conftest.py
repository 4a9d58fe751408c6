from __future__ import annotations

import random
from typing import TYPE_CHECKING

import pytest

from simon.app.context import AppContext
from simon.app.settings import EngineSettings
from simon.logic.blocks import BlockSelector
from simon.logic.config_loader import ConfigLoader
from simon.logic.variety import VarietyEnforcer
from simon.messaging.bus import EventBus
from simon.session.narration import RecordingNarrationTransport
from simon.state.players import PlayerRegistry
from simon.state.store import StateStore
from simon.tests.helpers import FakeClock, add_players

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(bus: EventBus) -> StateStore:
    return StateStore(bus=bus)


@pytest.fixture
def config(bus: EventBus) -> ConfigLoader:
    return ConfigLoader(bus=bus)


@pytest.fixture
def registry(bus: EventBus, clock: FakeClock) -> PlayerRegistry:
    return PlayerRegistry(bus=bus, clock=clock)


@pytest.fixture
def variety(clock: FakeClock) -> VarietyEnforcer:
    return VarietyEnforcer(clock=clock)


@pytest.fixture
def block_selector(bus: EventBus, store: StateStore) -> BlockSelector:
    return BlockSelector(bus=bus, store=store)


@pytest.fixture
def transport() -> RecordingNarrationTransport:
    return RecordingNarrationTransport()


@pytest.fixture
def engine_settings() -> EngineSettings:
    return EngineSettings(
        seed=1234,
        mock_ms_per_char=0,
        pause_multiplier=0,
        during_line_interval_seconds=0,
        segment_timeout_seconds=1,
    )


@pytest.fixture
def ctx(engine_settings: EngineSettings, transport: RecordingNarrationTransport) -> Iterator[AppContext]:
    context = AppContext.create(engine_settings, transport=transport)
    yield context
    context.close()


@pytest.fixture
def six_players(ctx: AppContext) -> AppContext:
    for team_id, name in (("red", "Red Team"), ("blue", "Blue Team")):
        ctx.registry.create_team(team_id, name)
    add_players(ctx.registry, ["Alice", "Bob", "Charlie", "Dana", "Eli", "Fran"])
    return ctx

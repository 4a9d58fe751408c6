"""Run a narrated demo match against the mock speech transport."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import structlog

from shared.logging import setup_logging
from simon.app.context import AppContext
from simon.app.settings import EngineSettings
from simon.logic.exceptions import SimonSaysError
from simon.logic.settings import MatchConfig

logger = structlog.get_logger()

DEFAULT_PLAYERS = ["Alice", "Bob", "Charlie", "Dana", "Eli", "Fran"]
DEFAULT_TEAMS = ["red", "blue"]


async def run_demo(settings: EngineSettings, config: MatchConfig, players: list[str]) -> int:
    ctx = AppContext.create(settings)
    try:
        for team_id, name in zip(DEFAULT_TEAMS, config.team_config.team_names, strict=False):
            ctx.registry.create_team(team_id, name)
        for position, name in enumerate(players):
            ctx.registry.add_player(name, DEFAULT_TEAMS[position % len(DEFAULT_TEAMS)])

        ctx.orchestrator.initialize()
        match_id = await ctx.orchestrator.start_match(config)
        status = await ctx.orchestrator.wait_until_finished()
        logger.info("demo finished", match_id=match_id, status=status, pattern=ctx.orchestrator.get_visualization())
        print(json.dumps(ctx.registry.get_statistics(), indent=2, default=str))
        return 0 if ctx.orchestrator.last_error is None else 1
    finally:
        ctx.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a Simon Says demo match with mock narration")
    parser.add_argument("-r", "--rounds", type=int, default=5, help="number of rounds (default: 5)")
    parser.add_argument(
        "--curve",
        default="gentle",
        help="difficulty curve: gentle, steady or roller_coaster (default: gentle)",
    )
    parser.add_argument(
        "--level",
        default="moderate",
        help="difficulty level: gentle, moderate or intense (default: moderate)",
    )
    parser.add_argument("--seed", type=int, default=None, help="seed for deterministic selections")
    parser.add_argument(
        "--fast",
        action="store_true",
        help="skip pauses and speech delays",
    )
    parser.add_argument("players", nargs="*", default=DEFAULT_PLAYERS, help="player names")
    args = parser.parse_args()

    overrides: dict[str, object] = {}
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.fast:
        overrides.update(mock_ms_per_char=0, pause_multiplier=0, during_line_interval_seconds=0)
    settings = EngineSettings(**overrides)
    setup_logging(log_dir=settings.log_dir)

    try:
        config = MatchConfig(match_length=args.rounds, difficulty_curve=args.curve, difficulty_level=args.level)
        sys.exit(asyncio.run(run_demo(settings, config, args.players)))
    except (SimonSaysError, ValueError) as e:
        print(f"Demo failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

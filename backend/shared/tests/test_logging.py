import json
import logging
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
import structlog

from shared.logging import _serialize_values, setup_logging
from simon.logic.enums import BlockType, MatchStatus
from simon.logic.types import PlayerRef


@pytest.fixture(autouse=True)
def _cleanup_root_logger():
    """Close and remove all handlers from the root logger after each test."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)


@pytest.fixture(autouse=True)
def _allow_file_logging():
    """Disable the _is_test guard so logging tests can create real file handlers."""
    with patch("shared.logging._is_test", return_value=False):
        yield


@pytest.fixture
def json_log(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    return setup_logging(log_dir=tmp_path / "matches")


def _entries(log_path):
    return [json.loads(line) for line in log_path.read_text().splitlines() if line.strip()]


class TestSetupLogging:
    def test_stdout_only_without_log_dir(self):
        assert setup_logging() is None

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_match_log_file_is_timestamped(self, tmp_path):
        fixed_time = datetime(2025, 3, 15, 10, 30, 45, tzinfo=UTC)
        with patch("shared.logging.datetime") as mock_dt:
            mock_dt.now.return_value = fixed_time
            log_path = setup_logging(log_dir=str(tmp_path / "matches" / "evening"))

        assert log_path == tmp_path / "matches" / "evening" / "2025-03-15_10-30-45.log"
        file_handler = logging.getLogger().handlers[1]
        assert isinstance(file_handler, logging.FileHandler)

    def test_repeated_setup_replaces_handlers(self):
        setup_logging()
        setup_logging()

        assert len(logging.getLogger().handlers) == 1

    @pytest.mark.parametrize(("env_value", "expected"), [("debug", logging.DEBUG), ("Warning", logging.WARNING)])
    def test_level_from_env(self, monkeypatch, env_value, expected):
        monkeypatch.setenv("LOG_LEVEL", env_value)
        setup_logging()

        assert logging.getLogger().level == expected

    def test_explicit_level_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")
        setup_logging(level=logging.DEBUG)

        assert logging.getLogger().level == logging.DEBUG

    @pytest.mark.parametrize(
        ("variable", "value", "message"),
        [("LOG_LEVEL", "chatty", "Invalid LOG_LEVEL"), ("LOG_FORMAT", "xml", "Invalid LOG_FORMAT")],
    )
    def test_invalid_env_raises(self, monkeypatch, variable, value, message):
        monkeypatch.setenv(variable, value)

        with pytest.raises(ValueError, match=message):
            setup_logging()


class TestMatchContext:
    def test_block_context_is_serialized(self, json_log):
        logger = structlog.get_logger("simon.session.orchestrator")
        with structlog.contextvars.bound_contextvars(match_id="match_7", block_index=3, block_type=BlockType.ROUND):
            logger.info("block played", status=MatchStatus.IN_PROGRESS)

        [entry] = _entries(json_log)
        assert entry["event"] == "block played"
        assert entry["match_id"] == "match_7"
        assert entry["block_index"] == 3
        assert entry["block_type"] == "round"
        assert entry["status"] == "in_progress"
        assert entry["level"] == "info"

    def test_context_is_released_after_the_block(self, json_log):
        logger = structlog.get_logger("simon.session.orchestrator")
        with structlog.contextvars.bound_contextvars(match_id="match_7"):
            with structlog.contextvars.bound_contextvars(block_index=0, block_type=BlockType.CEREMONY):
                logger.info("block played")
            with structlog.contextvars.bound_contextvars(block_index=1, block_type=BlockType.RELAX):
                logger.info("block played")
            logger.info("match completed successfully")
        logger.info("orchestrator initialized")

        first, second, finished, idle = _entries(json_log)
        assert (first["block_index"], first["block_type"]) == (0, "ceremony")
        assert (second["block_index"], second["block_type"]) == (1, "relax")
        assert finished["match_id"] == "match_7"
        assert "block_index" not in finished
        assert "match_id" not in idle

    def test_debug_lines_are_filtered_at_info(self, json_log):
        logger = structlog.get_logger("simon.logic.blocks")
        logger.debug("block peeked", index=2)
        logger.warning("block skipped", index=2)

        assert [entry["event"] for entry in _entries(json_log)] == ["block skipped"]

    def test_console_output_shows_block_context(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "console")
        log_path = setup_logging(log_dir=tmp_path)

        with structlog.contextvars.bound_contextvars(match_id="match_9", block_type=BlockType.RELAX):
            structlog.get_logger("simon").info("relax started")

        content = log_path.read_text()
        assert "relax started" in content
        assert "match_id=match_9" in content
        assert "block_type=relax" in content


class TestSerializeValues:
    def test_enums_become_plain_strings(self):
        result = _serialize_values(None, "", {"block_type": BlockType.CEREMONY, "msg": "hello"})

        assert result == {"block_type": "ceremony", "msg": "hello"}
        assert type(result["block_type"]) is str

    def test_containers_are_walked(self):
        event_dict = {"sequence": (BlockType.CEREMONY, BlockType.ROUND), "counts": {"status": MatchStatus.PAUSED}}

        result = _serialize_values(None, "", event_dict)

        assert result["sequence"] == ["ceremony", "round"]
        assert result["counts"] == {"status": "paused"}

    def test_rosters_are_dumped(self, json_log):
        roster = {"player1": [PlayerRef(id="p0", name="Alice", team="red")]}
        structlog.get_logger("simon.logic.plays").info("play selected", players=roster, round_number=2)

        [entry] = _entries(json_log)
        assert entry["players"] == {"player1": [{"id": "p0", "name": "Alice", "team": "red"}]}
        assert entry["round_number"] == 2

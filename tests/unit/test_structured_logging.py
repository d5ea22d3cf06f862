"""
Tests for structured logging configuration.

Validates:
  1. configure_logging() replaces its own handler instead of stacking
  2. the board's log file receives entries
  3. JSON output mode produces valid JSON
  4. noisy library loggers are held at WARNING
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import structlog

from octopai.core.logging import configure_logging


def _octopai_handlers() -> list[logging.Handler]:
    return [
        h
        for h in logging.getLogger().handlers
        if isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
    ]


class TestConfigureLogging:
    """configure_logging() sets up structlog + stdlib correctly."""

    def setup_method(self) -> None:
        root = logging.getLogger()
        for handler in _octopai_handlers():
            root.removeHandler(handler)
            handler.close()
        structlog.reset_defaults()

    teardown_method = setup_method

    def test_idempotent_double_call(self) -> None:
        configure_logging(level="DEBUG")
        count = len(_octopai_handlers())
        configure_logging(level="DEBUG")
        assert len(_octopai_handlers()) == count == 1

    def test_sets_root_log_level(self) -> None:
        configure_logging(level="WARNING")
        assert logging.getLogger().level == logging.WARNING
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_suppresses_noisy_libraries(self) -> None:
        configure_logging(level="DEBUG")
        assert logging.getLogger("asyncio").level == logging.WARNING
        assert logging.getLogger("textual").level == logging.WARNING

    def test_log_file_replaces_stderr(self, tmp_path: Path) -> None:
        configure_logging(level="INFO")
        log_file = tmp_path / "logs" / "octopai.log"
        configure_logging(level="INFO", log_file=log_file)
        handlers = _octopai_handlers()
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        structlog.get_logger("test.file").info("board_started", repo="acme/widgets")
        handlers[0].flush()
        assert "board_started" in log_file.read_text()

    def test_json_output_is_parseable(self, tmp_path: Path) -> None:
        log_file = tmp_path / "octopai.log"
        configure_logging(level="DEBUG", json_output=True, log_file=log_file)
        structlog.get_logger("test.json").info("session_status_applied", session_id="42", seq=3)
        _octopai_handlers()[0].flush()
        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["event"] == "session_status_applied"
        assert entry["session_id"] == "42"
        assert entry["level"] == "info"

    def test_stdlib_loggers_route_through_formatter(self, tmp_path: Path) -> None:
        log_file = tmp_path / "octopai.log"
        configure_logging(level="INFO", json_output=True, log_file=log_file)
        logging.getLogger("plain.stdlib").warning("from stdlib")
        _octopai_handlers()[0].flush()
        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["event"] == "from stdlib"
        assert entry["logger"] == "plain.stdlib"

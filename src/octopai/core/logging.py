"""
Structured logging configuration for octopai.

Uses structlog so that every log entry is a key/value event that can be
grepped while the board owns the terminal.

Setup:
    Call ``configure_logging()`` once at process startup. Every module then
    uses::

        import structlog
        logger = structlog.get_logger()

        logger.info("session_status_applied", session_id="42", status="working", seq=3)

While the Textual board is running, stderr belongs to the UI, so the CLI
passes ``log_file`` and all output goes to ``<data_dir>/octopai.log``.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """
    Configure structlog + stdlib logging for the process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: If True, emit JSON lines; otherwise human-readable output.
        log_file: If given, write to this file instead of stderr.

    Calling it again replaces the handler installed by the previous call.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=log_file is None and sys.stderr.isatty(),
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    # Only one structlog handler at a time; the board swaps stderr for a file
    for existing in list(root.handlers):
        if isinstance(getattr(existing, "formatter", None), structlog.stdlib.ProcessorFormatter):
            root.removeHandler(existing)
            existing.close()
    root.addHandler(handler)
    root.setLevel(log_level)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("textual").setLevel(logging.WARNING)

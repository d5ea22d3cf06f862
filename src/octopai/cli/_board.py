"""octopai board — load config, check tools, build the engine, run the TUI."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console

from octopai.core.config import OctopaiConfig

logger = structlog.get_logger()


def _apply_overrides(
    config: OctopaiConfig, repo: str, local_mode: bool, multiplexer: str | None
) -> OctopaiConfig:
    overrides: dict[str, Any] = {}
    if repo:
        overrides["repo"] = repo
    if local_mode:
        overrides["mode"] = "local"
    if multiplexer:
        overrides["multiplexer"] = multiplexer
    if not overrides:
        return config
    data = config.model_dump()
    data.update(overrides)
    updated = OctopaiConfig.model_validate(data)
    updated._config_path = config._config_path
    return updated


def _first_run_defaults(config: OctopaiConfig) -> OctopaiConfig:
    """On first launch, pin the session command to whichever assistant is installed."""
    from octopai.core.config import load_config, save_config
    from octopai.core.deps import default_session_command

    path = config._config_path
    if path is None or path.exists():
        return config
    command = default_session_command()
    save_config({"session_command": command}, path)
    logger.info("config_created", path=str(path), session_command=command)
    return load_config(path)


def cmd_board(
    *,
    repo: str,
    local_mode: bool,
    multiplexer: str | None,
    log_level: str,
    log_json: bool,
    console: Console,
) -> None:
    from octopai.core.config import load_config
    from octopai.core.constants import ExitCode
    from octopai.core.deps import ensure_startup_dependencies
    from octopai.core.engine import BoardEngine
    from octopai.core.exceptions import ConfigError, StartupError
    from octopai.core.logging import configure_logging

    try:
        config = _first_run_defaults(load_config())
        config = _apply_overrides(config, repo, local_mode, multiplexer)
    except (ConfigError, ValueError) as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    # The board owns the terminal; logs go to the data dir instead.
    level = log_level if log_level.upper() != "WARNING" else config.logging.level
    configure_logging(
        level=level,
        json_output=log_json or config.logging.format == "json",
        log_file=config.log_path,
    )

    try:
        ensure_startup_dependencies()
        engine = asyncio.run(BoardEngine.from_config(config, Path.cwd()))

        from octopai.tui.app import run as tui_run

        tui_run(engine)
    except StartupError as exc:
        logger.error("board_startup_failed", error=str(exc))
        console.print(f"[red]Cannot start:[/red] {exc}")
        console.print("Run [cyan]octopai doctor[/cyan] for details.")
        sys.exit(exc.exit_code)

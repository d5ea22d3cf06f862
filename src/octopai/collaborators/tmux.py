"""tmux multiplexer adapter."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping
from pathlib import Path

import structlog

from octopai.collaborators._exec import check_command, run_command
from octopai.collaborators.base import Multiplexer, MultiplexerRegistry
from octopai.core.constants import SEND_KEYS_DELAY_S
from octopai.core.exceptions import CollaboratorError

logger = structlog.get_logger()

_MISSING_SESSION_MARKERS = (
    "can't find session",
    "no server running",
    "session not found",
    "no sessions",
    "error connecting to",
)


def _is_missing(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _MISSING_SESSION_MARKERS)


@MultiplexerRegistry.register("tmux")
class TmuxMultiplexer(Multiplexer):
    """Detached tmux sessions, one per workspace."""

    name = "tmux"
    executable = "tmux"

    def __init__(self, send_keys_delay: float = SEND_KEYS_DELAY_S) -> None:
        self.send_keys_delay = send_keys_delay

    async def start_session(
        self,
        name: str,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        args = ["tmux", "new-session", "-d", "-s", name, "-c", str(cwd)]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        await check_command(args)
        # Let the login shell finish starting before typing into it
        await asyncio.sleep(self.send_keys_delay)
        target = f"{name}:.0"
        await check_command(["tmux", "send-keys", "-t", target, "-l", command])
        await check_command(["tmux", "send-keys", "-t", target, "Enter"])
        logger.info("tmux_session_started", session=name, cwd=str(cwd))

    async def kill_session(self, name: str) -> bool:
        result = await run_command(["tmux", "kill-session", "-t", f"={name}"])
        if result.ok:
            return True
        if _is_missing(result.output):
            return False
        raise CollaboratorError(f"tmux error: {result.output}", command=result.command_text)

    async def list_sessions(self) -> list[str]:
        result = await run_command(["tmux", "list-sessions", "-F", "#{session_name}"])
        if not result.ok:
            if _is_missing(result.output):
                return []
            raise CollaboratorError(f"tmux error: {result.output}", command=result.command_text)
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def attach(self, name: str) -> None:
        # Inside tmux, switch the current client instead of nesting
        if os.environ.get("TMUX"):
            await check_command(["tmux", "switch-client", "-t", f"={name}"])
            return
        proc = await asyncio.create_subprocess_exec("tmux", "attach-session", "-t", f"={name}")
        await proc.wait()

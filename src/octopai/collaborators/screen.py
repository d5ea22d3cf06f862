"""GNU screen multiplexer adapter, used when tmux is not installed."""

from __future__ import annotations

import asyncio
import re
import shlex
from collections.abc import Mapping
from pathlib import Path

import structlog

from octopai.collaborators._exec import check_command, run_command
from octopai.collaborators.base import Multiplexer, MultiplexerRegistry
from octopai.core.constants import SEND_KEYS_DELAY_S

logger = structlog.get_logger()

# "	12345.issue-42	(Detached)"
_LS_LINE_RE = re.compile(r"^\s*\d+\.(\S+)\s+\(")


def parse_screen_ls(output: str) -> list[str]:
    names = []
    for line in output.splitlines():
        match = _LS_LINE_RE.match(line)
        if match:
            names.append(match.group(1))
    return names


@MultiplexerRegistry.register("screen")
class ScreenMultiplexer(Multiplexer):
    """Detached screen sessions, one per workspace."""

    name = "screen"
    executable = "screen"

    def __init__(self, send_keys_delay: float = SEND_KEYS_DELAY_S) -> None:
        self.send_keys_delay = send_keys_delay

    async def start_session(
        self,
        name: str,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        # screen has no -e; export through env(1) in front of the shell
        exports = [f"{k}={v}" for k, v in (env or {}).items()]
        shell = "${SHELL:-/bin/sh}"
        inner = "exec env " + " ".join(shlex.quote(e) for e in exports) + f" {shell}"
        await check_command(["screen", "-dmS", name, "sh", "-c", inner], cwd=cwd)
        await asyncio.sleep(self.send_keys_delay)
        await check_command(["screen", "-S", name, "-p", "0", "-X", "stuff", command + "\n"])
        logger.info("screen_session_started", session=name, cwd=str(cwd))

    async def kill_session(self, name: str) -> bool:
        if name not in await self.list_sessions():
            return False
        await check_command(["screen", "-S", name, "-X", "quit"])
        return True

    async def list_sessions(self) -> list[str]:
        # screen -ls exits 1 when sessions exist on some builds; parse regardless
        result = await run_command(["screen", "-ls"])
        return parse_screen_ls(result.stdout)

    async def attach(self, name: str) -> None:
        proc = await asyncio.create_subprocess_exec("screen", "-r", name)
        await proc.wait()

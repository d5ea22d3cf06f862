"""Async subprocess helpers for running external tools off the event loop."""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import structlog

from octopai.core.constants import COLLABORATOR_TIMEOUT_S
from octopai.core.exceptions import CollaboratorError, CollaboratorUnavailableError

logger = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    """Typed command execution result."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return (self.stderr or self.stdout or "").strip()

    @property
    def command_text(self) -> str:
        return " ".join(self.argv)


def which(executable: str) -> str | None:
    return shutil.which(executable)


async def run_command(
    argv: list[str] | tuple[str, ...],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = COLLABORATOR_TIMEOUT_S,
) -> CommandResult:
    """
    Run *argv* and capture its output.

    Raises CollaboratorUnavailableError when the executable does not exist.
    A non-zero exit is returned, not raised; use ``check_command`` for that.
    """
    argv = tuple(argv)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise CollaboratorUnavailableError(
            f"missing required command: {argv[0]}", command=" ".join(argv)
        ) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("command_timed_out", command=argv[0], timeout=timeout)
        return CommandResult(argv=argv, returncode=124, stdout="", stderr="timed out", timed_out=True)

    result = CommandResult(
        argv=argv,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    logger.debug("command_finished", command=result.command_text, returncode=result.returncode)
    return result


async def check_command(
    argv: list[str] | tuple[str, ...],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = COLLABORATOR_TIMEOUT_S,
) -> CommandResult:
    """Like ``run_command`` but raise CollaboratorError on a non-zero exit."""
    result = await run_command(argv, cwd=cwd, env=env, timeout=timeout)
    if not result.ok:
        detail = result.output
        message = f"command failed: {result.command_text}"
        if detail:
            message = f"{message}\n{detail}"
        raise CollaboratorError(message, command=result.command_text, output=detail)
    return result


def spawn_detached(command: str, *, cwd: Path | str | None = None) -> int:
    """
    Start a shell command in its own session and return its pid.

    Nothing waits on it: editors and verify scripts outlive the board's
    interest in them.
    """
    try:
        with open(os.devnull) as devnull_r, open(os.devnull, "w") as devnull_w:
            proc = subprocess.Popen(
                command,
                shell=True,
                cwd=str(cwd) if cwd is not None else None,
                stdin=devnull_r,
                stdout=devnull_w,
                stderr=devnull_w,
                close_fds=True,
                start_new_session=True,
            )
    except OSError as exc:
        raise CollaboratorError(f"cannot start {command!r}: {exc}", command=command) from exc
    logger.info("process_spawned", command=command, pid=proc.pid)
    return proc.pid

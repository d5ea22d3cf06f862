"""
External tool detection.

Used by ``octopai doctor`` to print a checklist and by board startup to
refuse to run without a multiplexer or an AI assistant. Each check is a
dict of ``name`` / ``status`` (pass, warn, fail) / ``detail``.
"""

from __future__ import annotations

import shutil
import sys
from typing import Any

from octopai.core.exceptions import StartupError
from octopai.core.templating import SHORTCUT_EXECUTABLES


def _which(name: str) -> str | None:
    return shutil.which(name)


def _tool_check(name: str, executable: str, purpose: str, required: bool) -> dict[str, Any]:
    path = _which(executable)
    if path:
        return {"name": name, "status": "pass", "detail": path}
    return {
        "name": name,
        "status": "fail" if required else "warn",
        "detail": f"{executable} not found ({purpose})",
    }


def _check_python_version() -> dict[str, Any]:
    ver = sys.version_info
    ok = ver >= (3, 11)
    return {
        "name": "Python version",
        "status": "pass" if ok else "fail",
        "detail": f"{ver.major}.{ver.minor}.{ver.micro}" + ("" if ok else " (3.11+ required)"),
    }


def _check_multiplexer() -> dict[str, Any]:
    for executable in ("tmux", "screen"):
        if path := _which(executable):
            return {"name": "Multiplexer", "status": "pass", "detail": f"{executable} ({path})"}
    return {"name": "Multiplexer", "status": "fail", "detail": "neither tmux nor screen found"}


def available_assistants() -> dict[str, bool]:
    """Shortcut name → whether its executable is on PATH."""
    return {name: _which(exe) is not None for name, exe in SHORTCUT_EXECUTABLES.items()}


def _check_assistant() -> dict[str, Any]:
    found = [name for name, ok in available_assistants().items() if ok]
    if found:
        return {"name": "AI assistant", "status": "pass", "detail": ", ".join(found)}
    wanted = " or ".join(SHORTCUT_EXECUTABLES.values())
    return {"name": "AI assistant", "status": "fail", "detail": f"need {wanted} on PATH"}


def check_dependencies() -> list[dict[str, Any]]:
    return [
        _check_python_version(),
        _tool_check("git", "git", "worktrees", required=True),
        _tool_check("gh", "gh", "GitHub mode; local mode works without it", required=False),
        _check_multiplexer(),
        _check_assistant(),
    ]


def has_missing_required(checks: list[dict[str, Any]]) -> bool:
    return any(c["status"] == "fail" for c in checks)


def default_session_command() -> str:
    """``{claude}`` if installed, else ``{cursor}`` if installed, else ``{claude}``."""
    assistants = available_assistants()
    if not assistants.get("claude") and assistants.get("cursor"):
        return "{cursor}"
    return "{claude}"


def ensure_startup_dependencies() -> None:
    """Raise StartupError naming every failed required check."""
    failed = [c for c in check_dependencies() if c["status"] == "fail"]
    if failed:
        detail = "; ".join(f"{c['name']}: {c['detail']}" for c in failed)
        raise StartupError(f"Cannot start the board: {detail}")

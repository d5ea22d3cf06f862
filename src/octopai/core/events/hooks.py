"""
Hook side of the event channel.

``write_hook_settings`` installs assistant hooks into a worktree's
``.claude/settings.local.json`` so that every activity change runs::

    <python> -m octopai hook <status>

``emit`` is what that command does: work out which session it belongs to,
send one JSON line to the board's socket, and exit. It never fails the
assistant; if the board is not running the event is simply lost.
"""

from __future__ import annotations

import contextlib
import json
import os
import shlex
import socket
import sys
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from octopai.core.constants import (
    ASSISTANT_GLOBAL_STATE,
    ASSISTANT_SETTINGS_RELPATH,
    ENV_SESSION_ID,
    ENV_SOCKET,
    HOOK_CONNECT_TIMEOUT_S,
    _default_socket_path,
)
from octopai.core.events.protocol import HookEvent, HookStatus
from octopai.core.naming import issue_number_from_ref

# assistant hook name → (matcher, status, async)
_HOOK_TABLE: tuple[tuple[str, str | None, HookStatus, bool], ...] = (
    ("SessionStart", None, HookStatus.STARTING, True),
    ("PreToolUse", None, HookStatus.WORKING, True),
    ("Stop", None, HookStatus.IDLE, False),
    ("Notification", "permission_prompt", HookStatus.WAITING_PERMISSION, True),
    ("Notification", "idle_prompt", HookStatus.IDLE, True),
    ("SessionEnd", None, HookStatus.EXITED, False),
)


def hook_command(status: HookStatus, python: str | None = None) -> str:
    exe = shlex.quote(python or sys.executable)
    return f"{exe} -m octopai hook {status.value}"


def build_hook_config(python: str | None = None) -> dict[str, list[dict[str, Any]]]:
    """The ``hooks`` section written into the assistant's local settings."""
    config: dict[str, list[dict[str, Any]]] = {}
    for hook_name, matcher, status, is_async in _HOOK_TABLE:
        command: dict[str, Any] = {"type": "command", "command": hook_command(status, python)}
        if is_async:
            command["async"] = True
        entry: dict[str, Any] = {"hooks": [command]}
        if matcher:
            entry["matcher"] = matcher
        config.setdefault(hook_name, []).append(entry)
    return config


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, data: Mapping[str, Any]) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def write_hook_settings(worktree: Path, python: str | None = None) -> Path:
    """Merge octopai hooks into the worktree's assistant settings; other keys are kept."""
    settings_path = worktree / ASSISTANT_SETTINGS_RELPATH
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings = _read_json(settings_path)
    settings["hooks"] = build_hook_config(python)
    _write_json(settings_path, settings)
    return settings_path


def trust_directory(path: Path, state_file: Path = ASSISTANT_GLOBAL_STATE) -> None:
    """Pre-accept the assistant's trust dialog for *path*."""
    state = _read_json(state_file)
    projects = state.setdefault("projects", {})
    project = projects.setdefault(str(path), {})
    project["hasTrustDialogAccepted"] = True
    _write_json(state_file, state)


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------


def resolve_session_id(env: Mapping[str, str], cwd: Path) -> str | None:
    """Session id from the launch environment, else from an ``issue-N`` directory name."""
    if session_id := env.get(ENV_SESSION_ID, "").strip():
        return session_id
    number = issue_number_from_ref(cwd.name)
    return str(number) if number is not None else None


def resolve_socket(env: Mapping[str, str]) -> Path:
    if sock := env.get(ENV_SOCKET, "").strip():
        return Path(sock)
    return _default_socket_path()


def send_event(event: HookEvent, socket_path: Path, timeout: float = HOOK_CONNECT_TIMEOUT_S) -> bool:
    """Deliver one event; returns False when no board is listening."""
    if not socket_path.exists():
        return False
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(str(socket_path))
        sock.sendall(event.encode())
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            sock.close()
    return True


def emit(
    status: HookStatus,
    detail: str | None = None,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> bool:
    """Build and send the event for the current process; returns True if delivered."""
    env = os.environ if env is None else env
    session_id = resolve_session_id(env, cwd or Path.cwd())
    if session_id is None:
        return False
    event = HookEvent(session_id=session_id, status=status, seq=time.time_ns(), detail=detail)
    return send_event(event, resolve_socket(env))

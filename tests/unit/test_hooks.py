"""Unit tests for octopai.core.events.hooks — hook installation and the emitter."""

from __future__ import annotations

import json
import socket
from pathlib import Path

from octopai.core.events.hooks import (
    build_hook_config,
    emit,
    hook_command,
    resolve_session_id,
    resolve_socket,
    send_event,
    trust_directory,
    write_hook_settings,
)
from octopai.core.events.protocol import HookEvent, HookStatus, decode_event

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _listening_socket(path: Path) -> socket.socket:
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(str(path))
    server.listen(1)
    server.settimeout(2)
    return server


def _receive_line(server: socket.socket) -> bytes:
    conn, _ = server.accept()
    with conn:
        conn.settimeout(2)
        data = b""
        while not data.endswith(b"\n"):
            chunk = conn.recv(4096)
            if not chunk:
                break
            data += chunk
    return data


# ---------------------------------------------------------------------------
# Hook installation
# ---------------------------------------------------------------------------


class TestHookConfig:
    def test_command_runs_module(self) -> None:
        assert hook_command(HookStatus.IDLE, python="/opt/py 3/bin/python") == (
            "'/opt/py 3/bin/python' -m octopai hook idle"
        )

    def test_covers_every_activity_change(self) -> None:
        config = build_hook_config(python="py")
        assert set(config) == {"SessionStart", "PreToolUse", "Stop", "Notification", "SessionEnd"}
        notifications = {entry["matcher"]: entry for entry in config["Notification"]}
        assert notifications["permission_prompt"]["hooks"][0]["command"] == (
            "py -m octopai hook waiting_permission"
        )
        assert notifications["idle_prompt"]["hooks"][0]["command"] == "py -m octopai hook idle"

    def test_blocking_hooks_are_not_async(self) -> None:
        config = build_hook_config(python="py")
        assert "async" not in config["Stop"][0]["hooks"][0]
        assert config["PreToolUse"][0]["hooks"][0]["async"] is True

    def test_write_merges_existing_settings(self, tmp_path: Path) -> None:
        settings = tmp_path / ".claude" / "settings.local.json"
        settings.parent.mkdir()
        settings.write_text(json.dumps({"permissions": {"allow": ["Read"]}, "hooks": {"Old": []}}))
        path = write_hook_settings(tmp_path, python="py")
        assert path == settings
        data = json.loads(settings.read_text())
        assert data["permissions"] == {"allow": ["Read"]}
        assert "Old" not in data["hooks"]
        assert "Stop" in data["hooks"]

    def test_write_replaces_corrupt_settings(self, tmp_path: Path) -> None:
        settings = tmp_path / ".claude" / "settings.local.json"
        settings.parent.mkdir()
        settings.write_text("{broken")
        write_hook_settings(tmp_path, python="py")
        assert "hooks" in json.loads(settings.read_text())

    def test_trust_directory_keeps_other_projects(self, tmp_path: Path) -> None:
        state = tmp_path / "claude.json"
        state.write_text(json.dumps({"projects": {"/other": {"x": 1}}, "theme": "dark"}))
        trust_directory(tmp_path / "w-issue-1", state)
        data = json.loads(state.read_text())
        assert data["theme"] == "dark"
        assert data["projects"]["/other"] == {"x": 1}
        assert data["projects"][str(tmp_path / "w-issue-1")]["hasTrustDialogAccepted"] is True


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------


class TestResolve:
    def test_session_id_from_env(self) -> None:
        assert resolve_session_id({"OCTOPAI_SESSION_ID": "7"}, Path("/x/repo-issue-3")) == "7"

    def test_session_id_from_directory(self) -> None:
        assert resolve_session_id({}, Path("/x/repo-issue-3")) == "3"

    def test_no_session_id(self) -> None:
        assert resolve_session_id({"OCTOPAI_SESSION_ID": "  "}, Path("/x/repo")) is None

    def test_socket_from_env(self) -> None:
        assert resolve_socket({"OCTOPAI_SOCKET": "/tmp/s.sock"}) == Path("/tmp/s.sock")


class TestSend:
    def test_no_socket_file(self, tmp_path: Path) -> None:
        event = HookEvent(session_id="1", status=HookStatus.IDLE, seq=1)
        assert send_event(event, tmp_path / "missing.sock") is False

    def test_stale_socket_file(self, socket_path: Path) -> None:
        socket_path.write_text("")
        event = HookEvent(session_id="1", status=HookStatus.IDLE, seq=1)
        assert send_event(event, socket_path) is False

    def test_delivers_one_line(self, socket_path: Path) -> None:
        server = _listening_socket(socket_path)
        try:
            event = HookEvent(session_id="1", status=HookStatus.WORKING, seq=5, detail="Bash")
            assert send_event(event, socket_path) is True
            assert decode_event(_receive_line(server).strip()) == event
        finally:
            server.close()

    def test_emit_uses_environment(self, socket_path: Path, tmp_path: Path) -> None:
        server = _listening_socket(socket_path)
        try:
            env = {"OCTOPAI_SESSION_ID": "42", "OCTOPAI_SOCKET": str(socket_path)}
            assert emit(HookStatus.WAITING_PERMISSION, env=env, cwd=tmp_path) is True
            event = decode_event(_receive_line(server).strip())
        finally:
            server.close()
        assert event.session_id == "42"
        assert event.status is HookStatus.WAITING_PERMISSION
        assert event.seq > 0

    def test_emit_without_session_is_dropped(self, tmp_path: Path) -> None:
        assert emit(HookStatus.IDLE, env={}, cwd=tmp_path) is False

    def test_emit_sequences_increase(self, socket_path: Path, tmp_path: Path) -> None:
        server = _listening_socket(socket_path)
        env = {"OCTOPAI_SESSION_ID": "1", "OCTOPAI_SOCKET": str(socket_path)}
        try:
            emit(HookStatus.WORKING, env=env, cwd=tmp_path)
            first = decode_event(_receive_line(server).strip())
            emit(HookStatus.IDLE, env=env, cwd=tmp_path)
            second = decode_event(_receive_line(server).strip())
        finally:
            server.close()
        assert second.seq > first.seq

"""Unit tests for octopai.core.engine — wiring, session overlay, merged cleanup, startup."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from octopai.core.config import OctopaiConfig
from octopai.core.engine import BoardEngine
from octopai.core.exceptions import CollaboratorError, CollaboratorUnavailableError, StartupError
from octopai.core.models import ChangeState, Column, Session, SessionStatus, WorkspaceState


class TestSnapshot:
    def test_registry_status_overlays_sessions(self, engine: BoardEngine) -> None:
        engine.store.upsert(Column.SESSIONS, Session(key="1"))
        engine.registry.register("1")
        engine.registry.apply("1", SessionStatus.WORKING, seq=1, detail="Bash")
        session = engine.snapshot().get(Column.SESSIONS, "1")
        assert isinstance(session, Session)
        assert session.status is SessionStatus.WORKING
        assert session.detail == "Bash"
        # the store copy is untouched
        stored = engine.store.get(Column.SESSIONS, "1")
        assert isinstance(stored, Session)
        assert stored.status is SessionStatus.UNKNOWN

    def test_untracked_session_passes_through(self, engine: BoardEngine) -> None:
        engine.store.upsert(Column.SESSIONS, Session(key="2"))
        assert engine.snapshot().keys(Column.SESSIONS) == ["2"]
        assert engine.session("2") is None

    @pytest.mark.asyncio
    async def test_related_follows_selection(self, engine: BoardEngine, tracker, vcs) -> None:
        tracker.add_issue(1)
        tracker.add_change(10, "issue-1")
        vcs.worktrees[vcs.repo_root.parent / "repo-issue-1"] = "issue-1"
        await engine.reconciler.refresh()
        engine.store.select(Column.ISSUES, "1")
        related = engine.related()
        assert [e.key for e in related[Column.CHANGES]] == ["10"]
        assert [e.key for e in related[Column.WORKSPACES]] == ["1"]


class TestMergedCleanup:
    @pytest.mark.asyncio
    async def test_merged_change_removes_workspace(self, engine: BoardEngine, tracker, vcs) -> None:
        path = vcs.repo_root.parent / "repo-issue-1"
        vcs.worktrees[path] = "issue-1"
        await engine.reconciler.refresh()
        assert engine.store.workspace("1") is not None
        tracker.add_change(10, "issue-1", state=ChangeState.MERGED)
        engine.reconciler.toggle_state(Column.CHANGES)
        await engine.reconciler.refresh()
        assert vcs.called("remove_worktree") == [(path, "issue-1", True)]
        ws = engine.store.workspace("1")
        assert ws is None or ws.state == WorkspaceState.REMOVED

    @pytest.mark.asyncio
    async def test_disabled_by_config(self, engine: BoardEngine, tracker, vcs) -> None:
        engine.config.auto_cleanup_merged = False
        vcs.worktrees[vcs.repo_root.parent / "repo-issue-1"] = "issue-1"
        tracker.add_change(10, "issue-1", state=ChangeState.MERGED)
        engine.reconciler.toggle_state(Column.CHANGES)
        await engine.reconciler.refresh()
        await engine.reconciler.refresh()
        assert vcs.called("remove_worktree") == []

    @pytest.mark.asyncio
    async def test_unrelated_branch_is_kept(self, engine: BoardEngine, tracker, vcs) -> None:
        vcs.worktrees[vcs.repo_root.parent / "repo-issue-1"] = "issue-1"
        await engine.reconciler.refresh()
        tracker.add_change(10, "feature/other-issue-1x", state=ChangeState.MERGED)
        engine.reconciler.toggle_state(Column.CHANGES)
        await engine.reconciler.refresh()
        assert vcs.called("remove_worktree") == []


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_listens_and_refreshes(self, engine: BoardEngine, socket_path: Path) -> None:
        await engine.start()
        try:
            assert socket_path.exists()
            assert engine.server.is_running
            for _ in range(100):
                if engine.reconciler.epoch >= 1:
                    break
                await asyncio.sleep(0.01)
            assert engine.reconciler.epoch >= 1
            assert "Watching acme/widgets" in engine.messages.snapshot()[0].text
        finally:
            await engine.stop()
        assert not socket_path.exists()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, engine: BoardEngine) -> None:
        await engine.stop()
        await engine.stop()


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_outside_git_repo(self, tmp_path: Path) -> None:
        with (
            patch(
                "octopai.core.engine.GitWorktrees.discover",
                AsyncMock(side_effect=CollaboratorError("not a git repository")),
            ),
            pytest.raises(StartupError, match="Not inside a git repository"),
        ):
            await BoardEngine.from_config(OctopaiConfig(), tmp_path)

    @pytest.mark.asyncio
    async def test_no_multiplexer(self, tmp_path: Path, vcs) -> None:
        with (
            patch("octopai.core.engine.GitWorktrees.discover", AsyncMock(return_value=vcs)),
            patch(
                "octopai.core.engine.resolve_multiplexer",
                side_effect=CollaboratorUnavailableError("no usable terminal multiplexer found"),
            ),
            pytest.raises(StartupError, match="multiplexer"),
        ):
            await BoardEngine.from_config(OctopaiConfig(), tmp_path)

    @pytest.mark.asyncio
    async def test_github_without_gh_falls_back_to_local(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, vcs, mux
    ) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        vcs.origin_slug = AsyncMock(return_value="acme/widgets")
        with (
            patch("octopai.core.engine.GitWorktrees.discover", AsyncMock(return_value=vcs)),
            patch("octopai.core.engine.resolve_multiplexer", return_value=mux),
            patch("octopai.core.engine.shutil.which", return_value=None),
        ):
            engine = await BoardEngine.from_config(OctopaiConfig(), tmp_path)
        assert engine.repo == "acme/widgets"
        assert engine.tracker.name == "local"

    @pytest.mark.asyncio
    async def test_github_mode(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, vcs, mux) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        with (
            patch("octopai.core.engine.GitWorktrees.discover", AsyncMock(return_value=vcs)),
            patch("octopai.core.engine.resolve_multiplexer", return_value=mux),
            patch("octopai.core.engine.shutil.which", return_value="/usr/bin/gh"),
        ):
            engine = await BoardEngine.from_config(OctopaiConfig(repo="acme/widgets"), tmp_path)
        assert engine.tracker.name == "github"

    @pytest.mark.asyncio
    async def test_repo_falls_back_to_directory_name(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, vcs, mux
    ) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        vcs.origin_slug = AsyncMock(return_value=None)
        with (
            patch("octopai.core.engine.GitWorktrees.discover", AsyncMock(return_value=vcs)),
            patch("octopai.core.engine.resolve_multiplexer", return_value=mux),
        ):
            engine = await BoardEngine.from_config(OctopaiConfig(mode="local"), tmp_path)
        assert engine.repo == "repo"
        assert engine.tracker.name == "local"


class TestSaveCommand:
    def test_verify_command_is_persisted_and_used(
        self, engine: BoardEngine, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import tomllib

        cfg = tmp_path / "octopai.toml"
        monkeypatch.setenv("OCTOPAI_CONFIG", str(cfg))
        path = engine.save_command("verify", "  make test  ")
        assert path == cfg
        with open(cfg, "rb") as f:
            assert tomllib.load(f)["verify_commands"] == {"acme/widgets": "make test"}
        assert engine.orchestrator.verify_command == "make test"
        assert engine.config.verify_command_for("acme/widgets") == "make test"
        assert engine.orchestrator.editor_command is None

    def test_empty_command_is_rejected(
        self, engine: BoardEngine, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from octopai.core.exceptions import ConfigError

        monkeypatch.setenv("OCTOPAI_CONFIG", str(tmp_path / "octopai.toml"))
        with pytest.raises(ConfigError):
            engine.save_command("editor", "   ")
        assert engine.orchestrator.editor_command is None

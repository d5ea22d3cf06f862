"""
End-to-end board scenarios: engine + real event socket + fake collaborators.

Each test drives the board the way the UI does (orchestrator calls,
refreshes) while hook events arrive over the unix socket the way
``octopai hook`` sends them.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from octopai.core.board.xref import related
from octopai.core.engine import BoardEngine
from octopai.core.events.hooks import send_event
from octopai.core.events.protocol import HookEvent, HookStatus
from octopai.core.exceptions import ResourceConflictError
from octopai.core.lifecycle import LifecycleState
from octopai.core.models import Column, SessionStatus, WorkspaceState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _send(socket_path: Path, key: str, status: HookStatus, seq: int) -> None:
    event = HookEvent(session_id=key, status=status, seq=seq)
    assert await asyncio.to_thread(send_event, event, socket_path)


async def _wait_for(predicate, timeout: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


async def _create_42(engine: BoardEngine, tracker) -> None:  # type: ignore[no-untyped-def]
    issue = tracker.add_issue(42, "Crash on start")
    outcome = await engine.orchestrator.create(issue)
    assert outcome.ok, outcome.message


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestBoardScenarios:
    @pytest.mark.asyncio
    async def test_create_then_working_event(
        self, engine: BoardEngine, tracker, mux, socket_path: Path
    ) -> None:
        await engine.server.start()
        try:
            await _create_42(engine, tracker)
            ws = engine.store.workspace("42")
            assert ws is not None
            assert ws.state == WorkspaceState.READY
            assert engine.orchestrator.lifecycle("42").state == LifecycleState.READY
            assert engine.registry.status_of("42") == SessionStatus.STARTING
            assert mux.sessions["issue-42"]["env"]["OCTOPAI_SESSION_ID"] == "42"

            await _send(socket_path, "42", HookStatus.WORKING, 1)
            await _wait_for(lambda: engine.registry.status_of("42") == SessionStatus.WORKING)
            assert engine.snapshot().get(Column.SESSIONS, "42").status == SessionStatus.WORKING
        finally:
            await engine.server.stop()

    @pytest.mark.asyncio
    async def test_out_of_order_events(self, engine: BoardEngine, tracker, socket_path: Path) -> None:
        await engine.server.start()
        try:
            await _create_42(engine, tracker)
            await _send(socket_path, "42", HookStatus.IDLE, 2)
            await _wait_for(lambda: engine.registry.status_of("42") == SessionStatus.IDLE)
            await _send(socket_path, "42", HookStatus.WORKING, 1)
            await asyncio.sleep(0.1)
            assert engine.registry.status_of("42") == SessionStatus.IDLE
            assert engine.registry.get("42").last_seq == 2
        finally:
            await engine.server.stop()

    @pytest.mark.asyncio
    async def test_refresh_links_pr_without_touching_status(
        self, engine: BoardEngine, tracker, socket_path: Path
    ) -> None:
        await engine.server.start()
        try:
            await _create_42(engine, tracker)
            await _send(socket_path, "42", HookStatus.WORKING, 1)
            await _wait_for(lambda: engine.registry.status_of("42") == SessionStatus.WORKING)

            tracker.add_change(7, "issue-42")
            result = await engine.reconciler.refresh()
            assert result.ok

            out = related(engine.snapshot(), Column.ISSUES, "42")
            assert [e.key for e in out[Column.WORKSPACES]] == ["42"]
            assert [e.key for e in out[Column.SESSIONS]] == ["42"]
            assert [e.key for e in out[Column.CHANGES]] == ["7"]
            assert engine.registry.status_of("42") == SessionStatus.WORKING
        finally:
            await engine.server.stop()

    @pytest.mark.asyncio
    async def test_remove_conflict_keeps_workspace(self, engine: BoardEngine, tracker, vcs) -> None:
        await _create_42(engine, tracker)
        vcs.fail(
            "remove_worktree",
            ResourceConflictError("fatal: 'issue-42' is already checked out at '/elsewhere'"),
        )
        outcome = await engine.orchestrator.remove("42")
        assert not outcome.ok
        assert outcome.recoverable
        assert outcome.conflict
        ws = engine.store.workspace("42")
        assert ws is not None
        assert ws.state == WorkspaceState.READY
        assert engine.orchestrator.lifecycle("42").state == LifecycleState.READY

    @pytest.mark.asyncio
    async def test_full_round_trip(self, engine: BoardEngine, tracker, vcs, mux, socket_path: Path) -> None:
        """create → events → PR → merge → workspace cleaned up."""
        await engine.start()
        try:
            await _create_42(engine, tracker)
            await _send(socket_path, "42", HookStatus.WORKING, 1)
            await _send(socket_path, "42", HookStatus.EXITED, 2)
            await _wait_for(lambda: engine.registry.status_of("42") == SessionStatus.EXITED)

            tracker.add_change(7, "issue-42", is_draft=False)
            await engine.reconciler.refresh()
            outcome = await engine.orchestrator.merge(7)
            assert outcome.ok
            assert engine.store.workspace("42") is None
            assert "issue-42" not in mux.sessions
            assert vcs.worktrees == {}
        finally:
            await engine.stop()

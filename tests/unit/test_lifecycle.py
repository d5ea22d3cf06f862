"""Unit tests for octopai.core.lifecycle — the workspace state machine."""

from __future__ import annotations

import pytest

from octopai.core.exceptions import InvalidTransitionError
from octopai.core.lifecycle import TRANSITIONS, Lifecycle, LifecycleState, can_transition
from octopai.core.models import WorkspaceState

S = LifecycleState


class TestTransitions:
    def test_happy_path(self) -> None:
        lc = Lifecycle()
        for state in (S.CREATING_WORKSPACE, S.LAUNCHING_SESSION, S.READY, S.REMOVING, S.REMOVED):
            lc = lc.to(state)
        assert lc.state == S.REMOVED
        assert lc.is_terminal

    def test_every_state_has_an_entry(self) -> None:
        assert set(TRANSITIONS) == set(LifecycleState)

    def test_removed_is_terminal(self) -> None:
        for state in LifecycleState:
            assert not can_transition(S.REMOVED, state)

    def test_failed_only_leaves_via_removing(self) -> None:
        allowed = {s for s in LifecycleState if can_transition(S.FAILED, s)}
        assert allowed == {S.REMOVING}

    @pytest.mark.parametrize(
        "src",
        [S.REQUESTED, S.CREATING_WORKSPACE, S.LAUNCHING_SESSION, S.READY, S.ATTACHING, S.REMOVING],
    )
    def test_failed_reachable_from_non_terminal(self, src: LifecycleState) -> None:
        assert can_transition(src, S.FAILED)

    def test_skipping_a_step_raises(self) -> None:
        with pytest.raises(InvalidTransitionError):
            Lifecycle().to(S.READY)

    def test_attach_returns_to_ready(self) -> None:
        lc = Lifecycle.ready().to(S.ATTACHING).to(S.READY)
        assert lc.state == S.READY

    def test_remove_conflict_returns_to_ready(self) -> None:
        lc = Lifecycle.ready().to(S.REMOVING).to(S.READY)
        assert lc.state == S.READY

    def test_relaunch_from_ready(self) -> None:
        assert can_transition(S.READY, S.LAUNCHING_SESSION)


class TestFailure:
    def test_failed_requires_reason(self) -> None:
        with pytest.raises(InvalidTransitionError):
            Lifecycle().to(S.FAILED)

    def test_fail_keeps_reason(self) -> None:
        lc = Lifecycle().to(S.CREATING_WORKSPACE).fail("git exploded")
        assert lc.state == S.FAILED
        assert lc.reason == "git exploded"

    def test_reason_dropped_when_leaving_failed(self) -> None:
        lc = Lifecycle().fail("boom").to(S.REMOVING)
        assert lc.reason is None

    def test_lifecycle_is_immutable(self) -> None:
        lc = Lifecycle()
        lc.to(S.CREATING_WORKSPACE)
        assert lc.state == S.REQUESTED


class TestWorkspaceStateMapping:
    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            (S.REQUESTED, WorkspaceState.CREATING),
            (S.LAUNCHING_SESSION, WorkspaceState.CREATING),
            (S.READY, WorkspaceState.READY),
            (S.ATTACHING, WorkspaceState.READY),
            (S.REMOVING, WorkspaceState.REMOVING),
            (S.REMOVED, WorkspaceState.REMOVED),
        ],
    )
    def test_workspace_state(self, state: LifecycleState, expected: WorkspaceState) -> None:
        assert Lifecycle(state=state).workspace_state == expected

    def test_from_failed_workspace(self) -> None:
        lc = Lifecycle.from_workspace_state(WorkspaceState.FAILED, "rollback failed")
        assert lc.state == S.FAILED
        assert lc.reason == "rollback failed"

    def test_discovered_workspace_is_ready(self) -> None:
        assert Lifecycle.from_workspace_state(WorkspaceState.READY).state == S.READY

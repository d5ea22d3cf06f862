"""
Workspace + session lifecycle state machine.

Pure data: no I/O, no locks. The orchestrator holds one ``Lifecycle`` per
workspace key and advances it with ``to()``; any move not in ``TRANSITIONS``
raises InvalidTransitionError.

    REQUESTED ─► CREATING_WORKSPACE ─► LAUNCHING_SESSION ─► READY
                                                            │  ▲
                                              ATTACHING ◄───┤  │
                                              REMOVING  ◄───┘  │ (vcs conflict)
                                                 │ └───────────┘
                                                 ▼
                                              REMOVED

FAILED is reachable from every non-terminal state and can only be left by
an explicit removal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from octopai.core.exceptions import InvalidTransitionError
from octopai.core.models import WorkspaceState


class LifecycleState(StrEnum):
    REQUESTED = "requested"
    CREATING_WORKSPACE = "creating_workspace"
    LAUNCHING_SESSION = "launching_session"
    READY = "ready"
    ATTACHING = "attaching"
    REMOVING = "removing"
    REMOVED = "removed"
    FAILED = "failed"


_S = LifecycleState

TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    _S.REQUESTED: frozenset({_S.CREATING_WORKSPACE, _S.FAILED}),
    _S.CREATING_WORKSPACE: frozenset({_S.LAUNCHING_SESSION, _S.FAILED}),
    _S.LAUNCHING_SESSION: frozenset({_S.READY, _S.FAILED}),
    _S.READY: frozenset({_S.ATTACHING, _S.REMOVING, _S.LAUNCHING_SESSION, _S.FAILED}),
    _S.ATTACHING: frozenset({_S.READY, _S.FAILED}),
    _S.REMOVING: frozenset({_S.REMOVED, _S.READY, _S.FAILED}),
    _S.FAILED: frozenset({_S.REMOVING}),
    _S.REMOVED: frozenset(),
}

_WORKSPACE_STATE: dict[LifecycleState, WorkspaceState] = {
    _S.REQUESTED: WorkspaceState.CREATING,
    _S.CREATING_WORKSPACE: WorkspaceState.CREATING,
    _S.LAUNCHING_SESSION: WorkspaceState.CREATING,
    _S.READY: WorkspaceState.READY,
    _S.ATTACHING: WorkspaceState.READY,
    _S.REMOVING: WorkspaceState.REMOVING,
    _S.REMOVED: WorkspaceState.REMOVED,
    _S.FAILED: WorkspaceState.FAILED,
}


def can_transition(src: LifecycleState, dst: LifecycleState) -> bool:
    return dst in TRANSITIONS[src]


@dataclass(frozen=True)
class Lifecycle:
    """Current lifecycle state of one workspace, with the failure reason if any."""

    state: LifecycleState = LifecycleState.REQUESTED
    reason: str | None = None

    def to(self, state: LifecycleState, reason: str | None = None) -> Lifecycle:
        if not can_transition(self.state, state):
            raise InvalidTransitionError(f"Cannot move from {self.state} to {state}")
        if state == LifecycleState.FAILED and not reason:
            raise InvalidTransitionError("FAILED requires a reason")
        return Lifecycle(state=state, reason=reason if state == LifecycleState.FAILED else None)

    def fail(self, reason: str) -> Lifecycle:
        return self.to(LifecycleState.FAILED, reason)

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.state]

    @property
    def workspace_state(self) -> WorkspaceState:
        return _WORKSPACE_STATE[self.state]

    @classmethod
    def ready(cls) -> Lifecycle:
        """Lifecycle for a worktree discovered on disk rather than created here."""
        return cls(state=LifecycleState.READY)

    @classmethod
    def from_workspace_state(cls, state: WorkspaceState, error: str | None = None) -> Lifecycle:
        if state == WorkspaceState.FAILED:
            return cls(state=LifecycleState.FAILED, reason=error or "unknown failure")
        if state == WorkspaceState.REMOVED:
            return cls(state=LifecycleState.REMOVED)
        return cls.ready()

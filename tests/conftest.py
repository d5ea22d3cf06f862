"""
Shared fixtures: in-memory collaborators and a wired-up board core.

The fakes record every call and can be told to fail a specific operation,
so lifecycle and refresh tests run without git, gh, tmux or screen.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

import pytest

from octopai.collaborators.base import IssueTracker, Multiplexer, VersionControl, WorktreeInfo
from octopai.core.board.reconciler import RefreshReconciler
from octopai.core.board.store import BoardStore
from octopai.core.exceptions import CollaboratorError
from octopai.core.messages import MessageLog
from octopai.core.models import ChangeState, Issue, IssueState, ListFilter, ProposedChange
from octopai.core.orchestrator import LifecycleOrchestrator
from octopai.core.session.registry import SessionRegistry


class _Failures:
    """Per-operation failure injection: ``fail("add_worktree", exc)``."""

    def __init__(self) -> None:
        self._errors: dict[str, BaseException] = {}
        self.calls: list[tuple[str, tuple]] = []

    def fail(self, op: str, exc: BaseException | None = None) -> None:
        self._errors[op] = exc or CollaboratorError(f"{op} failed")

    def clear(self, op: str) -> None:
        self._errors.pop(op, None)

    def _enter(self, op: str, *args: object) -> None:
        self.calls.append((op, args))
        if op in self._errors:
            raise self._errors[op]

    def called(self, op: str) -> list[tuple]:
        return [args for name, args in self.calls if name == op]


class FakeTracker(_Failures, IssueTracker):
    name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self.issues: dict[int, Issue] = {}
        self.changes: dict[int, ProposedChange] = {}
        self.list_delay = 0.0

    def add_issue(self, number: int, title: str = "", body: str = "") -> Issue:
        issue = Issue(number=number, title=title or f"Issue {number}", body=body)
        self.issues[number] = issue
        return issue

    def add_change(self, number: int, branch: str, **fields: object) -> ProposedChange:
        from octopai.core.naming import issue_number_from_ref

        change = ProposedChange(
            number=number,
            title=f"PR {number}",
            branch=branch,
            issue_number=issue_number_from_ref(branch),
            **fields,  # type: ignore[arg-type]
        )
        self.changes[number] = change
        return change

    async def list_issues(self, filter: ListFilter) -> list[Issue]:
        self._enter("list_issues", filter.state)
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        return [i for i in self.issues.values() if i.state == filter.state]

    async def get_issue(self, number: int) -> Issue:
        self._enter("get_issue", number)
        if number not in self.issues:
            raise CollaboratorError(f"no issue #{number}")
        return self.issues[number]

    async def create_issue(self, title: str, body: str) -> Issue:
        self._enter("create_issue", title)
        return self.add_issue(max(self.issues, default=0) + 1, title, body)

    async def close_issue(self, number: int) -> None:
        self._enter("close_issue", number)
        self.issues[number] = replace(self.issues[number], state=IssueState.CLOSED)

    async def list_changes(self, filter: ListFilter) -> list[ProposedChange]:
        self._enter("list_changes", filter.state)
        if filter.state == "open":
            return [c for c in self.changes.values() if c.state == ChangeState.OPEN]
        return [c for c in self.changes.values() if c.state != ChangeState.OPEN]

    async def mark_ready(self, number: int) -> None:
        self._enter("mark_ready", number)
        self.changes[number] = replace(self.changes[number], is_draft=False)

    async def merge(self, number: int) -> None:
        self._enter("merge", number)
        self.changes[number] = replace(self.changes[number], state=ChangeState.MERGED)

    async def revert(self, number: int) -> ProposedChange | None:
        self._enter("revert", number)
        original = self.changes[number]
        return self.add_change(100 + number, f"revert-{number}-{original.branch}", is_draft=True)

    async def assign_to_me(self, number: int) -> None:
        self._enter("assign_to_me", number)


class FakeVcs(_Failures, VersionControl):
    def __init__(self, root: Path) -> None:
        super().__init__()
        self._root = root
        self.worktrees: dict[Path, str | None] = {}
        self.dirty: set[Path] = set()
        self.list_delay = 0.0

    @property
    def repo_root(self) -> Path:
        return self._root

    async def add_worktree(self, path: Path, branch: str) -> None:
        self._enter("add_worktree", path, branch)
        path.mkdir(parents=True, exist_ok=True)
        self.worktrees[path] = branch

    async def remove_worktree(self, path: Path, branch: str, force: bool = False) -> None:
        self._enter("remove_worktree", path, branch, force)
        if path in self.dirty and not force:
            from octopai.core.exceptions import ResourceConflictError

            raise ResourceConflictError(f"'{path}' contains modified or untracked files")
        self.worktrees.pop(path, None)
        self.dirty.discard(path)

    async def list_worktrees(self) -> list[WorktreeInfo]:
        self._enter("list_worktrees")
        listed = [WorktreeInfo(path=p, branch=b) for p, b in self.worktrees.items()]
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        return listed

    async def pull_main(self) -> str:
        self._enter("pull_main")
        return "Already up to date."


class FakeMux(_Failures, Multiplexer):
    name = "fake"
    executable = "fakemux"

    def __init__(self) -> None:
        super().__init__()
        self.sessions: dict[str, dict] = {}

    async def start_session(
        self,
        name: str,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._enter("start_session", name, command, cwd)
        self.sessions[name] = {"command": command, "cwd": cwd, "env": dict(env or {})}

    async def kill_session(self, name: str) -> bool:
        self._enter("kill_session", name)
        return self.sessions.pop(name, None) is not None

    async def list_sessions(self) -> list[str]:
        self._enter("list_sessions")
        return list(self.sessions)

    async def attach(self, name: str) -> None:
        self._enter("attach", name)


def _which(name: str) -> str | None:
    return f"/usr/bin/{name}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def vcs(tmp_path: Path) -> FakeVcs:
    root = tmp_path / "repo"
    root.mkdir()
    return FakeVcs(root)


@pytest.fixture
def mux() -> FakeMux:
    return FakeMux()


@pytest.fixture
def store() -> BoardStore:
    return BoardStore()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def messages() -> MessageLog:
    return MessageLog(maxlen=100)


@pytest.fixture
def orchestrator(
    tmp_path: Path,
    store: BoardStore,
    registry: SessionRegistry,
    messages: MessageLog,
    tracker: FakeTracker,
    vcs: FakeVcs,
    mux: FakeMux,
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(
        store,
        registry,
        messages,
        tracker,
        vcs,
        mux,
        repo="acme/widgets",
        command_template="{claude}",
        prompts_dir=tmp_path / "prompts",
        socket_path=tmp_path / "events.sock",
        trust_state_file=tmp_path / "claude.json",
        which=_which,
    )


@pytest.fixture
def reconciler(
    store: BoardStore,
    registry: SessionRegistry,
    messages: MessageLog,
    tracker: FakeTracker,
    vcs: FakeVcs,
    mux: FakeMux,
) -> RefreshReconciler:
    return RefreshReconciler(store, registry, messages, tracker, vcs, mux, interval=5.0)


@pytest.fixture
def socket_path():
    """A short socket path; unix socket paths are limited to ~100 bytes."""
    import shutil
    import tempfile

    d = Path(tempfile.mkdtemp(prefix="oct-"))
    yield d / "events.sock"
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def engine(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    socket_path: Path,
    tracker: FakeTracker,
    vcs: FakeVcs,
    mux: FakeMux,
):
    """A BoardEngine over the fakes, with its data dir and socket under tmp."""
    from octopai.core.config import OctopaiConfig
    from octopai.core.engine import BoardEngine

    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    config = OctopaiConfig.model_validate({"events": {"socket_path": str(socket_path)}})
    return BoardEngine(
        config,
        tracker,
        vcs,
        mux,
        repo="acme/widgets",
        trust_state_file=tmp_path / "claude.json",
        which=_which,
    )

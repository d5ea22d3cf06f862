"""
Board domain models.

Four entity kinds share one key space: the issue number. An issue #42 owns
at most one active Workspace with key "42", whose Session also has key "42",
and any ProposedChange whose head branch follows the ``issue-42`` naming
convention links back to it.

Each model lists the fields an external refresh is allowed to overwrite in
``EXTERNAL_FIELDS``; everything else is owned by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar


class Column(StrEnum):
    ISSUES = "issues"
    WORKSPACES = "workspaces"
    SESSIONS = "sessions"
    CHANGES = "changes"


COLUMN_ORDER: tuple[Column, ...] = (
    Column.ISSUES,
    Column.WORKSPACES,
    Column.SESSIONS,
    Column.CHANGES,
)


class IssueState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class WorkspaceState(StrEnum):
    CREATING = "creating"
    READY = "ready"
    REMOVING = "removing"
    REMOVED = "removed"
    FAILED = "failed"


class SessionStatus(StrEnum):
    STARTING = "starting"
    WORKING = "working"
    IDLE = "idle"
    WAITING_PERMISSION = "waiting_permission"
    EXITED = "exited"
    UNKNOWN = "unknown"


class ChangeState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Issue:
    """A tracker issue, read-only to the engine apart from close."""

    EXTERNAL_FIELDS: ClassVar[tuple[str, ...]] = (
        "title",
        "body",
        "state",
        "assignees",
        "labels",
        "created_at",
        "updated_at",
        "url",
    )

    number: int
    title: str
    body: str = ""
    state: IssueState = IssueState.OPEN
    assignees: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    created_at: str = ""
    updated_at: str = ""
    url: str = ""

    @property
    def key(self) -> str:
        return str(self.number)

    @property
    def issue_key(self) -> str:
        return str(self.number)


@dataclass
class Workspace:
    """A git worktree checked out for one issue."""

    EXTERNAL_FIELDS: ClassVar[tuple[str, ...]] = ("branch", "path")

    key: str
    branch: str
    path: str
    issue_number: int
    state: WorkspaceState = WorkspaceState.READY
    error: str | None = None

    @property
    def issue_key(self) -> str:
        return str(self.issue_number)

    @property
    def is_active(self) -> bool:
        return self.state != WorkspaceState.REMOVED

    @property
    def in_flight(self) -> bool:
        """True while the orchestrator owns the workspace; refresh must not drop it."""
        return self.state in (
            WorkspaceState.CREATING,
            WorkspaceState.REMOVING,
            WorkspaceState.FAILED,
        )


@dataclass
class Session:
    """An AI assistant running in a multiplexer session for one workspace."""

    # Status lives in the SessionRegistry; refresh only confirms presence.
    EXTERNAL_FIELDS: ClassVar[tuple[str, ...]] = ()

    key: str
    status: SessionStatus = SessionStatus.UNKNOWN
    last_updated: datetime = field(default_factory=utcnow)
    detail: str | None = None
    last_seq: int = 0
    generation: int = 0

    @property
    def issue_key(self) -> str:
        return self.key

    @property
    def is_running(self) -> bool:
        return self.status not in (SessionStatus.EXITED, SessionStatus.UNKNOWN)


@dataclass
class ProposedChange:
    """A pull request; ``issue_number`` is derived from its head branch."""

    EXTERNAL_FIELDS: ClassVar[tuple[str, ...]] = (
        "title",
        "body",
        "branch",
        "issue_number",
        "state",
        "is_draft",
        "url",
    )

    number: int
    title: str
    body: str = ""
    branch: str = ""
    issue_number: int | None = None
    state: ChangeState = ChangeState.OPEN
    is_draft: bool = False
    url: str = ""

    @property
    def key(self) -> str:
        return str(self.number)

    @property
    def issue_key(self) -> str | None:
        return str(self.issue_number) if self.issue_number is not None else None

    @property
    def review_ready(self) -> bool:
        return self.state == ChangeState.OPEN and not self.is_draft


BoardEntity = Issue | Workspace | Session | ProposedChange


def entity_key(entity: BoardEntity) -> str:
    return entity.key


@dataclass
class ListFilter:
    """State and assignee filter for issue and PR listings."""

    state: str = "open"  # "open" | "closed"
    assignee: str = "all"  # "all" | "mine"

    def toggle_state(self) -> None:
        self.state = "closed" if self.state == "open" else "open"

    def toggle_assignee(self) -> None:
        self.assignee = "mine" if self.assignee == "all" else "all"

    def label(self) -> str:
        return f"{self.state}/{self.assignee}"

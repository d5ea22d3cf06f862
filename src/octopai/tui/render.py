"""Row formatting for the four board columns. Pure functions, no textual imports."""

from __future__ import annotations

from datetime import datetime

from rich.markup import escape

from octopai.core.messages import Message, MessageLevel
from octopai.core.models import (
    BoardEntity,
    ChangeState,
    Column,
    Issue,
    ProposedChange,
    Session,
    SessionStatus,
    Workspace,
    WorkspaceState,
)

COLUMN_TITLES: dict[Column, str] = {
    Column.ISSUES: "Issues",
    Column.WORKSPACES: "Workspaces",
    Column.SESSIONS: "Sessions",
    Column.CHANGES: "Pull requests",
}

COLUMN_HEADERS: dict[Column, tuple[str, ...]] = {
    Column.ISSUES: ("", "#", "Title"),
    Column.WORKSPACES: ("", "Branch", "State"),
    Column.SESSIONS: ("", "Session", "Status", "Updated"),
    Column.CHANGES: ("", "#", "Title", "State"),
}

_SESSION_STYLE: dict[SessionStatus, str] = {
    SessionStatus.STARTING: "cyan",
    SessionStatus.WORKING: "green",
    SessionStatus.IDLE: "yellow",
    SessionStatus.WAITING_PERMISSION: "bold magenta",
    SessionStatus.EXITED: "dim",
    SessionStatus.UNKNOWN: "dim",
}

_WORKSPACE_STYLE: dict[WorkspaceState, str] = {
    WorkspaceState.CREATING: "cyan",
    WorkspaceState.READY: "green",
    WorkspaceState.REMOVING: "yellow",
    WorkspaceState.REMOVED: "dim",
    WorkspaceState.FAILED: "red",
}

_LEVEL_STYLE: dict[MessageLevel, str] = {
    MessageLevel.INFO: "dim",
    MessageLevel.WARNING: "yellow",
    MessageLevel.ERROR: "red",
}


def truncate(text: str, width: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 1] + "…"


def marker(selected: bool, related: bool) -> str:
    if selected:
        return "›"
    return "•" if related else ""


def format_age(at: datetime, now: datetime) -> str:
    seconds = max(0, int((now - at).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    return f"{seconds // 3600}h"


def _issue_row(issue: Issue) -> tuple[str, ...]:
    title = escape(truncate(issue.title, 48))
    if issue.assignees:
        title += f" [dim]@{','.join(issue.assignees)}[/dim]"
    return (f"#{issue.number}", title)


def _workspace_row(ws: Workspace) -> tuple[str, ...]:
    style = _WORKSPACE_STYLE.get(ws.state, "")
    state = f"[{style}]{ws.state}[/{style}]" if style else str(ws.state)
    if ws.state == WorkspaceState.FAILED and ws.error:
        state += f" [dim]{escape(truncate(ws.error, 40))}[/dim]"
    return (escape(ws.branch), state)


def _session_row(session: Session, now: datetime) -> tuple[str, ...]:
    style = _SESSION_STYLE.get(session.status, "")
    label = str(session.status).replace("_", " ")
    status = f"[{style}]{label}[/{style}]" if style else label
    return (f"issue-{session.key}", status, format_age(session.last_updated, now))


def _change_row(change: ProposedChange) -> tuple[str, ...]:
    if change.state == ChangeState.MERGED:
        state = "[magenta]merged[/magenta]"
    elif change.state == ChangeState.CLOSED:
        state = "[dim]closed[/dim]"
    elif change.is_draft:
        state = "[dim]draft[/dim]"
    else:
        state = "[green]ready[/green]"
    return (f"#{change.number}", escape(truncate(change.title, 40)), state)


def entity_row(entity: BoardEntity, now: datetime) -> tuple[str, ...]:
    """Cells after the marker cell for one entity."""
    if isinstance(entity, Issue):
        return _issue_row(entity)
    if isinstance(entity, Workspace):
        return _workspace_row(entity)
    if isinstance(entity, Session):
        return _session_row(entity, now)
    if isinstance(entity, ProposedChange):
        return _change_row(entity)
    raise TypeError(f"not a board entity: {entity!r}")


def format_message(message: Message) -> str:
    style = _LEVEL_STYLE.get(message.level, "")
    stamp = message.at.astimezone().strftime("%H:%M:%S")
    text = escape(message.text)
    return f"[dim]{stamp}[/dim]  [{style}]{text}[/{style}]" if style else f"{stamp}  {text}"

"""
NewIssueScreen — modal prompt for an issue title and optional body.

Dismisses with ``(title, body)`` on enter, or ``None`` on escape.
"""

from __future__ import annotations

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Input, Label


class NewIssueScreen(ModalScreen[tuple[str, str] | None]):
    """Collect a title and body for a new issue."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel", show=True),
    ]

    def compose(self) -> ComposeResult:
        with Vertical(id="new-issue-root"):
            yield Label("New issue", id="new-issue-title")
            yield Input(placeholder="Title", id="new-issue-name")
            yield Input(placeholder="Description (optional)", id="new-issue-body")
            yield Label("", id="new-issue-error")

    def on_mount(self) -> None:
        self.query_one("#new-issue-name", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        title = self.query_one("#new-issue-name", Input).value.strip()
        if event.input.id == "new-issue-name" and title:
            self.query_one("#new-issue-body", Input).focus()
            return
        if not title:
            self.query_one("#new-issue-error", Label).update("[red]A title is required[/red]")
            return
        self.dismiss((title, self.query_one("#new-issue-body", Input).value.strip()))

    def action_cancel(self) -> None:
        self.dismiss(None)

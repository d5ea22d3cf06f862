"""
CommandPromptScreen — asks for a verify or editor command the first time one is needed.

Dismisses with the entered template on enter, or ``None`` on escape.
"""

from __future__ import annotations

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Input, Label

_EXAMPLES = {
    "verify": "make test",
    "editor": "code {worktree_path}",
}


class CommandPromptScreen(ModalScreen[str | None]):
    """Collect a command template for *kind* in *repo*."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel", show=True),
    ]

    def __init__(self, kind: str, repo: str) -> None:
        super().__init__()
        self._kind = kind
        self._repo = repo

    def compose(self) -> ComposeResult:
        with Vertical(id="command-prompt-root"):
            yield Label(f"No {self._kind} command for {self._repo}", id="command-prompt-title")
            yield Label(
                "Runs in the worktree; {worktree_path} {branch} {issue_number} {repo} are filled in",
                id="command-prompt-help",
            )
            yield Input(placeholder=_EXAMPLES.get(self._kind, ""), id="command-prompt-input")
            yield Label("", id="command-prompt-error")

    def on_mount(self) -> None:
        self.query_one("#command-prompt-input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        template = event.value.strip()
        if not template:
            self.query_one("#command-prompt-error", Label).update("[red]A command is required[/red]")
            return
        self.dismiss(template)

    def action_cancel(self) -> None:
        self.dismiss(None)

"""
ConfirmScreen — y/N prompt shown before destructive board actions.

Dismisses with ``True`` on ``y``, ``False`` on ``n`` or escape.
"""

from __future__ import annotations

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Label


class ConfirmScreen(ModalScreen[bool]):
    """Ask the user to confirm *message*."""

    BINDINGS = [
        Binding("y,Y", "confirm", "Yes", show=True),
        Binding("n,N,escape", "cancel", "No", show=True),
    ]

    def __init__(self, message: str) -> None:
        super().__init__()
        self._message = message

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-root"):
            yield Label(self._message, id="confirm-message")
            yield Label("[b]y[/b] confirm   [b]n[/b] cancel", id="confirm-hint")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)

"""
octopai board — Textual application.

Launched by ``octopai`` (no args, TTY) or ``octopai board``.

Widget tree::

    Header
    #board-root  (Vertical)
      #board-filters  (Label)
      #board-columns  (Horizontal)
        #panel-<column>  (Vertical, one per column)
          Label
          #col-<column>  (DataTable)
      #board-messages  (RichLog)
    Footer

The board never blocks on collaborators: every action runs in a worker
and the screen redraws from ``BoardEngine.snapshot()`` when the store,
the message log or the session registry changes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, Label, RichLog

from octopai import __version__
from octopai.core.board.xref import related, related_keys
from octopai.core.engine import BoardEngine
from octopai.core.events.protocol import HookEvent
from octopai.core.exceptions import ConfigError, StartupError
from octopai.core.models import (
    COLUMN_ORDER,
    BoardEntity,
    ChangeState,
    Column,
    Issue,
    ProposedChange,
    utcnow,
)
from octopai.core.session.registry import ApplyResult
from octopai.tui.render import COLUMN_HEADERS, COLUMN_TITLES, entity_row, format_message, marker

logger = structlog.get_logger()

_CSS = """
#board-filters { height: 1; padding: 0 1; color: $text-muted; }
#board-columns { height: 1fr; }
.board-panel { width: 1fr; border: round $panel; }
.board-panel.active { border: round $accent; }
.board-panel Label { padding: 0 1; text-style: bold; }
.board-panel DataTable { height: 1fr; }
#board-messages { height: 8; border: round $panel; }
NewIssueScreen { align: center middle; }
#new-issue-root { width: 70; height: auto; border: round $accent; padding: 1 2; background: $surface; }
ConfirmScreen { align: center middle; }
#confirm-root { width: 60; height: auto; border: round $warning; padding: 1 2; background: $surface; }
#confirm-hint { color: $text-muted; padding-top: 1; }
CommandPromptScreen { align: center middle; }
#command-prompt-root { width: 80; height: auto; border: round $accent; padding: 1 2; background: $surface; }
#command-prompt-help { color: $text-muted; }
"""


# ---------------------------------------------------------------------------
# Board screen
# ---------------------------------------------------------------------------


class BoardScreen(Screen):
    """Four-column board with the message log underneath."""

    AUTO_FOCUS = None

    BINDINGS = [
        Binding("tab", "next_column", "Column", show=False, priority=True),
        Binding("shift+tab", "prev_column", "Column", show=False, priority=True),
        Binding("right", "next_column", show=False),
        Binding("left", "prev_column", show=False),
        Binding("down,j", "move(1)", show=False),
        Binding("up,k", "move(-1)", show=False),
        Binding("r", "refresh", "Refresh", show=True),
        Binding("w", "create_workspace", "Workspace", show=True),
        Binding("a", "attach", "Attach", show=True),
        Binding("l", "launch", "Launch", show=False),
        Binding("x", "kill", "Kill", show=False),
        Binding("d", "remove", "Remove", show=True),
        Binding("D", "force_remove", "Force remove", show=False),
        Binding("n", "new_issue", "New issue", show=True),
        Binding("c", "close_issue", "Close", show=False),
        Binding("R", "mark_ready", "Ready", show=False),
        Binding("m", "merge", "Merge", show=True),
        Binding("V", "revert", "Revert", show=False),
        Binding("o", "open_change", "Open PR", show=False),
        Binding("v", "verify", "Verify", show=True),
        Binding("e", "editor", "Editor", show=False),
        Binding("p", "pull", "Pull", show=False),
        Binding("s", "toggle_state", "Open/closed", show=False),
        Binding("f", "toggle_mine", "Mine/all", show=False),
        Binding("q", "app.quit", "Quit", show=True),
    ]

    def __init__(self, engine: BoardEngine) -> None:
        super().__init__()
        self._engine = engine
        self._dirty = True
        self._rendered: tuple[int, int] | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical(id="board-root"):
            yield Label("", id="board-filters")
            with Horizontal(id="board-columns"):
                for column in COLUMN_ORDER:
                    with Vertical(id=f"panel-{column}", classes="board-panel"):
                        yield Label(COLUMN_TITLES[column])
                        table: DataTable = DataTable(id=f"col-{column}", cursor_type="row")
                        table.can_focus = False
                        table.add_columns(*COLUMN_HEADERS[column])
                        yield table
            messages = RichLog(id="board-messages", wrap=True, markup=True)
            messages.can_focus = False
            yield messages
        yield Footer()

    def on_mount(self) -> None:
        self._engine.server.add_listener(self._on_hook_event)
        self._engine.reconciler.add_listener(lambda _result: self._mark_dirty())
        self.set_interval(0.2, self._render_if_dirty)
        self.set_interval(5.0, self._mark_dirty)
        self._engine.reconciler.request()

    def _on_hook_event(self, event: HookEvent, result: ApplyResult) -> None:
        if result is ApplyResult.APPLIED:
            self._dirty = True

    def _mark_dirty(self) -> None:
        self._dirty = True

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render_if_dirty(self) -> None:
        key = (self._engine.store.version, self._engine.messages.total)
        if not self._dirty and key == self._rendered:
            return
        self._dirty = False
        self._rendered = key
        try:
            self._render_board()
        except Exception as exc:  # noqa: BLE001
            logger.exception("board_render_failed", error=str(exc))

    def _render_board(self) -> None:
        snapshot = self._engine.snapshot()
        highlighted = related_keys(snapshot)
        now = utcnow()
        for column in COLUMN_ORDER:
            panel = self.query_one(f"#panel-{column}", Vertical)
            panel.set_class(column == snapshot.active, "active")
            table = self.query_one(f"#col-{column}", DataTable)
            table.clear()
            selected = snapshot.selected[column]
            for row, entity in enumerate(snapshot.columns[column]):
                is_selected = entity.key == selected
                table.add_row(
                    marker(is_selected, (column, entity.key) in highlighted),
                    *entity_row(entity, now),
                    key=entity.key,
                )
                if is_selected:
                    table.move_cursor(row=row, animate=False)
            table.show_cursor = column == snapshot.active

        reconciler = self._engine.reconciler
        self.query_one("#board-filters", Label).update(
            f"{self._engine.repo}  |  issues: {reconciler.issue_filter.label()}"
            f"  |  PRs: {reconciler.change_filter.label()}"
            + ("  |  [cyan]refreshing…[/cyan]" if reconciler.in_flight else "")
        )

        log = self.query_one("#board-messages", RichLog)
        log.clear()
        for message in self._engine.messages.snapshot()[-50:]:
            log.write(format_message(message))

    # ------------------------------------------------------------------
    # Selection helpers
    # ------------------------------------------------------------------

    def _pick(self, column: Column) -> BoardEntity | None:
        """Selected entity in *column*, or the one related to the active selection."""
        snapshot = self._engine.snapshot()
        entity = snapshot.selected_entity()
        if entity is None:
            return None
        if snapshot.active == column:
            return entity
        matches = related(snapshot, snapshot.active, entity.key).get(column) or []
        return matches[0] if matches else None

    def _pick_issue(self) -> Issue | None:
        entity = self._pick(Column.ISSUES)
        if isinstance(entity, Issue):
            return entity
        self.notify("Select an issue first", severity="warning")
        return None

    def _pick_workspace_key(self) -> str | None:
        snapshot = self._engine.snapshot()
        entity = snapshot.selected_entity()
        key = getattr(entity, "issue_key", None) if entity is not None else None
        if key is None or snapshot.get(Column.WORKSPACES, key) is None:
            self.notify("No workspace for the selection", severity="warning")
            return None
        return key

    def _pick_change(self) -> ProposedChange | None:
        entity = self._pick(Column.CHANGES)
        if isinstance(entity, ProposedChange):
            return entity
        self.notify("Select a pull request first", severity="warning")
        return None

    def _run(self, op: Awaitable[object]) -> None:
        async def _job() -> None:
            try:
                await op
            except Exception as exc:  # noqa: BLE001
                logger.exception("board_action_failed", error=str(exc))
                self._engine.messages.error(f"Unexpected error: {exc}")
            finally:
                self._engine.reconciler.request()
                self._dirty = True

        self.run_worker(_job(), group="board-ops")

    def _confirm(self, message: str, op: Callable[[], Awaitable[object]]) -> None:
        """Run ``op()`` once the user answers ``y``; the coroutine is not created on ``n``."""
        from octopai.tui.screens.confirm import ConfirmScreen

        def _answered(confirmed: bool | None) -> None:
            if confirmed:
                self._run(op())

        self.app.push_screen(ConfirmScreen(message), _answered)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def action_next_column(self) -> None:
        self._engine.store.cycle_active(1)

    def action_prev_column(self) -> None:
        self._engine.store.cycle_active(-1)

    def action_move(self, delta: int) -> None:
        self._engine.store.move(delta)

    def action_refresh(self) -> None:
        self._engine.reconciler.request()
        self._dirty = True

    def action_toggle_state(self) -> None:
        self._engine.reconciler.toggle_state(self._engine.store.snapshot().active)
        self._dirty = True

    def action_toggle_mine(self) -> None:
        self._engine.reconciler.toggle_assignee(self._engine.store.snapshot().active)
        self._dirty = True

    # ------------------------------------------------------------------
    # Workspace / session actions
    # ------------------------------------------------------------------

    def action_create_workspace(self) -> None:
        if issue := self._pick_issue():
            self._run(self._engine.orchestrator.create(issue))

    def action_remove(self) -> None:
        if key := self._pick_workspace_key():
            self._confirm(
                f"Remove worktree {key!r}?\n\nThis also deletes the branch and kills its session.",
                lambda: self._engine.orchestrator.remove(key),
            )

    def action_force_remove(self) -> None:
        if key := self._pick_workspace_key():
            self._confirm(
                f"Force remove worktree {key!r}?\n\nUncommitted changes will be lost.",
                lambda: self._engine.orchestrator.remove(key, force=True),
            )

    def action_launch(self) -> None:
        if key := self._pick_workspace_key():
            self._run(self._engine.orchestrator.launch_session(key))

    def action_kill(self) -> None:
        if key := self._pick_workspace_key():
            self._run(self._engine.orchestrator.kill_session(key))

    async def action_attach(self) -> None:
        key = self._pick_workspace_key()
        if key is None:
            return
        with self.app.suspend():
            outcome = await self._engine.orchestrator.attach(key)
        if not outcome.ok:
            self.notify(outcome.message, severity="error")
        self.action_refresh()

    def action_verify(self) -> None:
        if key := self._pick_workspace_key():
            self._worktree_command("verify", key)

    def action_editor(self) -> None:
        if key := self._pick_workspace_key():
            self._worktree_command("editor", key)

    def _worktree_command(self, kind: str, key: str) -> None:
        """Run the verify or editor command, asking for one first if none is configured."""
        from octopai.tui.screens.command_prompt import CommandPromptScreen

        orchestrator = self._engine.orchestrator
        run = orchestrator.run_verify if kind == "verify" else orchestrator.open_editor
        if getattr(orchestrator, f"{kind}_command"):
            self._run(run(key))
            return

        def _entered(template: str | None) -> None:
            if template is None:
                return
            try:
                self._engine.save_command(kind, template)
            except ConfigError as exc:
                self._engine.messages.error(f"Could not save {kind} command: {exc}")
                self._dirty = True
                return
            self._engine.messages.info(f"Saved {kind} command for {self._engine.repo}")
            self._run(run(key))

        self.app.push_screen(CommandPromptScreen(kind, self._engine.repo), _entered)

    # ------------------------------------------------------------------
    # Issue / pull request actions
    # ------------------------------------------------------------------

    def action_new_issue(self) -> None:
        from octopai.tui.screens.new_issue import NewIssueScreen

        def _created(result: tuple[str, str] | None) -> None:
            if result is not None:
                title, body = result
                self._run(self._engine.orchestrator.create_issue(title, body))

        self.app.push_screen(NewIssueScreen(), _created)

    def action_close_issue(self) -> None:
        if issue := self._pick_issue():
            self._confirm(
                f"Close issue #{issue.number}?\n\n{issue.title}",
                lambda: self._engine.orchestrator.close_issue(issue.number),
            )

    def action_mark_ready(self) -> None:
        if change := self._pick_change():
            self._run(self._engine.orchestrator.mark_ready(change.number))

    def action_merge(self) -> None:
        if change := self._pick_change():
            self._confirm(
                f"Merge PR #{change.number}?\n\n{change.title}",
                lambda: self._engine.orchestrator.merge(change.number),
            )

    def action_revert(self) -> None:
        change = self._pick_change()
        if change is None:
            return
        if change.state != ChangeState.MERGED:
            self.notify("Only merged pull requests can be reverted", severity="warning")
            return
        self._confirm(
            f"Revert PR #{change.number}?\n\n{change.title}",
            lambda: self._engine.orchestrator.revert(change.number),
        )

    def action_open_change(self) -> None:
        if change := self._pick_change():
            self._run(self._engine.orchestrator.open_change(change.number))

    def action_pull(self) -> None:
        self._run(self._engine.orchestrator.pull_main())


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


class BoardApp(App):  # type: ignore[type-arg]
    """octopai interactive board."""

    TITLE = f"octopai {__version__}"
    CSS = _CSS

    BINDINGS = [
        Binding("ctrl+c", "app.quit", "Quit", show=False, priority=True),
    ]

    def __init__(self, engine: BoardEngine) -> None:
        super().__init__()
        self._engine = engine
        self.startup_error: StartupError | None = None

    def compose(self) -> ComposeResult:
        # The board screen is pushed in on_mount; compose yields nothing here.
        return iter([])

    async def on_mount(self) -> None:
        self.sub_title = self._engine.repo
        try:
            await self._engine.start()
        except StartupError as exc:
            self.startup_error = exc
            self.exit(return_code=int(exc.exit_code))
            return
        self.push_screen(BoardScreen(self._engine))

    async def on_unmount(self) -> None:
        await self._engine.stop()


def run(engine: BoardEngine) -> None:
    """Entry point called from the CLI. Re-raises a StartupError from mount."""
    app = BoardApp(engine)
    app.run()
    if app.startup_error is not None:
        raise app.startup_error

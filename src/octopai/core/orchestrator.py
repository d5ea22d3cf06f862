"""
Lifecycle orchestrator — create, launch, attach and remove workspaces.

Each operation runs the external steps for one workspace key in order,
moving its Lifecycle through the transition table and mirroring the
result into the BoardStore and SessionRegistry as it goes.

Serialization:
  One asyncio.Lock per workspace key. Locks are FIFO, so a remove issued
  while a create is running waits for the create to settle and then acts
  on its result. Different keys never wait on each other.

Errors:
  Every public method returns an Outcome. Collaborator failures become
  failed outcomes plus a message-log entry; nothing expected is raised to
  the caller.

Create rollback:
  If a step fails after the worktree exists, the worktree is removed
  (forced) before the failure is reported. If that removal also fails the
  workspace stays on the board in FAILED state until the user removes it.
"""

from __future__ import annotations

import asyncio
import shutil
import webbrowser
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from pathlib import Path

import structlog

from octopai.collaborators._exec import spawn_detached
from octopai.collaborators.base import IssueTracker, Multiplexer, VersionControl
from octopai.core.board.store import BoardStore
from octopai.core.constants import ASSISTANT_GLOBAL_STATE, ENV_SESSION_ID, ENV_SOCKET
from octopai.core.events.hooks import trust_directory, write_hook_settings
from octopai.core.exceptions import CollaboratorError, ResourceConflictError
from octopai.core.lifecycle import Lifecycle, LifecycleState
from octopai.core.messages import MessageLog
from octopai.core.models import (
    ChangeState,
    Column,
    Issue,
    IssueState,
    ProposedChange,
    Session,
    SessionStatus,
    Workspace,
    WorkspaceState,
)
from octopai.core.naming import branch_name, session_name, workspace_key, worktree_path
from octopai.core.session.registry import SessionRegistry
from octopai.core.templating import (
    TemplateContext,
    build_prompt,
    referenced_executables,
    render_command,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class Outcome:
    """Result of one orchestrator operation, shown in the message log."""

    ok: bool
    message: str
    key: str | None = None
    state: LifecycleState | None = None
    recoverable: bool = False
    conflict: bool = False


class _StepFailed(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class LifecycleOrchestrator:
    """Drives workspace + session lifecycles against the external collaborators."""

    def __init__(
        self,
        store: BoardStore,
        registry: SessionRegistry,
        messages: MessageLog,
        tracker: IssueTracker,
        vcs: VersionControl,
        mux: Multiplexer,
        *,
        repo: str,
        command_template: str,
        prompts_dir: Path,
        socket_path: Path,
        pr_ready: bool = False,
        verify_command: str | None = None,
        editor_command: str | None = None,
        trust_state_file: Path | None = ASSISTANT_GLOBAL_STATE,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._store = store
        self._registry = registry
        self._messages = messages
        self._tracker = tracker
        self._vcs = vcs
        self._mux = mux
        self.repo = repo
        self.command_template = command_template
        self._prompts_dir = prompts_dir
        self._socket_path = socket_path
        self.pr_ready = pr_ready
        self.verify_command = verify_command
        self.editor_command = editor_command
        self._trust_state_file = trust_state_file
        self._which = which
        self._locks: dict[str, asyncio.Lock] = {}
        self._lifecycles: dict[str, Lifecycle] = {}

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def lifecycle(self, key: str) -> Lifecycle | None:
        """Current lifecycle of *key*; workspaces found by refresh count as READY."""
        lc = self._lifecycles.get(key)
        if lc is not None and lc.state != LifecycleState.REMOVED:
            return lc
        ws = self._store.workspace(key)
        if ws is not None:
            return Lifecycle.from_workspace_state(ws.state, ws.error)
        return lc

    def _advance(self, key: str, state: LifecycleState, reason: str | None = None) -> Lifecycle:
        current = self.lifecycle(key) or Lifecycle()
        lc = current.to(state, reason)
        self._lifecycles[key] = lc
        self._store.set_workspace_state(key, lc.workspace_state, lc.reason)
        logger.debug("lifecycle_transition", key=key, src=str(current.state), dst=str(state))
        return lc

    def _report(self, outcome: Outcome) -> Outcome:
        if outcome.ok:
            self._messages.info(outcome.message, key=outcome.key)
            logger.info("lifecycle_ok", key=outcome.key, message=outcome.message)
        else:
            self._messages.error(outcome.message, key=outcome.key)
            logger.warning(
                "lifecycle_failed",
                key=outcome.key,
                message=outcome.message,
                recoverable=outcome.recoverable,
            )
        return outcome

    def _missing_tools(self) -> list[str]:
        needed = [self._mux.executable] if self._mux.executable else []
        needed += referenced_executables(self.command_template)
        return [exe for exe in needed if self._which(exe) is None]

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create(self, issue: Issue) -> Outcome:
        """Worktree + assistant session for *issue*, ending in READY or FAILED."""
        key = workspace_key(issue.number)
        async with self._lock_for(key):
            current = self.lifecycle(key)
            if current is not None and current.state != LifecycleState.REMOVED:
                return self._report(
                    Outcome(
                        ok=False,
                        message=f"Issue #{issue.number} already has a workspace ({current.state})",
                        key=key,
                        state=current.state,
                        recoverable=True,
                        conflict=True,
                    )
                )
            return await self._create_locked(key, issue)

    async def _create_locked(self, key: str, issue: Issue) -> Outcome:
        branch = branch_name(issue.number)
        path = worktree_path(self._vcs.repo_root, issue.number)
        log = logger.bind(key=key, branch=branch)

        self._lifecycles[key] = Lifecycle()
        self._store.upsert(
            Column.WORKSPACES,
            Workspace(
                key=key,
                branch=branch,
                path=str(path),
                issue_number=issue.number,
                state=WorkspaceState.CREATING,
            ),
        )

        missing = self._missing_tools()
        if missing:
            return self._abandon(key, f"no usable {', '.join(missing)} on PATH")

        self._advance(key, LifecycleState.CREATING_WORKSPACE)
        try:
            await self._vcs.add_worktree(path, branch)
        except CollaboratorError as exc:
            return self._abandon(
                key,
                f"worktree for #{issue.number} failed: {exc}",
                conflict=isinstance(exc, ResourceConflictError),
            )

        self._advance(key, LifecycleState.LAUNCHING_SESSION)
        try:
            await self._launch(key, issue, path, branch)
        except _StepFailed as exc:
            return await self._rollback(key, path, branch, exc.reason)
        except Exception as exc:  # noqa: BLE001
            log.exception("create_unexpected_error")
            return await self._rollback(key, path, branch, f"unexpected error: {exc}")

        self._advance(key, LifecycleState.READY)
        return self._report(
            Outcome(
                ok=True,
                message=f"Started {branch} at {path}",
                key=key,
                state=LifecycleState.READY,
            )
        )

    def _abandon(self, key: str, reason: str, conflict: bool = False) -> Outcome:
        """Fail a create that left nothing behind; the card is dropped."""
        self._advance(key, LifecycleState.FAILED, reason)
        self._store.evict(Column.WORKSPACES, key)
        self._lifecycles.pop(key, None)
        return self._report(
            Outcome(
                ok=False,
                message=reason,
                key=key,
                state=LifecycleState.FAILED,
                recoverable=conflict,
                conflict=conflict,
            )
        )

    async def _rollback(self, key: str, path: Path, branch: str, reason: str) -> Outcome:
        self._registry.forget(key)
        self._store.evict(Column.SESSIONS, key)
        try:
            await self._mux.kill_session(session_name(key))
        except CollaboratorError as exc:
            logger.warning("rollback_kill_failed", key=key, error=str(exc))
        try:
            await self._vcs.remove_worktree(path, branch, force=True)
        except CollaboratorError as exc:
            full = f"{reason}; rollback failed: {exc}"
            self._advance(key, LifecycleState.FAILED, full)
            return self._report(
                Outcome(ok=False, message=full, key=key, state=LifecycleState.FAILED)
            )
        return self._abandon(key, f"{reason} (worktree rolled back)")

    async def _launch(self, key: str, issue: Issue, path: Path, branch: str) -> None:
        """Hook config, prompt file, and the multiplexer session. Raises _StepFailed."""
        try:
            write_hook_settings(path)
            if self._trust_state_file is not None:
                trust_directory(path, self._trust_state_file)
        except (OSError, ValueError) as exc:
            # Without hooks the session still runs; status just stays STARTING
            logger.warning("hook_setup_failed", key=key, error=str(exc))
            self._messages.warning(f"#{key}: status hooks not installed ({exc})", key=key)

        try:
            await self._tracker.assign_to_me(issue.number)
        except CollaboratorError as exc:
            logger.debug("assign_failed", key=key, error=str(exc))

        prompt_file = self._prompts_dir / f"{branch}.txt"
        try:
            prompt_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            prompt_file.write_text(
                build_prompt(
                    issue_number=issue.number,
                    repo=self.repo,
                    title=issue.title,
                    body=issue.body,
                    pr_ready=self.pr_ready,
                ),
                encoding="utf-8",
            )
        except OSError as exc:
            raise _StepFailed(f"cannot write prompt file: {exc}") from exc

        command = render_command(
            self.command_template,
            TemplateContext(
                prompt_file=str(prompt_file),
                issue_number=issue.number,
                repo=self.repo,
                title=issue.title,
                body=issue.body,
                branch=branch,
                worktree_path=str(path),
            ),
        )
        env = {ENV_SESSION_ID: key, ENV_SOCKET: str(self._socket_path)}

        # Register first so the assistant's earliest hook is not an unknown session
        self._registry.register(key)
        try:
            await self._mux.start_session(session_name(key), command, path, env)
        except CollaboratorError as exc:
            self._registry.forget(key)
            raise _StepFailed(f"{self._mux.name} session failed: {exc}") from exc
        self._store.upsert(Column.SESSIONS, Session(key=key, status=SessionStatus.STARTING))

    # ------------------------------------------------------------------
    # launch_session / kill_session
    # ------------------------------------------------------------------

    async def launch_session(self, key: str) -> Outcome:
        """Start a new assistant session in an existing READY workspace."""
        async with self._lock_for(key):
            current = self.lifecycle(key)
            ws = self._store.workspace(key)
            if current is None or ws is None or current.state != LifecycleState.READY:
                state = current.state if current else "absent"
                return self._report(
                    Outcome(ok=False, message=f"#{key} is not ready ({state})", key=key)
                )
            name = session_name(key)
            try:
                if await self._mux.has_session(name):
                    return self._report(
                        Outcome(
                            ok=False,
                            message=f"{name} is already running",
                            key=key,
                            state=current.state,
                            recoverable=True,
                        )
                    )
            except CollaboratorError as exc:
                return self._report(Outcome(ok=False, message=str(exc), key=key, recoverable=True))

            issue = await self._issue_for(ws)
            self._advance(key, LifecycleState.LAUNCHING_SESSION)
            try:
                await self._launch(key, issue, Path(ws.path), ws.branch)
            except _StepFailed as exc:
                self._advance(key, LifecycleState.READY)
                return self._report(
                    Outcome(
                        ok=False,
                        message=exc.reason,
                        key=key,
                        state=LifecycleState.READY,
                        recoverable=True,
                    )
                )
            self._advance(key, LifecycleState.READY)
            return self._report(
                Outcome(ok=True, message=f"Launched {name}", key=key, state=LifecycleState.READY)
            )

    async def _issue_for(self, ws: Workspace) -> Issue:
        cached = self._store.get(Column.ISSUES, ws.issue_key)
        if isinstance(cached, Issue):
            return cached
        try:
            return await self._tracker.get_issue(ws.issue_number)
        except CollaboratorError:
            return Issue(number=ws.issue_number, title=ws.branch)

    async def kill_session(self, key: str) -> Outcome:
        """Kill only the multiplexer session; the worktree stays."""
        async with self._lock_for(key):
            name = session_name(key)
            try:
                existed = await self._mux.kill_session(name)
            except CollaboratorError as exc:
                return self._report(Outcome(ok=False, message=str(exc), key=key, recoverable=True))
            self._registry.mark_exited(key, detail="killed")
            self._store.evict(Column.SESSIONS, key)
            message = f"Killed {name}" if existed else f"{name} was not running"
            return self._report(Outcome(ok=True, message=message, key=key))

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------

    async def remove(self, key: str, force: bool = False) -> Outcome:
        """
        Kill the session, then remove the worktree and branch.

        Already removed (or never known) is a no-op success. A git refusal
        puts the workspace back where it was and reports a recoverable
        conflict; retry with ``force=True`` to discard local changes.
        """
        async with self._lock_for(key):
            current = self.lifecycle(key)
            if current is None or current.state == LifecycleState.REMOVED:
                return Outcome(
                    ok=True, message=f"#{key} already removed", key=key, state=LifecycleState.REMOVED
                )
            ws = self._store.workspace(key)
            number = int(key)
            branch = ws.branch if ws else branch_name(number)
            path = Path(ws.path) if ws else worktree_path(self._vcs.repo_root, number)
            prior = current

            self._advance(key, LifecycleState.REMOVING)
            try:
                await self._mux.kill_session(session_name(key))
            except CollaboratorError as exc:
                return self._restore(key, prior, f"could not stop {session_name(key)}: {exc}")
            self._registry.mark_exited(key, detail="removed")

            try:
                await self._vcs.remove_worktree(path, branch, force=force)
            except ResourceConflictError as exc:
                return self._restore(
                    key, prior, f"#{key} not removed: {exc} (force remove to discard)", conflict=True
                )
            except CollaboratorError as exc:
                return self._restore(key, prior, f"#{key} not removed: {exc}")

            self._advance(key, LifecycleState.REMOVED)
            self._store.evict(Column.WORKSPACES, key)
            self._store.evict(Column.SESSIONS, key)
            self._registry.forget(key)
            return self._report(
                Outcome(ok=True, message=f"Removed {branch}", key=key, state=LifecycleState.REMOVED)
            )

    def _restore(self, key: str, prior: Lifecycle, message: str, conflict: bool = False) -> Outcome:
        if prior.state == LifecycleState.FAILED:
            lc = self._advance(key, LifecycleState.FAILED, prior.reason or message)
        else:
            lc = self._advance(key, LifecycleState.READY)
        return self._report(
            Outcome(
                ok=False,
                message=message,
                key=key,
                state=lc.state,
                recoverable=True,
                conflict=conflict,
            )
        )

    # ------------------------------------------------------------------
    # attach
    # ------------------------------------------------------------------

    async def attach(self, key: str) -> Outcome:
        """Hand the terminal to the session; the lifecycle ends where it started."""
        async with self._lock_for(key):
            current = self.lifecycle(key)
            if current is None or current.state != LifecycleState.READY:
                state = current.state if current else "absent"
                return self._report(
                    Outcome(ok=False, message=f"#{key} is not ready ({state})", key=key)
                )
            name = session_name(key)
            self._advance(key, LifecycleState.ATTACHING)
            try:
                if not await self._mux.has_session(name):
                    raise CollaboratorError(f"{name} is not running; launch it first")
                await self._mux.attach(name)
            except CollaboratorError as exc:
                self._advance(key, LifecycleState.READY)
                return self._report(
                    Outcome(ok=False, message=str(exc), key=key, state=LifecycleState.READY, recoverable=True)
                )
            self._advance(key, LifecycleState.READY)
            return self._report(
                Outcome(ok=True, message=f"Detached from {name}", key=key, state=LifecycleState.READY)
            )

    # ------------------------------------------------------------------
    # Worktree commands
    # ------------------------------------------------------------------

    async def run_verify(self, key: str) -> Outcome:
        """Start the repository's verify command in the worktree, detached."""
        return self._spawn_in_worktree(key, self.verify_command, "verify")

    async def open_editor(self, key: str) -> Outcome:
        """Start the repository's editor command on the worktree, detached."""
        return self._spawn_in_worktree(key, self.editor_command, "editor")

    def _spawn_in_worktree(self, key: str, template: str | None, kind: str) -> Outcome:
        ws = self._store.workspace(key)
        if ws is None or ws.state != WorkspaceState.READY:
            state = ws.state if ws else "absent"
            return self._report(Outcome(ok=False, message=f"#{key} is not ready ({state})", key=key))
        if not template:
            return self._report(
                Outcome(
                    ok=False,
                    message=f"No {kind} command configured for {self.repo}",
                    key=key,
                    recoverable=True,
                )
            )
        command = render_command(
            template,
            TemplateContext(
                issue_number=ws.issue_number,
                repo=self.repo,
                branch=ws.branch,
                worktree_path=ws.path,
            ),
        )
        try:
            spawn_detached(command, cwd=ws.path)
        except CollaboratorError as exc:
            return self._report(
                Outcome(
                    ok=False,
                    message=f"{kind.capitalize()} failed to start: {exc}",
                    key=key,
                    recoverable=True,
                )
            )
        verb = "Opened editor for" if kind == "editor" else "Launched verify for"
        return self._report(Outcome(ok=True, message=f"{verb} {ws.branch}", key=key))

    # ------------------------------------------------------------------
    # Issue and pull request actions
    # ------------------------------------------------------------------

    async def create_issue(self, title: str, body: str = "") -> Outcome:
        title = title.strip()
        if not title:
            return self._report(Outcome(ok=False, message="Issue title is required"))
        try:
            issue = await self._tracker.create_issue(title, body)
        except CollaboratorError as exc:
            return self._report(Outcome(ok=False, message=f"Create issue failed: {exc}", recoverable=True))
        self._store.upsert(Column.ISSUES, issue)
        self._store.select(Column.ISSUES, issue.key)
        return self._report(Outcome(ok=True, message=f"Created issue #{issue.number}", key=issue.key))

    async def close_issue(self, number: int) -> Outcome:
        key = str(number)
        try:
            await self._tracker.close_issue(number)
        except CollaboratorError as exc:
            return self._report(
                Outcome(ok=False, message=f"Close #{number} failed: {exc}", key=key, recoverable=True)
            )
        self._store.update_fields(Column.ISSUES, key, state=IssueState.CLOSED)
        return self._report(Outcome(ok=True, message=f"Closed issue #{number}", key=key))

    async def mark_ready(self, number: int) -> Outcome:
        change = self._store.get(Column.CHANGES, str(number))
        if isinstance(change, ProposedChange) and not change.is_draft:
            return self._report(Outcome(ok=False, message=f"PR #{number} is already ready"))
        try:
            await self._tracker.mark_ready(number)
        except CollaboratorError as exc:
            return self._report(
                Outcome(ok=False, message=f"Mark ready #{number} failed: {exc}", recoverable=True)
            )
        self._store.update_fields(Column.CHANGES, str(number), is_draft=False)
        return self._report(Outcome(ok=True, message=f"PR #{number} marked ready for review"))

    async def merge(self, number: int) -> Outcome:
        """Merge a PR, then clean up the workspace its branch came from."""
        change = self._store.get(Column.CHANGES, str(number))
        if isinstance(change, ProposedChange) and change.is_draft:
            return self._report(Outcome(ok=False, message=f"Cannot merge draft PR #{number}"))
        try:
            await self._tracker.merge(number)
        except CollaboratorError as exc:
            return self._report(
                Outcome(ok=False, message=f"Merge #{number} failed: {exc}", recoverable=True)
            )
        self._store.update_fields(Column.CHANGES, str(number), state=ChangeState.MERGED)
        outcome = self._report(Outcome(ok=True, message=f"Merged PR #{number}"))
        if isinstance(change, ProposedChange):
            await self.cleanup_merged([replace(change, state=ChangeState.MERGED)])
        return outcome

    async def revert(self, number: int) -> Outcome:
        change = self._store.get(Column.CHANGES, str(number))
        if isinstance(change, ProposedChange) and change.state != ChangeState.MERGED:
            return self._report(Outcome(ok=False, message="Can only revert merged PRs"))
        try:
            created = await self._tracker.revert(number)
        except CollaboratorError as exc:
            return self._report(
                Outcome(ok=False, message=f"Revert #{number} failed: {exc}", recoverable=True)
            )
        if created is not None:
            self._store.upsert(Column.CHANGES, created)
            return self._report(
                Outcome(ok=True, message=f"Opened revert PR #{created.number} for #{number}")
            )
        return self._report(Outcome(ok=True, message=f"Requested revert of PR #{number}"))

    async def open_change(self, number: int) -> Outcome:
        """Open a pull request in the default web browser."""
        change = self._store.get(Column.CHANGES, str(number))
        url = change.url if isinstance(change, ProposedChange) else ""
        if not url:
            return self._report(Outcome(ok=False, message=f"PR #{number} has no URL"))
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            return self._report(
                Outcome(ok=False, message=f"No browser available for {url}", recoverable=True)
            )
        return self._report(Outcome(ok=True, message=f"Opened PR #{number} in the browser"))

    async def pull_main(self) -> Outcome:
        try:
            summary = await self._vcs.pull_main()
        except CollaboratorError as exc:
            return self._report(Outcome(ok=False, message=f"Pull failed: {exc}", recoverable=True))
        return self._report(Outcome(ok=True, message=f"Pulled main: {summary}"))

    async def cleanup_merged(self, changes: Iterable[ProposedChange]) -> list[Outcome]:
        """Remove READY workspaces whose branch was merged."""
        outcomes = []
        for change in changes:
            if change.issue_key is None:
                continue
            if change.state != ChangeState.MERGED:
                continue
            ws = self._store.workspace(change.issue_key)
            if ws is None or ws.state != WorkspaceState.READY or ws.branch != change.branch:
                continue
            outcomes.append(await self.remove(ws.key, force=True))
        return outcomes


"""
BoardEngine — one process lifetime of the board core.

Owns the shared state (BoardStore, SessionRegistry, MessageLog) and the
three actors around it:

  EventServer            hook events → registry
  RefreshReconciler      tracker / git / multiplexer → store
  LifecycleOrchestrator  user actions → collaborators → store + registry

The UI only calls ``snapshot()`` and the orchestrator/reconciler methods;
it never touches the store directly except for selection.
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import structlog

from octopai.collaborators import resolve_multiplexer
from octopai.collaborators.base import IssueTracker, Multiplexer, VersionControl
from octopai.collaborators.git import GitWorktrees
from octopai.collaborators.github import GithubIssueTracker
from octopai.collaborators.local import LocalIssueTracker
from octopai.core.board.reconciler import RefreshReconciler, RefreshResult
from octopai.core.board.store import BoardSnapshot, BoardStore
from octopai.core.board.xref import related_to_selection
from octopai.core.config import OctopaiConfig, set_command_template
from octopai.core.constants import ASSISTANT_GLOBAL_STATE
from octopai.core.events.server import EventServer
from octopai.core.exceptions import CollaboratorError, StartupError
from octopai.core.messages import MessageLog
from octopai.core.models import BoardEntity, ChangeState, Column, ProposedChange, Session
from octopai.core.orchestrator import LifecycleOrchestrator
from octopai.core.session.registry import SessionRegistry

logger = structlog.get_logger()


class BoardEngine:
    """Wires the board core together and runs its background tasks."""

    def __init__(
        self,
        config: OctopaiConfig,
        tracker: IssueTracker,
        vcs: VersionControl,
        mux: Multiplexer,
        *,
        repo: str,
        trust_state_file: Path | None = ASSISTANT_GLOBAL_STATE,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.config = config
        self.repo = repo
        self.tracker = tracker
        self.vcs = vcs
        self.mux = mux
        self.store = BoardStore()
        self.registry = SessionRegistry()
        self.messages = MessageLog(maxlen=config.events.message_log_size)
        self.server = EventServer(self.registry, self.messages, config.socket_path)
        self.reconciler = RefreshReconciler(
            self.store,
            self.registry,
            self.messages,
            tracker,
            vcs,
            mux,
            interval=config.refresh_interval_s,
        )
        self.orchestrator = LifecycleOrchestrator(
            self.store,
            self.registry,
            self.messages,
            tracker,
            vcs,
            mux,
            repo=repo,
            command_template=config.command_for(repo),
            prompts_dir=config.prompts_dir,
            socket_path=config.socket_path,
            pr_ready=config.pr_ready,
            verify_command=config.verify_command_for(repo),
            editor_command=config.editor_command_for(repo),
            trust_state_file=trust_state_file,
            which=which,
        )
        self.reconciler.add_listener(self._after_refresh)
        self._refresh_task: asyncio.Task[None] | None = None

    @classmethod
    async def from_config(cls, config: OctopaiConfig, cwd: Path | None = None) -> BoardEngine:
        """
        Build an engine for the repository containing *cwd*.

        Raises StartupError when there is no git repository or no usable
        multiplexer.
        """
        try:
            vcs = await GitWorktrees.discover(cwd)
        except CollaboratorError as exc:
            raise StartupError(f"Not inside a git repository: {exc}") from exc
        try:
            mux = resolve_multiplexer(config.multiplexer)
        except CollaboratorError as exc:
            raise StartupError(str(exc)) from exc

        repo = config.repo or await vcs.origin_slug() or vcs.repo_root.name
        tracker: IssueTracker
        if config.mode == "github" and shutil.which("gh") and "/" in repo:
            tracker = GithubIssueTracker(repo)
        else:
            if config.mode == "github":
                logger.warning("github_unavailable_using_local", repo=repo)
            tracker = LocalIssueTracker(repo, config.local_store_dir)
        logger.info("engine_configured", repo=repo, tracker=tracker.name, multiplexer=mux.name)
        return cls(config, tracker, vcs, mux, repo=repo)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.server.start()
        self._refresh_task = asyncio.create_task(self.reconciler.run_forever())
        self.messages.info(f"Watching {self.repo} ({self.tracker.name}, {self.mux.name})")

    async def stop(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None
        await self.server.stop()

    async def _after_refresh(self, result: RefreshResult) -> None:
        if not self.config.auto_cleanup_merged or Column.CHANGES not in result.reports:
            return
        snapshot = self.store.snapshot()
        merged = [
            c
            for c in snapshot.columns[Column.CHANGES]
            if isinstance(c, ProposedChange) and c.state == ChangeState.MERGED
        ]
        if merged:
            await self.orchestrator.cleanup_merged(merged)

    def save_command(self, kind: str, template: str) -> Path:
        """Persist a verify or editor command for this repository and use it from now on."""
        path = set_command_template(template, kind=kind, repo=self.repo, path=self.config._config_path)
        template = template.strip()
        if kind == "verify":
            self.config.verify_commands[self.repo] = template
            self.orchestrator.verify_command = template
        elif kind == "editor":
            self.config.editor_commands[self.repo] = template
            self.orchestrator.editor_command = template
        logger.info("command_saved", kind=kind, repo=self.repo, path=str(path))
        return path

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> BoardSnapshot:
        """Board snapshot with live session status joined in from the registry."""
        snapshot = self.store.snapshot()
        live = self.registry.snapshot()
        sessions: list[BoardEntity] = []
        for entity in snapshot.columns[Column.SESSIONS]:
            tracked = live.get(entity.key)
            sessions.append(replace(tracked) if tracked else entity)
        snapshot.columns[Column.SESSIONS] = sessions
        return snapshot

    def session(self, key: str) -> Session | None:
        return self.registry.get(key)

    def related(self, snapshot: BoardSnapshot | None = None) -> dict[Column, list[BoardEntity]]:
        return related_to_selection(snapshot or self.snapshot())

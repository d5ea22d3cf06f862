"""
Refresh reconciler — pulls external truth into the board.

One refresh fetches four sources concurrently:

  issues      tracker.list_issues(issue_filter)
  changes     tracker.list_changes(change_filter)
  workspaces  vcs.list_worktrees()        (issue-N branches only)
  sessions    mux.list_sessions()         (issue-N sessions only)

and merges each successful result into the BoardStore. A failed source is
logged as transient and leaves its column as it was.

Triggers collapse: while a refresh is in flight, ``refresh()`` callers
await that same refresh instead of starting another. Each refresh takes a
new epoch, so a slow refresh finishing after a newer one is discarded by
the store.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from octopai.collaborators.base import IssueTracker, Multiplexer, VersionControl
from octopai.core.board.store import BoardStore, MergeReport
from octopai.core.constants import DEFAULT_REFRESH_INTERVAL_S
from octopai.core.messages import MessageLog
from octopai.core.models import BoardEntity, Column, ListFilter, Session, Workspace
from octopai.core.naming import issue_number_from_ref, key_from_session_name, workspace_key
from octopai.core.session.registry import SessionRegistry

logger = structlog.get_logger()


@dataclass
class RefreshResult:
    epoch: int
    reports: dict[Column, MergeReport] = field(default_factory=dict)
    failures: dict[Column, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


RefreshListener = Callable[[RefreshResult], Awaitable[None] | None]


class RefreshReconciler:
    """Single-flight, epoch-stamped refresh of all four board columns."""

    def __init__(
        self,
        store: BoardStore,
        registry: SessionRegistry,
        messages: MessageLog,
        tracker: IssueTracker,
        vcs: VersionControl,
        mux: Multiplexer,
        interval: float = DEFAULT_REFRESH_INTERVAL_S,
    ) -> None:
        self._store = store
        self._registry = registry
        self._messages = messages
        self._tracker = tracker
        self._vcs = vcs
        self._mux = mux
        self.interval = interval
        self.issue_filter = ListFilter()
        self.change_filter = ListFilter()
        self._epoch = 0
        self._inflight: asyncio.Future[RefreshResult] | None = None
        self._wake = asyncio.Event()
        self._listeners: list[RefreshListener] = []
        self.last_result: RefreshResult | None = None

    def add_listener(self, listener: RefreshListener) -> None:
        self._listeners.append(listener)

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> RefreshResult:
        """Run a refresh, or join the one already in flight."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._run())
        return await asyncio.shield(self._inflight)

    def request(self) -> None:
        """Ask the background loop to refresh now; returns immediately."""
        self._wake.set()

    async def _run(self) -> RefreshResult:
        self._epoch += 1
        epoch = self._epoch
        self._store.begin_epoch(epoch)
        log = logger.bind(epoch=epoch)
        log.debug("refresh_started")

        fetchers: dict[Column, Callable[[], Awaitable[list[BoardEntity]]]] = {
            Column.ISSUES: self._fetch_issues,
            Column.CHANGES: self._fetch_changes,
            Column.WORKSPACES: self._fetch_workspaces,
            Column.SESSIONS: self._fetch_sessions,
        }
        columns = list(fetchers)
        results = await asyncio.gather(*(fetchers[c]() for c in columns), return_exceptions=True)

        outcome = RefreshResult(epoch=epoch)
        for column, result in zip(columns, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                outcome.failures[column] = str(result) or type(result).__name__
                log.warning("refresh_source_failed", column=str(column), error=str(result))
                self._messages.warning(f"refresh {column} failed: {result}")
                continue
            report = self._store.merge(column, result, epoch)
            outcome.reports[column] = report
            if column is Column.SESSIONS and not report.discarded:
                self._sync_registry(report)

        self.last_result = outcome
        log.info(
            "refresh_finished",
            failed=sorted(str(c) for c in outcome.failures),
            removed={str(c): r.removed for c, r in outcome.reports.items() if r.removed},
        )
        await self._notify(outcome)
        return outcome

    def _sync_registry(self, report: MergeReport) -> None:
        for key in report.inserted:
            self._registry.ensure(key)
        for key in report.removed:
            self._registry.mark_exited(key, detail="session no longer running")

    async def _notify(self, outcome: RefreshResult) -> None:
        for listener in self._listeners:
            try:
                maybe = listener(outcome)
                if asyncio.iscoroutine(maybe):
                    await maybe
            except Exception as exc:  # noqa: BLE001
                logger.warning("refresh_listener_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def filter_for(self, column: Column) -> ListFilter:
        return self.change_filter if column is Column.CHANGES else self.issue_filter

    def toggle_state(self, column: Column) -> ListFilter:
        """Flip open/closed for the listing behind *column* and refetch it."""
        listing = self.filter_for(column)
        listing.toggle_state()
        self._filter_changed(column)
        return listing

    def toggle_assignee(self, column: Column) -> ListFilter:
        """Flip mine/all for the listing behind *column* and refetch it."""
        listing = self.filter_for(column)
        listing.toggle_assignee()
        self._filter_changed(column)
        return listing

    def _filter_changed(self, column: Column) -> None:
        # Rows from the old query are not transient misses of the new one
        target = Column.CHANGES if column is Column.CHANGES else Column.ISSUES
        self._store.reset_column(target)
        logger.info("filter_changed", column=str(target), filter=self.filter_for(target).label())
        self.request()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def _fetch_issues(self) -> list[Any]:
        return list(await self._tracker.list_issues(self.issue_filter))

    async def _fetch_changes(self) -> list[Any]:
        return list(await self._tracker.list_changes(self.change_filter))

    async def _fetch_workspaces(self) -> list[Any]:
        workspaces: list[Workspace] = []
        for wt in await self._vcs.list_worktrees():
            number = issue_number_from_ref(wt.branch or "") or issue_number_from_ref(wt.path.name)
            if number is None:
                continue
            workspaces.append(
                Workspace(
                    key=workspace_key(number),
                    branch=wt.branch or "",
                    path=str(wt.path),
                    issue_number=number,
                )
            )
        return workspaces

    async def _fetch_sessions(self) -> list[Any]:
        sessions: list[Session] = []
        for name in await self._mux.list_sessions():
            key = key_from_session_name(name)
            if key is not None:
                sessions.append(Session(key=key))
        return sessions

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Refresh every ``interval`` seconds, or sooner when ``request()`` is called."""
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("refresh_loop_error", error=str(exc))
                self._messages.error(f"refresh failed: {exc}")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            self._wake.clear()

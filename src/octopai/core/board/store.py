"""
Board store — the four ordered columns plus selection.

Writers:
  - RefreshReconciler.merge() with freshly fetched external data
  - LifecycleOrchestrator via upsert()/set_workspace_state()/evict()
  - the board UI via select()/move()/set_active()

Readers take ``snapshot()``, a deep-enough copy to render without the lock.

Merge rules (per column):
  - A merge whose epoch is older than the newest merged epoch is discarded.
  - Matching entities get only their EXTERNAL_FIELDS overwritten.
  - New entities are inserted.
  - An entity absent from a successful fetch is removed only once it has
    been absent from DELETE_CONFIRMATIONS consecutive merges; reappearing
    resets the count.
  - Workspaces the orchestrator is working on (creating, removing, failed)
    are never removed by a merge.
  - A key the orchestrator wrote while a refresh was in flight is left
    alone by that refresh: its fetch predates the write. Each write is
    fenced with the newest started epoch and merges at or below the
    fence skip the key.
  - ``reset_column()`` empties a column whose query changed and discards
    merges from refreshes already in flight.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

import structlog

from octopai.core.constants import DELETE_CONFIRMATIONS
from octopai.core.models import (
    COLUMN_ORDER,
    BoardEntity,
    Column,
    Workspace,
    WorkspaceState,
)

logger = structlog.get_logger()


@dataclass
class MergeReport:
    column: Column
    epoch: int
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    discarded: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.removed)


@dataclass
class BoardSnapshot:
    """Immutable-by-convention copy of the board for rendering and queries."""

    columns: dict[Column, list[BoardEntity]]
    selected: dict[Column, str | None]
    active: Column
    version: int

    def get(self, column: Column, key: str) -> BoardEntity | None:
        for entity in self.columns[column]:
            if entity.key == key:
                return entity
        return None

    def selected_entity(self, column: Column | None = None) -> BoardEntity | None:
        column = column or self.active
        key = self.selected[column]
        return self.get(column, key) if key is not None else None

    def keys(self, column: Column) -> list[str]:
        return [e.key for e in self.columns[column]]


class BoardStore:
    """Thread-safe holder of the board's entity columns and selection."""

    def __init__(self, confirmations: int = DELETE_CONFIRMATIONS) -> None:
        self._lock = threading.Lock()
        self._confirmations = confirmations
        self._columns: dict[Column, dict[str, BoardEntity]] = {c: {} for c in COLUMN_ORDER}
        self._missing: dict[Column, dict[str, int]] = {c: {} for c in COLUMN_ORDER}
        self._epochs: dict[Column, int] = {c: 0 for c in COLUMN_ORDER}
        self._started = 0
        self._fenced: dict[Column, dict[str, int]] = {c: {} for c in COLUMN_ORDER}
        self._selected: dict[Column, str | None] = {c: None for c in COLUMN_ORDER}
        self._active: Column = Column.ISSUES
        self._version = 0

    # ------------------------------------------------------------------
    # Refresh merge
    # ------------------------------------------------------------------

    def begin_epoch(self, epoch: int) -> None:
        """Record that a refresh taking *epoch* has started fetching."""
        with self._lock:
            self._started = max(self._started, epoch)

    def reset_column(self, column: Column) -> None:
        """Drop every entity in *column*; in-flight merges for it are discarded."""
        with self._lock:
            self._columns[column] = {}
            self._missing[column].clear()
            self._fenced[column].clear()
            self._epochs[column] = max(self._epochs[column], self._started + 1)
            self._selected[column] = None
            self._version += 1
        logger.debug("column_reset", column=str(column))

    def merge(self, column: Column, entities: Iterable[BoardEntity], epoch: int) -> MergeReport:
        """Merge one successful fetch of *column* taken at *epoch*."""
        report = MergeReport(column=column, epoch=epoch)
        fetched = list(entities)
        with self._lock:
            if epoch < self._epochs[column]:
                report.discarded = True
            else:
                self._epochs[column] = epoch
                self._merge_locked(column, fetched, report)
                if report.changed:
                    self._version += 1
        if report.discarded:
            logger.debug("merge_discarded_stale_epoch", column=str(column), epoch=epoch)
        elif report.changed or report.pending:
            logger.debug(
                "board_merged",
                column=str(column),
                epoch=epoch,
                inserted=len(report.inserted),
                updated=len(report.updated),
                removed=report.removed,
                pending=report.pending,
            )
        return report

    def _merge_locked(
        self, column: Column, fetched: list[BoardEntity], report: MergeReport
    ) -> None:
        current = self._columns[column]
        missing = self._missing[column]
        fenced = self._fenced[column]
        epoch = report.epoch
        merged: dict[str, BoardEntity] = {}

        def guarded(key: str) -> bool:
            return fenced.get(key, -1) >= epoch

        for incoming in fetched:
            key = incoming.key
            if key in merged:
                continue
            missing.pop(key, None)
            if guarded(key):
                if key in current:
                    merged[key] = current[key]
                continue
            existing = current.get(key)
            if existing is None:
                merged[key] = replace(incoming)
                report.inserted.append(key)
                continue
            changed = False
            for name in type(existing).EXTERNAL_FIELDS:
                value = getattr(incoming, name)
                if getattr(existing, name) != value:
                    setattr(existing, name, value)
                    changed = True
            if changed:
                report.updated.append(key)
            merged[key] = existing

        for key, existing in current.items():
            if key in merged:
                continue
            if guarded(key) or (isinstance(existing, Workspace) and existing.in_flight):
                missing.pop(key, None)
                merged[key] = existing
                continue
            count = missing.get(key, 0) + 1
            if count >= self._confirmations:
                missing.pop(key, None)
                report.removed.append(key)
            else:
                missing[key] = count
                report.pending.append(key)
                merged[key] = existing

        self._columns[column] = merged
        for key in [k for k, fence in fenced.items() if fence < epoch]:
            del fenced[key]
        self._fix_selection_locked(column)

    # ------------------------------------------------------------------
    # Orchestrator mutations
    # ------------------------------------------------------------------

    def upsert(self, column: Column, entity: BoardEntity) -> None:
        """Insert or fully replace one entity (engine-owned write)."""
        with self._lock:
            self._columns[column][entity.key] = replace(entity)
            self._missing[column].pop(entity.key, None)
            self._fence_locked(column, entity.key)
            self._fix_selection_locked(column)
            self._version += 1

    def set_workspace_state(
        self, key: str, state: WorkspaceState, error: str | None = None
    ) -> bool:
        with self._lock:
            ws = self._columns[Column.WORKSPACES].get(key)
            if not isinstance(ws, Workspace):
                return False
            ws.state = state
            ws.error = error
            self._fence_locked(Column.WORKSPACES, key)
            self._version += 1
        return True

    def update_fields(self, column: Column, key: str, **fields: object) -> bool:
        """Set fields on one entity after a confirmed collaborator round-trip."""
        with self._lock:
            entity = self._columns[column].get(key)
            if entity is None:
                return False
            for name, value in fields.items():
                setattr(entity, name, value)
            self._fence_locked(column, key)
            self._version += 1
        return True

    def evict(self, column: Column, key: str) -> bool:
        with self._lock:
            removed = self._columns[column].pop(key, None) is not None
            self._missing[column].pop(key, None)
            self._fence_locked(column, key)
            if removed:
                self._fix_selection_locked(column)
                self._version += 1
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, column: Column, key: str) -> BoardEntity | None:
        with self._lock:
            entity = self._columns[column].get(key)
            return replace(entity) if entity is not None else None

    def workspace(self, key: str) -> Workspace | None:
        entity = self.get(Column.WORKSPACES, key)
        return entity if isinstance(entity, Workspace) else None

    def active_workspace_for(self, issue_number: int) -> Workspace | None:
        with self._lock:
            for ws in self._columns[Column.WORKSPACES].values():
                if (
                    isinstance(ws, Workspace)
                    and ws.issue_number == issue_number
                    and ws.state != WorkspaceState.REMOVED
                ):
                    return replace(ws)
        return None

    def snapshot(self) -> BoardSnapshot:
        with self._lock:
            return BoardSnapshot(
                columns={c: [replace(e) for e in self._columns[c].values()] for c in COLUMN_ORDER},
                selected=dict(self._selected),
                active=self._active,
                version=self._version,
            )

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, column: Column, key: str | None) -> bool:
        with self._lock:
            if key is not None and key not in self._columns[column]:
                return False
            self._selected[column] = key
            self._active = column
            self._version += 1
        return True

    def move(self, delta: int, column: Column | None = None) -> str | None:
        """Move the selection within a column by *delta*, clamped at the ends."""
        with self._lock:
            column = column or self._active
            keys = list(self._columns[column])
            if not keys:
                return None
            current = self._selected[column]
            idx = keys.index(current) if current in keys else 0
            idx = max(0, min(len(keys) - 1, idx + delta))
            self._selected[column] = keys[idx]
            self._version += 1
            return keys[idx]

    def set_active(self, column: Column) -> None:
        with self._lock:
            self._active = column
            self._version += 1

    def cycle_active(self, delta: int = 1) -> Column:
        with self._lock:
            idx = COLUMN_ORDER.index(self._active)
            self._active = COLUMN_ORDER[(idx + delta) % len(COLUMN_ORDER)]
            self._version += 1
            return self._active

    def _fence_locked(self, column: Column, key: str) -> None:
        self._fenced[column][key] = self._started

    def _fix_selection_locked(self, column: Column) -> None:
        entities = self._columns[column]
        if self._selected[column] in entities:
            return
        self._selected[column] = next(iter(entities), None)

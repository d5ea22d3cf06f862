"""
Cross-reference between board columns.

Every entity resolves to an issue key (the issue number as a string):
issues by number, workspaces and sessions by their key, proposed changes by
the ``issue-N`` convention of their head branch. Related entities are those
in the *other* columns sharing that key. Computed from a snapshot on every
selection change; nothing here is cached.
"""

from __future__ import annotations

from octopai.core.board.store import BoardSnapshot
from octopai.core.models import COLUMN_ORDER, BoardEntity, Column


def issue_key_of(entity: BoardEntity) -> str | None:
    return entity.issue_key


def related(snapshot: BoardSnapshot, column: Column, key: str) -> dict[Column, list[BoardEntity]]:
    """Entities in the other three columns linked to ``(column, key)``."""
    out: dict[Column, list[BoardEntity]] = {c: [] for c in COLUMN_ORDER if c != column}
    origin = snapshot.get(column, key)
    if origin is None:
        return out
    issue_key = issue_key_of(origin)
    if issue_key is None:
        return out
    for other in out:
        out[other] = [e for e in snapshot.columns[other] if issue_key_of(e) == issue_key]
    return out


def related_to_selection(snapshot: BoardSnapshot) -> dict[Column, list[BoardEntity]]:
    key = snapshot.selected[snapshot.active]
    if key is None:
        return {c: [] for c in COLUMN_ORDER if c != snapshot.active}
    return related(snapshot, snapshot.active, key)


def related_keys(snapshot: BoardSnapshot) -> set[tuple[Column, str]]:
    """(column, key) pairs to highlight for the current selection."""
    return {
        (column, entity.key)
        for column, entities in related_to_selection(snapshot).items()
        for entity in entities
    }

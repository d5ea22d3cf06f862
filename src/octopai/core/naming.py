"""
Deterministic names derived from an issue number.

Issue #42 in a repo checked out at ``~/src/widget`` maps to:

  key          42
  branch       issue-42
  worktree     ~/src/widget-issue-42
  session      issue-42   (multiplexer session name)
"""

from __future__ import annotations

import re
from pathlib import Path

BRANCH_PREFIX = "issue-"

_REF_RE = re.compile(r"(?:^|[/_-])issue-(\d+)(?!\d)")
_SESSION_RE = re.compile(r"^issue-(\d+)$")


def workspace_key(issue_number: int) -> str:
    return str(issue_number)


def branch_name(issue_number: int) -> str:
    return f"{BRANCH_PREFIX}{issue_number}"


def session_name(key: str) -> str:
    return f"{BRANCH_PREFIX}{key}"


def worktree_path(repo_root: Path, issue_number: int) -> Path:
    return repo_root.parent / f"{repo_root.name}-{branch_name(issue_number)}"


def issue_number_from_ref(ref: str) -> int | None:
    """Best-effort issue number from a branch name or worktree path."""
    match = _REF_RE.search(ref)
    return int(match.group(1)) if match else None


def key_from_session_name(name: str) -> str | None:
    """Workspace key for a multiplexer session we launched, else None."""
    match = _SESSION_RE.match(name)
    return match.group(1) if match else None

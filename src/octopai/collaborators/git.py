"""Git worktree management for the repository the board runs in."""

from __future__ import annotations

import re
from pathlib import Path

import structlog

from octopai.collaborators._exec import check_command, run_command
from octopai.collaborators.base import VersionControl, WorktreeInfo
from octopai.core.exceptions import CollaboratorError, ResourceConflictError

logger = structlog.get_logger()

# git stderr fragments meaning "your local state is in the way", not a hiccup
_CONFLICT_MARKERS = (
    "contains modified or untracked files",
    "is dirty",
    "is already checked out at",
    "is already used by worktree",
    "already exists",
    "is not fully merged",
    "checked out at",
    "is locked",
)

_MAIN_BRANCHES = frozenset({"main", "master"})

_GITHUB_ORIGIN_RE = re.compile(r"github\.com[:/]([^/\s]+)/([^/\s]+?)(?:\.git)?/?$")


def parse_worktree_porcelain(output: str, include_main: bool = False) -> list[WorktreeInfo]:
    """Parse ``git worktree list --porcelain``; main and bare checkouts are skipped unless asked for."""
    worktrees: list[WorktreeInfo] = []
    first = True
    for block in output.strip().split("\n\n"):
        path = ""
        branch: str | None = None
        bare = False
        for line in block.splitlines():
            if line.startswith("worktree "):
                path = line[len("worktree ") :]
            elif line.startswith("branch refs/heads/"):
                branch = line[len("branch refs/heads/") :]
            elif line == "bare":
                bare = True
        if not path:
            continue
        is_main = first or bare or branch in _MAIN_BRANCHES
        first = False
        if is_main and not include_main:
            continue
        worktrees.append(WorktreeInfo(path=Path(path), branch=branch))
    return worktrees


def github_slug_from_origin(url: str) -> str | None:
    match = _GITHUB_ORIGIN_RE.search(url.strip())
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def _classify(exc: CollaboratorError) -> CollaboratorError:
    lowered = exc.output.lower()
    if any(marker in lowered for marker in _CONFLICT_MARKERS):
        return ResourceConflictError(exc.output or str(exc), command=exc.command, output=exc.output)
    return exc


class GitWorktrees(VersionControl):
    """Worktrees as sibling directories of the main checkout."""

    def __init__(self, repo_root: Path) -> None:
        self._root = repo_root

    @property
    def repo_root(self) -> Path:
        return self._root

    @classmethod
    async def discover(cls, cwd: Path | None = None) -> GitWorktrees:
        """Locate the main checkout containing *cwd*, even when run from a worktree."""
        result = await check_command(
            ["git", "rev-parse", "--path-format=absolute", "--git-common-dir"],
            cwd=cwd,
        )
        common_dir = Path(result.stdout.strip())
        return cls(common_dir.parent if common_dir.name == ".git" else common_dir)

    async def _git(self, *args: str) -> str:
        try:
            result = await check_command(["git", *args], cwd=self._root)
        except CollaboratorError as exc:
            classified = _classify(exc)
            if classified is exc:
                raise
            raise classified from exc
        return result.stdout

    async def add_worktree(self, path: Path, branch: str) -> None:
        await self._git("worktree", "add", "-b", branch, str(path))
        logger.info("worktree_added", path=str(path), branch=branch)

    async def remove_worktree(self, path: Path, branch: str, force: bool = False) -> None:
        """
        Remove the worktree at *path*, then its branch.

        A branch checked out in another worktree cannot be deleted, so that
        is refused up front, before anything is removed.
        """
        other = await self._checked_out_elsewhere(branch, path)
        if other is not None:
            raise ResourceConflictError(f"'{branch}' is already checked out at '{other}'")
        if path.exists():
            args = ["worktree", "remove", str(path)]
            if force:
                args.insert(2, "--force")
            await self._git(*args)
        else:
            # directory already gone; drop git's stale record of it
            await self._git("worktree", "prune")
        if await self._branch_exists(branch):
            await self._git("branch", "-D", branch)
        logger.info("worktree_removed", path=str(path), branch=branch, force=force)

    async def _checked_out_elsewhere(self, branch: str, path: Path) -> Path | None:
        result = await run_command(["git", "worktree", "list", "--porcelain"], cwd=self._root)
        if not result.ok:
            return None
        target = path.resolve()
        for wt in parse_worktree_porcelain(result.stdout, include_main=True):
            if wt.branch == branch and wt.path.resolve() != target:
                return wt.path
        return None

    async def _branch_exists(self, branch: str) -> bool:
        result = await run_command(
            ["git", "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=self._root
        )
        return result.returncode == 0

    async def list_worktrees(self) -> list[WorktreeInfo]:
        return parse_worktree_porcelain(await self._git("worktree", "list", "--porcelain"))

    async def pull_main(self) -> str:
        output = await self._git("pull", "--ff-only")
        lines = [line for line in output.strip().splitlines() if line.strip()]
        return lines[-1] if lines else "Already up to date."

    async def origin_slug(self) -> str | None:
        result = await run_command(["git", "remote", "get-url", "origin"], cwd=self._root)
        if not result.ok:
            return None
        return github_slug_from_origin(result.stdout)

"""
Collaborator interfaces — the external tools the engine drives.

  IssueTracker    issues and pull requests (GitHub via gh, or a local JSON file)
  VersionControl  git worktrees for each issue
  Multiplexer     detached terminal sessions (tmux preferred, screen fallback)

All methods are async and raise CollaboratorError (or a subclass) on
failure. Implementations register themselves by name::

    @MultiplexerRegistry.register("tmux")
    class TmuxMultiplexer(Multiplexer): ...

and are looked up with ``MultiplexerRegistry.get("tmux")``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, TypeVar

from octopai.core.models import Issue, ListFilter, ProposedChange

# ---------------------------------------------------------------------------
# Issue tracker
# ---------------------------------------------------------------------------


class IssueTracker(ABC):
    """Issues and proposed changes for one repository."""

    #: Short identifier used in config files (e.g. "github")
    name: str = ""

    @abstractmethod
    async def list_issues(self, filter: ListFilter) -> list[Issue]:
        """Return issues matching *filter*, newest first."""

    @abstractmethod
    async def get_issue(self, number: int) -> Issue:
        """Return one issue; raise CollaboratorError if it does not exist."""

    @abstractmethod
    async def create_issue(self, title: str, body: str) -> Issue:
        """Create an issue and return it as the tracker stored it."""

    @abstractmethod
    async def close_issue(self, number: int) -> None:
        """Close an issue."""

    @abstractmethod
    async def list_changes(self, filter: ListFilter) -> list[ProposedChange]:
        """Return pull requests matching *filter*, newest first."""

    @abstractmethod
    async def mark_ready(self, number: int) -> None:
        """Turn a draft pull request into one ready for review."""

    @abstractmethod
    async def merge(self, number: int) -> None:
        """Merge a pull request."""

    @abstractmethod
    async def revert(self, number: int) -> ProposedChange | None:
        """Open a pull request reverting a merged one; returns it when known."""

    async def assign_to_me(self, number: int) -> None:  # noqa: B027
        """Assign the issue to the current user. Trackers without users ignore this."""

    def healthcheck(self) -> dict[str, Any]:
        return {"status": "ok", "tracker": self.name}


# ---------------------------------------------------------------------------
# Version control
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorktreeInfo:
    path: Path
    branch: str | None


class VersionControl(ABC):
    """Worktree management for the repository the board runs in."""

    @property
    @abstractmethod
    def repo_root(self) -> Path:
        """Top-level directory of the main checkout."""

    @abstractmethod
    async def add_worktree(self, path: Path, branch: str) -> None:
        """Create *branch* and check it out at *path*."""

    @abstractmethod
    async def remove_worktree(self, path: Path, branch: str, force: bool = False) -> None:
        """
        Remove the worktree at *path* and delete *branch*.

        Raises ResourceConflictError when git refuses because of local state.
        """

    @abstractmethod
    async def list_worktrees(self) -> list[WorktreeInfo]:
        """Linked worktrees, excluding the main checkout."""

    @abstractmethod
    async def pull_main(self) -> str:
        """Fast-forward the main checkout; returns git's summary line."""


# ---------------------------------------------------------------------------
# Terminal multiplexer
# ---------------------------------------------------------------------------


class Multiplexer(ABC):
    """Detached terminal sessions that the user can attach to."""

    #: Short identifier used in config files (e.g. "tmux")
    name: str = ""

    #: Executable that must be on PATH
    executable: str = ""

    @abstractmethod
    async def start_session(
        self,
        name: str,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Start a detached session named *name* in *cwd* and type *command* into it."""

    @abstractmethod
    async def kill_session(self, name: str) -> bool:
        """Kill a session; returns False if it did not exist (not an error)."""

    @abstractmethod
    async def list_sessions(self) -> list[str]:
        """Names of all live sessions."""

    @abstractmethod
    async def attach(self, name: str) -> None:
        """Hand the terminal to the session until the user detaches."""

    async def has_session(self, name: str) -> bool:
        return name in await self.list_sessions()


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

T = TypeVar("T")


class _Registry(Generic[T]):
    def __init__(self, kind: str) -> None:
        self._kind = kind
        self._registry: dict[str, type[T]] = {}

    def register(self, name: str) -> Any:
        """Decorator: @Registry.register("name")"""

        def decorator(cls: type[T]) -> type[T]:
            self._registry[name] = cls
            return cls

        return decorator

    def get(self, name: str) -> type[T]:
        if name not in self._registry:
            available = ", ".join(sorted(self._registry)) or "(none)"
            raise KeyError(f"Unknown {self._kind}: {name!r}. Available: {available}")
        return self._registry[name]

    def list_all(self) -> dict[str, type[T]]:
        return dict(self._registry)


TrackerRegistry: _Registry[IssueTracker] = _Registry("issue tracker")
MultiplexerRegistry: _Registry[Multiplexer] = _Registry("multiplexer")

# Preference order when config says multiplexer = "auto"
MULTIPLEXER_PREFERENCE: tuple[str, ...] = ("tmux", "screen")

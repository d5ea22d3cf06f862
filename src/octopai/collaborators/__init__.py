"""
octopai collaborators — adapters for the external tools the board drives.

Importing this package registers the built-in trackers and multiplexers
in ``TrackerRegistry`` / ``MultiplexerRegistry``.
"""

from __future__ import annotations

from octopai.collaborators import github, local, screen, tmux  # noqa: F401
from octopai.collaborators._exec import which
from octopai.collaborators.base import (
    MULTIPLEXER_PREFERENCE,
    IssueTracker,
    Multiplexer,
    MultiplexerRegistry,
    TrackerRegistry,
    VersionControl,
)
from octopai.core.exceptions import CollaboratorUnavailableError


def resolve_multiplexer(choice: str = "auto") -> Multiplexer:
    """
    Return the multiplexer to launch sessions in.

    ``auto`` prefers tmux and falls back to screen. An explicit choice must
    be installed. Raises CollaboratorUnavailableError when nothing usable
    is on PATH.
    """
    names = MULTIPLEXER_PREFERENCE if choice == "auto" else (choice,)
    for name in names:
        cls = MultiplexerRegistry.get(name)
        if which(cls.executable):
            return cls()
    wanted = " or ".join(names)
    raise CollaboratorUnavailableError(f"no usable terminal multiplexer found (need {wanted})")


__all__ = [
    "IssueTracker",
    "Multiplexer",
    "MultiplexerRegistry",
    "TrackerRegistry",
    "VersionControl",
    "resolve_multiplexer",
]

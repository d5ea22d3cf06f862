"""octopai exception hierarchy."""

from __future__ import annotations

from octopai.core.constants import ExitCode


class OctopaiError(Exception):
    """Base exception for all octopai errors."""


class ConfigError(OctopaiError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when the configuration file does not exist."""


class CollaboratorError(OctopaiError):
    """Raised when an external tool call fails; transient unless a subclass says otherwise."""

    def __init__(self, message: str, *, command: str = "", output: str = "") -> None:
        super().__init__(message)
        self.command = command
        self.output = output


class CollaboratorUnavailableError(CollaboratorError):
    """Raised when a required executable is not installed."""


class ResourceConflictError(CollaboratorError):
    """Raised when a worktree or branch is blocked by local state (dirty tree, checked out elsewhere)."""


class ProtocolError(OctopaiError):
    """Raised when a hook event cannot be decoded or validated."""


class LifecycleError(OctopaiError):
    """Raised when a workspace lifecycle operation is misused."""


class InvalidTransitionError(LifecycleError):
    """Raised when a lifecycle transition is not in the transition table."""


class StartupError(OctopaiError):
    """Raised when the board cannot start (no usable multiplexer or assistant)."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.ENV_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code

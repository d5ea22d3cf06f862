"""octopai constants: filesystem layout, socket address, intervals, and limits."""

from __future__ import annotations

import os
import sys
from enum import IntEnum
from pathlib import Path

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    ENV_ERROR = 3


# ---------------------------------------------------------------------------
# Platform-specific data directory
# ---------------------------------------------------------------------------


def _default_data_dir() -> Path:
    """
    Return the platform-appropriate octopai data directory.

    macOS : ~/Library/Application Support/octopai
    Linux : ~/.config/octopai
    Other : ~/.octopai
    """
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "octopai"
    if sys.platform.startswith("linux"):
        xdg = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        return xdg / "octopai"
    return Path.home() / ".octopai"


def _default_socket_path() -> Path:
    """Per-user event socket; prefers the XDG runtime dir when one exists."""
    if runtime := os.environ.get("XDG_RUNTIME_DIR"):
        return Path(runtime) / "octopai" / SOCKET_FILENAME
    return _default_data_dir() / SOCKET_FILENAME


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

CONFIG_FILENAME = "config.toml"
LOG_FILENAME = "octopai.log"
SOCKET_FILENAME = "events.sock"
PROMPTS_DIR_NAME = "prompts"
LOCAL_STORE_DIR_NAME = "local"
LOCAL_STORE_FILENAME = "store.json"

# Assistant hook config written into each worktree
ASSISTANT_SETTINGS_RELPATH = Path(".claude") / "settings.local.json"
ASSISTANT_GLOBAL_STATE = Path.home() / ".claude.json"

# Environment handed to every launched session
ENV_SESSION_ID = "OCTOPAI_SESSION_ID"
ENV_SOCKET = "OCTOPAI_SOCKET"

# ---------------------------------------------------------------------------
# Timeouts and limits
# ---------------------------------------------------------------------------

DEFAULT_REFRESH_INTERVAL_S = 30.0
DEFAULT_MESSAGE_LOG_SIZE = 200
MAX_EVENT_LINE_BYTES = 64 * 1024
DELETE_CONFIRMATIONS = 2  # consecutive successful fetches that must omit an entity
LIST_LIMIT = 30  # issues / PRs fetched per refresh
SEND_KEYS_DELAY_S = 0.5  # shell start-up grace before typing the command
HOOK_CONNECT_TIMEOUT_S = 1.0
COLLABORATOR_TIMEOUT_S = 60.0

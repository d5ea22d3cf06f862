"""octopai configuration: Pydantic model, load, save, and env overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from octopai.core.constants import (
    CONFIG_FILENAME,
    DEFAULT_MESSAGE_LOG_SIZE,
    DEFAULT_REFRESH_INTERVAL_S,
    LOCAL_STORE_DIR_NAME,
    LOG_FILENAME,
    PROMPTS_DIR_NAME,
    _default_data_dir,
    _default_socket_path,
)
from octopai.core.exceptions import ConfigError, ConfigNotFoundError

DEFAULT_SESSION_COMMAND = "{claude}"


def octopai_dir() -> Path:
    """
    Return the octopai data directory, creating it if needed.

    macOS : ~/Library/Application Support/octopai
    Linux : ~/.config/octopai  (or $XDG_CONFIG_HOME/octopai)
    Other : ~/.octopai
    """
    d = _default_data_dir()
    d.mkdir(mode=0o700, parents=True, exist_ok=True)
    return d


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v


class EventsConfig(BaseModel):
    """Hook event server settings."""

    socket_path: str = ""  # empty → use default
    message_log_size: int = DEFAULT_MESSAGE_LOG_SIZE

    @field_validator("message_log_size")
    @classmethod
    def validate_log_size(cls, v: int) -> int:
        if not (10 <= v <= 10_000):
            raise ValueError("message_log_size must be between 10 and 10000")
        return v


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class OctopaiConfig(BaseModel):
    """Root octopai configuration model."""

    repo: str = ""
    """owner/name; empty means detect from the git origin remote."""

    mode: str = "github"
    multiplexer: str = "auto"
    session_command: str = DEFAULT_SESSION_COMMAND
    session_commands: dict[str, str] = Field(default_factory=dict)
    verify_commands: dict[str, str] = Field(default_factory=dict)
    """owner/name -> shell command run detached in a worktree (``v``)."""
    editor_commands: dict[str, str] = Field(default_factory=dict)
    """owner/name -> shell command that opens a worktree in an editor (``e``)."""
    refresh_interval_s: float = DEFAULT_REFRESH_INTERVAL_S
    pr_ready: bool = False
    auto_cleanup_merged: bool = True
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v not in ("github", "local"):
            raise ValueError(f"Unknown mode {v!r}. Supported: github, local")
        return v

    @field_validator("multiplexer")
    @classmethod
    def validate_multiplexer(cls, v: str) -> str:
        if v not in ("auto", "tmux", "screen"):
            raise ValueError(f"Unknown multiplexer {v!r}. Supported: auto, tmux, screen")
        return v

    @field_validator("refresh_interval_s")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if not (5.0 <= v <= 3600.0):
            raise ValueError("refresh_interval_s must be between 5 and 3600")
        return v

    @field_validator("repo")
    @classmethod
    def validate_repo(cls, v: str) -> str:
        if v and v.count("/") != 1:
            raise ValueError(f"repo must look like 'owner/name', got {v!r}")
        return v

    _config_path: Path | None = None

    def command_for(self, repo: str) -> str:
        """Session command template for *repo*, falling back to the default."""
        return self.session_commands.get(repo) or self.session_command

    def verify_command_for(self, repo: str) -> str | None:
        return self.verify_commands.get(repo) or None

    def editor_command_for(self, repo: str) -> str | None:
        return self.editor_commands.get(repo) or None

    @property
    def socket_path(self) -> Path:
        if self.events.socket_path:
            return Path(self.events.socket_path).expanduser()
        return _default_socket_path()

    @property
    def log_path(self) -> Path:
        return octopai_dir() / LOG_FILENAME

    @property
    def prompts_dir(self) -> Path:
        return octopai_dir() / PROMPTS_DIR_NAME

    @property
    def local_store_dir(self) -> Path:
        return octopai_dir() / LOCAL_STORE_DIR_NAME


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("OCTOPAI_CONFIG"):
        return Path(env_path)
    return octopai_dir() / CONFIG_FILENAME


def load_config(path: Path | str | None = None, *, required: bool = False) -> OctopaiConfig:
    """
    Load OctopaiConfig from TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (OCTOPAI_*)
      2. Config file (platform data dir / config.toml)
      3. Model defaults

    A missing file yields defaults unless *required* is set.
    """
    import tomllib

    cfg_path = Path(path) if path is not None else _config_file_path()

    data: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            with open(cfg_path, "rb") as f:
                data = tomllib.load(f)
        except Exception as exc:
            raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc
    elif required:
        raise ConfigNotFoundError(f"Config file not found: {cfg_path}")

    _apply_env_overrides(data)

    try:
        config = OctopaiConfig.model_validate(data)
    except Exception as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc

    config._config_path = cfg_path
    return config


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay OCTOPAI_* environment variables onto parsed TOML."""
    if repo := os.environ.get("OCTOPAI_REPO", ""):
        data["repo"] = repo
    if mode := os.environ.get("OCTOPAI_MODE", ""):
        data["mode"] = mode
    if mux := os.environ.get("OCTOPAI_MULTIPLEXER", ""):
        data["multiplexer"] = mux
    if level := os.environ.get("OCTOPAI_LOG_LEVEL", ""):
        data.setdefault("logging", {})["level"] = level
    if sock := os.environ.get("OCTOPAI_SOCKET", ""):
        data.setdefault("events", {})["socket_path"] = sock


def save_config(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Write config dict to TOML file with secure permissions (0600)."""
    import tomli_w

    cfg_path = path or _config_file_path()
    cfg_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(".tmp")
    try:
        with open(tmp_path, "wb") as f:
            tomli_w.dump(config_data, f)
        tmp_path.rename(cfg_path)
    except Exception as exc:
        tmp_path.unlink(missing_ok=True)
        raise ConfigError(f"Cannot write config to {cfg_path}: {exc}") from exc

    cfg_path.chmod(0o600)
    return cfg_path


COMMAND_KINDS = ("session", "verify", "editor")


def set_command_template(
    template: str, *, kind: str = "session", repo: str = "", path: Path | None = None
) -> Path:
    """
    Persist one command template, keeping the rest of the file as written.

    Session commands may be global (no *repo*); verify and editor commands
    are always per repository.
    """
    import tomllib

    template = template.strip()
    if not template:
        raise ConfigError("the command template must not be empty")
    if kind not in COMMAND_KINDS:
        raise ConfigError(f"Unknown command kind {kind!r}. Supported: {', '.join(COMMAND_KINDS)}")
    if kind != "session" and not repo:
        raise ConfigError(f"{kind} commands are per repository; pass a repo")

    cfg_path = path or _config_file_path()
    data: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            with open(cfg_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc

    if kind == "session" and not repo:
        data["session_command"] = template
    else:
        data.setdefault(f"{kind}_commands", {})[repo] = template
    return save_config(data, cfg_path)

"""
octopai CLI entry point.

Commands:
  octopai                          — launch the board (if stdout is a TTY)
  octopai board                    — launch the board (explicit)
  octopai hook <status>            — report assistant activity to the board
  octopai doctor [--json]          — check external tools and config
  octopai config show|path         — inspect the resolved configuration
  octopai config init              — write a starter config file
  octopai config set-command TPL   — set a session, verify or editor command template
  octopai version                  — show version
"""

from __future__ import annotations

import sys

import click
from rich.console import Console

from octopai import __version__
from octopai.core.events.protocol import HookStatus

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(__version__, "--version", "-V", message="octopai %(version)s")
@click.option(
    "--log-level", default="WARNING", hidden=True, help="Log level for structured logging."
)
@click.option("--log-json", is_flag=True, default=False, hidden=True, help="Emit JSON log lines.")
@click.pass_context
def cli(ctx: click.Context, log_level: str, log_json: bool) -> None:
    """octopai — a terminal board for running AI coding sessions per issue."""
    from octopai.core.logging import configure_logging

    configure_logging(level=log_level, json_output=log_json)
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_json"] = log_json

    if ctx.invoked_subcommand is None:
        if sys.stdout.isatty():
            ctx.invoke(board)
        else:
            click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# board
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--repo", default="", help="owner/name (default: from the git origin remote)")
@click.option("--local", "local_mode", is_flag=True, default=False, help="Use the local JSON tracker")
@click.option(
    "--multiplexer",
    type=click.Choice(["auto", "tmux", "screen"]),
    default=None,
    help="Terminal multiplexer for sessions",
)
@click.pass_context
def board(ctx: click.Context, repo: str, local_mode: bool, multiplexer: str | None) -> None:
    """Launch the interactive board (requires a TTY)."""
    if not sys.stdout.isatty():
        err_console.print("[red]Error:[/red] 'octopai board' requires an interactive terminal (TTY).")
        raise SystemExit(1)
    from octopai.cli._board import cmd_board

    obj = ctx.obj or {}
    cmd_board(
        repo=repo,
        local_mode=local_mode,
        multiplexer=multiplexer,
        log_level=obj.get("log_level", "WARNING"),
        log_json=obj.get("log_json", False),
        console=err_console,
    )


@cli.command("ui", hidden=True)
@click.pass_context
def ui(ctx: click.Context) -> None:
    """Alias for ``octopai board``."""
    ctx.invoke(board)


# ---------------------------------------------------------------------------
# hook
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("status", type=click.Choice([s.value for s in HookStatus]))
@click.option("--detail", default=None, help="Short text shown next to the status")
def hook(status: str, detail: str | None) -> None:
    """Report assistant activity to the running board. Always exits 0."""
    from octopai.cli._hook import cmd_hook

    cmd_hook(status=status, detail=detail)


# ---------------------------------------------------------------------------
# doctor
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def doctor(as_json: bool) -> None:
    """Check external tools and configuration."""
    from octopai.cli._doctor import cmd_doctor

    cmd_doctor(as_json=as_json, console=console)


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group("config")
def config_group() -> None:
    """Inspect and edit the octopai configuration."""


@config_group.command("show")
@click.option("--json", "as_json", is_flag=True, default=False)
def config_show(as_json: bool) -> None:
    """Print the resolved configuration (file + environment)."""
    from octopai.cli._config import cmd_config_show

    cmd_config_show(as_json=as_json, console=console)


@config_group.command("path")
def config_path() -> None:
    """Print the config file location."""
    from octopai.cli._config import cmd_config_path

    cmd_config_path(console=console)


@config_group.command("init")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file")
def config_init(force: bool) -> None:
    """Write a starter config file."""
    from octopai.cli._config import cmd_config_init

    cmd_config_init(force=force, console=console)


@config_group.command("set-command")
@click.argument("template")
@click.option("--repo", default="", help="Only for this owner/name (required for verify and editor)")
@click.option(
    "--kind",
    type=click.Choice(["session", "verify", "editor"]),
    default="session",
    show_default=True,
    help="Which command to set",
)
def config_set_command(template: str, repo: str, kind: str) -> None:
    """Set a command template, e.g. '{claude}' or 'code {worktree_path}' with --kind editor."""
    from octopai.cli._config import cmd_config_set_command

    cmd_config_set_command(template=template, repo=repo, kind=kind, console=console)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def version(as_json: bool) -> None:
    """Show version information."""
    import json
    import platform

    info = {
        "octopai": __version__,
        "python": platform.python_version(),
        "platform": sys.platform,
    }
    if as_json:
        click.echo(json.dumps(info, indent=2))
        return
    console.print(f"octopai {__version__}")
    console.print(f"  Python   {info['python']}")
    console.print(f"  Platform {info['platform']}")

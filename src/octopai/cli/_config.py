"""octopai config — show, locate and edit the config file."""

from __future__ import annotations

import json
import sys
from typing import Any

from rich.console import Console
from rich.markup import escape

from octopai.core.constants import ExitCode


def _load_or_exit(console: Console) -> Any:
    from octopai.core.config import load_config
    from octopai.core.exceptions import ConfigError

    try:
        return load_config()
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)


def cmd_config_show(as_json: bool, console: Console) -> None:
    config = _load_or_exit(console)
    data = config.model_dump(mode="json")
    data["socket_path"] = str(config.socket_path)
    data["log_path"] = str(config.log_path)
    if as_json:
        print(json.dumps(data, indent=2))
        return
    console.print(f"[bold]Config file:[/bold] {config._config_path}")
    for key, value in data.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                console.print(f"  {key}.{sub_key} = {sub_value!r}")
        else:
            console.print(f"  {key} = {value!r}")


def cmd_config_path(console: Console) -> None:
    from octopai.core.config import _config_file_path

    console.print(str(_config_file_path()), soft_wrap=True, highlight=False)


def cmd_config_init(force: bool, console: Console) -> None:
    from octopai.core.config import _config_file_path, save_config
    from octopai.core.deps import default_session_command

    path = _config_file_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists:[/yellow] {path}")
        console.print("Use [cyan]octopai config init --force[/cyan] to overwrite it.")
        sys.exit(ExitCode.ERROR)

    data = {
        "mode": "github",
        "multiplexer": "auto",
        "session_command": default_session_command(),
        "pr_ready": False,
    }
    save_config(data, path)
    console.print(f"[green]Wrote[/green] {path}")


def cmd_config_set_command(template: str, repo: str, kind: str, console: Console) -> None:
    from octopai.core.config import set_command_template
    from octopai.core.exceptions import ConfigError

    try:
        path = set_command_template(template, kind=kind, repo=repo)
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)
    scope = f" for {repo}" if repo else ""
    console.print(
        f"{kind.capitalize()} command{scope} set to [cyan]{escape(template.strip())}[/cyan] in {path}",
        highlight=False,
    )

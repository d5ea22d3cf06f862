"""octopai doctor — environment and configuration health check."""

from __future__ import annotations

import json
import socket
from pathlib import Path

from rich.console import Console


def _check_config() -> dict:
    from octopai.core.config import _config_file_path, load_config
    from octopai.core.exceptions import ConfigError

    path = _config_file_path()
    try:
        load_config(path)
    except ConfigError as exc:
        return {"name": "Config", "status": "fail", "detail": str(exc)}
    if not path.exists():
        return {"name": "Config", "status": "warn", "detail": f"not found, using defaults ({path})"}
    return {"name": "Config", "status": "pass", "detail": str(path)}


def _board_listening(path: Path) -> bool:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(0.5)
    try:
        sock.connect(str(path))
    except OSError:
        return False
    finally:
        sock.close()
    return True


def _check_event_socket() -> dict:
    from octopai.core.config import load_config
    from octopai.core.exceptions import ConfigError

    try:
        path = load_config().socket_path
    except ConfigError:
        return {"name": "Event socket", "status": "skip", "detail": "config invalid"}
    if not path.exists():
        return {"name": "Event socket", "status": "pass", "detail": f"free ({path})"}
    if _board_listening(path):
        return {"name": "Event socket", "status": "warn", "detail": f"a board is running ({path})"}
    return {"name": "Event socket", "status": "warn", "detail": f"stale socket file ({path})"}


def _status_icon(status: str) -> str:
    if status == "pass":
        return "[green]PASS[/green]"
    if status == "skip":
        return "[dim]SKIP[/dim]"
    if status == "warn":
        return "[yellow]WARN[/yellow]"
    return "[red]FAIL[/red]"


def cmd_doctor(as_json: bool, console: Console) -> None:
    from octopai.core.deps import check_dependencies

    checks: list[dict] = [*check_dependencies(), _check_config(), _check_event_socket()]
    all_pass = all(c["status"] in ("pass", "skip") for c in checks)

    if as_json:
        print(json.dumps({"checks": checks, "all_pass": all_pass}, indent=2))
        return

    console.print("[bold]octopai doctor[/bold]\n")
    for c in checks:
        console.print(f"  {_status_icon(c['status'])}  {c['name']}: {c['detail']}")

    console.print()
    if all_pass:
        console.print("[green]All checks passed.[/green]")
    elif any(c["status"] == "fail" for c in checks):
        console.print("[red]Some checks failed.[/red] The board will not start until they pass.")
    else:
        console.print("[yellow]Some checks have warnings. Review above for details.[/yellow]")

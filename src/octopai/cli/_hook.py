"""
octopai hook — run by the assistant's hooks inside a session.

The assistant writes a JSON payload to stdin and waits for the command to
finish, so this must be quick and must never fail: every problem is
swallowed and the exit code is always 0.
"""

from __future__ import annotations

import json
import sys

import structlog

logger = structlog.get_logger()

_DETAIL_FIELDS = ("message", "tool_name", "reason")


def detail_from_payload(raw: str) -> str | None:
    """Pick a short human-readable detail out of the hook's stdin payload."""
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    for name in _DETAIL_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()[:200]
    return None


def _read_stdin() -> str:
    if sys.stdin is None or sys.stdin.isatty():
        return ""
    try:
        return sys.stdin.read()
    except (OSError, ValueError):
        return ""


def cmd_hook(status: str, detail: str | None) -> None:
    from octopai.core.events.hooks import emit
    from octopai.core.events.protocol import HookStatus

    payload = _read_stdin()
    try:
        delivered = emit(HookStatus(status), detail or detail_from_payload(payload))
    except Exception as exc:  # noqa: BLE001
        logger.debug("hook_emit_failed", status=status, error=str(exc))
        return
    logger.debug("hook_emitted", status=status, delivered=delivered)

"""Unit tests for octopai.core.deps — tool detection and startup gating."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from octopai.core.deps import (
    available_assistants,
    check_dependencies,
    default_session_command,
    ensure_startup_dependencies,
    has_missing_required,
)
from octopai.core.exceptions import StartupError


def _only(*installed: str):  # type: ignore[no-untyped-def]
    return patch(
        "octopai.core.deps._which",
        side_effect=lambda name: f"/usr/bin/{name}" if name in installed else None,
    )


class TestChecks:
    def test_everything_installed(self) -> None:
        with _only("git", "gh", "tmux", "claude"):
            checks = check_dependencies()
        assert {c["status"] for c in checks} == {"pass"}
        assert not has_missing_required(checks)

    def test_gh_missing_is_a_warning(self) -> None:
        with _only("git", "tmux", "claude"):
            checks = {c["name"]: c for c in check_dependencies()}
        assert checks["gh"]["status"] == "warn"
        assert not has_missing_required(list(checks.values()))

    def test_screen_satisfies_multiplexer(self) -> None:
        with _only("git", "screen", "claude"):
            checks = {c["name"]: c for c in check_dependencies()}
        assert checks["Multiplexer"]["status"] == "pass"
        assert checks["Multiplexer"]["detail"].startswith("screen")

    def test_no_assistant_fails(self) -> None:
        with _only("git", "tmux"):
            checks = {c["name"]: c for c in check_dependencies()}
        assert checks["AI assistant"]["status"] == "fail"

    def test_available_assistants(self) -> None:
        with _only("cursor-agent"):
            assert available_assistants() == {"claude": False, "cursor": True}


class TestDefaultCommand:
    @pytest.mark.parametrize(
        ("installed", "expected"),
        [
            (("claude", "cursor-agent"), "{claude}"),
            (("cursor-agent",), "{cursor}"),
            ((), "{claude}"),
        ],
    )
    def test_default_session_command(self, installed: tuple[str, ...], expected: str) -> None:
        with _only(*installed):
            assert default_session_command() == expected


class TestStartupGate:
    def test_missing_multiplexer_and_assistant(self) -> None:
        with _only("git"), pytest.raises(StartupError) as exc_info:
            ensure_startup_dependencies()
        message = str(exc_info.value)
        assert "Multiplexer" in message
        assert "AI assistant" in message
        assert int(exc_info.value.exit_code) == 3

    def test_passes_when_satisfied(self) -> None:
        with _only("git", "tmux", "cursor-agent"):
            ensure_startup_dependencies()

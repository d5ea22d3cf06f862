"""
Session command templating and the assistant prompt.

A session command is a shell line with ``{placeholder}`` fields::

    {claude}
    aider --message-file {prompt_file}
    cursor-agent "$(cat '{prompt_file}')" --branch {branch}

Assistant shortcuts (``{claude}``, ``{cursor}``) expand first into full
command lines, which may themselves reference ``{prompt_file}``. Fields
with no value, and names we do not recognise, are left exactly as written
so a template with a typo still produces a runnable command.

The command is typed into a shell, so values that come from the tracker or
the filesystem are shell-quoted on the way in; write ``--title {title}``,
not ``--title "{title}"``. ``{prompt_file}`` and ``{issue_number}`` are
inserted as-is.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass

ASSISTANT_SHORTCUTS: dict[str, str] = {
    "claude": "claude \"$(cat '{prompt_file}')\" --allowedTools Read,Edit,Bash",
    "cursor": "cursor-agent \"$(cat '{prompt_file}')\"",
}

# Executable behind each shortcut, for availability checks.
SHORTCUT_EXECUTABLES: dict[str, str] = {
    "claude": "claude",
    "cursor": "cursor-agent",
}

PLACEHOLDERS: tuple[str, ...] = (
    "prompt_file",
    "issue_number",
    "repo",
    "title",
    "body",
    "branch",
    "worktree_path",
)

# Substituted through shlex.quote
QUOTED_PLACEHOLDERS: frozenset[str] = frozenset({"repo", "title", "body", "branch", "worktree_path"})

_FIELD_RE = re.compile(r"\{([a-z_]+)\}")


@dataclass(frozen=True)
class TemplateContext:
    """Values available to a session command template; None means unavailable."""

    prompt_file: str | None = None
    issue_number: int | None = None
    repo: str | None = None
    title: str | None = None
    body: str | None = None
    branch: str | None = None
    worktree_path: str | None = None

    def values(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for name in PLACEHOLDERS:
            value = getattr(self, name)
            if value is None:
                continue
            text = str(value)
            out[name] = shlex.quote(text) if name in QUOTED_PLACEHOLDERS else text
        return out


def _substitute(template: str, values: Mapping[str, str]) -> str:
    return _FIELD_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def render_command(template: str, ctx: TemplateContext) -> str:
    """Expand shortcuts, then placeholders; unknown fields stay verbatim."""
    expanded = _substitute(template, ASSISTANT_SHORTCUTS)
    return _substitute(expanded, ctx.values())


def referenced_executables(template: str) -> list[str]:
    """Assistant executables a template depends on, via its shortcuts."""
    names = _FIELD_RE.findall(template)
    return [SHORTCUT_EXECUTABLES[n] for n in names if n in SHORTCUT_EXECUTABLES]


def _single_line(text: str) -> str:
    return " ".join(line.strip() for line in text.splitlines() if line.strip())


def build_prompt(
    *,
    issue_number: int,
    repo: str,
    title: str,
    body: str,
    pr_ready: bool = False,
) -> str:
    """Instructions handed to the assistant for one issue."""
    description = _single_line(body) or "No description provided."
    pr_kind = "pull request" if pr_ready else "draft pull request"
    return (
        f"You are working on GitHub issue #{issue_number} for the repo {repo}. "
        f"Title: {title}. {description} "
        "Please investigate the codebase and implement a solution for this issue. "
        "When you are confident the problem is solved, commit your changes and open a "
        f"{pr_kind} with a clear title and description that explains what was changed "
        f"and why. Reference the issue with 'Closes #{issue_number}' in the PR body. "
        "Use '--assignee @me' when creating the pull request to auto-assign it."
    )

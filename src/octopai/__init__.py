"""
octopai — one terminal board for issues, worktrees, AI coding sessions and PRs.

Pick an issue, and octopai creates a git worktree for it, starts an AI
assistant inside a tmux (or screen) session, and tracks the assistant's
status as it reports back over a local socket. Pull requests that close the
issue show up next to it.

Package layout (src/octopai/):
  core/           — models, lifecycle, registry, board store, orchestrator
  core/events/    — hook event protocol, event server, hook emitter
  core/board/     — board store, cross-reference, refresh reconciler
  collaborators/  — issue tracker, git, tmux/screen adapters
  tui/            — Textual board
  cli/            — Click CLI entry point
"""

__version__ = "0.4.0"
__all__ = ["__version__"]

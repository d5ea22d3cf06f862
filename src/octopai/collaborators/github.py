"""GitHub issue tracker backed by the ``gh`` CLI."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog

from octopai.collaborators._exec import run_command, which
from octopai.collaborators.base import IssueTracker, TrackerRegistry
from octopai.core.constants import LIST_LIMIT
from octopai.core.exceptions import CollaboratorError
from octopai.core.models import ChangeState, Issue, IssueState, ListFilter, ProposedChange
from octopai.core.naming import issue_number_from_ref

logger = structlog.get_logger()

_GH_RETRY_ATTEMPTS = 2
_GH_RETRY_BACKOFF_SECONDS = 0.4
_GH_RETRY_ERROR_MARKERS = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network",
    "tls",
    "rate limit",
    "502",
    "503",
    "504",
)

_ISSUE_FIELDS = "number,title,body,labels,state,assignees,createdAt,updatedAt,url"
_PR_FIELDS = "number,title,body,isDraft,url,headRefName,state,mergedAt"

_REVERT_MUTATION = (
    "mutation($id: ID!) { revertPullRequest(input: {pullRequestId: $id}) "
    "{ revertPullRequest { number title url headRefName isDraft } } }"
)


def _is_retryable_message(message: str) -> bool:
    normalized = message.strip().lower()
    if not normalized:
        return False
    return any(marker in normalized for marker in _GH_RETRY_ERROR_MARKERS)


def parse_issue(payload: dict[str, Any]) -> Issue:
    state = str(payload.get("state", "open")).lower()
    return Issue(
        number=int(payload["number"]),
        title=str(payload.get("title", "")),
        body=str(payload.get("body") or ""),
        state=IssueState.CLOSED if state == "closed" else IssueState.OPEN,
        assignees=tuple(a.get("login", "") for a in payload.get("assignees") or ()),
        labels=tuple(lbl.get("name", "") for lbl in payload.get("labels") or ()),
        created_at=str(payload.get("createdAt") or ""),
        updated_at=str(payload.get("updatedAt") or ""),
        url=str(payload.get("url") or ""),
    )


def parse_change(payload: dict[str, Any]) -> ProposedChange:
    raw_state = str(payload.get("state", "OPEN")).upper()
    if raw_state == "MERGED" or payload.get("mergedAt"):
        state = ChangeState.MERGED
    elif raw_state == "CLOSED":
        state = ChangeState.CLOSED
    else:
        state = ChangeState.OPEN
    branch = str(payload.get("headRefName") or "")
    return ProposedChange(
        number=int(payload["number"]),
        title=str(payload.get("title", "")),
        body=str(payload.get("body") or ""),
        branch=branch,
        issue_number=issue_number_from_ref(branch),
        state=state,
        is_draft=bool(payload.get("isDraft", False)),
        url=str(payload.get("url") or ""),
    )


def issue_number_from_url(url: str) -> int:
    """``gh issue create`` prints the new issue URL; its last segment is the number."""
    tail = url.strip().rstrip("/").rsplit("/", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        raise CollaboratorError(f"Could not parse issue number from: {url.strip()}") from None


@TrackerRegistry.register("github")
class GithubIssueTracker(IssueTracker):
    """Issues and pull requests of one GitHub repository."""

    name = "github"

    def __init__(
        self,
        repo: str,
        *,
        retry_attempts: int = _GH_RETRY_ATTEMPTS,
        retry_backoff_seconds: float = _GH_RETRY_BACKOFF_SECONDS,
    ) -> None:
        self.repo = repo
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

    async def _gh(self, *args: str) -> str:
        cmd = ["gh", *args]
        attempts = max(int(self.retry_attempts), 1)
        last_error = ""
        for attempt in range(1, attempts + 1):
            result = await run_command(cmd)
            if result.ok:
                return result.stdout
            last_error = result.output or f"Command failed: {result.command_text}"
            if attempt < attempts and _is_retryable_message(last_error):
                logger.debug("gh_retry", attempt=attempt, error=last_error)
                await asyncio.sleep(self.retry_backoff_seconds * attempt)
                continue
            break
        raise CollaboratorError(f"gh error: {last_error}", command=" ".join(cmd), output=last_error)

    async def _gh_json(self, *args: str) -> Any:
        output = await self._gh(*args)
        if not output.strip():
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise CollaboratorError(f"gh returned invalid JSON: {exc.msg}") from exc

    def _list_args(self, kind: str, filter: ListFilter, fields: str) -> list[str]:
        args = [
            kind,
            "list",
            "--repo",
            self.repo,
            "--state",
            filter.state,
            "--json",
            fields,
            "--limit",
            str(LIST_LIMIT),
        ]
        if filter.assignee == "mine":
            args += ["--assignee", "@me"]
        return args

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def list_issues(self, filter: ListFilter) -> list[Issue]:
        payload = await self._gh_json(*self._list_args("issue", filter, _ISSUE_FIELDS))
        return [parse_issue(item) for item in payload or ()]

    async def get_issue(self, number: int) -> Issue:
        payload = await self._gh_json(
            "issue", "view", str(number), "--repo", self.repo, "--json", _ISSUE_FIELDS
        )
        if not isinstance(payload, dict):
            raise CollaboratorError(f"Issue #{number} not found in {self.repo}")
        return parse_issue(payload)

    async def create_issue(self, title: str, body: str) -> Issue:
        url = await self._gh(
            "issue",
            "create",
            "--repo",
            self.repo,
            "--title",
            title,
            "--body",
            body,
            "--assignee",
            "@me",
        )
        number = issue_number_from_url(url)
        logger.info("issue_created", repo=self.repo, number=number)
        return Issue(number=number, title=title, body=body, url=url.strip())

    async def close_issue(self, number: int) -> None:
        await self._gh("issue", "close", "--repo", self.repo, str(number))

    async def assign_to_me(self, number: int) -> None:
        await self._gh("issue", "edit", "--repo", self.repo, str(number), "--add-assignee", "@me")

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def list_changes(self, filter: ListFilter) -> list[ProposedChange]:
        payload = await self._gh_json(*self._list_args("pr", filter, _PR_FIELDS))
        return [parse_change(item) for item in payload or ()]

    async def mark_ready(self, number: int) -> None:
        await self._gh("pr", "ready", str(number), "--repo", self.repo)

    async def merge(self, number: int) -> None:
        await self._gh("pr", "merge", str(number), "--repo", self.repo, "--merge")

    async def revert(self, number: int) -> ProposedChange | None:
        node_id = (
            await self._gh("pr", "view", str(number), "--repo", self.repo, "--json", "id", "--jq", ".id")
        ).strip()
        if not node_id:
            raise CollaboratorError(f"Could not resolve node id for PR #{number}")
        payload = await self._gh_json(
            "api", "graphql", "-f", f"query={_REVERT_MUTATION}", "-f", f"id={node_id}"
        )
        try:
            created = payload["data"]["revertPullRequest"]["revertPullRequest"]
        except (KeyError, TypeError):
            return None
        return parse_change({**created, "state": "OPEN"})

    def healthcheck(self) -> dict[str, Any]:
        if which("gh") is None:
            return {"status": "fail", "tracker": self.name, "detail": "gh not installed"}
        return {"status": "ok", "tracker": self.name, "repo": self.repo}

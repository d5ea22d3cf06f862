"""Unit tests for octopai.collaborators.github — gh CLI parsing, retries, arguments."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from octopai.collaborators._exec import CommandResult
from octopai.collaborators.github import (
    GithubIssueTracker,
    _is_retryable_message,
    issue_number_from_url,
    parse_change,
    parse_issue,
)
from octopai.core.exceptions import CollaboratorError
from octopai.core.models import ChangeState, IssueState, ListFilter


def _result(stdout: str = "", *, returncode: int = 0, stderr: str = "") -> CommandResult:
    return CommandResult(argv=("gh",), returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def gh() -> GithubIssueTracker:
    return GithubIssueTracker("acme/widgets", retry_backoff_seconds=0)


class TestParsing:
    def test_parse_issue(self) -> None:
        issue = parse_issue(
            {
                "number": 4,
                "title": "Crash",
                "body": None,
                "state": "OPEN",
                "assignees": [{"login": "octo"}],
                "labels": [{"name": "bug"}],
                "url": "https://github.com/acme/widgets/issues/4",
            }
        )
        assert issue.number == 4
        assert issue.body == ""
        assert issue.state is IssueState.OPEN
        assert issue.assignees == ("octo",)
        assert issue.labels == ("bug",)

    def test_parse_closed_issue(self) -> None:
        assert parse_issue({"number": 1, "state": "CLOSED"}).state is IssueState.CLOSED

    @pytest.mark.parametrize(
        ("payload", "state"),
        [
            ({"state": "OPEN"}, ChangeState.OPEN),
            ({"state": "CLOSED"}, ChangeState.CLOSED),
            ({"state": "MERGED"}, ChangeState.MERGED),
            ({"state": "CLOSED", "mergedAt": "2024-01-01T00:00:00Z"}, ChangeState.MERGED),
        ],
    )
    def test_parse_change_state(self, payload: dict, state: ChangeState) -> None:
        assert parse_change({"number": 9, **payload}).state is state

    def test_parse_change_links_issue(self) -> None:
        change = parse_change({"number": 9, "headRefName": "issue-4", "isDraft": True})
        assert change.issue_number == 4
        assert change.is_draft

    def test_issue_number_from_url(self) -> None:
        assert issue_number_from_url("https://github.com/acme/widgets/issues/17\n") == 17
        with pytest.raises(CollaboratorError):
            issue_number_from_url("not a url")

    def test_retryable_messages(self) -> None:
        assert _is_retryable_message("HTTP 502: Bad Gateway")
        assert _is_retryable_message("API rate limit exceeded")
        assert not _is_retryable_message("Could not resolve to an Issue")
        assert not _is_retryable_message("")


class TestCommands:
    @pytest.mark.asyncio
    async def test_list_issues_arguments(self, gh: GithubIssueTracker) -> None:
        payload = json.dumps([{"number": 1, "title": "a"}])
        with patch("octopai.collaborators.github.run_command", AsyncMock(return_value=_result(payload))) as run:
            issues = await gh.list_issues(ListFilter(state="closed", assignee="mine"))
        argv = run.call_args.args[0]
        assert argv[:3] == ["gh", "issue", "list"]
        assert argv[argv.index("--state") + 1] == "closed"
        assert argv[argv.index("--assignee") + 1] == "@me"
        assert [i.number for i in issues] == [1]

    @pytest.mark.asyncio
    async def test_empty_output_lists_nothing(self, gh: GithubIssueTracker) -> None:
        with patch("octopai.collaborators.github.run_command", AsyncMock(return_value=_result(""))):
            assert await gh.list_changes(ListFilter()) == []

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, gh: GithubIssueTracker) -> None:
        with (
            patch("octopai.collaborators.github.run_command", AsyncMock(return_value=_result("{oops"))),
            pytest.raises(CollaboratorError, match="invalid JSON"),
        ):
            await gh.list_issues(ListFilter())

    @pytest.mark.asyncio
    async def test_create_issue_parses_url(self, gh: GithubIssueTracker) -> None:
        url = "https://github.com/acme/widgets/issues/23\n"
        with patch("octopai.collaborators.github.run_command", AsyncMock(return_value=_result(url))) as run:
            issue = await gh.create_issue("Title", "Body")
        assert issue.number == 23
        argv = run.call_args.args[0]
        assert argv[argv.index("--title") + 1] == "Title"
        assert argv[argv.index("--assignee") + 1] == "@me"

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, gh: GithubIssueTracker) -> None:
        results = [_result(returncode=1, stderr="HTTP 503"), _result("")]
        with patch("octopai.collaborators.github.run_command", AsyncMock(side_effect=results)) as run:
            await gh.merge(5)
        assert run.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, gh: GithubIssueTracker) -> None:
        failed = _result(returncode=1, stderr="Pull request is not mergeable")
        with (
            patch("octopai.collaborators.github.run_command", AsyncMock(return_value=failed)) as run,
            pytest.raises(CollaboratorError, match="not mergeable"),
        ):
            await gh.merge(5)
        assert run.await_count == 1

    @pytest.mark.asyncio
    async def test_revert_uses_graphql(self, gh: GithubIssueTracker) -> None:
        created = {
            "data": {
                "revertPullRequest": {
                    "revertPullRequest": {
                        "number": 31,
                        "title": 'Revert "Fix"',
                        "url": "u",
                        "headRefName": "revert-30-issue-4",
                        "isDraft": False,
                    }
                }
            }
        }
        results = [_result("PR_node\n"), _result(json.dumps(created))]
        with patch("octopai.collaborators.github.run_command", AsyncMock(side_effect=results)) as run:
            change = await gh.revert(30)
        assert change is not None
        assert change.number == 31
        assert change.state is ChangeState.OPEN
        assert "id=PR_node" in run.call_args.args[0]

    def test_healthcheck_without_gh(self, gh: GithubIssueTracker) -> None:
        with patch("octopai.collaborators.github.which", return_value=None):
            assert gh.healthcheck()["status"] == "fail"

"""
Local issue tracker — a JSON file standing in for GitHub.

Used when ``mode = "local"`` or when gh is unavailable. One store per repo::

    <data_dir>/local/<owner>--<name>/store.json

The file holds issues, pull requests and the next number for each; every
call reads it, applies one change and writes it back atomically.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from octopai.collaborators.base import IssueTracker, TrackerRegistry
from octopai.core.constants import LOCAL_STORE_FILENAME
from octopai.core.exceptions import CollaboratorError
from octopai.core.models import ChangeState, Issue, IssueState, ListFilter, ProposedChange, utcnow
from octopai.core.naming import issue_number_from_ref


class LocalIssue(BaseModel):
    number: int
    title: str
    body: str = ""
    state: str = "open"
    labels: list[str] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


class LocalPr(BaseModel):
    number: int
    title: str
    body: str = ""
    branch: str = ""
    state: str = "open"  # open | closed | merged
    is_draft: bool = True


class LocalStore(BaseModel):
    issues: list[LocalIssue] = Field(default_factory=list)
    prs: list[LocalPr] = Field(default_factory=list)
    next_issue_number: int = 1
    next_pr_number: int = 1


def repo_slug(repo: str) -> str:
    return repo.replace("/", "--") or "default"


@TrackerRegistry.register("local")
class LocalIssueTracker(IssueTracker):
    """JSON-file issue tracker with the same call shapes as GitHub."""

    name = "local"

    def __init__(self, repo: str, store_dir: Path) -> None:
        self.repo = repo
        self.path = store_dir / repo_slug(repo) / LOCAL_STORE_FILENAME
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> LocalStore:
        if not self.path.exists():
            return LocalStore()
        try:
            return LocalStore.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CollaboratorError(f"Cannot read local store {self.path}: {exc}") from exc

    def _save(self, store: LocalStore) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        try:
            tmp.write_text(store.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise CollaboratorError(f"Cannot write local store {self.path}: {exc}") from exc

    @staticmethod
    def _to_issue(item: LocalIssue) -> Issue:
        return Issue(
            number=item.number,
            title=item.title,
            body=item.body,
            state=IssueState(item.state),
            labels=tuple(item.labels),
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    @staticmethod
    def _to_change(item: LocalPr) -> ProposedChange:
        return ProposedChange(
            number=item.number,
            title=item.title,
            body=item.body,
            branch=item.branch,
            issue_number=issue_number_from_ref(item.branch),
            state=ChangeState(item.state),
            is_draft=item.is_draft,
        )

    def _find_pr(self, store: LocalStore, number: int) -> LocalPr:
        for pr in store.prs:
            if pr.number == number:
                return pr
        raise CollaboratorError(f"Local PR #{number} not found")

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def list_issues(self, filter: ListFilter) -> list[Issue]:
        with self._lock:
            store = self._load()
        issues = [self._to_issue(i) for i in store.issues if i.state == filter.state]
        issues.reverse()
        return issues

    async def get_issue(self, number: int) -> Issue:
        with self._lock:
            store = self._load()
        for item in store.issues:
            if item.number == number:
                return self._to_issue(item)
        raise CollaboratorError(f"Local issue #{number} not found")

    async def create_issue(self, title: str, body: str) -> Issue:
        now = utcnow().isoformat()
        with self._lock:
            store = self._load()
            item = LocalIssue(
                number=store.next_issue_number,
                title=title,
                body=body,
                created_at=now,
                updated_at=now,
            )
            store.issues.append(item)
            store.next_issue_number += 1
            self._save(store)
        return self._to_issue(item)

    async def close_issue(self, number: int) -> None:
        with self._lock:
            store = self._load()
            for item in store.issues:
                if item.number == number:
                    item.state = "closed"
                    item.updated_at = utcnow().isoformat()
                    self._save(store)
                    return
        raise CollaboratorError(f"Local issue #{number} not found")

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def list_changes(self, filter: ListFilter) -> list[ProposedChange]:
        with self._lock:
            store = self._load()
        if filter.state == "open":
            items = [p for p in store.prs if p.state == "open"]
        else:
            items = [p for p in store.prs if p.state != "open"]
        changes = [self._to_change(p) for p in items]
        changes.reverse()
        return changes

    async def create_change(
        self, title: str, body: str, branch: str, is_draft: bool = True
    ) -> ProposedChange:
        with self._lock:
            store = self._load()
            pr = LocalPr(
                number=store.next_pr_number,
                title=title,
                body=body,
                branch=branch,
                is_draft=is_draft,
            )
            store.prs.append(pr)
            store.next_pr_number += 1
            self._save(store)
        return self._to_change(pr)

    async def mark_ready(self, number: int) -> None:
        with self._lock:
            store = self._load()
            self._find_pr(store, number).is_draft = False
            self._save(store)

    async def merge(self, number: int) -> None:
        with self._lock:
            store = self._load()
            pr = self._find_pr(store, number)
            if pr.state == "merged":
                raise CollaboratorError(f"PR #{number} is already merged")
            if pr.is_draft:
                raise CollaboratorError(f"PR #{number} is a draft")
            pr.state = "merged"
            self._save(store)

    async def revert(self, number: int) -> ProposedChange | None:
        with self._lock:
            store = self._load()
            original = self._find_pr(store, number)
            if original.state != "merged":
                raise CollaboratorError(f"PR #{number} is not merged")
            pr = LocalPr(
                number=store.next_pr_number,
                title=f'Revert "{original.title}"',
                body=f"Reverts #{number}",
                branch=f"revert-{number}-{original.branch}",
                is_draft=False,
            )
            store.prs.append(pr)
            store.next_pr_number += 1
            self._save(store)
        return self._to_change(pr)

    def healthcheck(self) -> dict[str, Any]:
        return {"status": "ok", "tracker": self.name, "path": str(self.path)}

"""Shared issue builders and an in-memory issue store for tests.

Importable by any conftest.py or test file in the test suite.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from beanpole.errors import BeansNotFoundError
from beanpole.model import Issue
from beanpole.service import filter_issues


def make_issue(issue_id: str, **kwargs: Any) -> Issue:
    """Issue with sensible defaults; title defaults to the id capitalized."""
    kwargs.setdefault("title", issue_id.capitalize())
    for key in ("tags", "blocking", "blocked_by"):
        if key in kwargs:
            kwargs[key] = tuple(kwargs[key])
    for key in ("created_at", "updated_at"):
        if isinstance(kwargs.get(key), str):
            kwargs[key] = datetime.fromisoformat(kwargs[key]).replace(tzinfo=UTC)
    return Issue(id=issue_id, **kwargs)


class FakeIssueSource:
    """In-memory stand-in for the beans CLI.

    Records every lookup, update and delete so tests can assert on the traffic.
    """

    def __init__(self, issues: Sequence[Issue] = ()) -> None:
        self.issues: dict[str, Issue] = {i.id: i for i in issues}
        self.lookups: list[str] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_ids: set[str] = set()
        self.deleted: list[str] = []

    async def list_issues(
        self,
        *,
        statuses: Sequence[str] | None = None,
        types: Sequence[str] | None = None,
        search: str | None = None,
        parent: str | None = None,
    ) -> list[Issue]:
        return filter_issues(list(self.issues.values()), statuses=statuses, types=types, search=search, parent=parent)

    async def get_issue(self, issue_id: str) -> Issue:
        self.lookups.append(issue_id)
        if issue_id in self.fail_ids or issue_id not in self.issues:
            msg = f"Bean not found: {issue_id}"
            raise BeansNotFoundError(msg)
        return self.issues[issue_id]

    async def update_issue(
        self,
        issue_id: str,
        *,
        status: str | None = None,
        type: str | None = None,
        priority: str | None = None,
        parent: str | None = None,
        clear_parent: bool = False,
        blocking: Sequence[str] | None = None,
        blocked_by: Sequence[str] | None = None,
    ) -> Issue:
        changes: dict[str, Any] = {}
        if status is not None:
            changes["status"] = status
        if type is not None:
            changes["type"] = type
        if priority is not None:
            changes["priority"] = priority
        if parent is not None:
            changes["parent"] = parent
        elif clear_parent:
            changes["parent"] = None
        current = self.issues[issue_id]
        if blocking:
            changes["blocking"] = current.blocking + tuple(blocking)
        if blocked_by:
            changes["blocked_by"] = current.blocked_by + tuple(blocked_by)
        self.updates.append((issue_id, changes))
        updated = dataclasses.replace(current, **changes)
        self.issues[issue_id] = updated
        return updated

    async def create_issue(
        self,
        title: str,
        *,
        type: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        body: str | None = None,
        parent: str | None = None,
    ) -> Issue:
        issue = make_issue(
            f"proj-n{len(self.issues) + 1}",
            title=title,
            type=type or "task",
            status=status or "todo",
            priority=priority,
            body=body or "",
            parent=parent,
        )
        self.issues[issue.id] = issue
        return issue

    async def delete_issue(self, issue_id: str) -> None:
        self.deleted.append(issue_id)
        self.issues.pop(issue_id, None)

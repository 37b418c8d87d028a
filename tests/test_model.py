"""Tests for the Issue model and record normalization."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest

from beanpole.model import Issue, derive_code, parse_timestamp, resolve_issue
from tests._factory import make_issue

RECORD = {
    "id": "beans-vscode-3x7k",
    "slug": "fix-login",
    "path": ".beans/beans-vscode-3x7k--fix-login.md",
    "title": "Fix login",
    "body": "Details",
    "status": "todo",
    "type": "bug",
    "priority": "high",
    "tags": ["auth", "ui"],
    "createdAt": "2025-01-02T03:04:05Z",
    "updatedAt": "2025-01-03T00:00:00+00:00",
    "etag": "abc123",
    "parentId": "beans-vscode-ep01",
    "blockingIds": ["beans-vscode-aaaa"],
    "blockedByIds": [],
}


class TestDeriveCode:
    def test_last_segment(self) -> None:
        assert derive_code("beans-vscode-3x7k") == "3x7k"

    def test_no_dash(self) -> None:
        assert derive_code("abc") == "abc"

    def test_code_filled_on_construction(self) -> None:
        assert Issue(id="proj-abcd", title="x").code == "abcd"

    def test_explicit_code_kept(self) -> None:
        assert Issue(id="proj-abcd", title="x", code="ZZ").code == "ZZ"


class TestFromRecord:
    def test_graphql_field_names(self) -> None:
        issue = Issue.from_record(RECORD)
        assert issue.id == "beans-vscode-3x7k"
        assert issue.code == "3x7k"
        assert issue.parent == "beans-vscode-ep01"
        assert issue.blocking == ("beans-vscode-aaaa",)
        assert issue.blocked_by == ()
        assert issue.tags == ("auth", "ui")
        assert issue.etag == "abc123"
        assert issue.created_at == datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)

    def test_plain_field_names(self) -> None:
        record = {"id": "p-1", "title": "T", "status": "todo", "type": "task", "parent": "p-0", "blockedBy": ["p-9"]}
        issue = Issue.from_record(record)
        assert issue.parent == "p-0"
        assert issue.blocked_by == ("p-9",)

    def test_empty_parent_is_none(self) -> None:
        issue = Issue.from_record({**RECORD, "parentId": ""})
        assert issue.parent is None

    def test_missing_priority_is_none(self) -> None:
        record = {k: v for k, v in RECORD.items() if k != "priority"}
        issue = Issue.from_record(record)
        assert issue.priority is None
        assert issue.effective_priority == "normal"

    def test_missing_required_fields(self) -> None:
        with pytest.raises(ValueError, match="title, status"):
            Issue.from_record({"id": "x", "type": "task"})

    def test_unknown_status_tolerated(self) -> None:
        issue = Issue.from_record({**RECORD, "status": "blocked"})
        assert issue.status == "blocked"


class TestTimestamps:
    def test_invalid_falls_back_to_epoch(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="beanpole.model"):
            value = parse_timestamp("not-a-date", "createdAt", "x-1")
        assert value == datetime(1970, 1, 1, tzinfo=UTC)
        assert "createdAt" in caplog.text

    def test_missing_is_epoch_without_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="beanpole.model"):
            assert parse_timestamp(None).year == 1970
        assert caplog.records == []

    def test_naive_assumed_utc(self) -> None:
        assert parse_timestamp("2025-05-01T12:00:00").tzinfo is UTC


class TestIssueProperties:
    def test_active_and_closed(self) -> None:
        assert make_issue("a", status="in-progress").is_active
        assert make_issue("a", status="completed").is_closed
        assert make_issue("a", status="scrapped").is_closed
        assert not make_issue("a", status="draft").is_closed

    def test_to_dict_roundtrip_keys(self) -> None:
        data = Issue.from_record(RECORD).to_dict()
        assert data["blockedBy"] == []
        assert data["parent"] == "beans-vscode-ep01"
        assert data["createdAt"].startswith("2025-01-02T03:04:05")
        assert Issue.from_record(data) == Issue.from_record(RECORD)


class TestResolveIssue:
    def test_issue_passthrough(self) -> None:
        issue = make_issue("a")
        assert resolve_issue(issue) is issue

    def test_wrapper_with_issue_attr(self) -> None:
        issue = make_issue("a")
        assert resolve_issue(SimpleNamespace(issue=issue)) is issue

    def test_wrapper_with_bean_attr(self) -> None:
        issue = make_issue("a")
        assert resolve_issue(SimpleNamespace(bean=issue)) is issue

    def test_mapping(self) -> None:
        assert resolve_issue(RECORD).id == "beans-vscode-3x7k"

    def test_unknown_shape(self) -> None:
        with pytest.raises(TypeError):
            resolve_issue(42)

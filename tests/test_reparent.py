"""Tests for re-parent validation: type rules, self-parent, and the ancestor walk."""

from __future__ import annotations

import asyncio
import logging

import pytest

from beanpole.errors import BeansNotFoundError
from beanpole.model import Issue
from beanpole.reparent import ValidationResult, check_parent_type, is_descendant, validate_reparent
from tests._factory import FakeIssueSource, make_issue


def _cycle(n: int) -> list[Issue]:
    """n0 -> n1 -> ... -> n{n-1} -> n0 (each node's parent is the next one)."""
    return [make_issue(f"n{i}", type="task", parent=f"n{(i + 1) % n}") for i in range(n)]


class TestCheckParentType:
    @pytest.mark.parametrize(
        ("child", "parent"),
        [
            ("epic", "milestone"),
            ("feature", "epic"),
            ("feature", "milestone"),
            ("task", "feature"),
            ("bug", "epic"),
        ],
    )
    def test_allowed(self, child: str, parent: str) -> None:
        assert check_parent_type(child, parent) is None

    def test_task_under_task(self) -> None:
        reason = check_parent_type("task", "task")
        assert reason is not None
        assert "task cannot have a task as parent" in reason
        assert "milestone, epic, feature" in reason

    def test_milestone_takes_no_parent(self) -> None:
        reason = check_parent_type("milestone", "epic")
        assert reason is not None
        assert reason.endswith("Allowed parent types: none.")

    def test_custom_type_unrestricted(self) -> None:
        assert check_parent_type("spike", "task") is None


class TestValidateReparent:
    async def test_task_under_task_rejected(self) -> None:
        source = FakeIssueSource()
        result = await validate_reparent(make_issue("t1", type="task"), make_issue("t2", type="task"), source.get_issue)
        assert not result.valid
        assert "task cannot have a task as parent" in (result.reason or "")
        assert source.lookups == []

    async def test_move_to_root_always_valid(self) -> None:
        result = await validate_reparent(make_issue("m", type="milestone"), None, FakeIssueSource().get_issue)
        assert result == ValidationResult(valid=True)

    async def test_self_parent_rejected(self) -> None:
        issue = make_issue("e", type="epic")
        result = await validate_reparent(issue, issue, FakeIssueSource().get_issue)
        assert not result.valid
        assert "own parent" in (result.reason or "")

    async def test_epic_under_feature_rejected(self) -> None:
        epic = make_issue("p-e1", type="epic")
        feature = make_issue("p-f1", type="feature", parent="p-e1")
        result = await validate_reparent(epic, feature, FakeIssueSource([epic, feature]).get_issue)
        assert not result.valid
        assert "epic cannot have a feature" in (result.reason or "")

    async def test_deep_cycle_rejected(self) -> None:
        # Custom types are unrestricted, so only the ancestor walk can catch this.
        a = make_issue("p-a", type="spike")
        b = make_issue("p-b", type="spike", parent="p-a")
        c = make_issue("p-c", type="spike", parent="p-b")
        source = FakeIssueSource([a, b, c])
        result = await validate_reparent(a, c, source.get_issue)
        assert not result.valid
        assert result.reason == "Cannot create cycle: c is a descendant of a."
        assert source.lookups == ["p-b"]

    async def test_valid_move(self, source: FakeIssueSource) -> None:
        result = await validate_reparent(source.issues["proj-b1"], source.issues["proj-f1"], source.get_issue)
        assert result.valid
        assert result.reason is None

    async def test_ten_node_cycle_hits_depth_cap(self, caplog: pytest.LogCaptureFixture) -> None:
        nodes = _cycle(10)
        source = FakeIssueSource(nodes)
        candidate = make_issue("x", type="spike")
        with caplog.at_level(logging.WARNING, logger="beanpole.reparent"):
            result = await validate_reparent(candidate, source.issues["n0"], source.get_issue, max_depth=8)
        assert result.valid
        assert len(source.lookups) == 8
        assert "exceeded 8 hops" in caplog.text

    async def test_lookup_failure_assumes_no_cycle(self, caplog: pytest.LogCaptureFixture) -> None:
        source = FakeIssueSource([make_issue("mid", type="feature", parent="top")])
        source.fail_ids.add("top")
        parent = make_issue("leaf", type="feature", parent="mid")
        with caplog.at_level(logging.WARNING, logger="beanpole.reparent"):
            result = await validate_reparent(make_issue("c", type="task"), parent, source.get_issue)
        assert result.valid
        assert "top" in caplog.text
        assert any(r.exc_info for r in caplog.records)

    async def test_concurrent_validations_independent(self, source: FakeIssueSource) -> None:
        spike = make_issue("proj-s1", type="spike", parent="proj-t1")
        source.issues[spike.id] = spike
        epic_like = make_issue("proj-e1", type="spike", parent="proj-m1")
        results = await asyncio.gather(
            validate_reparent(epic_like, spike, source.get_issue),
            validate_reparent(source.issues["proj-b1"], source.issues["proj-f1"], source.get_issue),
            validate_reparent(source.issues["proj-t2"], source.issues["proj-e1"], source.get_issue),
        )
        assert [r.valid for r in results] == [False, True, True]


class TestIsDescendant:
    async def test_revisited_id_stops_walk(self, caplog: pytest.LogCaptureFixture) -> None:
        source = FakeIssueSource(_cycle(3))
        with caplog.at_level(logging.WARNING, logger="beanpole.reparent"):
            found = await is_descendant(source.issues["n0"], "elsewhere", source.get_issue, max_depth=50)
        assert found is False
        assert "loops back" in caplog.text

    async def test_no_parent(self) -> None:
        assert await is_descendant(make_issue("a"), "b", FakeIssueSource().get_issue) is False

    async def test_missing_ancestor_raises_not_found_internally(self) -> None:
        source = FakeIssueSource()
        assert await is_descendant(make_issue("a", parent="ghost"), "z", source.get_issue) is False
        assert source.lookups == ["ghost"]

    async def test_not_found_error_type(self) -> None:
        with pytest.raises(BeansNotFoundError):
            await FakeIssueSource().get_issue("nope")


class TestValidationResult:
    def test_to_dict(self) -> None:
        assert ValidationResult.accept().to_dict() == {"valid": True}
        assert ValidationResult.reject("no").to_dict() == {"valid": False, "reason": "no"}

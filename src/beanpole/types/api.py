"""TypedDicts for CLI ``--json`` output and MCP tool responses."""

from __future__ import annotations

from typing import NotRequired, TypedDict

from beanpole.types.core import IssueDict


class ErrorResponse(TypedDict):
    """Standard error envelope returned by MCP and CLI error paths."""

    error: str
    code: str


class ValidationResultDict(TypedDict):
    valid: bool
    reason: NotRequired[str]


class TreeNodeDict(TypedDict):
    """One node of a materialized forest, children already ordered."""

    issue: IssueDict
    has_active_descendant: bool
    children: list[TreeNodeDict]
    truncated: NotRequired[bool]


class IssueListResponse(TypedDict):
    count: int
    beans: list[IssueDict]
    mode: NotRequired[str]


class SearchResponse(TypedDict):
    query: str
    count: int
    beans: list[IssueDict]


class TreeResponse(TypedDict):
    mode: str
    count: int
    roots: list[TreeNodeDict]


class DeleteResponse(TypedDict):
    deleted: str


class ReparentResponse(TypedDict):
    validation: ValidationResultDict
    bean: NotRequired[IssueDict]

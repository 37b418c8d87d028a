"""Foundational TypedDicts for issue records."""

from __future__ import annotations

from typing import NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class IssueRecord(TypedDict, total=False):
    """Raw bean payload as emitted by ``beans graphql --json``.

    The CLI uses ``parentId``/``blockingIds``/``blockedByIds``; older payloads
    and hand-written fixtures use ``parent``/``blocking``/``blockedBy``.
    """

    id: str
    code: str
    slug: str
    path: str
    title: str
    body: str
    status: str
    type: str
    priority: str | None
    tags: list[str]
    parent: str | None
    parentId: str | None
    blocking: list[str]
    blockingIds: list[str]
    blockedBy: list[str]
    blockedByIds: list[str]
    createdAt: str
    updatedAt: str
    etag: str


class IssueDict(TypedDict):
    id: str
    code: str
    slug: str
    path: str
    title: str
    body: str
    status: str
    type: str
    priority: str | None
    tags: list[str]
    parent: str | None
    blocking: list[str]
    blockedBy: list[str]
    createdAt: ISOTimestamp
    updatedAt: ISOTimestamp
    etag: str

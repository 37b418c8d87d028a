"""Issue ("bean") value model shared by every engine component.

Issues are read-only snapshots fetched from the ``beans`` CLI. Nothing in
beanpole mutates an ``Issue`` in place; derived structures are rebuilt from
fresh snapshots instead.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, cast

from beanpole.types.core import IssueDict, IssueRecord, ISOTimestamp

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constrained-string Literal types
# ---------------------------------------------------------------------------

IssueStatus = Literal["todo", "in-progress", "completed", "scrapped", "draft"]
IssueType = Literal["milestone", "epic", "feature", "bug", "task"]
IssuePriority = Literal["critical", "high", "normal", "low", "deferred"]

STATUSES: tuple[str, ...] = ("todo", "in-progress", "completed", "scrapped", "draft")
TYPES: tuple[str, ...] = ("milestone", "epic", "feature", "bug", "task")
PRIORITIES: tuple[str, ...] = ("critical", "high", "normal", "low", "deferred")

ACTIVE_STATUS = "in-progress"
CLOSED_STATUSES: frozenset[str] = frozenset({"completed", "scrapped"})
DEFAULT_PRIORITY = "normal"

# Child type -> types allowed as its parent. Mirrors the CLI's own
# milestone -> epic -> feature -> task/bug rule.
VALID_PARENT_TYPES: Mapping[str, tuple[str, ...]] = {
    "milestone": (),
    "epic": ("milestone",),
    "feature": ("milestone", "epic"),
    "task": ("milestone", "epic", "feature"),
    "bug": ("milestone", "epic", "feature"),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def derive_code(issue_id: str) -> str:
    """Short display code: the last ``-``-delimited segment of the id."""
    return issue_id.rsplit("-", 1)[-1]


def parse_timestamp(value: Any, field_name: str = "timestamp", issue_id: str = "") -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Missing or unparseable values fall back to the epoch so that ordering by
    timestamp stays deterministic.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if not value:
        return _EPOCH
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Invalid %s %r for bean %s; using epoch", field_name, value, issue_id or "?")
        return _EPOCH
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _string_list(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class Issue:
    id: str
    title: str
    status: str = "todo"
    type: str = "task"
    priority: str | None = None
    code: str = ""
    slug: str = ""
    path: str = ""
    body: str = ""
    tags: tuple[str, ...] = ()
    parent: str | None = None
    blocking: tuple[str, ...] = ()
    blocked_by: tuple[str, ...] = ()
    created_at: datetime = field(default=_EPOCH)
    updated_at: datetime = field(default=_EPOCH)
    etag: str = ""

    def __post_init__(self) -> None:
        if not self.code:
            object.__setattr__(self, "code", derive_code(self.id))

    @property
    def effective_priority(self) -> str:
        """Priority used for ordering; a missing priority counts as ``normal``."""
        return self.priority or DEFAULT_PRIORITY

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    @property
    def display_name(self) -> str:
        return self.title or self.code or self.id

    @classmethod
    def from_record(cls, record: IssueRecord) -> Issue:
        """Normalize a raw CLI payload into an ``Issue``.

        Raises ValueError when any identity field (id, title, status, type) is missing.
        """
        missing = [k for k in ("id", "title", "status", "type") if not record.get(k)]
        if missing:
            msg = f"Bean record missing required fields: {', '.join(missing)}"
            raise ValueError(msg)
        issue_id = str(record["id"])
        parent = record.get("parent") or record.get("parentId") or None
        return cls(
            id=issue_id,
            title=str(record["title"]),
            status=str(record["status"]),
            type=str(record["type"]),
            priority=record.get("priority") or None,
            code=str(record.get("code") or ""),
            slug=str(record.get("slug") or ""),
            path=str(record.get("path") or ""),
            body=str(record.get("body") or ""),
            tags=_string_list(record.get("tags")),
            parent=str(parent) if parent else None,
            blocking=_string_list(record.get("blocking") or record.get("blockingIds")),
            blocked_by=_string_list(record.get("blockedBy") or record.get("blockedByIds")),
            created_at=parse_timestamp(record.get("createdAt"), "createdAt", issue_id),
            updated_at=parse_timestamp(record.get("updatedAt"), "updatedAt", issue_id),
            etag=str(record.get("etag") or ""),
        )

    def to_dict(self) -> IssueDict:
        return {
            "id": self.id,
            "code": self.code,
            "slug": self.slug,
            "path": self.path,
            "title": self.title,
            "body": self.body,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "tags": list(self.tags),
            "parent": self.parent,
            "blocking": list(self.blocking),
            "blockedBy": list(self.blocked_by),
            "createdAt": ISOTimestamp(self.created_at.isoformat()),
            "updatedAt": ISOTimestamp(self.updated_at.isoformat()),
            "etag": self.etag,
        }


def resolve_issue(value: Any) -> Issue:
    """Resolve a command argument to a canonical ``Issue``.

    Accepts an ``Issue``, any wrapper exposing ``.issue`` or ``.bean`` (tree
    nodes, selection items), or a raw record mapping.
    """
    if isinstance(value, Issue):
        return value
    for attr in ("issue", "bean"):
        inner = getattr(value, attr, None)
        if isinstance(inner, Issue):
            return inner
    if isinstance(value, Mapping):
        return Issue.from_record(cast("IssueRecord", value))
    msg = f"Cannot resolve {type(value).__name__} to an issue"
    raise TypeError(msg)

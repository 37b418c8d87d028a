"""Sort Engine — stable multi-key orderings for issue groups.

Pure functions; callers apply them per tree level after materialization.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Literal

from beanpole.model import DEFAULT_PRIORITY, PRIORITIES, TYPES, Issue

logger = logging.getLogger(__name__)

SortMode = Literal[
    "status-priority-type-title",
    "priority-status-type-title",
    "updated",
    "created",
    "id",
]

DEFAULT_SORT_MODE: SortMode = "status-priority-type-title"
VALID_SORT_MODES: tuple[str, ...] = (
    "status-priority-type-title",
    "priority-status-type-title",
    "updated",
    "created",
    "id",
)

# Display order; values absent from a table sort after every known value.
STATUS_ORDER: dict[str, int] = {s: i for i, s in enumerate(("in-progress", "todo", "draft", "completed", "scrapped"))}
PRIORITY_ORDER: dict[str, int] = {p: i for i, p in enumerate(PRIORITIES)}
TYPE_ORDER: dict[str, int] = {t: i for i, t in enumerate(TYPES)}
_UNKNOWN_RANK = 99


def status_rank(issue: Issue) -> int:
    return STATUS_ORDER.get(issue.status, _UNKNOWN_RANK)


def priority_rank(issue: Issue) -> int:
    return PRIORITY_ORDER.get(issue.priority or DEFAULT_PRIORITY, _UNKNOWN_RANK)


def type_rank(issue: Issue) -> int:
    return TYPE_ORDER.get(issue.type, _UNKNOWN_RANK)


def text_key(value: str) -> tuple[str, str]:
    """Locale-style comparison key: case-insensitive first, exact case breaks ties."""
    return (value.casefold(), value)


def _status_priority_type_title(issue: Issue) -> tuple[int, int, int, tuple[str, str]]:
    return (status_rank(issue), priority_rank(issue), type_rank(issue), text_key(issue.title))


def _priority_status_type_title(issue: Issue) -> tuple[int, int, int, tuple[str, str]]:
    return (priority_rank(issue), status_rank(issue), type_rank(issue), text_key(issue.title))


def sort_issues(issues: Iterable[Issue], mode: str = DEFAULT_SORT_MODE) -> list[Issue]:
    """Return a new list of *issues* ordered by *mode*.

    Never mutates the input and never raises for an unrecognised mode: the
    mode is logged and the input order is returned unchanged. ``sorted`` is
    stable, so each mode's trailing ties keep their input order.
    """
    items = list(issues)
    if mode == "status-priority-type-title":
        return sorted(items, key=_status_priority_type_title)
    if mode == "priority-status-type-title":
        return sorted(items, key=_priority_status_type_title)
    if mode == "updated":
        return sorted(items, key=lambda i: i.updated_at, reverse=True)
    if mode == "created":
        return sorted(items, key=lambda i: i.created_at, reverse=True)
    if mode == "id":
        return sorted(items, key=lambda i: text_key(i.id))
    logger.warning("Unknown sort mode '%s'; leaving order unchanged", mode)
    return items

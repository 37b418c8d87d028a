"""Hierarchy Materializer — parent/child forest over a flat issue snapshot.

``materialize()`` builds, in one linear pass, the parent -> children index
and the set of ids that have an in-progress descendant. The returned
``Hierarchy`` is complete before it is handed out and is never patched
afterwards: a refresh builds a new one.

Two root policies:

* ``nested`` — roots are issues with no parent, or whose parent is absent
  from the snapshot (e.g. filtered out upstream). Such children are
  promoted to root rather than hidden.
* ``flat`` — every issue is a root. Used by status-filtered views where the
  natural parent may live in another bucket. The children index is still
  built for explicit expansion.

Child order inside a parent is the input order; ordering is the Sort
Engine's job and is applied by callers (see ``HierarchyProvider``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Literal

from beanpole.model import Issue
from beanpole.sorting import DEFAULT_SORT_MODE, sort_issues
from beanpole.types.api import TreeNodeDict

logger = logging.getLogger(__name__)

HierarchyMode = Literal["nested", "flat"]
VALID_HIERARCHY_MODES: frozenset[str] = frozenset({"nested", "flat"})

# Nesting limit for JSON exports; the json encoder recurses once per level.
MAX_EXPORT_DEPTH = 200


@dataclass(frozen=True)
class Hierarchy:
    """Immutable lookup handles over one materialized snapshot."""

    mode: str
    roots: tuple[Issue, ...]
    _by_id: Mapping[str, Issue]
    _children: Mapping[str, tuple[Issue, ...]]
    _active_ancestors: frozenset[str]

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._by_id

    def get(self, issue_id: str) -> Issue | None:
        return self._by_id.get(issue_id)

    def children_of(self, issue_id: str) -> list[Issue]:
        return list(self._children.get(issue_id, ()))

    def has_children(self, issue_id: str) -> bool:
        return issue_id in self._children

    def has_active_descendant(self, issue_id: str) -> bool:
        return issue_id in self._active_ancestors

    def parent_of(self, issue_id: str) -> Issue | None:
        """Parent of *issue_id*, only if that parent is part of this snapshot."""
        issue = self._by_id.get(issue_id)
        if issue is None or issue.parent is None:
            return None
        return self._by_id.get(issue.parent)


def materialize(issues: Iterable[Issue], mode: str = "nested") -> Hierarchy:
    """Build a ``Hierarchy`` from a flat snapshot in O(n) time and space.

    An unknown *mode* is logged and treated as ``nested``.
    """
    if mode not in VALID_HIERARCHY_MODES:
        logger.warning("Unknown hierarchy mode '%s'; using 'nested'", mode)
        mode = "nested"

    snapshot = list(issues)
    by_id: dict[str, Issue] = {}
    children: dict[str, list[Issue]] = {}
    for issue in snapshot:
        by_id[issue.id] = issue
        if issue.parent:
            children.setdefault(issue.parent, []).append(issue)

    if mode == "flat":
        roots = tuple(snapshot)
    else:
        roots = tuple(i for i in snapshot if not i.parent or i.parent not in by_id)

    # Monotonic marking: a walk stops at the first already-marked ancestor,
    # whose own ancestors were marked by the walk that reached it first.
    active: set[str] = set()
    for issue in snapshot:
        if not issue.is_active:
            continue
        parent_id = issue.parent
        while parent_id and parent_id not in active:
            active.add(parent_id)
            parent = by_id.get(parent_id)
            if parent is None:
                break
            parent_id = parent.parent

    logger.debug(
        "Materialized %d issues (%s): %d roots, %d parents, %d active ancestors",
        len(by_id),
        mode,
        len(roots),
        len(children),
        len(active),
    )
    return Hierarchy(
        mode=mode,
        roots=roots,
        _by_id=by_id,
        _children={k: tuple(v) for k, v in children.items()},
        _active_ancestors=frozenset(active),
    )


def build_tree(hierarchy: Hierarchy, sort_mode: str = DEFAULT_SORT_MODE, max_depth: int | None = None) -> list[TreeNodeDict]:
    """Export the forest as nested dicts, every level ordered by *sort_mode*.

    Flat hierarchies export roots only. Each issue is emitted at most once,
    so a cyclic snapshot terminates. Deep chains are walked with an
    explicit stack rather than recursion.

    With *max_depth*, nodes at that depth are not expanded; a node whose
    children were cut off carries ``truncated: True``.
    """
    nested = hierarchy.mode == "nested"
    seen: set[str] = set()
    forest: list[TreeNodeDict] = []
    # (issue, depth, list the issue's node is appended to); children are
    # pushed reversed so siblings pop in sorted order.
    stack: list[tuple[Issue, int, list[TreeNodeDict]]] = [
        (root, 0, forest) for root in reversed(sort_issues(hierarchy.roots, sort_mode))
    ]
    while stack:
        issue, depth, siblings = stack.pop()
        if issue.id in seen:
            continue
        seen.add(issue.id)
        node: TreeNodeDict = {
            "issue": issue.to_dict(),
            "has_active_descendant": hierarchy.has_active_descendant(issue.id),
            "children": [],
        }
        siblings.append(node)
        if not nested or not hierarchy.has_children(issue.id):
            continue
        if max_depth is not None and depth >= max_depth:
            node["truncated"] = True
            continue
        kids = sort_issues(hierarchy.children_of(issue.id), sort_mode)
        stack.extend((child, depth + 1, node["children"]) for child in reversed(kids) if child.id not in seen)
    return forest


class HierarchyProvider:
    """Owns the last materialized snapshot for one tree/list view.

    ``refresh()`` replaces the snapshot wholesale (last write wins); handles
    obtained from an earlier snapshot must not be reused after a refresh.
    """

    def __init__(self, mode: str = "nested", sort_mode: str = DEFAULT_SORT_MODE) -> None:
        self.mode = mode
        self.sort_mode = sort_mode
        self._hierarchy = materialize((), mode)

    @property
    def hierarchy(self) -> Hierarchy:
        return self._hierarchy

    def refresh(self, issues: Iterable[Issue]) -> Hierarchy:
        self._hierarchy = materialize(issues, self.mode)
        return self._hierarchy

    def set_sort_mode(self, sort_mode: str) -> None:
        self.sort_mode = sort_mode

    def roots(self) -> list[Issue]:
        return sort_issues(self._hierarchy.roots, self.sort_mode)

    def children(self, issue_id: str) -> list[Issue]:
        return sort_issues(self._hierarchy.children_of(issue_id), self.sort_mode)

    def has_active_descendant(self, issue_id: str) -> bool:
        return self._hierarchy.has_active_descendant(issue_id)

    def tree(self, max_depth: int | None = None) -> list[TreeNodeDict]:
        return build_tree(self._hierarchy, self.sort_mode, max_depth)

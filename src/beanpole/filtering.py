"""View filters applied to a snapshot before materialization."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from beanpole.model import Issue
from beanpole.ranking import matches_query


@dataclass(frozen=True)
class FilterState:
    text: str = ""
    statuses: tuple[str, ...] = ()
    types: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    priorities: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.text.strip() or self.statuses or self.types or self.tags or self.priorities)

    def describe(self) -> str | None:
        """One-line summary such as ``text:"auth" status:todo,draft``; None when empty."""
        parts: list[str] = []
        if self.text.strip():
            parts.append(f'text:"{self.text.strip()}"')
        if self.statuses:
            parts.append("status:" + ",".join(self.statuses))
        if self.tags:
            parts.append("tags:" + ",".join(self.tags))
        if self.types:
            parts.append("types:" + ",".join(self.types))
        if self.priorities:
            parts.append("priority:" + ",".join(self.priorities))
        return " ".join(parts) or None

    def matches(self, issue: Issue) -> bool:
        if self.statuses and issue.status not in self.statuses:
            return False
        if self.types and issue.type not in self.types:
            return False
        # An issue without an explicit priority never matches a priority filter.
        if self.priorities and (issue.priority is None or issue.priority not in self.priorities):
            return False
        if self.tags and not any(tag in self.tags for tag in issue.tags):
            return False
        return matches_query(issue, self.text)


def apply_filter(issues: Iterable[Issue], state: FilterState) -> list[Issue]:
    """Issues passing every active criterion of *state*, in input order."""
    if state.is_empty():
        return list(issues)
    return [issue for issue in issues if state.matches(issue)]

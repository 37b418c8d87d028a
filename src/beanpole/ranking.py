"""Relevance Ranker — free-text scoring and ordering for search views.

Scoring is additive across independent tiers (identity, title,
content/tags, metadata). Only the tier ordering is contractual; the
literal weights may be tuned as long as identity > title > content >
metadata holds.
"""

from __future__ import annotations

from collections.abc import Iterable

from beanpole.model import Issue
from beanpole.sorting import priority_rank, status_rank, text_key

# Identity tier (id / code)
ID_EXACT_WEIGHT = 1000
ID_PREFIX_WEIGHT = 500
ID_SUBSTRING_WEIGHT = 300
# Title tier
TITLE_EXACT_WEIGHT = 200
TITLE_PREFIX_WEIGHT = 150
TITLE_SUBSTRING_WEIGHT = 100
# Content / tag tier
BODY_WEIGHT = 20
TAG_WEIGHT = 15
# Metadata tier (status / type / priority)
METADATA_WEIGHT = 10


def _normalize(query: str) -> str:
    return query.strip().lower()


def _identity_score(issue: Issue, q: str) -> int:
    ident = (issue.id.lower(), issue.code.lower())
    if q in ident:
        return ID_EXACT_WEIGHT
    if any(v.startswith(q) for v in ident):
        return ID_PREFIX_WEIGHT
    if any(q in v for v in ident):
        return ID_SUBSTRING_WEIGHT
    return 0


def _title_score(issue: Issue, q: str) -> int:
    title = issue.title.lower()
    if title == q:
        return TITLE_EXACT_WEIGHT
    if title.startswith(q):
        return TITLE_PREFIX_WEIGHT
    if q in title:
        return TITLE_SUBSTRING_WEIGHT
    return 0


def score(issue: Issue, query: str) -> int:
    """Relevance of *issue* for *query*; 0 for an empty query."""
    q = _normalize(query)
    if not q:
        return 0
    total = _identity_score(issue, q) + _title_score(issue, q)
    if q in issue.body.lower():
        total += BODY_WEIGHT
    if any(q in tag.lower() for tag in issue.tags):
        total += TAG_WEIGHT
    metadata = (issue.status, issue.type, issue.priority or "")
    if any(q in value.lower() for value in metadata):
        total += METADATA_WEIGHT
    return total


def matches_query(issue: Issue, query: str) -> bool:
    """Plain case-insensitive substring filter; an empty query matches everything."""
    q = _normalize(query)
    if not q:
        return True
    haystack = (issue.id, issue.code, issue.title, issue.body, *issue.tags, *issue.blocking, *issue.blocked_by)
    return any(q in value.lower() for value in haystack)


def _tie_break(issue: Issue) -> tuple[int, int, tuple[str, str]]:
    return (priority_rank(issue), status_rank(issue), text_key(issue.title))


def rank(issues: Iterable[Issue], query: str) -> list[Issue]:
    """Order *issues* by descending score, then priority, status and title.

    Does not filter: every input issue is returned. With an empty query all
    scores are 0 and the tie-break order alone applies.
    """
    q = _normalize(query)
    return sorted(issues, key=lambda i: (-score(i, q), *_tie_break(i)))


def search(issues: Iterable[Issue], query: str, *, include_closed: bool = True) -> list[Issue]:
    """Filter then rank: keep issues that match the query or score on any tier."""
    q = _normalize(query)
    hits = [i for i in issues if (include_closed or not i.is_closed) and (matches_query(i, q) or score(i, q) > 0)]
    return rank(hits, q)

"""Reparent Validator — gate for outgoing re-parent requests.

Checks run in order: move-to-root, self-parent, type hierarchy, then a
bounded ancestor walk for cycles. A rejection is a returned value, never an
exception. The walk fails open: a failed lookup or an exhausted depth cap
is logged and treated as "no cycle".

Each call keeps its state in local variables, so concurrent validations of
different candidates do not interfere.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from beanpole.model import VALID_PARENT_TYPES, Issue
from beanpole.types.api import ValidationResultDict

logger = logging.getLogger(__name__)

MAX_ANCESTOR_DEPTH = 8

AncestorLookup = Callable[[str], Awaitable[Issue]]


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str | None = None

    @classmethod
    def accept(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> ValidationResult:
        return cls(valid=False, reason=reason)

    def to_dict(self) -> ValidationResultDict:
        data: ValidationResultDict = {"valid": self.valid}
        if self.reason is not None:
            data["reason"] = self.reason
        return data


def check_parent_type(child_type: str, parent_type: str) -> str | None:
    """Return a rejection reason if *parent_type* may not parent *child_type*.

    Types missing from ``VALID_PARENT_TYPES`` (custom workspace types) are
    unrestricted.
    """
    allowed = VALID_PARENT_TYPES.get(child_type)
    if allowed is None or parent_type in allowed:
        return None
    allowed_text = ", ".join(allowed) if allowed else "none"
    return f"A {child_type} cannot have a {parent_type} as parent. Allowed parent types: {allowed_text}."


async def is_descendant(
    issue: Issue,
    ancestor_id: str,
    lookup: AncestorLookup,
    *,
    max_depth: int = MAX_ANCESTOR_DEPTH,
) -> bool:
    """True if *ancestor_id* appears on *issue*'s parent chain.

    Hops are awaited one at a time; each fetch depends on the previous one.
    At most *max_depth* lookups are made.
    """
    current = issue
    visited = {issue.id}
    hops = 0
    while current.parent:
        if current.parent == ancestor_id:
            return True
        if current.parent in visited:
            logger.warning("Parent chain of %s loops back to %s; assuming no cycle", issue.id, current.parent)
            return False
        if hops >= max_depth:
            logger.warning(
                "Ancestor walk from %s exceeded %d hops; assuming no cycle with %s",
                issue.id,
                max_depth,
                ancestor_id,
            )
            return False
        parent_id = current.parent
        try:
            current = await lookup(parent_id)
        except Exception:
            logger.warning("Failed to fetch parent bean %s; stopping ancestor walk", parent_id, exc_info=True)
            return False
        visited.add(current.id)
        hops += 1
    return False


async def validate_reparent(
    candidate: Issue,
    proposed_parent: Issue | None,
    ancestor_lookup: AncestorLookup,
    *,
    max_depth: int = MAX_ANCESTOR_DEPTH,
) -> ValidationResult:
    """Decide whether *candidate* may be moved under *proposed_parent*.

    ``None`` as the parent means "move to root" and is always valid.
    """
    if proposed_parent is None:
        return ValidationResult.accept()

    if proposed_parent.id == candidate.id:
        return ValidationResult.reject("Cannot make a bean its own parent.")

    type_error = check_parent_type(candidate.type, proposed_parent.type)
    if type_error is not None:
        return ValidationResult.reject(type_error)

    if await is_descendant(proposed_parent, candidate.id, ancestor_lookup, max_depth=max_depth):
        return ValidationResult.reject(
            f"Cannot create cycle: {proposed_parent.code} is a descendant of {candidate.code}."
        )

    return ValidationResult.accept()

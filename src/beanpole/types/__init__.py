# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from model.py, service.py, or the engine modules.
"""Typed record and response contracts for beanpole."""

from __future__ import annotations

from beanpole.types.api import (
    DeleteResponse,
    ErrorResponse,
    IssueListResponse,
    ReparentResponse,
    SearchResponse,
    TreeNodeDict,
    TreeResponse,
    ValidationResultDict,
)
from beanpole.types.core import IssueDict, IssueRecord, ISOTimestamp

__all__ = [
    "DeleteResponse",
    "ErrorResponse",
    "ISOTimestamp",
    "IssueDict",
    "IssueListResponse",
    "IssueRecord",
    "ReparentResponse",
    "SearchResponse",
    "TreeNodeDict",
    "TreeResponse",
    "ValidationResultDict",
]

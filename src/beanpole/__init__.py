"""Beanpole — hierarchy, re-parent validation, and relevance ranking over beans issues."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("beanpole")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from beanpole.hierarchy import Hierarchy, materialize
from beanpole.model import Issue
from beanpole.reparent import ValidationResult, validate_reparent

__all__ = ["Hierarchy", "Issue", "ValidationResult", "__version__", "materialize", "validate_reparent"]

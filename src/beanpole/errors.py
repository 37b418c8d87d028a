"""Exceptions raised by the ``beans`` CLI adapter.

The engine modules never raise these; they only come out of
``beanpole.service`` and are surfaced by the CLI and MCP layers.
"""

from __future__ import annotations

__all__ = [
    "BeansCLINotFoundError",
    "BeansCommandError",
    "BeansError",
    "BeansGraphQLError",
    "BeansJSONParseError",
    "BeansNotFoundError",
    "BeansTimeoutError",
    "user_message",
]


class BeansError(Exception):
    """Base class for all beans CLI failures. ``code`` is stable for callers."""

    code = "BEANS_ERROR"


class BeansCLINotFoundError(BeansError):
    code = "CLI_NOT_FOUND"

    def __init__(self, message: str = "Beans CLI not found in PATH") -> None:
        super().__init__(message)


class BeansJSONParseError(BeansError):
    code = "JSON_PARSE_ERROR"

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class BeansTimeoutError(BeansError):
    code = "TIMEOUT"

    def __init__(self, message: str = "Beans operation timed out") -> None:
        super().__init__(message)


class BeansCommandError(BeansError):
    """The CLI exited non-zero."""

    code = "COMMAND_FAILED"

    def __init__(self, message: str, *, returncode: int, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class BeansNotFoundError(BeansError):
    code = "NOT_FOUND"


class BeansGraphQLError(BeansError):
    code = "GRAPHQL_ERROR"


def user_message(error: BaseException) -> str:
    """Best human-readable message for any exception."""
    return str(error) or type(error).__name__

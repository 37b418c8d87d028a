"""Async adapter over the ``beans`` CLI — the system of record for issues.

Every call shells out to ``beans graphql --json <query> --variables <json>``
with an argument vector (never a shell) in the workspace root. The CLI
prints the data object directly, without a ``{"data": ...}`` envelope.

Resilience:

* timeouts are retried with exponential backoff; other failures are not
* identical concurrent requests share one in-flight task
* the last unfiltered listing is cached so views keep working (offline
  mode) while the CLI is unavailable
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import time
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from beanpole.config import BeansConfig, Settings, read_beans_config
from beanpole.errors import (
    BeansCLINotFoundError,
    BeansCommandError,
    BeansError,
    BeansGraphQLError,
    BeansJSONParseError,
    BeansNotFoundError,
    BeansTimeoutError,
)
from beanpole.model import Issue
from beanpole.ranking import matches_query
from beanpole.reparent import MAX_ANCESTOR_DEPTH, ValidationResult, validate_reparent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# GraphQL documents
# ---------------------------------------------------------------------------

BEAN_FIELDS = """
  fragment BeanFields on Bean {
    id
    slug
    path
    title
    body
    status
    type
    priority
    tags
    createdAt
    updatedAt
    etag
    parentId
    blockingIds
    blockedByIds
  }
"""

LIST_BEANS_QUERY = (
    BEAN_FIELDS
    + """
  query ListBeans($filter: BeanFilter) {
    beans(filter: $filter) {
      ...BeanFields
    }
  }
"""
)

SHOW_BEAN_QUERY = (
    BEAN_FIELDS
    + """
  query ShowBean($id: ID!) {
    bean(id: $id) {
      ...BeanFields
    }
  }
"""
)

CREATE_BEAN_MUTATION = (
    BEAN_FIELDS
    + """
  mutation CreateBean($input: CreateBeanInput!) {
    createBean(input: $input) {
      ...BeanFields
    }
  }
"""
)

UPDATE_BEAN_MUTATION = (
    BEAN_FIELDS
    + """
  mutation UpdateBean($id: ID!, $input: UpdateBeanInput!) {
    updateBean(id: $id, input: $input) {
      ...BeanFields
    }
  }
"""
)

DELETE_BEAN_MUTATION = """
  mutation DeleteBean($id: ID!) {
    deleteBean(id: $id)
  }
"""

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_TITLE_LENGTH = 200
MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.1  # seconds, doubled per attempt
CACHE_TTL_SECONDS = 5 * 60
DELETABLE_STATUSES: frozenset[str] = frozenset({"draft", "scrapped"})
_ENV_WHITELIST = ("PATH", "HOME", "USER", "LANG", "LC_ALL", "LC_CTYPE", "SHELL")


class IssueSource(Protocol):
    """The external issue store contract consumed by the CLI and MCP layers."""

    async def list_issues(
        self,
        *,
        statuses: Sequence[str] | None = None,
        types: Sequence[str] | None = None,
        search: str | None = None,
        parent: str | None = None,
    ) -> list[Issue]: ...

    async def get_issue(self, issue_id: str) -> Issue: ...

    async def update_issue(
        self,
        issue_id: str,
        *,
        status: str | None = None,
        type: str | None = None,
        priority: str | None = None,
        parent: str | None = None,
        clear_parent: bool = False,
        blocking: Sequence[str] | None = None,
        blocked_by: Sequence[str] | None = None,
    ) -> Issue: ...

    async def create_issue(
        self,
        title: str,
        *,
        type: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        body: str | None = None,
        parent: str | None = None,
    ) -> Issue: ...

    async def delete_issue(self, issue_id: str) -> None: ...



def _safe_env() -> dict[str, str]:
    """Environment for the CLI: a small whitelist plus every BEANS_* variable."""
    env = {k: os.environ[k] for k in _ENV_WHITELIST if k in os.environ}
    env.update({k: v for k, v in os.environ.items() if k.startswith("BEANS_")})
    return env


def filter_issues(
    issues: Sequence[Issue],
    *,
    statuses: Sequence[str] | None = None,
    types: Sequence[str] | None = None,
    search: str | None = None,
    parent: str | None = None,
) -> list[Issue]:
    """Apply the CLI's list filter locally (used when serving from cache)."""
    result = []
    for issue in issues:
        if statuses and issue.status not in statuses:
            continue
        if types and issue.type not in types:
            continue
        if parent and issue.parent != parent:
            continue
        if search and not matches_query(issue, search):
            continue
        result.append(issue)
    return result


class BeansService:
    """``IssueSource`` backed by the ``beans`` CLI."""

    def __init__(
        self,
        settings: Settings,
        *,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY,
        cache_ttl: float = CACHE_TTL_SECONDS,
    ) -> None:
        self.settings = settings
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.cache_ttl = cache_ttl
        self.offline = False
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._cached_issues: list[Issue] | None = None
        self._cache_ts: float | None = None
        self._config: BeansConfig | None = None

    # -- Cache ---------------------------------------------------------------

    def _fresh_cache(self) -> list[Issue] | None:
        """Cached full listing, or None when absent or older than the TTL."""
        if self._cached_issues is None or self._cache_ts is None:
            return None
        if time.monotonic() - self._cache_ts >= self.cache_ttl:
            return None
        return self._cached_issues

    def get_config(self) -> BeansConfig:
        """Workspace .beans.yml, falling back to defaults when absent."""
        if self._config is None:
            self._config = read_beans_config(self.settings.workspace_root) or BeansConfig()
        return self._config

    # -- Process execution ---------------------------------------------------

    async def _run_once(self, args: list[str]) -> Any:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.settings.cli_path,
                *args,
                cwd=str(self.settings.workspace_root),
                env=_safe_env(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            msg = f"Beans CLI not found at: {self.settings.cli_path}. Install beans or set BEANPOLE_CLI_PATH."
            raise BeansCLINotFoundError(msg) from exc

        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=self.settings.timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            msg = f"Beans CLI did not respond within {self.settings.timeout:g}s"
            raise BeansTimeoutError(msg) from exc

        stdout = stdout_b.decode(errors="replace")
        stderr = stderr_b.decode(errors="replace").strip()
        if stderr:
            if "[INFO]" in stderr:
                logger.debug("CLI info: %s", stderr)
            else:
                logger.warning("CLI stderr: %s", stderr)
        if proc.returncode != 0:
            msg = stderr or f"beans exited with status {proc.returncode}"
            raise BeansCommandError(msg, returncode=proc.returncode or 1, stderr=stderr)

        try:
            return json.loads(stdout)
        except json.JSONDecodeError as exc:
            msg = "Failed to parse beans CLI JSON output"
            raise BeansJSONParseError(msg, output=stdout) from exc

    async def _run_with_retry(self, args: list[str]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._run_once(args)
            except BeansTimeoutError:
                if attempt >= self.max_retries:
                    raise
            delay = self.retry_base_delay * (2**attempt)
            attempt += 1
            logger.warning(
                "Transient error on attempt %d/%d, retrying in %.2fs",
                attempt,
                self.max_retries + 1,
                delay,
            )
            await asyncio.sleep(delay)


    async def _execute(self, args: list[str]) -> Any:
        """Run the CLI, sharing one task between identical concurrent requests."""
        key = "exec:" + hashlib.sha256("::".join(args).encode()).hexdigest()[:16]
        existing = self._in_flight.get(key)
        if existing is not None:
            logger.debug("Deduplicating request %s", key)
            return await asyncio.shield(existing)

        logger.debug("Executing: %s %s", self.settings.cli_path, " ".join(args[:2]))
        task = asyncio.ensure_future(self._run_with_retry(args))
        self._in_flight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    async def graphql(self, query: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        args = ["graphql", "--json", query]
        if variables:
            args += ["--variables", json.dumps(variables, sort_keys=True)]
        data = await self._execute(args)
        if not isinstance(data, dict):
            msg = f"Expected a JSON object from beans graphql, got {type(data).__name__}"
            raise BeansJSONParseError(msg, output=json.dumps(data))
        errors = data.get("errors")
        if errors:
            messages = ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
            msg = f"GraphQL error: {messages}"
            raise BeansGraphQLError(msg)
        return data

    # -- Queries -------------------------------------------------------------

    async def list_issues(
        self,
        *,
        statuses: Sequence[str] | None = None,
        types: Sequence[str] | None = None,
        search: str | None = None,
        parent: str | None = None,
    ) -> list[Issue]:
        gql_filter: dict[str, Any] = {}
        if statuses:
            gql_filter["status"] = list(statuses)
        if types:
            gql_filter["type"] = list(types)
        if search:
            gql_filter["search"] = search
        if parent:
            gql_filter["parent"] = parent

        try:
            data = await self.graphql(LIST_BEANS_QUERY, {"filter": gql_filter})
        except (BeansCLINotFoundError, BeansTimeoutError) as exc:
            cached = self._fresh_cache()
            if cached is not None:
                if not self.offline:
                    logger.warning("CLI unavailable, using cached data (offline mode): %s", exc)
                self.offline = True
                return filter_issues(cached, statuses=statuses, types=types, search=search, parent=parent)
            if not self.offline:
                logger.error("CLI unavailable and no cached data available")
            self.offline = True
            msg = f"Beans CLI is not available and no cached data exists: {exc}"
            raise BeansCLINotFoundError(msg) from exc

        issues: list[Issue] = []
        for record in data.get("beans") or []:
            try:
                issues.append(Issue.from_record(record))
            except ValueError as exc:
                logger.warning("Skipping malformed bean %r: %s", record.get("id") if isinstance(record, dict) else record, exc)

        # Only a full listing may replace the cache; a filtered one is a subset.
        if not gql_filter:
            self._cached_issues = issues
            self._cache_ts = time.monotonic()
        self.offline = False
        logger.debug("Fetched %d beans", len(issues))
        return issues

    async def get_issue(self, issue_id: str) -> Issue:
        data = await self.graphql(SHOW_BEAN_QUERY, {"id": issue_id})
        record = data.get("bean")
        if not record:
            msg = f"Bean not found: {issue_id}"
            raise BeansNotFoundError(msg)
        try:
            return Issue.from_record(record)
        except ValueError as exc:
            msg = f"Malformed bean payload for {issue_id}: {exc}"
            raise BeansJSONParseError(msg, output=json.dumps(record, default=str)) from exc

    # -- Mutations -----------------------------------------------------------

    def _validate_choice(self, kind: str, value: str, allowed: Sequence[str]) -> None:
        if value not in allowed:
            msg = f"Invalid {kind}: {value}. Must be one of: {', '.join(allowed)}"
            raise ValueError(msg)

    async def create_issue(
        self,
        title: str,
        *,
        type: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        body: str | None = None,
        parent: str | None = None,
    ) -> Issue:
        if not title or not title.strip():
            msg = "Bean title is required"
            raise ValueError(msg)
        if len(title) > MAX_TITLE_LENGTH:
            msg = f"Bean title must be {MAX_TITLE_LENGTH} characters or less"
            raise ValueError(msg)
        config = self.get_config()
        issue_type = type or config.default_type
        self._validate_choice("type", issue_type, config.types)
        if status:
            self._validate_choice("status", status, config.statuses)
        if priority:
            self._validate_choice("priority", priority, config.priorities)

        payload = {"title": title, "type": issue_type, "status": status, "priority": priority, "body": body, "parent": parent}
        data = await self.graphql(CREATE_BEAN_MUTATION, {"input": {k: v for k, v in payload.items() if v is not None}})
        return Issue.from_record(data.get("createBean") or {})

    async def update_issue(
        self,
        issue_id: str,
        *,
        status: str | None = None,
        type: str | None = None,
        priority: str | None = None,
        parent: str | None = None,
        clear_parent: bool = False,
        blocking: Sequence[str] | None = None,
        blocked_by: Sequence[str] | None = None,
    ) -> Issue:
        if parent is not None and clear_parent:
            msg = "Cannot set parent and clear parent in the same update"
            raise ValueError(msg)
        config = self.get_config()
        if status:
            self._validate_choice("status", status, config.statuses)
        if type:
            self._validate_choice("type", type, config.types)
        if priority:
            self._validate_choice("priority", priority, config.priorities)

        update: dict[str, Any] = {}
        for key, value in (("status", status), ("type", type), ("priority", priority)):
            if value is not None:
                update[key] = value
        if parent is not None:
            update["parent"] = parent
        elif clear_parent:
            update["parent"] = ""
        if blocking:
            update["addBlocking"] = list(blocking)
        if blocked_by:
            update["addBlockedBy"] = list(blocked_by)

        data = await self.graphql(UPDATE_BEAN_MUTATION, {"id": issue_id, "input": update})
        try:
            return Issue.from_record(data.get("updateBean") or {})
        except ValueError:
            # Some CLI versions answer with a partial bean; fetch the full one.
            logger.warning("Partial bean payload received from update for %s; fetching full bean", issue_id)
            return await self.get_issue(issue_id)

    async def delete_issue(self, issue_id: str) -> None:
        await self.graphql(DELETE_BEAN_MUTATION, {"id": issue_id})


async def reparent(
    source: IssueSource,
    issue: Issue,
    new_parent: Issue | None,
    *,
    max_depth: int = MAX_ANCESTOR_DEPTH,
) -> tuple[ValidationResult, Issue | None]:
    """Validate a re-parent and, only if accepted, send the update to *source*.

    Returns the validation result and the updated issue (None on rejection).
    """
    result = await validate_reparent(issue, new_parent, source.get_issue, max_depth=max_depth)
    if not result.valid:
        logger.info("Rejected move of %s: %s", issue.id, result.reason)
        return result, None
    if new_parent is None:
        updated = await source.update_issue(issue.id, clear_parent=True)
    else:
        updated = await source.update_issue(issue.id, parent=new_parent.id)
    logger.info("Bean %s moved to %s", issue.display_name, new_parent.display_name if new_parent else "root")
    return result, updated


async def delete(source: IssueSource, issue_id: str, *, force: bool = False) -> Issue:
    """Delete a draft or scrapped bean; any other status needs *force*.

    Returns the bean as it was before deletion.
    """
    issue = await source.get_issue(issue_id)
    if not force and issue.status not in DELETABLE_STATUSES:
        msg = f"Only draft and scrapped beans are deletable unless forced ({issue.id} is {issue.status})"
        raise ValueError(msg)
    await source.delete_issue(issue.id)
    logger.info("Bean %s deleted", issue.display_name)
    return issue


__all__ = [
    "BeansError",
    "BeansService",
    "IssueSource",
    "delete",
    "filter_issues",
    "reparent",
]

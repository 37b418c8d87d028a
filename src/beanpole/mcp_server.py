"""MCP server exposing beanpole views to AI tool callers.

Thin adapter: every tool fetches a fresh snapshot through the ``beans``
CLI and runs it through the engine (filter, materialize, sort, rank,
validate). Mutations are sent to the CLI, re-parents only after they
validate. No state is kept between calls beyond the service's cache.

Usage:
    beanpole-mcp                                 # Auto-discover the workspace from cwd
    beanpole-mcp --workspace /path/to/project    # Explicit workspace root
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from beanpole.config import Settings, load_settings
from beanpole.errors import BeansError, user_message
from beanpole.filtering import FilterState, apply_filter
from beanpole.hierarchy import MAX_EXPORT_DEPTH, HierarchyProvider
from beanpole.model import Issue
from beanpole.ranking import search as rank_search
from beanpole.reparent import validate_reparent
from beanpole.service import BeansService, IssueSource, delete, reparent
from beanpole.sorting import VALID_SORT_MODES, sort_issues
from beanpole.types.api import DeleteResponse, ErrorResponse, IssueListResponse, ReparentResponse, SearchResponse, TreeResponse

QUERY_OPERATIONS = ("refresh", "filter", "search", "sort", "tree")

server = Server("beanpole")
service: IssueSource | None = None
settings: Settings | None = None
_logger: logging.Logger | None = None


def _get_service() -> IssueSource:
    if service is None:
        msg = "Beans service not initialized"
        raise RuntimeError(msg)
    return service


def _get_settings() -> Settings:
    return settings or Settings()


def _text(content: Any) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]


def _error(message: str, code: str) -> ErrorResponse:
    return {"error": message, "code": code}


def _str_list(arguments: dict[str, Any], key: str) -> tuple[str, ...]:
    value = arguments.get(key) or ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_LIST_PROPS: dict[str, Any] = {"type": "array", "items": {"type": "string"}}


@server.list_tools()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="beans_view",
            description="Get full details of a bean (issue) by ID.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Bean ID"}},
                "required": ["id"],
            },
        ),
        Tool(
            name="beans_query",
            description=(
                "List beans. refresh: full sorted listing; filter: by status/type/tag/text; "
                "search: relevance-ranked; sort: full listing in a given sort mode; tree: parent/child forest."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "operation": {"type": "string", "enum": list(QUERY_OPERATIONS), "default": "refresh"},
                    "mode": {"type": "string", "enum": list(VALID_SORT_MODES), "description": "Sort mode"},
                    "statuses": {**_LIST_PROPS, "description": "Status filter"},
                    "types": {**_LIST_PROPS, "description": "Type filter"},
                    "tags": {**_LIST_PROPS, "description": "Tag filter (any match)"},
                    "search": {"type": "string", "description": "Free-text query"},
                    "include_closed": {"type": "boolean", "default": True, "description": "Include completed/scrapped beans in search"},
                    "flat": {"type": "boolean", "default": False, "description": "tree: every bean is a root"},
                },
            },
        ),
        Tool(
            name="beans_validate_parent",
            description="Check whether a bean may be moved under a parent (type hierarchy, self-parent, cycles). Does not modify anything.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Bean to move"},
                    "parent_id": {"type": ["string", "null"], "description": "Proposed parent; null means move to root"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="beans_reparent",
            description="Validate, then move a bean under a new parent (or to root with clear_parent).",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Bean to move"},
                    "parent_id": {"type": "string", "description": "New parent bean ID"},
                    "clear_parent": {"type": "boolean", "default": False, "description": "Move to root"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="beans_create",
            description="Create a new bean.",
            inputSchema={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Bean title (max 200 chars)"},
                    "type": {"type": "string", "description": "Bean type (default from .beans.yml)"},
                    "status": {"type": "string", "description": "Initial status"},
                    "priority": {"type": "string", "description": "Priority"},
                    "body": {"type": "string", "description": "Markdown body"},
                    "parent": {"type": "string", "description": "Parent bean ID"},
                },
                "required": ["title"],
            },
        ),
        Tool(
            name="beans_update",
            description="Update bean metadata (status/type/priority) and add blocking links. Use beans_reparent to move a bean.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Bean ID"},
                    "status": {"type": "string", "description": "New status"},
                    "type": {"type": "string", "description": "New type"},
                    "priority": {"type": "string", "description": "New priority"},
                    "blocking": {**_LIST_PROPS, "description": "Bean IDs this bean blocks"},
                    "blocked_by": {**_LIST_PROPS, "description": "Bean IDs blocking this bean"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="beans_delete",
            description="Delete a bean. Only draft and scrapped beans unless force is set.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Bean ID"},
                    "force": {"type": "boolean", "default": False, "description": "Delete regardless of status"},
                },
                "required": ["id"],
            },
        ),
    ]


# ---------------------------------------------------------------------------
# Tool dispatch
# ---------------------------------------------------------------------------


@server.call_tool()  # type: ignore[untyped-decorator]
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    source = _get_service()
    t0 = time.monotonic()

    try:
        result = await _dispatch(name, arguments, source)
    except BeansError as e:
        if _logger:
            _logger.warning("tool_error", extra={"tool": name, "args_data": arguments, "error": e.code})
        return _text(_error(user_message(e), e.code))
    except ValueError as e:
        return _text(_error(str(e), "VALIDATION_ERROR"))
    except Exception:
        if _logger:
            _logger.error("tool_error", extra={"tool": name, "args_data": arguments}, exc_info=True)
        raise
    else:
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        if _logger:
            _logger.info("tool_call", extra={"tool": name, "args_data": arguments, "duration_ms": duration_ms})
        return result


async def _query(arguments: dict[str, Any], source: IssueSource) -> list[TextContent]:
    operation = arguments.get("operation") or "refresh"
    if operation not in QUERY_OPERATIONS:
        return _text(_error(f"Unknown operation '{operation}'. Must be one of: {', '.join(QUERY_OPERATIONS)}", "INVALID_OPERATION"))
    sort_mode = arguments.get("mode") or _get_settings().default_sort_mode

    issues = await source.list_issues()

    if operation == "search":
        query = str(arguments.get("search") or "")
        results = rank_search(issues, query, include_closed=arguments.get("include_closed", True))
        search_data: SearchResponse = {"query": query, "count": len(results), "beans": [r.to_dict() for r in results]}
        return _text(search_data)

    state = FilterState(
        text=str(arguments.get("search") or ""),
        statuses=_str_list(arguments, "statuses"),
        types=_str_list(arguments, "types"),
        tags=_str_list(arguments, "tags"),
    )
    if operation in ("filter", "tree"):
        issues = apply_filter(issues, state)

    if operation == "tree":
        provider = HierarchyProvider("flat" if arguments.get("flat") else "nested", sort_mode)
        provider.refresh(issues)
        tree_data: TreeResponse = {"mode": provider.mode, "count": len(provider.hierarchy), "roots": provider.tree(MAX_EXPORT_DEPTH)}
        return _text(tree_data)

    beans = sort_issues(issues, sort_mode)
    list_data: IssueListResponse = {"count": len(beans), "beans": [b.to_dict() for b in beans], "mode": sort_mode}
    return _text(list_data)


async def _fetch_parent(source: IssueSource, parent_id: str | None) -> Issue | None:
    return await source.get_issue(parent_id) if parent_id else None


async def _dispatch(name: str, arguments: dict[str, Any], source: IssueSource) -> list[TextContent]:
    max_depth = _get_settings().max_ancestor_depth
    match name:
        case "beans_view":
            issue = await source.get_issue(arguments["id"])
            return _text(issue.to_dict())

        case "beans_query":
            return await _query(arguments, source)

        case "beans_validate_parent":
            issue = await source.get_issue(arguments["id"])
            parent = await _fetch_parent(source, arguments.get("parent_id"))
            result = await validate_reparent(issue, parent, source.get_issue, max_depth=max_depth)
            return _text(result.to_dict())

        case "beans_reparent":
            parent_id = arguments.get("parent_id")
            clear_parent = bool(arguments.get("clear_parent"))
            if bool(parent_id) == clear_parent:
                return _text(_error("Give exactly one of parent_id or clear_parent", "VALIDATION_ERROR"))
            issue = await source.get_issue(arguments["id"])
            parent = await _fetch_parent(source, parent_id)
            result, updated = await reparent(source, issue, parent, max_depth=max_depth)
            data: ReparentResponse = {"validation": result.to_dict()}
            if updated is not None:
                data["bean"] = updated.to_dict()
            return _text(data)

        case "beans_create":
            created = await source.create_issue(
                str(arguments["title"]),
                type=arguments.get("type"),
                status=arguments.get("status"),
                priority=arguments.get("priority"),
                body=arguments.get("body"),
                parent=arguments.get("parent"),
            )
            return _text(created.to_dict())

        case "beans_update":
            fields = ("status", "type", "priority", "blocking", "blocked_by")
            if not any(arguments.get(f) for f in fields):
                return _text(_error(f"Nothing to update. Give at least one of: {', '.join(fields)}", "VALIDATION_ERROR"))
            changed = await source.update_issue(
                arguments["id"],
                status=arguments.get("status"),
                type=arguments.get("type"),
                priority=arguments.get("priority"),
                blocking=_str_list(arguments, "blocking"),
                blocked_by=_str_list(arguments, "blocked_by"),
            )
            return _text(changed.to_dict())

        case "beans_delete":
            removed = await delete(source, arguments["id"], force=bool(arguments.get("force")))
            deleted: DeleteResponse = {"deleted": removed.id}
            return _text(deleted)

        case _:

            return _text(_error(f"Unknown tool: {name}", "UNKNOWN_TOOL"))


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def _run(workspace: Path | None, cli_path: str | None) -> None:
    global service, settings, _logger

    settings = load_settings(workspace=workspace, cli_path=cli_path)
    service = BeansService(settings)

    from beanpole.logging import setup_logging

    _logger = setup_logging(settings.beans_dir, settings.log_level)
    _logger.info("mcp_server_start", extra={"tool": "server", "args_data": {"workspace": str(settings.workspace_root)}})

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    import asyncio

    parser = argparse.ArgumentParser(description="Beanpole MCP server")
    parser.add_argument("--workspace", type=Path, default=None, help="Workspace root (auto-discovers .beans.yml if omitted)")
    parser.add_argument("--cli-path", default=None, help="Path to the beans executable")
    args = parser.parse_args()

    asyncio.run(_run(args.workspace, args.cli_path))


if __name__ == "__main__":
    main()

"""CLI for browsing and editing beans.

Convention-based: discovers the workspace by walking up from cwd to the
nearest .beans.yml or .beans/ directory. All reads and writes go
through the ``beans`` CLI.

Usage:
    beanpole tree                                 # Nested forest, active branches starred
    beanpole tree --flat --status todo            # Flat view of one status bucket
    beanpole list --sort updated                  # Sorted flat listing
    beanpole search "auth"                        # Relevance-ranked search
    beanpole show <id>                            # Show bean details
    beanpole check-parent <id> <parent-id>        # Validate a move without applying it
    beanpole reparent <id> <parent-id>            # Validate then move
    beanpole reparent <id> --root                 # Move to root
    beanpole create "Title" --type bug            # Create a bean
    beanpole update <id> --status completed       # Change status/type/priority
    beanpole delete <id>                          # Delete a draft or scrapped bean
"""

from __future__ import annotations

import asyncio
import json as json_mod
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from beanpole import __version__
from beanpole.config import Settings, load_settings
from beanpole.errors import BeansError, user_message
from beanpole.filtering import FilterState, apply_filter
from beanpole.hierarchy import MAX_EXPORT_DEPTH, HierarchyProvider
from beanpole.logging import setup_logging
from beanpole.model import Issue
from beanpole.ranking import search as rank_search
from beanpole.reparent import validate_reparent
from beanpole.service import BeansService, IssueSource, delete, reparent
from beanpole.sorting import VALID_SORT_MODES, sort_issues
from beanpole.types.api import DeleteResponse, ReparentResponse, TreeNodeDict, TreeResponse

T = TypeVar("T")


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _get_service(ctx: click.Context) -> IssueSource:
    """Service injected by the caller (tests), else a ``BeansService`` for the workspace."""
    service = ctx.obj.get("service")
    if service is None:
        service = BeansService(_settings(ctx))
        ctx.obj["service"] = service
    return service


def _run(coro: Coroutine[Any, Any, T], as_json: bool = False) -> T:
    """Run *coro* to completion, turning store failures into exit status 1."""
    try:
        return asyncio.run(coro)
    except BeansError as e:
        _fail(user_message(e), e.code, as_json)
    except ValueError as e:
        _fail(str(e), "VALIDATION_ERROR", as_json)


def _fail(message: str, code: str, as_json: bool) -> Any:
    if as_json:
        click.echo(json_mod.dumps({"error": message, "code": code}, indent=2))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _issue_line(issue: Issue) -> str:
    priority = issue.priority or "-"
    return f"{issue.code:<6} [{issue.type}] {issue.status:<11} {priority:<8} {issue.title}"


def _echo_tree(nodes: list[TreeNodeDict]) -> None:
    stack: list[tuple[TreeNodeDict, int]] = [(n, 0) for n in reversed(nodes)]
    while stack:
        node, depth = stack.pop()
        data = node["issue"]
        marker = "*" if node["has_active_descendant"] else " "
        priority = data["priority"] or "-"
        click.echo(f"{'  ' * depth}{marker} {data['code']:<6} [{data['type']}] {data['status']:<11} {priority:<8} {data['title']}")
        stack.extend((child, depth + 1) for child in reversed(node["children"]))


def _filter_options(fn: Any) -> Any:
    fn = click.option("--priority", "priorities", multiple=True, help="Filter by priority (repeatable)")(fn)
    fn = click.option("--tag", "tags", multiple=True, help="Filter by tag (repeatable)")(fn)
    fn = click.option("--type", "types", multiple=True, help="Filter by type (repeatable)")(fn)
    fn = click.option("--status", "statuses", multiple=True, help="Filter by status (repeatable)")(fn)
    return fn


_sort_option = click.option(
    "--sort",
    "sort_mode",
    type=click.Choice(VALID_SORT_MODES),
    default=None,
    help="Sort mode (default: BEANPOLE_SORT_MODE or status-priority-type-title)",
)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="beanpole")
@click.option("--workspace", type=click.Path(file_okay=False, path_type=Path), default=None, help="Workspace root (default: discovered from cwd)")
@click.option("--cli-path", default=None, help="Path to the beans executable")
@click.option("--log-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Write JSON logs to DIR/beanpole.log")
@click.pass_context
def cli(ctx: click.Context, workspace: Path | None, cli_path: str | None, log_dir: Path | None) -> None:
    """Beanpole — hierarchy and relevance views over a beans workspace."""
    ctx.ensure_object(dict)
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = load_settings(workspace=workspace, cli_path=cli_path)
    if log_dir is not None:
        setup_logging(log_dir, _settings(ctx).log_level)


@cli.command()
@click.option("--flat", is_flag=True, help="Every bean is a root (for status-filtered views)")
@_sort_option
@_filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tree(
    ctx: click.Context,
    flat: bool,
    sort_mode: str | None,
    statuses: tuple[str, ...],
    types: tuple[str, ...],
    tags: tuple[str, ...],
    priorities: tuple[str, ...],
    as_json: bool,
) -> None:
    """Show beans as a parent/child forest. '*' marks an in-progress descendant."""
    service = _get_service(ctx)
    state = FilterState(statuses=statuses, types=types, tags=tags, priorities=priorities)
    provider = HierarchyProvider("flat" if flat else "nested", sort_mode or _settings(ctx).default_sort_mode)
    issues = _run(service.list_issues(), as_json)
    provider.refresh(apply_filter(issues, state))
    if as_json:
        payload: TreeResponse = {"mode": provider.mode, "count": len(provider.hierarchy), "roots": provider.tree(MAX_EXPORT_DEPTH)}
        click.echo(json_mod.dumps(payload, indent=2, default=str))
        return

    description = state.describe()
    if description:
        click.echo(f"Filter: {description}\n")
    _echo_tree(provider.tree())
    click.echo(f"\n{len(provider.hierarchy)} beans")


@cli.command("list")
@_sort_option
@_filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_beans(
    ctx: click.Context,
    sort_mode: str | None,
    statuses: tuple[str, ...],
    types: tuple[str, ...],
    tags: tuple[str, ...],
    priorities: tuple[str, ...],
    as_json: bool,
) -> None:
    """List beans with optional filters."""
    service = _get_service(ctx)
    state = FilterState(statuses=statuses, types=types, tags=tags, priorities=priorities)
    issues = _run(service.list_issues(), as_json)
    beans = sort_issues(apply_filter(issues, state), sort_mode or _settings(ctx).default_sort_mode)

    if as_json:
        click.echo(json_mod.dumps({"count": len(beans), "beans": [b.to_dict() for b in beans]}, indent=2, default=str))
        return

    for issue in beans:
        click.echo(_issue_line(issue))
    click.echo(f"\n{len(beans)} beans")


@cli.command()
@click.argument("query")
@click.option("--include-closed/--exclude-closed", default=True, help="Include completed and scrapped beans")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(ctx: click.Context, query: str, include_closed: bool, as_json: bool) -> None:
    """Search beans, best match first."""
    service = _get_service(ctx)
    issues = _run(service.list_issues(), as_json)
    results = rank_search(issues, query, include_closed=include_closed)

    if as_json:
        payload = {"query": query, "count": len(results), "beans": [r.to_dict() for r in results]}
        click.echo(json_mod.dumps(payload, indent=2, default=str))
        return

    for issue in results:
        click.echo(_issue_line(issue))
    click.echo(f"\n{len(results)} results")


@cli.command()
@click.argument("bean_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, bean_id: str, as_json: bool) -> None:
    """Show bean details."""
    issue = _run(_get_service(ctx).get_issue(bean_id), as_json)

    if as_json:
        click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
        return

    click.echo(f"ID:       {issue.id}")
    click.echo(f"Code:     {issue.code}")
    click.echo(f"Title:    {issue.title}")
    click.echo(f"Status:   {issue.status}")
    click.echo(f"Type:     {issue.type}")
    click.echo(f"Priority: {issue.priority or '-'}")
    if issue.parent:
        click.echo(f"Parent:   {issue.parent}")
    if issue.tags:
        click.echo(f"Tags:     {', '.join(issue.tags)}")
    if issue.blocking:
        click.echo(f"Blocks:   {', '.join(issue.blocking)}")
    if issue.blocked_by:
        click.echo(f"Blocked by: {', '.join(issue.blocked_by)}")
    click.echo(f"Created:  {issue.created_at.isoformat()}")
    click.echo(f"Updated:  {issue.updated_at.isoformat()}")
    if issue.body:
        click.echo(f"\n--- Body ---\n{issue.body}")


async def _fetch_pair(service: IssueSource, bean_id: str, parent_id: str | None) -> tuple[Issue, Issue | None]:
    issue = await service.get_issue(bean_id)
    parent = await service.get_issue(parent_id) if parent_id else None
    return issue, parent


@cli.command("check-parent")
@click.argument("bean_id")
@click.argument("parent_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check_parent(ctx: click.Context, bean_id: str, parent_id: str, as_json: bool) -> None:
    """Check whether BEAN_ID may be moved under PARENT_ID, without moving it."""
    service = _get_service(ctx)
    max_depth = _settings(ctx).max_ancestor_depth

    async def _check() -> Any:
        issue, parent = await _fetch_pair(service, bean_id, parent_id)
        return await validate_reparent(issue, parent, service.get_issue, max_depth=max_depth)

    result = _run(_check(), as_json)
    if as_json:
        click.echo(json_mod.dumps(result.to_dict(), indent=2))
    elif result.valid:
        click.echo(f"OK: {bean_id} can be moved under {parent_id}")
    else:
        click.echo(result.reason, err=True)
    if not result.valid:
        sys.exit(1)


@cli.command("reparent")
@click.argument("bean_id")
@click.argument("parent_id", required=False)
@click.option("--root", "to_root", is_flag=True, help="Move the bean to root (clear its parent)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def reparent_cmd(ctx: click.Context, bean_id: str, parent_id: str | None, to_root: bool, as_json: bool) -> None:
    """Move BEAN_ID under PARENT_ID (or to root with --root)."""
    if bool(parent_id) == to_root:
        msg = "Give exactly one of PARENT_ID or --root"
        raise click.UsageError(msg)
    service = _get_service(ctx)
    max_depth = _settings(ctx).max_ancestor_depth

    async def _move() -> Any:
        issue, parent = await _fetch_pair(service, bean_id, parent_id)
        return await reparent(service, issue, parent, max_depth=max_depth)

    result, updated = _run(_move(), as_json)
    if as_json:
        payload: ReparentResponse = {"validation": result.to_dict()}
        if updated is not None:
            payload["bean"] = updated.to_dict()
        click.echo(json_mod.dumps(payload, indent=2, default=str))
    elif updated is not None:
        target = parent_id if parent_id else "root"
        click.echo(f"Moved {updated.code} under {target}")
    else:
        click.echo(result.reason, err=True)
    if not result.valid:
        sys.exit(1)


@cli.command()
@click.argument("title")
@click.option("--type", "-t", "bean_type", default=None, help="Bean type (default from .beans.yml)")
@click.option("--status", default=None, help="Initial status")
@click.option("--priority", "-p", default=None, help="Priority")
@click.option("--parent", default=None, help="Parent bean ID")
@click.option("--body", "-d", default=None, help="Markdown body")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def create(
    ctx: click.Context,
    title: str,
    bean_type: str | None,
    status: str | None,
    priority: str | None,
    parent: str | None,
    body: str | None,
    as_json: bool,
) -> None:
    """Create a new bean."""
    service = _get_service(ctx)
    issue = _run(
        service.create_issue(title, type=bean_type, status=status, priority=priority, body=body, parent=parent),
        as_json,
    )
    if as_json:
        click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
    else:
        click.echo(f"Created {issue.id}: {issue.title}")


@cli.command()
@click.argument("bean_id")
@click.option("--status", default=None, help="New status")
@click.option("--type", "-t", "bean_type", default=None, help="New type")
@click.option("--priority", "-p", default=None, help="New priority")
@click.option("--blocks", "blocking", multiple=True, help="Bean this one blocks (repeatable)")
@click.option("--blocked-by", "blocked_by", multiple=True, help="Bean blocking this one (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def update(
    ctx: click.Context,
    bean_id: str,
    status: str | None,
    bean_type: str | None,
    priority: str | None,
    blocking: tuple[str, ...],
    blocked_by: tuple[str, ...],
    as_json: bool,
) -> None:
    """Update bean metadata. Use 'reparent' to move a bean."""
    if not any((status, bean_type, priority, blocking, blocked_by)):
        msg = "Nothing to update"
        raise click.UsageError(msg)
    service = _get_service(ctx)
    issue = _run(
        service.update_issue(
            bean_id,
            status=status,
            type=bean_type,
            priority=priority,
            blocking=blocking,
            blocked_by=blocked_by,
        ),
        as_json,
    )
    if as_json:
        click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
    else:
        click.echo(f"Updated {issue.id}: {issue.title} [{issue.status}]")


@cli.command("delete")
@click.argument("bean_id")
@click.option("--force", is_flag=True, help="Delete even if the bean is not draft or scrapped")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def delete_cmd(ctx: click.Context, bean_id: str, force: bool, as_json: bool) -> None:
    """Delete a draft or scrapped bean."""
    issue = _run(delete(_get_service(ctx), bean_id, force=force), as_json)
    if as_json:
        payload: DeleteResponse = {"deleted": issue.id}
        click.echo(json_mod.dumps(payload, indent=2))
    else:
        click.echo(f"Deleted {issue.id}: {issue.title}")


def main() -> None:

    cli(obj={})


if __name__ == "__main__":
    main()

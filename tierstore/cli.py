"""Operator command-line interface for the tiered file store, built with Typer."""

import dataclasses
import json
import sys
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import typer

from tierstore.admin.actions import ActionResult
from tierstore.config.settings import Settings
from tierstore.database.connection import close_pool, init_pool
from tierstore.database.pagination import Page
from tierstore.database.schema import apply_schema
from tierstore.logging.logger import Log
from tierstore.main import Services, build_services

SUCCESS_EXIT_CODE = 0
ACTION_ERROR_EXIT_CODE = 1


@dataclass
class CliState:
    settings: Settings
    as_json: bool
    services: Services | None = None


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, Decimal, Path)):
        return str(value)
    if isinstance(value, Page):
        return {
            "items": _serialize(value.items),
            "total": value.total,
            "page": value.page,
            "per_page": value.per_page,
            "pages": value.pages,
        }
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    return str(value)


def _render_rows(items: list[Any]) -> list[str]:
    lines: list[str] = []
    for item in items:
        if not isinstance(item, dict):
            lines.append(f"- {item}")
        elif "filename" in item:
            lines.append(
                f"- {item['file_id']}  {item['filename']}  "
                f"[{item['category']}/{item['visibility']}]"
            )
        elif "operation" in item:
            lines.append(
                f"- #{item['id']}  {item['operation']} "
                f"{item['from_tier'] or '-'}->{item['to_tier']}  "
                f"p{item['priority']}  attempts={item['attempts']}"
                + (f"  error={item['error_message']}" if item["error_message"] else "")
            )
        elif "version_number" in item:
            lines.append(
                f"- v{item['version_number']}  #{item['id']}  {item['size_bytes']} bytes"
                + ("  current" if item["is_current"] else "")
                + (f"  {item['change_description']}" if item["change_description"] else "")
            )
        elif "discovery_status" in item:
            lines.append(
                f"- {item['file_id']}  {item['discovered_category']}  "
                f"confidence={item['confidence_score']}"
            )
        else:
            lines.append(f"- {json.dumps(item, sort_keys=True)}")
    return lines


def _emit(state: CliState, result: ActionResult) -> None:
    """Render an action result and exit with a matching code."""
    data = _serialize(result.data)
    if state.as_json:
        typer.echo(
            json.dumps(
                {"success": result.success, "message": result.message, "data": data},
                sort_keys=True,
            ),
            err=not result.success,
        )
    else:
        typer.echo(result.message, err=not result.success)
        if isinstance(data, dict) and isinstance(data.get("items"), list):
            for line in _render_rows(data["items"]):
                typer.echo(line)
        elif isinstance(data, dict) and result.success and all(
            isinstance(v, (int, float)) for v in data.values()
        ):
            for key in sorted(data):
                typer.echo(f"  {key}: {data[key]}")
    raise typer.Exit(code=SUCCESS_EXIT_CODE if result.success else ACTION_ERROR_EXIT_CODE)


def _services(ctx: typer.Context) -> Services:
    """Open the pool and build services on first use within one invocation."""
    state = _require_state(ctx)
    if state.services is None:
        init_pool(state.settings)
        ctx.call_on_close(close_pool)
        state.services = build_services(state.settings)
    return state.services


def _require_state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if not isinstance(state, CliState):
        raise RuntimeError("CLI state not initialized")
    return state


app = typer.Typer(no_args_is_help=True, help="Tiered file storage operator commands")


@app.callback()
def main(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Load settings and configure logging for every command."""
    settings = Settings()
    # Logs go to stderr so --json output stays parseable.
    Log.configure(settings.log_level, stream=sys.stderr)
    ctx.obj = CliState(settings=settings, as_json=as_json)


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create the database tables."""
    state = _require_state(ctx)
    init_pool(state.settings)
    try:
        apply_schema()
    finally:
        close_pool()
    typer.echo("Database schema applied")


@app.command("worker")
def worker(
    ctx: typer.Context,
    max_items: int | None = typer.Option(None, min=1, help="Stop after this many items"),
) -> None:
    """Run the sync and discovery worker loop."""
    _services(ctx).worker.run(max_items=max_items)


@app.command("upload")
def upload(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    filename: str | None = typer.Option(None, help="Stored filename (defaults to the file name)"),
    category: str | None = typer.Option(None, help="Category (defaults to general)"),
    visibility: str | None = typer.Option(None, help="public or private"),
    description: str = typer.Option("", help="Free-text description"),
    created_by: int | None = typer.Option(None, help="Uploading user id"),
    collab: bool = typer.Option(False, "--collab", help="Also place a copy on the collab tier"),
) -> None:
    """Upload a file to the local tier and queue its placement."""
    actions = _services(ctx).actions
    _emit(
        _require_state(ctx),
        actions.upload_file(
            path,
            filename=filename,
            category=category,
            visibility=visibility,
            description=description,
            created_by=created_by,
            sync_to_collab=collab,
        ),
    )


@app.command("files")
def files(
    ctx: typer.Context,
    category: str | None = typer.Option(None, help="Filter by category"),
    visibility: str | None = typer.Option(None, help="Filter by visibility"),
    search: str | None = typer.Option(None, help="Search filename, description and tags"),
    page: int = typer.Option(1, help="Page number"),
    per_page: int = typer.Option(20, help="Results per page"),
) -> None:
    """List files."""
    actions = _services(ctx).actions
    _emit(_require_state(ctx), actions.list_files(category, visibility, search, page, per_page))


@app.command("delete")
def delete(ctx: typer.Context, file_id: str = typer.Argument(..., help="File id")) -> None:
    """Delete a file and queue removal from every tier that holds it."""
    _emit(_require_state(ctx), _services(ctx).actions.delete_file(file_id))


@app.command("add-version")
def add_version(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="File id"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="New contents"),
    description: str = typer.Option("", help="What changed"),
    created_by: int | None = typer.Option(None, help="Uploading user id"),
) -> None:
    """Store new contents for a file as its next version."""
    actions = _services(ctx).actions
    _emit(_require_state(ctx), actions.add_version(file_id, path, description, created_by))


@app.command("versions")
def versions(ctx: typer.Context, file_id: str = typer.Argument(..., help="File id")) -> None:
    """List the versions of a file, newest first."""
    _emit(_require_state(ctx), _services(ctx).actions.list_versions(file_id))


@app.command("revert")
def revert(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="File id"),
    version_number: int = typer.Argument(..., min=1, help="Version to restore"),
    reason: str = typer.Option("", help="Why the file is reverted"),
    reverted_by: int | None = typer.Option(None, help="User id"),
) -> None:
    """Restore an older version as a new version."""
    actions = _services(ctx).actions
    _emit(
        _require_state(ctx),
        actions.revert_version(file_id, version_number, reason, reverted_by),
    )


@app.command("compare-versions")
def compare_versions(
    ctx: typer.Context,
    first_id: int = typer.Argument(..., help="Version id"),
    second_id: int = typer.Argument(..., help="Version id"),
) -> None:
    """Compare the size and checksum of two versions."""
    _emit(_require_state(ctx), _services(ctx).actions.compare_versions(first_id, second_id))


@app.command("prune-versions")
def prune_versions(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="File id"),
    keep: int = typer.Option(10, min=0, help="Recent versions to keep besides the current one"),
    milestones: bool = typer.Option(
        True, "--milestones/--no-milestones", help="Keep versions 1, 5, 10, 50, ..."
    ),
) -> None:
    """Remove old versions of a file from the local tier."""
    _emit(_require_state(ctx), _services(ctx).actions.prune_versions(file_id, keep, milestones))


@app.command("queue")
def queue(
    ctx: typer.Context,
    status: str = typer.Option("pending", help="pending, processing, completed or failed"),
    page: int = typer.Option(1, help="Page number"),
    per_page: int = typer.Option(20, help="Results per page"),
    stats: bool = typer.Option(False, "--stats", help="Show counts per status instead"),
) -> None:
    """Show the sync queue."""
    actions = _services(ctx).actions
    result = actions.queue_stats() if stats else actions.queue_status(status, page, per_page)
    _emit(_require_state(ctx), result)


@app.command("retry")
def retry(ctx: typer.Context, item_id: int = typer.Argument(..., help="Failed item id")) -> None:
    """Re-queue a failed sync item."""
    _emit(_require_state(ctx), _services(ctx).actions.retry_item(item_id))


@app.command("cache-warm")
def cache_warm(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, min=1, help="Maximum files to cache"),
) -> None:
    """Pre-populate the cache with the most used files."""
    _emit(_require_state(ctx), _services(ctx).actions.warm_cache(limit))


@app.command("cache-clean")
def cache_clean(ctx: typer.Context) -> None:
    """Remove expired cache entries."""
    _emit(_require_state(ctx), _services(ctx).actions.clean_cache())


@app.command("cache-trim")
def cache_trim(
    ctx: typer.Context,
    max_bytes: int | None = typer.Option(
        None, min=0, help="Size to trim down to (defaults to CACHE_MAX_BYTES)"
    ),
) -> None:
    """Evict least recently used cache entries until the cache fits."""
    _emit(_require_state(ctx), _services(ctx).actions.trim_cache(max_bytes))


@app.command("cache-stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show cache counters and hit rate."""
    _emit(_require_state(ctx), _services(ctx).actions.cache_stats())


@app.command("discover")
def discover(ctx: typer.Context, file_id: str = typer.Argument(..., help="File id")) -> None:
    """Run discovery for one file now."""
    _emit(_require_state(ctx), _services(ctx).actions.process_discovery(file_id))


@app.command("accept")
def accept(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="File id"),
    reviewed_by: int | None = typer.Option(None, help="Reviewer user id"),
) -> None:
    """Accept discovery suggestions for a file."""
    _emit(_require_state(ctx), _services(ctx).actions.accept_discovery(file_id, reviewed_by))


@app.command("reject")
def reject(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="File id"),
    reviewed_by: int | None = typer.Option(None, help="Reviewer user id"),
) -> None:
    """Reject discovery suggestions for a file."""
    _emit(_require_state(ctx), _services(ctx).actions.reject_discovery(file_id, reviewed_by))


@app.command("review")
def review(
    ctx: typer.Context,
    page: int = typer.Option(1, help="Page number"),
    per_page: int = typer.Option(20, help="Results per page"),
    stats: bool = typer.Option(False, "--stats", help="Show discovery counters instead"),
) -> None:
    """List discovery results awaiting a decision."""
    actions = _services(ctx).actions
    result = actions.discovery_stats() if stats else actions.review_list(page, per_page)
    _emit(_require_state(ctx), result)


if __name__ == "__main__":
    app()

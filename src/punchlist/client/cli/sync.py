"""Sync commands for the punchlist CLI.

Commands:
- configure: Save server settings and the projects to keep offline
- download: Download project data into the offline cache
- upload: Upload queued offline changes
- status: Show pending work and last sync time
- queue: List queued operations
- retry-failed: Requeue operations that exhausted their retries
- conflicts: List conflicts waiting for a decision
- resolve: Settle a conflict
- cleanup: Remove old cached data
- watch: Upload automatically whenever the server becomes reachable
"""

from __future__ import annotations

import sys
import time
from datetime import UTC, datetime

import click

from punchlist.client.cli.config import load_config, save_config
from punchlist.client.cli.context import client_context
from punchlist.client.sync import (
    POLICIES,
    Resolution,
    SyncAlreadyInProgressError,
    SyncError,
    SyncProgress,
)
from punchlist.core.types import EntityType


def _echo_errors(errors: tuple[str, ...]) -> None:
    if errors:
        click.echo(click.style("\nErrors:", fg="red"))
        for error in errors:
            click.echo(f"  ✗ {error}")


@click.command()
@click.option("--server-url", "-s", help="Base URL of the punchlist server.")
@click.option("--token", help="Bearer token sent with every request.")
@click.option(
    "--project",
    "-p",
    "projects",
    multiple=True,
    help="Project id to keep offline (repeatable, replaces the saved list).",
)
@click.option(
    "--policy",
    type=click.Choice(sorted(POLICIES)),
    help="Conflict policy used during downloads.",
)
@click.option("--max-retries", type=int, help="Retries before an upload fails permanently.")
def configure(
    server_url: str | None,
    token: str | None,
    projects: tuple[str, ...],
    policy: str | None,
    max_retries: int | None,
) -> None:
    """Save client settings."""
    config = load_config()
    if server_url:
        config["server_url"] = server_url
    if token:
        config["token"] = token
    if projects:
        config["projects"] = list(projects)
    if policy:
        config["conflict_policy"] = policy
    if max_retries is not None:
        config.setdefault("sync", {})["max_retries"] = max_retries

    if not config.get("server_url"):
        click.echo("Error: --server-url is required.", err=True)
        sys.exit(1)

    save_config(config)
    click.echo(f"Server: {config['server_url']}")
    if config.get("projects"):
        click.echo(f"Offline projects: {', '.join(config['projects'])}")


@click.command()
@click.argument("project_ids", nargs=-1)
def download(project_ids: tuple[str, ...]) -> None:
    """Download projects, their items, photos and all users.

    Without PROJECT_IDS, downloads the projects saved by 'configure'.
    """
    ids = list(project_ids) or list(load_config().get("projects", []))
    if not ids:
        click.echo("Error: No projects given or configured.", err=True)
        sys.exit(1)

    def show_progress(progress: SyncProgress) -> None:
        click.echo(
            f"[{progress.current}/{progress.total}] {progress.stage.value}: {progress.message}"
        )

    with client_context() as ctx:
        try:
            result = ctx.engine.download_project_data(ids, progress_callback=show_progress)
        except SyncAlreadyInProgressError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo(
        f"\nDownloaded {result.projects_downloaded} project(s), "
        f"{result.punchlist_items_downloaded} item(s), "
        f"{result.photos_downloaded} photo(s), {result.users_downloaded} user(s)."
    )
    if result.conflicts:
        click.echo(click.style("\nConflicts:", fg="yellow"))
        for conflict in result.conflicts:
            resolution = conflict.resolution.value if conflict.resolution else "-"
            click.echo(f"  ! {conflict.entity_type.value} {conflict.entity_id} -> {resolution}")
    if result.superseded:
        click.echo(f"{len(result.superseded)} queued change(s) replaced by server versions.")
    _echo_errors(result.errors)
    if not result.success:
        sys.exit(1)


@click.command()
def upload() -> None:
    """Upload queued offline changes."""
    with client_context() as ctx:
        try:
            result = ctx.engine.upload_pending_changes()
        except SyncAlreadyInProgressError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        remaining = len(ctx.queue)

    click.echo(f"Uploaded {result.uploaded} change(s), {remaining} still queued.")
    if result.failed:
        click.echo(
            click.style(f"{len(result.failed)} change(s) failed permanently.", fg="red")
            + " Use 'punchlist retry-failed' to try again."
        )
    _echo_errors(result.errors)
    if not result.success:
        sys.exit(1)


@click.command()
def status() -> None:
    """Show pending work and last sync time."""
    with client_context() as ctx:
        sync_status = ctx.engine.get_sync_status()
        counts = {t: ctx.store.count(t) for t in EntityType}

    last = sync_status.last_sync_time
    click.echo(f"State:              {sync_status.state.value}")
    click.echo(f"Last sync:          {last.isoformat() if last else 'never'}")
    click.echo(f"Pending changes:    {sync_status.pending_operations}")
    click.echo(f"Failed changes:     {sync_status.failed_operations}")
    click.echo(f"Open conflicts:     {sync_status.pending_conflicts}")
    click.echo("Cached:")
    for entity_type, count in counts.items():
        click.echo(f"  {entity_type.value:<16}{count}")


@click.command()
def queue() -> None:
    """List queued operations."""
    with client_context() as ctx:
        pending = ctx.queue.pending()
        failed = ctx.queue.failed()

    if not pending and not failed:
        click.echo("Queue is empty.")
        return
    for op in pending:
        retry = f" (retry {op.retry_count}/{op.max_retries})" if op.retry_count else ""
        click.echo(f"  {op.kind.value:<7}{op.entity_type.value} {op.entity_id}{retry}")
    if failed:
        click.echo(click.style("\nFailed:", fg="red"))
        for op in failed:
            click.echo(
                f"  {op.id} {op.kind.value} {op.entity_type.value} {op.entity_id}: {op.last_error}"
            )


@click.command("retry-failed")
@click.argument("op_id", required=False)
def retry_failed(op_id: str | None) -> None:
    """Requeue failed operations (all, or OP_ID only)."""
    with client_context() as ctx:
        count = ctx.queue.requeue_failed(op_id)
    click.echo(f"Requeued {count} operation(s).")


@click.command()
def conflicts() -> None:
    """List conflicts waiting for a manual decision."""
    with client_context() as ctx:
        pending = ctx.engine.list_conflicts()

    if not pending:
        click.echo("No conflicts.")
        return
    for conflict in pending:
        local = conflict.local_updated_at.isoformat() if conflict.local_updated_at else "?"
        remote = conflict.remote_updated_at.isoformat() if conflict.remote_updated_at else "?"
        action = "deleted" if conflict.is_local_delete else "edited"
        click.echo(
            f"  {conflict.entity_type.value} {conflict.entity_id}: "
            f"local {action} {local}, remote {remote}"
        )


@click.command()
@click.argument("entity_type", type=click.Choice([t.value for t in EntityType]))
@click.argument("entity_id")
@click.option(
    "--use",
    "resolution",
    type=click.Choice([Resolution.LOCAL.value, Resolution.REMOTE.value]),
    required=True,
    help="Side that wins.",
)
def resolve(entity_type: str, entity_id: str, resolution: str) -> None:
    """Settle a conflict by keeping the local or the remote version."""
    with client_context() as ctx:
        try:
            ctx.engine.resolve_conflict(EntityType(entity_type), entity_id, resolution)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Resolved {entity_type} {entity_id} with the {resolution} version.")


@click.command()
@click.option("--days", "-d", type=int, default=90, show_default=True, help="Age limit in days.")
def cleanup(days: int) -> None:
    """Remove cached data not updated within the last DAYS days."""
    with client_context() as ctx:
        result = ctx.engine.cleanup_old_data(max_age_days=days)
    click.echo(
        f"Removed {result.projects_removed} project(s), {result.items_removed} item(s), "
        f"{result.photos_removed} photo(s)."
    )


@click.command()
@click.option("--interval", "-i", type=float, default=None, help="Seconds between probes.")
def watch(interval: float | None) -> None:
    """Upload queued changes whenever the server becomes reachable."""
    from punchlist.client.connectivity import ConnectivityMonitor

    with client_context() as ctx:
        monitor = ConnectivityMonitor(
            probe=ctx.api.health_check,
            interval=interval or ctx.settings.connectivity_interval,
        )

        def on_change(online: bool) -> None:
            stamp = datetime.now(UTC).strftime("%H:%M:%S")
            state = click.style("online", fg="green") if online else click.style("offline", fg="red")
            click.echo(f"[{stamp}] Server {state}, {len(ctx.queue)} change(s) queued")

        monitor.add_listener(on_change)
        ctx.engine.attach(monitor)
        monitor.start()
        click.echo("Watching connectivity... (Ctrl+C to stop)\n")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("\nStopping...")
        finally:
            ctx.engine.cancel()
            monitor.stop()

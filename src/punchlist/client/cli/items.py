"""Offline punchlist item commands for the punchlist CLI.

Commands:
- item list: Show cached items of a project
- item create: Create an item offline
- item update: Change an item offline
- item delete: Delete an item offline
"""

from __future__ import annotations

import sys

import click

from punchlist.client.cli.context import client_context
from punchlist.client.sync import EntityNotFoundError
from punchlist.core.types import EntityType, ItemStatus, Priority, Trade


@click.group()
def item() -> None:
    """Work on punchlist items offline.

    Changes are applied to the local cache immediately and uploaded by
    'punchlist upload'.
    """


@item.command("list")
@click.argument("project_id")
def list_items(project_id: str) -> None:
    """Show cached items of PROJECT_ID."""
    with client_context() as ctx:
        items = ctx.store.project_items(project_id)
        pending = {op.entity_id for op in ctx.queue.pending()}

    if not items:
        click.echo("No cached items.")
        return
    for entry in items:
        marker = "*" if entry["id"] in pending else " "
        click.echo(
            f"{marker} {entry['id']}  [{entry.get('status', '?')}/{entry.get('priority', '?')}] "
            f"{entry.get('title', '')}"
        )


@item.command("create")
@click.argument("project_id")
@click.argument("title")
@click.option("--description", default="", help="Details of the defect.")
@click.option("--location", default="", help="Where on site.")
@click.option("--trade", type=click.Choice([t.value for t in Trade]), default=Trade.GENERAL.value)
@click.option(
    "--priority", type=click.Choice([p.value for p in Priority]), default=Priority.MEDIUM.value
)
@click.option("--assigned-to", default=None, help="User id of the assignee.")
@click.option("--due-date", default=None, help="Due date (YYYY-MM-DD).")
def create_item(
    project_id: str,
    title: str,
    description: str,
    location: str,
    trade: str,
    priority: str,
    assigned_to: str | None,
    due_date: str | None,
) -> None:
    """Create an item in PROJECT_ID."""
    with client_context() as ctx:
        try:
            item_id = ctx.editor.create_punchlist_item(
                project_id,
                title,
                description=description,
                location=location,
                trade=trade,
                priority=priority,
                assigned_to=assigned_to,
                due_date=due_date,
            )
        except (EntityNotFoundError, ValueError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Created item {item_id} (queued for upload)")


@item.command("update")
@click.argument("item_id")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.option("--location", default=None)
@click.option("--status", type=click.Choice([s.value for s in ItemStatus]), default=None)
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default=None)
@click.option("--assigned-to", default=None)
def update_item(item_id: str, **changes: str | None) -> None:
    """Change fields of ITEM_ID."""
    patch = {k: v for k, v in changes.items() if v is not None}
    if not patch:
        click.echo("Error: Nothing to update.", err=True)
        sys.exit(1)

    with client_context() as ctx:
        try:
            ctx.editor.update(EntityType.PUNCHLIST_ITEM, item_id, patch)
        except EntityNotFoundError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Updated item {item_id}: {', '.join(sorted(patch))}")


@item.command("delete")
@click.argument("item_id")
def delete_item(item_id: str) -> None:
    """Delete ITEM_ID."""
    with client_context() as ctx:
        try:
            ctx.editor.delete(EntityType.PUNCHLIST_ITEM, item_id)
        except EntityNotFoundError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Deleted item {item_id}")

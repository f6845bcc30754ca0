"""Command-line interface for punchlist.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Save server settings and offline projects
- download: Download project data for offline use
- upload: Upload queued offline changes
- status: Show pending work and last sync time
- queue: List queued operations
- retry-failed: Requeue permanently failed operations
- conflicts: List conflicts waiting for a decision
- resolve: Settle a conflict
- cleanup: Remove old cached data
- watch: Upload automatically when the server becomes reachable
- item: Create, update and delete punchlist items offline
- serve: Run the reference API server
"""

from __future__ import annotations

import logging

import click

from punchlist.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_state_db_path,
    load_config,
    save_config,
)
from punchlist.client.cli.items import item
from punchlist.client.cli.server import serve
from punchlist.client.cli.sync import (
    cleanup,
    configure,
    conflicts,
    download,
    queue,
    resolve,
    retry_failed,
    status,
    upload,
    watch,
)


def _setup_console_logging(verbose: bool) -> None:
    """Send punchlist log records to stderr."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    punchlist_logger = logging.getLogger("punchlist")
    punchlist_logger.handlers = [handler]
    punchlist_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(package_name="punchlist")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """Punchlist - offline-first construction punchlist client."""
    _setup_console_logging(verbose)


# Sync commands
cli.add_command(configure)
cli.add_command(download)
cli.add_command(upload)
cli.add_command(status)
cli.add_command(queue)
cli.add_command(retry_failed)
cli.add_command(conflicts)
cli.add_command(resolve)
cli.add_command(cleanup)
cli.add_command(watch)

# Offline editing
cli.add_command(item)

# Server
cli.add_command(serve)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_state_db_path",
    "load_config",
    "save_config",
]

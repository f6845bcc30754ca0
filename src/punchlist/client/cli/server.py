"""Server command for the punchlist CLI.

Commands:
- serve: Run the reference punchlist API server
"""

from __future__ import annotations

import os

import click


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", "-p", type=int, default=8000, show_default=True, help="Port to bind.")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: PUNCHLIST_DB_PATH or ./punchlist.db).",
)
@click.option(
    "--log-path",
    type=click.Path(),
    default=None,
    help="Path to log file (default: PUNCHLIST_LOG_PATH or ./punchlist-server.log).",
)
def serve(host: str, port: int, db_path: str | None, log_path: str | None) -> None:
    """Run the punchlist API server."""
    import uvicorn

    # Read by app_factory inside the server process
    if db_path:
        os.environ["PUNCHLIST_DB_PATH"] = db_path
    if log_path:
        os.environ["PUNCHLIST_LOG_PATH"] = log_path

    uvicorn.run("punchlist.server.app:app_factory", factory=True, host=host, port=port)

"""Composition root for CLI commands.

Builds the API client, cache store, queue, editor and engine from the
saved configuration. Every command gets its own instances; nothing is a
module-level singleton.
"""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import click

from punchlist.client.api import RemoteAPI
from punchlist.client.cli.config import get_state_db_path, load_config
from punchlist.client.store import LocalCacheStore
from punchlist.client.sync import POLICIES, OfflineEditor, OperationQueue, SyncEngine
from punchlist.core.config import ServerConfig, SyncSettings


@dataclass
class ClientContext:
    """Objects shared by one CLI invocation."""

    api: RemoteAPI
    store: LocalCacheStore
    queue: OperationQueue
    editor: OfflineEditor
    engine: SyncEngine
    settings: SyncSettings

    def close(self) -> None:
        self.api.close()
        self.store.close()


def build_context(config: dict[str, Any]) -> ClientContext:
    """Wire the client objects from a config mapping."""
    settings = SyncSettings.from_dict(config.get("sync", {}))
    policy_name = config.get("conflict_policy", "last-write-wins")
    if policy_name not in POLICIES:
        raise click.ClickException(f"Unknown conflict policy '{policy_name}'")

    api = RemoteAPI(ServerConfig(server_url=config["server_url"], token=config.get("token")))
    store = LocalCacheStore(get_state_db_path())
    queue = OperationQueue(store)
    return ClientContext(
        api=api,
        store=store,
        queue=queue,
        editor=OfflineEditor(store, queue, max_retries=settings.max_retries),
        engine=SyncEngine(api, store, queue, settings=settings, policy=POLICIES[policy_name]()),
        settings=settings,
    )


@contextlib.contextmanager
def client_context() -> Iterator[ClientContext]:
    """Open a client context, exiting with an error when not configured."""
    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: No server configured. Run 'punchlist configure' first.", err=True)
        sys.exit(1)

    ctx = build_context(config)
    try:
        yield ctx
    finally:
        ctx.close()

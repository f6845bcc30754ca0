"""Fixtures wiring the offline client to an in-process server.

The client talks HTTP to the FastAPI app through Starlette's TestClient,
so requests go through routing, validation and the real database.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from punchlist.client.api import RemoteAPI
from punchlist.client.store import LocalCacheStore
from punchlist.client.sync import OfflineEditor, OperationQueue, SyncEngine
from punchlist.core.config import ServerConfig, SyncSettings
from punchlist.server.app import create_app
from punchlist.server.database import Database


@pytest.fixture
def server_db(tmp_path: Path) -> Generator[Database, None, None]:
    database = Database(tmp_path / "server.db")
    yield database
    database.close()


@pytest.fixture
def http(server_db: Database) -> Generator[TestClient, None, None]:
    """HTTP client bound to the server app."""
    with TestClient(create_app(server_db)) as client:
        yield client


@pytest.fixture
def api(http: TestClient) -> RemoteAPI:
    return RemoteAPI(ServerConfig(server_url="http://testserver"), client=http)


@pytest.fixture
def queue(store: LocalCacheStore) -> OperationQueue:
    return OperationQueue(store)


@pytest.fixture
def editor(store: LocalCacheStore, queue: OperationQueue) -> OfflineEditor:
    return OfflineEditor(store, queue)


@pytest.fixture
def engine(api: RemoteAPI, store: LocalCacheStore, queue: OperationQueue) -> SyncEngine:
    settings = SyncSettings(initial_backoff=0, jitter=0, fetch_retries=0)
    return SyncEngine(api, store, queue, settings=settings)


def unreachable_api() -> RemoteAPI:
    """RemoteAPI whose every request fails to connect."""

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    client = httpx.Client(base_url="http://offline.invalid", transport=httpx.MockTransport(refuse))
    return RemoteAPI(ServerConfig(server_url="http://offline.invalid"), client=client)

"""Shared fixtures: an in-memory remote, a fake clock and wired sync objects."""

from __future__ import annotations

import copy
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from punchlist.client.api import NotFoundError
from punchlist.client.store import LocalCacheStore
from punchlist.client.sync import OfflineEditor, OperationQueue, SyncEngine
from punchlist.core.config import SyncSettings
from punchlist.core.types import EntityType, format_timestamp

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Controllable time source returning Unix timestamps."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start.timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """In-memory stand-in for RemoteAPI.

    Failures are scripted per (method, key) with ``fail``; every call is
    recorded in ``calls`` as (method, key).
    """

    def __init__(self) -> None:
        self.data: dict[EntityType, dict[str, dict[str, Any]]] = {t: {} for t in EntityType}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], list[Exception]] = {}
        self.applied: dict[str, str] = {}
        self.online = True
        self.now = BASE_TIME
        self._next_id = 0
        self.on_call: Any = None

    def tick(self) -> str:
        self.now += timedelta(seconds=1)
        return format_timestamp(self.now)

    def fail(self, method: str, key: str, *errors: Exception) -> None:
        self.failures.setdefault((method, key), []).extend(errors)

    def add(self, entity_type: EntityType, doc: dict[str, Any]) -> dict[str, Any]:
        stored = {**doc}
        stored.setdefault("updated_at", self.tick())
        self.data[entity_type][stored["id"]] = stored
        return copy.deepcopy(stored)

    def _call(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        if self.on_call is not None:
            self.on_call(method, key)
        errors = self.failures.get((method, key))
        if errors:
            raise errors.pop(0)

    def health_check(self) -> bool:
        return self.online

    def fetch_project(self, project_id: str) -> dict[str, Any]:
        self._call("fetch_project", project_id)
        if project_id not in self.data[EntityType.PROJECT]:
            raise NotFoundError(f"Project {project_id} not found", 404)
        return copy.deepcopy(self.data[EntityType.PROJECT][project_id])

    def fetch_items(self, project_id: str) -> list[dict[str, Any]]:
        self._call("fetch_items", project_id)
        return [
            copy.deepcopy(i)
            for i in self.data[EntityType.PUNCHLIST_ITEM].values()
            if i["project_id"] == project_id
        ]

    def fetch_photos(self, item_id: str) -> list[dict[str, Any]]:
        self._call("fetch_photos", item_id)
        return [
            copy.deepcopy(p)
            for p in self.data[EntityType.PHOTO].values()
            if p["punchlist_item_id"] == item_id
        ]

    def fetch_users(self) -> list[dict[str, Any]]:
        self._call("fetch_users", "*")
        return [copy.deepcopy(u) for u in self.data[EntityType.USER].values()]

    def create(
        self,
        entity_type: EntityType,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        self._call("create", payload["id"])
        if idempotency_key in self.applied:
            return copy.deepcopy(self.data[entity_type][self.applied[idempotency_key]])
        self._next_id += 1
        doc = {**payload, "id": f"srv-{self._next_id}", "updated_at": self.tick()}
        self.data[entity_type][doc["id"]] = doc
        if idempotency_key:
            self.applied[idempotency_key] = doc["id"]
        return copy.deepcopy(doc)

    def update(
        self,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self._call("update", entity_id)
        if entity_id not in self.data[entity_type]:
            raise NotFoundError(f"{entity_id} not found", 404)
        doc = self.data[entity_type][entity_id]
        doc.update({k: v for k, v in payload.items() if k != "id"})
        doc["updated_at"] = self.tick()
        return copy.deepcopy(doc)

    def delete(self, entity_type: EntityType, entity_id: str) -> None:
        self._call("delete", entity_id)
        if entity_id not in self.data[entity_type]:
            raise NotFoundError(f"{entity_id} not found", 404)
        del self.data[entity_type][entity_id]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def store(tmp_path: Path) -> Generator[LocalCacheStore, None, None]:
    """Create a cache store in a temporary directory."""
    cache = LocalCacheStore(tmp_path / "offline.db")
    yield cache
    cache.close()


@pytest.fixture
def queue(store: LocalCacheStore, clock: FakeClock) -> OperationQueue:
    return OperationQueue(store, clock=clock)


@pytest.fixture
def settings() -> SyncSettings:
    """Settings without backoff delays or in-call retries."""
    return SyncSettings(max_retries=3, initial_backoff=0, jitter=0, fetch_retries=0)


@pytest.fixture
def editor(store: LocalCacheStore, queue: OperationQueue, clock: FakeClock) -> OfflineEditor:
    return OfflineEditor(store, queue, max_retries=3, clock=clock)


@pytest.fixture
def engine(
    remote: FakeRemote,
    store: LocalCacheStore,
    queue: OperationQueue,
    settings: SyncSettings,
    clock: FakeClock,
) -> SyncEngine:
    return SyncEngine(
        remote,  # type: ignore[arg-type]
        store,
        queue,
        settings=settings,
        clock=clock,
        sleep=lambda _: None,
    )

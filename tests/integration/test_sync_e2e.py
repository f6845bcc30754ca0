"""End-to-end tests: offline edits uploaded to a real server and pulled back."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from punchlist.client.api import RemoteAPI
from punchlist.client.store import LocalCacheStore
from punchlist.client.sync import (
    OfflineEditor,
    OperationQueue,
    Resolution,
    SyncEngine,
)
from punchlist.core.config import SyncSettings
from punchlist.core.types import EntityType, OperationKind

from tests.integration.conftest import unreachable_api


def create_project(http: TestClient, name: str = "Tower A") -> dict[str, Any]:
    response = http.post("/api/projects", json={"name": name})
    assert response.status_code == 201
    data: dict[str, Any] = response.json()
    return data


class TestOfflineRoundTrip:
    """Download, edit offline, upload."""

    def test_download_populates_cache(
        self, http: TestClient, engine: SyncEngine, store: LocalCacheStore
    ) -> None:
        project = create_project(http)
        item = http.post(
            "/api/items", json={"project_id": project["id"], "title": "Crack"}
        ).json()
        http.post("/api/photos", json={"punchlist_item_id": item["id"], "url": "a.jpg"})
        http.post(
            "/api/users", json={"email": "ann@site.test", "first_name": "Ann", "last_name": "Lee"}
        )

        result = engine.download_project_data([project["id"]])

        assert result.success
        assert (
            result.projects_downloaded,
            result.punchlist_items_downloaded,
            result.photos_downloaded,
            result.users_downloaded,
        ) == (1, 1, 1, 1)
        assert store.project_items(project["id"])[0]["title"] == "Crack"
        assert store.item_photos(item["id"])[0]["url"] == "a.jpg"

    def test_offline_edits_reach_server(
        self,
        http: TestClient,
        engine: SyncEngine,
        editor: OfflineEditor,
        store: LocalCacheStore,
        queue: OperationQueue,
    ) -> None:
        """An item and its photo created offline are uploaded with server ids."""
        project = create_project(http)
        engine.download_project_data([project["id"]])

        item_id = editor.create_punchlist_item(project["id"], "Loose handrail", location="Stair B")
        editor.update(EntityType.PUNCHLIST_ITEM, item_id, {"priority": "critical"})
        editor.create_photo(item_id, "file:///handrail.jpg", caption="before")

        result = engine.upload_pending_changes()

        assert result.success
        assert result.uploaded == 3
        assert len(queue) == 0

        server_items = http.get(f"/api/projects/{project['id']}/items").json()
        assert len(server_items) == 1
        server_item = server_items[0]
        assert server_item["priority"] == "critical"
        assert server_item["location"] == "Stair B"
        photos = http.get(f"/api/items/{server_item['id']}/photos").json()
        assert [p["caption"] for p in photos] == ["before"]

        assert store.get(EntityType.PUNCHLIST_ITEM, item_id) is None
        cached = store.get(EntityType.PUNCHLIST_ITEM, server_item["id"])
        assert cached is not None
        assert cached["priority"] == "critical"
        assert [p["id"] for p in store.item_photos(server_item["id"])] == [photos[0]["id"]]

    def test_offline_delete(
        self, http: TestClient, engine: SyncEngine, editor: OfflineEditor
    ) -> None:
        project = create_project(http)
        item = http.post("/api/items", json={"project_id": project["id"], "title": "x"}).json()
        engine.download_project_data([project["id"]])

        editor.delete(EntityType.PUNCHLIST_ITEM, item["id"])
        result = engine.upload_pending_changes()

        assert result.success
        assert http.get(f"/api/items/{item['id']}").status_code == 404

    def test_replayed_create_is_applied_once(
        self,
        http: TestClient,
        api: RemoteAPI,
        engine: SyncEngine,
        editor: OfflineEditor,
        queue: OperationQueue,
    ) -> None:
        """A create whose response was lost is not duplicated on retry."""
        project = create_project(http)
        engine.download_project_data([project["id"]])
        editor.create_punchlist_item(project["id"], "Paint chip")
        op = queue.pending()[0]
        assert op.kind == OperationKind.CREATE

        # First attempt reached the server but the client never saw the answer
        api.create(op.entity_type, op.payload, idempotency_key=op.id)
        result = engine.upload_pending_changes()

        assert result.success
        assert len(http.get(f"/api/projects/{project['id']}/items").json()) == 1

    def test_rejected_operation_is_retried(
        self,
        http: TestClient,
        engine: SyncEngine,
        editor: OfflineEditor,
        queue: OperationQueue,
    ) -> None:
        """An item whose project was deleted server-side keeps failing."""
        project = create_project(http)
        engine.download_project_data([project["id"]])
        editor.create_punchlist_item(project["id"], "Orphan")
        http.delete(f"/api/projects/{project['id']}")

        result = engine.upload_pending_changes()

        assert not result.success
        assert "rejected by server" in result.errors[0]
        assert queue.pending()[0].retry_count == 1


class TestConflicts:
    """Concurrent edits on client and server."""

    def test_newer_server_edit_wins(
        self,
        http: TestClient,
        engine: SyncEngine,
        editor: OfflineEditor,
        store: LocalCacheStore,
        queue: OperationQueue,
    ) -> None:
        project = create_project(http)
        item = http.post("/api/items", json={"project_id": project["id"], "title": "Crack"}).json()
        engine.download_project_data([project["id"]])

        editor.update(EntityType.PUNCHLIST_ITEM, item["id"], {"title": "Crack (client)"})
        http.patch(f"/api/items/{item['id']}", json={"title": "Crack (office)"})

        result = engine.download_project_data([project["id"]])

        assert [c.resolution for c in result.conflicts] == [Resolution.REMOTE]
        assert len(queue) == 0
        cached = store.get(EntityType.PUNCHLIST_ITEM, item["id"])
        assert cached is not None
        assert cached["title"] == "Crack (office)"

    def test_newer_client_edit_is_uploaded(
        self,
        http: TestClient,
        engine: SyncEngine,
        editor: OfflineEditor,
    ) -> None:
        project = create_project(http)
        item = http.post("/api/items", json={"project_id": project["id"], "title": "Crack"}).json()
        engine.download_project_data([project["id"]])

        http.patch(f"/api/items/{item['id']}", json={"title": "Crack (office)"})
        editor.update(EntityType.PUNCHLIST_ITEM, item["id"], {"title": "Crack (client)"})

        download = engine.download_project_data([project["id"]])
        upload = engine.upload_pending_changes()

        assert [c.resolution for c in download.conflicts] == [Resolution.LOCAL]
        assert upload.uploaded == 1
        assert http.get(f"/api/items/{item['id']}").json()["title"] == "Crack (client)"


class TestOffline:
    """Behavior without a reachable server."""

    def test_edits_survive_failed_upload(
        self, store: LocalCacheStore, queue: OperationQueue, editor: OfflineEditor
    ) -> None:
        store.put(EntityType.PROJECT, {"id": "p1", "name": "Tower A"})
        editor.create_punchlist_item("p1", "Crack")
        engine = SyncEngine(
            unreachable_api(), store, queue, settings=SyncSettings(fetch_retries=0)
        )

        upload = engine.upload_pending_changes()
        download = engine.download_project_data(["p1"])

        assert not upload.success
        assert "unreachable" in upload.errors[0]
        assert len(queue) == 1
        assert queue.pending()[0].retry_count == 0
        assert not download.success
        assert len(store.project_items("p1")) == 1

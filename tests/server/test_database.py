"""Tests for the server database."""

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from punchlist.core.types import EntityType
from punchlist.server.database import Database, InvalidReferenceError


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def project_id(db: Database) -> str:
    project, _ = db.create(EntityType.PROJECT, {"name": "Tower A"})
    return str(project.id)


class TestDatabaseCreation:
    """Tests for database initialization."""

    def test_creates_db_file(self, tmp_path: Path) -> None:
        """Database should create SQLite file."""
        db_path = tmp_path / "nested" / "test.db"
        db = Database(db_path)
        assert db_path.exists()
        db.close()

    def test_uses_wal_mode(self, db: Database) -> None:
        """Database should use WAL mode for concurrency."""
        with db._engine.connect() as conn:
            result = conn.exec_driver_sql("PRAGMA journal_mode").fetchone()
        assert result is not None
        assert result[0].lower() == "wal"


class TestCreate:
    """Tests for entity creation."""

    def test_assigns_id_and_timestamps(self, db: Database) -> None:
        project, created = db.create(EntityType.PROJECT, {"id": "offline_1", "name": "Tower A"})

        assert created is True
        assert project.id != "offline_1"
        assert project.created_at is not None
        assert project.status == "planning"

    def test_idempotent_replay(self, db: Database, project_id: str) -> None:
        """A replayed key returns the first entity instead of a duplicate."""
        data = {"project_id": project_id, "title": "Crack"}
        first, created_first = db.create(EntityType.PUNCHLIST_ITEM, data, idempotency_key="op_1")
        second, created_second = db.create(EntityType.PUNCHLIST_ITEM, data, idempotency_key="op_1")

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert len(db.list_items(project_id)) == 1

    def test_unknown_reference(self, db: Database) -> None:
        with pytest.raises(InvalidReferenceError) as excinfo:
            db.create(EntityType.PUNCHLIST_ITEM, {"project_id": "nope", "title": "Crack"})
        assert excinfo.value.field == "project_id"

    def test_duplicate_email(self, db: Database) -> None:
        user = {"email": "ann@site.test", "first_name": "Ann", "last_name": "Lee"}
        db.create(EntityType.USER, user)
        with pytest.raises(IntegrityError):
            db.create(EntityType.USER, user)

    def test_assigned_users(self, db: Database) -> None:
        user, _ = db.create(
            EntityType.USER, {"email": "bo@site.test", "first_name": "Bo", "last_name": "Kim"}
        )
        project, _ = db.create(
            EntityType.PROJECT, {"name": "Annex", "assigned_user_ids": [user.id]}
        )
        assert [u.id for u in project.assigned_users] == [user.id]


class TestUpdate:
    """Tests for partial updates."""

    def test_update_touches_updated_at(self, db: Database, project_id: str) -> None:
        before = db.get(EntityType.PROJECT, project_id)
        after = db.update(EntityType.PROJECT, project_id, {"city": "Lyon"})

        assert after is not None
        assert after.city == "Lyon"
        assert after.name == "Tower A"
        assert after.updated_at > before.updated_at

    def test_update_missing(self, db: Database) -> None:
        assert db.update(EntityType.PROJECT, "nope", {"name": "x"}) is None

    def test_completion_timestamp(self, db: Database, project_id: str) -> None:
        """completed_at follows the item status."""
        item, _ = db.create(EntityType.PUNCHLIST_ITEM, {"project_id": project_id, "title": "Crack"})
        assert item.completed_at is None

        done = db.update(EntityType.PUNCHLIST_ITEM, item.id, {"status": "completed"})
        assert done is not None
        assert done.completed_at is not None

        reopened = db.update(EntityType.PUNCHLIST_ITEM, item.id, {"status": "open"})
        assert reopened is not None
        assert reopened.completed_at is None


class TestDelete:
    """Tests for deletion."""

    def test_cascades_to_children(self, db: Database, project_id: str) -> None:
        item, _ = db.create(EntityType.PUNCHLIST_ITEM, {"project_id": project_id, "title": "Crack"})
        photo, _ = db.create(EntityType.PHOTO, {"punchlist_item_id": item.id, "url": "x.jpg"})
        db.create_note(item.id, "Check again Monday")

        assert db.delete(EntityType.PROJECT, project_id) is True

        assert db.get(EntityType.PUNCHLIST_ITEM, item.id) is None
        assert db.get(EntityType.PHOTO, photo.id) is None
        assert db.list_notes(item.id) == []

    def test_delete_missing(self, db: Database) -> None:
        assert db.delete(EntityType.PHOTO, "nope") is False


class TestNotes:
    """Tests for item notes."""

    def test_create_and_list(self, db: Database, project_id: str) -> None:
        item, _ = db.create(EntityType.PUNCHLIST_ITEM, {"project_id": project_id, "title": "Crack"})
        db.create_note(item.id, "first")
        db.create_note(item.id, "second")

        assert [n.content for n in db.list_notes(item.id)] == ["first", "second"]

    def test_note_on_missing_item(self, db: Database) -> None:
        with pytest.raises(InvalidReferenceError):
            db.create_note("nope", "orphan")

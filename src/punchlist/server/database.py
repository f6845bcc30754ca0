"""Server database using SQLAlchemy with SQLite.

This module provides:
- CRUD for projects, punchlist items, photos and users
- Notes on punchlist items
- Idempotent creates keyed by the client's operation id
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, selectinload

from punchlist.core.types import EntityType, ItemStatus
from punchlist.server.models import (
    AppliedOperation,
    Base,
    Note,
    Photo,
    Project,
    PunchlistItem,
    User,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# ORM model backing each synchronized entity type
ENTITY_MODELS: dict[EntityType, type[Base]] = {
    EntityType.PROJECT: Project,
    EntityType.PUNCHLIST_ITEM: PunchlistItem,
    EntityType.PHOTO: Photo,
    EntityType.USER: User,
}

# Foreign-key fields checked before writing: field -> referenced model
_REFERENCES: dict[type[Base], dict[str, type[Base]]] = {
    Project: {"created_by": User},
    PunchlistItem: {"project_id": Project, "assigned_to": User, "created_by": User},
    Photo: {"punchlist_item_id": PunchlistItem},
    Note: {"punchlist_item_id": PunchlistItem, "created_by": User},
}

_DONE_STATUSES = {ItemStatus.COMPLETED.value, ItemStatus.VERIFIED.value}


class InvalidReferenceError(Exception):
    """Raised when a write references an entity that does not exist."""

    def __init__(self, field: str, value: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"{field} references unknown id {value}")


class Database:
    """SQLAlchemy database for punchlist data.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # Enable WAL mode
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    @staticmethod
    def _detach(session: Session, obj: Any) -> Any:
        """Reload ``obj`` and detach it from the session."""
        session.refresh(obj)
        if isinstance(obj, Project):
            # Loaded here, used by responses after the session closes
            _ = obj.assigned_users
        session.expunge(obj)
        return obj

    def _apply(self, session: Session, obj: Any, data: dict[str, Any]) -> None:
        """Copy ``data`` onto a model instance after checking references."""
        for field, target in _REFERENCES.get(type(obj), {}).items():
            value = data.get(field)
            if value is not None and session.get(target, value) is None:
                raise InvalidReferenceError(field, value)

        for key, value in data.items():
            if key == "assigned_user_ids":
                users = [session.get(User, uid) for uid in value]
                for uid, user in zip(value, users, strict=True):
                    if user is None:
                        raise InvalidReferenceError("assigned_user_ids", uid)
                obj.assigned_users = users
            elif key not in ("id", "created_at", "updated_at"):
                setattr(obj, key, value)

        if isinstance(obj, PunchlistItem) and "status" in data:
            if obj.status in _DONE_STATUSES:
                obj.completed_at = obj.completed_at or datetime.now(UTC)
            else:
                obj.completed_at = None

    # === Generic entity operations ===

    def create(
        self,
        entity_type: EntityType,
        data: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> tuple[Any, bool]:
        """Create an entity.

        Args:
            entity_type: Collection to create in.
            data: Field values.
            idempotency_key: Key of the client operation; a replayed key
                returns the entity created the first time.

        Returns:
            Tuple of (entity, created). ``created`` is False on a replay.

        Raises:
            InvalidReferenceError: If a referenced entity does not exist.
            IntegrityError: If a unique constraint is violated.
        """
        model = ENTITY_MODELS[EntityType(entity_type)]
        with self._session() as session:
            if idempotency_key:
                applied = session.get(AppliedOperation, idempotency_key)
                if applied is not None:
                    existing = session.get(model, applied.entity_id)
                    if existing is not None:
                        logger.info("Replayed create %s -> %s", idempotency_key, existing.id)
                        return self._detach(session, existing), False

            obj = model()
            self._apply(session, obj, data)
            session.add(obj)
            session.flush()
            if idempotency_key:
                session.merge(
                    AppliedOperation(
                        key=idempotency_key,
                        entity_type=EntityType(entity_type).value,
                        entity_id=obj.id,
                    )
                )
            session.commit()
            return self._detach(session, obj), True

    def get(self, entity_type: EntityType, entity_id: str) -> Any | None:
        """Get an entity by id.

        Returns:
            The entity if found, None otherwise.
        """
        model = ENTITY_MODELS[EntityType(entity_type)]
        with self._session() as session:
            obj = session.get(model, entity_id)
            if obj is None:
                return None
            return self._detach(session, obj)

    def update(
        self,
        entity_type: EntityType,
        entity_id: str,
        changes: dict[str, Any],
    ) -> Any | None:
        """Apply a partial update.

        Returns:
            The updated entity, or None if it does not exist.

        Raises:
            InvalidReferenceError: If a referenced entity does not exist.
        """
        model = ENTITY_MODELS[EntityType(entity_type)]
        with self._session() as session:
            obj = session.get(model, entity_id)
            if obj is None:
                return None
            self._apply(session, obj, changes)
            # Touch even when no column changed so clients see a new version
            obj.updated_at = datetime.now(UTC)
            session.commit()
            return self._detach(session, obj)

    def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        """Delete an entity and its dependents.

        Returns:
            True if deleted, False if not found.
        """
        model = ENTITY_MODELS[EntityType(entity_type)]
        with self._session() as session:
            obj = session.get(model, entity_id)
            if obj is None:
                return False
            session.delete(obj)
            session.commit()
            return True

    # === Listings ===

    def list_projects(self) -> list[Project]:
        with self._session() as session:
            stmt = (
                select(Project)
                .options(selectinload(Project.assigned_users))
                .order_by(Project.created_at)
            )
            projects = list(session.execute(stmt).scalars())
            for project in projects:
                session.expunge(project)
            return projects

    def list_items(self, project_id: str) -> list[PunchlistItem]:
        """List the punchlist items of a project."""
        with self._session() as session:
            stmt = (
                select(PunchlistItem)
                .where(PunchlistItem.project_id == project_id)
                .order_by(PunchlistItem.created_at)
            )
            items = list(session.execute(stmt).scalars())
            for item in items:
                session.expunge(item)
            return items

    def list_photos(self, item_id: str) -> list[Photo]:
        """List the photos of a punchlist item."""
        with self._session() as session:
            stmt = (
                select(Photo)
                .where(Photo.punchlist_item_id == item_id)
                .order_by(Photo.created_at)
            )
            photos = list(session.execute(stmt).scalars())
            for photo in photos:
                session.expunge(photo)
            return photos

    def list_users(self) -> list[User]:
        with self._session() as session:
            stmt = select(User).order_by(User.created_at)
            users = list(session.execute(stmt).scalars())
            for user in users:
                session.expunge(user)
            return users

    # === Notes ===

    def create_note(self, item_id: str, content: str, created_by: str | None = None) -> Note:
        """Add a note to a punchlist item.

        Raises:
            InvalidReferenceError: If the item or author does not exist.
        """
        with self._session() as session:
            note = Note()
            self._apply(
                session,
                note,
                {"punchlist_item_id": item_id, "content": content, "created_by": created_by},
            )
            session.add(note)
            session.commit()
            return self._detach(session, note)

    def list_notes(self, item_id: str) -> list[Note]:
        with self._session() as session:
            stmt = select(Note).where(Note.punchlist_item_id == item_id).order_by(Note.created_at)
            notes = list(session.execute(stmt).scalars())
            for note in notes:
                session.expunge(note)
            return notes

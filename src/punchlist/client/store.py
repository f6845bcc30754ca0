"""Local cache store for the offline client.

This module provides:
- LocalCacheStore: SQLite-based document cache of projects, punchlist
  items, photos and users mirroring server state
- CachedEntity: a cached document with its sync bookkeeping

Architecture:
    Each entity is stored as a JSON document keyed by (entity_type, id),
    with its parent id and timestamps lifted into columns for lookups.
    ``synced_at`` holds the server ``updated_at`` last confirmed for the
    entity and is the baseline for conflict detection.

    The operation queue shares this connection and lock, so that an
    optimistic local write and its queue append commit together inside
    ``transaction()``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from punchlist.core.types import (
    EntityType,
    children_of,
    format_timestamp,
    parent_id_of,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass
class CachedEntity:
    """A cached entity document.

    Attributes:
        entity_type: Collection of the entity.
        id: Entity id (provisional ``offline_*`` until the server assigns one).
        data: The entity document.
        parent_id: Project id for items, item id for photos.
        updated_at: ``updated_at`` of the document.
        synced_at: Server ``updated_at`` last confirmed, or None if never synced.
        cached_at: Unix timestamp of the last local write.
    """

    entity_type: EntityType
    id: str
    data: dict[str, Any]
    parent_id: str | None
    updated_at: datetime | None
    synced_at: datetime | None
    cached_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CachedEntity:
        """Create CachedEntity from database row."""
        return cls(
            entity_type=EntityType(row["entity_type"]),
            id=row["entity_id"],
            data=json.loads(row["data"]),
            parent_id=row["parent_id"],
            updated_at=parse_timestamp(row["updated_at"]),
            synced_at=parse_timestamp(row["synced_at"]),
            cached_at=row["cached_at"],
        )


class LocalCacheStore:
    """SQLite-based local cache shared by the sync engine and queue."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the local cache database.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests).
        """
        self._db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self._db_path, Path):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Re-entrant: queue methods run inside store transactions
        self._lock = threading.RLock()
        self._tx_depth = 0

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode, explicit BEGIN in transaction()
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS entities (
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                parent_id TEXT,
                data TEXT NOT NULL,
                updated_at TEXT,
                synced_at TEXT,
                cached_at REAL NOT NULL,
                PRIMARY KEY (entity_type, entity_id)
            );
            CREATE INDEX IF NOT EXISTS idx_entities_parent
                ON entities (entity_type, parent_id);

            -- Conflicts waiting for a manual decision
            CREATE TABLE IF NOT EXISTS conflicts (
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                local_data TEXT,
                remote_data TEXT NOT NULL,
                local_updated_at TEXT,
                remote_updated_at TEXT,
                detected_at REAL NOT NULL,
                PRIMARY KEY (entity_type, entity_id)
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    @property
    def connection(self) -> sqlite3.Connection:
        """Shared connection (used by the operation queue)."""
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        """Shared lock serializing every cache and queue write."""
        return self._lock

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> LocalCacheStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed writes as one SQLite transaction.

        Nested calls join the outermost transaction. Any exception rolls
        back every write made inside the outermost block.
        """
        with self._lock:
            if self._tx_depth > 0:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._tx_depth = 0

    # === Entity operations ===

    def put(
        self,
        entity_type: EntityType,
        data: dict[str, Any],
        synced_at: datetime | str | None = None,
    ) -> CachedEntity:
        """Insert or replace a cached entity (upsert).

        Args:
            entity_type: Collection of the entity.
            data: Entity document; must contain an ``id``.
            synced_at: Server ``updated_at`` confirmed by this write. When
                omitted, the previous sync baseline is kept.

        Returns:
            The stored entity.
        """
        entity_type = EntityType(entity_type)
        if not data.get("id"):
            raise ValueError(f"Cannot cache {entity_type.value} without an id")

        entity_id = str(data["id"])
        updated_at = parse_timestamp(data.get("updated_at"))
        synced = parse_timestamp(synced_at)
        now = time.time()

        with self._lock:
            if synced is None:
                synced = self.get_synced_at(entity_type, entity_id)
            self._conn.execute(
                """
                INSERT OR REPLACE INTO entities (
                    entity_type, entity_id, parent_id, data, updated_at, synced_at, cached_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entity_type.value,
                    entity_id,
                    parent_id_of(entity_type, data),
                    json.dumps(data),
                    format_timestamp(updated_at) if updated_at else None,
                    format_timestamp(synced) if synced else None,
                    now,
                ),
            )

        return CachedEntity(
            entity_type=entity_type,
            id=entity_id,
            data=dict(data),
            parent_id=parent_id_of(entity_type, data),
            updated_at=updated_at,
            synced_at=synced,
            cached_at=now,
        )

    def get_entity(self, entity_type: EntityType, entity_id: str) -> CachedEntity | None:
        """Get a cached entity with its bookkeeping."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT * FROM entities WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return CachedEntity.from_row(row)

    def get(self, entity_type: EntityType, entity_id: str) -> dict[str, Any] | None:
        """Get a cached entity document.

        Returns:
            The document if cached, None otherwise.
        """
        entity = self.get_entity(entity_type, entity_id)
        return entity.data if entity else None

    def list(
        self,
        entity_type: EntityType,
        parent_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List cached documents of a type, optionally under one parent."""
        query = "SELECT data FROM entities WHERE entity_type = ?"
        params: list[Any] = [EntityType(entity_type).value]
        if parent_id is not None:
            query += " AND parent_id = ?"
            params.append(parent_id)
        query += " ORDER BY cached_at, entity_id"

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [json.loads(row["data"]) for row in rows]

    def project_items(self, project_id: str) -> list[dict[str, Any]]:
        """Punchlist items cached for a project."""
        return self.list(EntityType.PUNCHLIST_ITEM, parent_id=project_id)

    def item_photos(self, item_id: str) -> list[dict[str, Any]]:
        """Photos cached for a punchlist item."""
        return self.list(EntityType.PHOTO, parent_id=item_id)

    def count(self, entity_type: EntityType) -> int:
        """Number of cached entities of a type."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM entities WHERE entity_type = ?",
                (EntityType(entity_type).value,),
            ).fetchone()
        return int(row["n"])

    def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        """Remove an entity from the cache.

        Returns:
            True if an entity was removed.
        """
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM entities WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            )
        return cursor.rowcount > 0

    def get_synced_at(self, entity_type: EntityType, entity_id: str) -> datetime | None:
        """Server timestamp last confirmed for an entity."""
        with self._lock:
            row = self._conn.execute(
                "SELECT synced_at FROM entities WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            ).fetchone()
        return parse_timestamp(row["synced_at"]) if row else None

    def mark_synced(
        self,
        entity_type: EntityType,
        entity_id: str,
        synced_at: datetime | str,
    ) -> None:
        """Record the server timestamp confirmed for an entity."""
        value = parse_timestamp(synced_at)
        with self._lock:
            self._conn.execute(
                "UPDATE entities SET synced_at = ? WHERE entity_type = ? AND entity_id = ?",
                (
                    format_timestamp(value) if value else None,
                    EntityType(entity_type).value,
                    entity_id,
                ),
            )

    def rekey(self, entity_type: EntityType, old_id: str, new_id: str) -> None:
        """Replace a provisional id with the server-assigned one.

        Children referencing the old id (items of a project, photos of an
        item) are rewritten to reference the new id.
        """
        entity_type = EntityType(entity_type)
        with self.transaction():
            entity = self.get_entity(entity_type, old_id)
            if entity is not None:
                self._conn.execute(
                    "DELETE FROM entities WHERE entity_type = ? AND entity_id = ?",
                    (entity_type.value, old_id),
                )
                data = dict(entity.data, id=new_id)
                self.put(entity_type, data, synced_at=entity.synced_at)

            for child_type, field in children_of(entity_type):
                for child in self.list(child_type, parent_id=old_id):
                    child[field] = new_id
                    self.put(child_type, child)

        logger.debug("Rekeyed %s %s -> %s", entity_type.value, old_id, new_id)

    def remove_stale(
        self,
        entity_type: EntityType,
        cutoff: datetime,
        keep: set[str] | None = None,
    ) -> int:
        """Remove entities whose ``updated_at`` is older than ``cutoff``.

        Args:
            entity_type: Collection to prune.
            cutoff: Entities updated before this moment are removed.
            keep: Entity ids that must survive (pending work).

        Returns:
            Number of entities removed.
        """
        keep = keep or set()
        removed = 0
        with self.transaction():
            rows = self._conn.execute(
                "SELECT entity_id, updated_at FROM entities WHERE entity_type = ?",
                (EntityType(entity_type).value,),
            ).fetchall()
            for row in rows:
                updated_at = parse_timestamp(row["updated_at"])
                if updated_at is None or updated_at >= cutoff:
                    continue
                if row["entity_id"] in keep:
                    continue
                self.delete(entity_type, row["entity_id"])
                removed += 1
        return removed

    # === Conflicts awaiting manual resolution ===

    def save_conflict(
        self,
        entity_type: EntityType,
        entity_id: str,
        local_data: dict[str, Any] | None,
        remote_data: dict[str, Any],
        local_updated_at: datetime | None,
        remote_updated_at: datetime | None,
    ) -> None:
        """Persist a conflict that needs a manual decision (upsert)."""
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO conflicts (
                    entity_type, entity_id, local_data, remote_data,
                    local_updated_at, remote_updated_at, detected_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    EntityType(entity_type).value,
                    entity_id,
                    json.dumps(local_data) if local_data is not None else None,
                    json.dumps(remote_data),
                    format_timestamp(local_updated_at) if local_updated_at else None,
                    format_timestamp(remote_updated_at) if remote_updated_at else None,
                    time.time(),
                ),
            )

    def get_conflict(
        self, entity_type: EntityType, entity_id: str
    ) -> dict[str, Any] | None:
        """Get a stored conflict as a plain mapping."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM conflicts WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            ).fetchone()
        return self._conflict_from_row(row) if row else None

    def list_conflicts(self) -> list[dict[str, Any]]:
        """List stored conflicts, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM conflicts ORDER BY detected_at"
            ).fetchall()
        return [self._conflict_from_row(row) for row in rows]

    def has_conflict(self, entity_type: EntityType, entity_id: str) -> bool:
        return self.get_conflict(entity_type, entity_id) is not None

    def remove_conflict(self, entity_type: EntityType, entity_id: str) -> bool:
        """Drop a stored conflict once it is resolved."""
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM conflicts WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            )
        return cursor.rowcount > 0

    @staticmethod
    def _conflict_from_row(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "entity_type": EntityType(row["entity_type"]),
            "entity_id": row["entity_id"],
            "local_data": json.loads(row["local_data"]) if row["local_data"] else None,
            "remote_data": json.loads(row["remote_data"]),
            "local_updated_at": parse_timestamp(row["local_updated_at"]),
            "remote_updated_at": parse_timestamp(row["remote_updated_at"]),
            "detected_at": row["detected_at"],
        }

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync_time(self) -> datetime | None:
        """Get time of the last completed download pass."""
        return parse_timestamp(self.get_state("last_sync_time"))

    def set_last_sync_time(self, value: datetime | float) -> None:
        """Set time of the last completed download pass."""
        self.set_state("last_sync_time", format_timestamp(value))

"""Conflict detection and resolution for downloaded entities.

This module provides:
- ConflictState, Resolution: Conflict lifecycle enums
- Conflict: Local and remote versions of one entity
- detect_conflict: Compare a downloaded entity with local pending work
- ConflictPolicy and its implementations (last-write-wins, server-wins,
  client-wins)

A conflict exists when an entity has pending local operations AND its
remote ``updated_at`` is newer than the timestamp confirmed at the last
sync. It starts DETECTED and ends RESOLVED (local or remote wins) or
PENDING_MANUAL, in which case the engine persists it and holds the
entity's operations until a user decides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from punchlist.client.store import LocalCacheStore
from punchlist.client.sync.queue import OperationQueue
from punchlist.core.types import EntityType, OperationKind, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# Fields maintained by the server, ignored when comparing content
_BOOKKEEPING_FIELDS = frozenset({"updated_at", "created_at"})


class ConflictState(str, Enum):
    DETECTED = "detected"
    RESOLVED = "resolved"
    PENDING_MANUAL = "pending_manual"


class Resolution(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


@dataclass
class Conflict:
    """Local and remote versions of an entity that both changed.

    Attributes:
        entity_type: Collection of the entity.
        entity_id: Id of the entity.
        local_data: Cached document, or None when the local change is a delete.
        remote_data: Document returned by the server.
        local_updated_at: Time of the local change.
        remote_updated_at: ``updated_at`` reported by the server.
        state: Position in the conflict lifecycle.
        resolution: Winning side once decided.
    """

    entity_type: EntityType
    entity_id: str
    local_data: dict[str, Any] | None
    remote_data: dict[str, Any]
    local_updated_at: datetime | None
    remote_updated_at: datetime | None
    state: ConflictState = ConflictState.DETECTED
    resolution: Resolution | None = None
    detected_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Conflict:
        """Rebuild a persisted manual conflict (see LocalCacheStore.get_conflict)."""
        return cls(
            entity_type=EntityType(record["entity_type"]),
            entity_id=record["entity_id"],
            local_data=record["local_data"],
            remote_data=record["remote_data"],
            local_updated_at=record["local_updated_at"],
            remote_updated_at=record["remote_updated_at"],
            state=ConflictState.PENDING_MANUAL,
            resolution=Resolution.MANUAL,
            detected_at=datetime.fromtimestamp(record["detected_at"], UTC),
        )

    @property
    def is_local_delete(self) -> bool:
        return self.local_data is None

    def apply(self, resolution: Resolution) -> Conflict:
        """Record a resolution and move to the matching state."""
        self.resolution = Resolution(resolution)
        if self.resolution == Resolution.MANUAL:
            self.state = ConflictState.PENDING_MANUAL
        else:
            self.state = ConflictState.RESOLVED
        return self

    def __str__(self) -> str:
        return f"Conflict on {self.entity_type.value} {self.entity_id} ({self.state.value})"


def _same_content(local: dict[str, Any] | None, remote: dict[str, Any]) -> bool:
    if local is None:
        return False
    keys = (set(local) | set(remote)) - _BOOKKEEPING_FIELDS
    return all(local.get(k) == remote.get(k) for k in keys)


def detect_conflict(
    store: LocalCacheStore,
    queue: OperationQueue,
    entity_type: EntityType,
    remote: dict[str, Any],
) -> Conflict | None:
    """Check a downloaded entity against pending local changes.

    Args:
        store: Cache holding the local version and its sync baseline.
        queue: Queue holding the pending operations.
        entity_type: Collection of the downloaded entity.
        remote: Document returned by the server.

    Returns:
        A DETECTED conflict, or None if the remote version can be cached.
    """
    entity_id = str(remote["id"])
    pending = queue.for_entity(entity_type, entity_id)
    if not pending:
        return None

    remote_updated_at = parse_timestamp(remote.get("updated_at"))
    synced_at = store.get_synced_at(entity_type, entity_id)
    if (
        synced_at is not None
        and remote_updated_at is not None
        and remote_updated_at <= synced_at
    ):
        # Remote unchanged since last sync; only the local side moved
        return None

    last = pending[-1]
    if last.kind == OperationKind.DELETE:
        local_data = None
        local_updated_at = datetime.fromtimestamp(last.enqueued_at, UTC)
    else:
        local_data = store.get(entity_type, entity_id)
        local_updated_at = parse_timestamp((local_data or {}).get("updated_at"))

    conflict = Conflict(
        entity_type=EntityType(entity_type),
        entity_id=entity_id,
        local_data=local_data,
        remote_data=remote,
        local_updated_at=local_updated_at,
        remote_updated_at=remote_updated_at,
    )
    logger.info("%s detected", conflict)
    return conflict


class ConflictPolicy(Protocol):
    """Decides which side of a conflict wins."""

    def resolve(self, conflict: Conflict) -> Resolution:
        ...


class LastWriteWinsPolicy:
    """The most recently updated version wins.

    Equal or missing timestamps with differing content cannot be ordered
    and are left for a manual decision.
    """

    def resolve(self, conflict: Conflict) -> Resolution:
        local = conflict.local_updated_at
        remote = conflict.remote_updated_at
        if local is not None and remote is not None:
            if local > remote:
                return Resolution.LOCAL
            if remote > local:
                return Resolution.REMOTE
        if _same_content(conflict.local_data, conflict.remote_data):
            return Resolution.REMOTE
        return Resolution.MANUAL


class ServerWinsPolicy:
    """The remote version always wins."""

    def resolve(self, conflict: Conflict) -> Resolution:
        return Resolution.REMOTE


class ClientWinsPolicy:
    """Local changes always win."""

    def resolve(self, conflict: Conflict) -> Resolution:
        return Resolution.LOCAL


POLICIES: dict[str, type[ConflictPolicy]] = {
    "last-write-wins": LastWriteWinsPolicy,
    "server-wins": ServerWinsPolicy,
    "client-wins": ClientWinsPolicy,
}

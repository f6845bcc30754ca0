"""Shared types and dataclasses for offline sync.

This module provides:
- SyncError and its subclasses: the sync error taxonomy
- OperationStatus, Operation: queued local mutations
- SyncProgress: Progress reported by a download pass
- SyncResult, UploadResult: Terminal results of a pull/push pass
- SyncStatus, CleanupResult: Status and maintenance reports
- Type aliases for callbacks
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from punchlist.core.types import EntityType, OperationKind, SyncStage, SyncState

if TYPE_CHECKING:
    from punchlist.client.sync.conflicts import Conflict


class SyncError(Exception):
    """Base exception for sync errors."""


class SyncAlreadyInProgressError(SyncError):
    """A pass of the same direction is already running."""

    def __init__(self, direction: str) -> None:
        self.direction = direction
        super().__init__(f"Sync already in progress ({direction})")


class EntityNotFoundError(SyncError):
    """A local mutation targeted an entity missing from the cache."""

    def __init__(self, entity_type: EntityType, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{EntityType(entity_type).value} {entity_id} is not cached")


class OperationError(SyncError):
    """Failure tied to one queued operation."""

    reason = "failed"

    def __init__(
        self,
        entity_type: EntityType,
        entity_id: str,
        detail: str = "",
    ) -> None:
        self.entity_type = EntityType(entity_type)
        self.entity_id = entity_id
        self.detail = detail
        message = f"{self.entity_type.value} {entity_id} {self.reason}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RemoteRejectedError(OperationError):
    """The server rejected an operation; it will be retried."""

    reason = "rejected by server"


class RetryExhaustedError(OperationError):
    """An operation failed more than its retry budget allows."""

    reason = "failed permanently after exhausting retries"


class ConflictUnresolvedError(OperationError):
    """An operation is held until a manual conflict is resolved."""

    reason = "held by an unresolved conflict"


class OperationStatus(str, Enum):
    """Lifecycle state of a queued operation."""

    PENDING = "pending"
    FAILED = "failed"  # Terminal: retries exhausted


@dataclass
class Operation:
    """A local mutation waiting to be uploaded.

    Attributes:
        id: Unique identifier, stable across retries (also the idempotency key)
        kind: CREATE, UPDATE or DELETE
        entity_type: Collection the entity belongs to
        entity_id: Id of the targeted entity
        payload: Full document (CREATE), patch (UPDATE) or {"id": ...} (DELETE)
        enqueued_at: Unix timestamp of the local mutation
        retry_count: Failed attempts so far
        max_retries: Retries allowed before the operation becomes terminal
        status: PENDING or FAILED
        last_error: Message of the most recent failure
        next_attempt_at: Unix timestamp before which the operation is not retried
        seq: Queue position (assigned on enqueue)
    """

    id: str
    kind: OperationKind
    entity_type: EntityType
    entity_id: str
    payload: dict[str, Any]
    enqueued_at: float
    retry_count: int = 0
    max_retries: int = 3
    status: OperationStatus = OperationStatus.PENDING
    last_error: str | None = None
    next_attempt_at: float = 0.0
    seq: int | None = None

    @classmethod
    def create(
        cls,
        kind: OperationKind,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any],
        max_retries: int = 3,
        enqueued_at: float | None = None,
    ) -> Operation:
        """Create a new operation with an auto-generated id and timestamp."""
        return cls(
            id=f"op_{uuid.uuid4().hex}",
            kind=OperationKind(kind),
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            payload=dict(payload),
            enqueued_at=time.time() if enqueued_at is None else enqueued_at,
            max_retries=max_retries,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Operation:
        """Create Operation from database row."""
        return cls(
            id=row["id"],
            kind=OperationKind(row["kind"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            payload=json.loads(row["payload"]),
            enqueued_at=row["enqueued_at"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            status=OperationStatus(row["status"]),
            last_error=row["last_error"],
            next_attempt_at=row["next_attempt_at"],
            seq=row["seq"],
        )

    @property
    def key(self) -> tuple[EntityType, str]:
        """Identity of the targeted entity."""
        return (self.entity_type, self.entity_id)

    @property
    def retries_left(self) -> bool:
        """True if one more failure would still be retried."""
        return self.retry_count < self.max_retries

    def is_due(self, now: float) -> bool:
        """Check whether the backoff delay has elapsed."""
        return self.next_attempt_at <= now

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"Operation({self.kind.value} {self.entity_type.value} "
            f"{self.entity_id!r}, retry={self.retry_count}/{self.max_retries})"
        )


@dataclass(frozen=True)
class SyncProgress:
    """Progress information for a download pass.

    ``current`` never decreases within a pass; ``total`` grows as work
    is discovered (item counts are only known once projects are fetched).
    """

    current: int
    total: int
    stage: SyncStage
    message: str

    @property
    def percent(self) -> float:
        """Get progress percentage."""
        if self.total == 0:
            return 100.0
        return (self.current / self.total) * 100


# Type alias for progress callback
ProgressCallback = Callable[[SyncProgress], None]


@dataclass(frozen=True)
class SyncResult:
    """Result of a download pass. Frozen once returned."""

    projects_downloaded: int = 0
    punchlist_items_downloaded: int = 0
    photos_downloaded: int = 0
    users_downloaded: int = 0
    errors: tuple[str, ...] = ()
    conflicts: tuple[Conflict, ...] = ()
    superseded: tuple[str, ...] = ()
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True if the pass completed without errors."""
        return not self.errors and not self.cancelled

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return len(self.conflicts) > 0


@dataclass(frozen=True)
class UploadResult:
    """Result of an upload pass.

    Attributes:
        uploaded: Operations acknowledged by the server
        errors: One message per failed, held or not-yet-due operation
        failed: Operations that became terminal during this pass
        deferred: Operations left untouched to preserve per-entity order
        cancelled: True if the pass stopped on a cancellation request
    """

    uploaded: int = 0
    errors: tuple[str, ...] = ()
    failed: tuple[Operation, ...] = ()
    deferred: int = 0
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True iff no operation reported an error."""
        return not self.errors


@dataclass
class SyncStatus:
    """Snapshot of the offline sync state for display."""

    pending_operations: int
    failed_operations: int
    pending_conflicts: int
    last_sync_time: datetime | None
    is_online: bool | None
    sync_in_progress: bool

    @property
    def state(self) -> SyncState:
        """Overall state for display; offline takes precedence."""
        if self.is_online is False:
            return SyncState.OFFLINE
        if self.sync_in_progress:
            return SyncState.SYNCING
        if self.failed_operations or self.pending_conflicts:
            return SyncState.ERROR
        return SyncState.IDLE


@dataclass
class CleanupResult:
    """Counts of cached entities removed by a cleanup."""

    projects_removed: int = 0
    items_removed: int = 0
    photos_removed: int = 0

    @property
    def total(self) -> int:
        return self.projects_removed + self.items_removed + self.photos_removed

"""Persistent operation queue for offline mutations.

This module provides:
- OperationQueue: Durable FIFO of local mutations awaiting upload

Operation types (Operation, OperationStatus) are in types.py.

Ordering:
    Operations drain in global enqueue order (the ``seq`` column), which
    implies per-entity order: an UPDATE never precedes the CREATE of the
    same entity.

Coalescing:
    An UPDATE is merged into the entity's most recent queued operation
    when that operation is itself a PENDING UPDATE not currently being
    uploaded. Fields of the newer patch win; the merged operation keeps
    its id, position and retry count. CREATE and DELETE are never merged.

Persistence (SQLite):
    The queue lives in the cache database and shares its connection and
    lock, so ``LocalCacheStore.transaction()`` covers both the optimistic
    cache write and the queue append.

Failure handling:
    A failed operation stays in place with its retry count incremented
    until it fails more than ``max_retries`` times. It then becomes
    FAILED: it leaves the pending queue but is kept for inspection and
    ``requeue_failed``.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from punchlist.client.store import LocalCacheStore
from punchlist.client.sync.types import Operation, OperationStatus
from punchlist.core.types import EntityType, OperationKind, children_of

logger = logging.getLogger(__name__)


class OperationQueue:
    """Durable, ordered queue of pending local mutations.

    Attributes:
        store: Cache store whose database holds the queue.
    """

    def __init__(
        self,
        store: LocalCacheStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the queue.

        Args:
            store: Cache store providing the connection, lock and transactions.
            clock: Time source for retry scheduling (tests inject a fake).
        """
        self.store = store
        self._conn = store.connection
        self._lock = store.lock
        self._clock = clock
        self._in_flight: set[str] = set()
        self._create_table()

    def _create_table(self) -> None:
        """Create the operations table if it doesn't exist."""
        with self._lock:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS operations (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    enqueued_at REAL NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    status TEXT NOT NULL DEFAULT 'pending',
                    last_error TEXT,
                    next_attempt_at REAL NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_operations_entity
                    ON operations (entity_type, entity_id);
                CREATE INDEX IF NOT EXISTS idx_operations_status
                    ON operations (status);
            """)

    # === Enqueue / dequeue ===

    def enqueue(self, op: Operation) -> Operation:
        """Append an operation, coalescing consecutive UPDATEs.

        Args:
            op: The operation to queue.

        Returns:
            The operation as stored: ``op`` itself, or the earlier UPDATE
            it was merged into.
        """
        with self.store.transaction():
            if op.kind == OperationKind.UPDATE:
                last = self._last_pending_for(op.entity_type, op.entity_id)
                if (
                    last is not None
                    and last.kind == OperationKind.UPDATE
                    and last.id not in self._in_flight
                ):
                    last.payload.update(op.payload)
                    self._conn.execute(
                        "UPDATE operations SET payload = ? WHERE id = ?",
                        (json.dumps(last.payload), last.id),
                    )
                    logger.debug("Coalesced %r into %s", op, last.id)
                    return last

            cursor = self._conn.execute(
                """
                INSERT INTO operations (
                    id, kind, entity_type, entity_id, payload, enqueued_at,
                    retry_count, max_retries, status, last_error, next_attempt_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    op.id,
                    op.kind.value,
                    op.entity_type.value,
                    op.entity_id,
                    json.dumps(op.payload),
                    op.enqueued_at,
                    op.retry_count,
                    op.max_retries,
                    op.status.value,
                    op.last_error,
                    op.next_attempt_at,
                ),
            )
            op.seq = cursor.lastrowid

        logger.debug("Enqueued %r", op)
        return op

    def dequeue_succeeded(self, op_ids: Iterable[str]) -> int:
        """Remove acknowledged operations in one transaction.

        Returns:
            Number of operations removed.
        """
        ids = list(op_ids)
        if not ids:
            return 0
        removed = 0
        with self.store.transaction():
            for op_id in ids:
                cursor = self._conn.execute("DELETE FROM operations WHERE id = ?", (op_id,))
                removed += cursor.rowcount
                self._in_flight.discard(op_id)
        return removed

    def increment_retry(self, op_id: str, error: str, delay: float = 0.0) -> Operation | None:
        """Record a failed attempt.

        Args:
            op_id: Operation that failed.
            error: Failure message kept as ``last_error``.
            delay: Seconds before the operation is due again.

        Returns:
            The updated operation (status FAILED once it has failed more
            than ``max_retries`` times), or None if it is no longer queued.
        """
        with self.store.transaction():
            op = self.get(op_id)
            if op is None:
                return None

            op.retry_count += 1
            op.last_error = error
            op.next_attempt_at = self._clock() + delay
            if op.retry_count > op.max_retries:
                op.status = OperationStatus.FAILED

            self._conn.execute(
                """
                UPDATE operations
                SET retry_count = ?, last_error = ?, next_attempt_at = ?, status = ?
                WHERE id = ?
                """,
                (op.retry_count, op.last_error, op.next_attempt_at, op.status.value, op_id),
            )

        if op.status == OperationStatus.FAILED:
            logger.warning("Operation %s failed permanently: %s", op_id, error)
        else:
            logger.debug(
                "Operation %s failed (%d/%d), next attempt in %.1fs",
                op_id,
                op.retry_count,
                op.max_retries,
                delay,
            )
        return op

    # === Inspection ===

    def _select(self, where: str = "", params: tuple[Any, ...] = ()) -> list[Operation]:
        query = "SELECT * FROM operations"
        if where:
            query += f" WHERE {where}"
        query += " ORDER BY seq"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [Operation.from_row(row) for row in rows]

    def _last_pending_for(self, entity_type: EntityType, entity_id: str) -> Operation | None:
        ops = self.for_entity(entity_type, entity_id)
        return ops[-1] if ops else None

    def get(self, op_id: str) -> Operation | None:
        """Get an operation (pending or failed) by id."""
        ops = self._select("id = ?", (op_id,))
        return ops[0] if ops else None

    def pending(self) -> list[Operation]:
        """Pending operations in enqueue order."""
        return self._select("status = ?", (OperationStatus.PENDING.value,))

    def failed(self) -> list[Operation]:
        """Terminal-failed operations in enqueue order."""
        return self._select("status = ?", (OperationStatus.FAILED.value,))

    def for_entity(self, entity_type: EntityType, entity_id: str) -> list[Operation]:
        """Pending operations targeting one entity, in enqueue order."""
        return self._select(
            "entity_type = ? AND entity_id = ? AND status = ?",
            (EntityType(entity_type).value, entity_id, OperationStatus.PENDING.value),
        )

    def has_pending(self, entity_type: EntityType, entity_id: str) -> bool:
        return bool(self.for_entity(entity_type, entity_id))

    def entity_keys(self) -> set[tuple[EntityType, str]]:
        """Entities with pending or failed operations."""
        return {op.key for op in self._select()}

    def stats(self) -> dict[str, int]:
        """Get queue statistics."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT status, COUNT(*) AS n FROM operations GROUP BY status"
            ).fetchall()
        counts = {row["status"]: row["n"] for row in rows}
        return {
            "pending": counts.get(OperationStatus.PENDING.value, 0),
            "failed": counts.get(OperationStatus.FAILED.value, 0),
            "in_flight": len(self._in_flight),
        }

    def __len__(self) -> int:
        """Number of pending operations."""
        return self.stats()["pending"]

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.pending())

    # === Maintenance ===

    def requeue_failed(self, op_id: str | None = None) -> int:
        """Return terminal-failed operations to the pending queue.

        The operations keep their original position and get a fresh
        retry budget.

        Args:
            op_id: Operation to revive, or None for all failed operations.

        Returns:
            Number of operations requeued.
        """
        query = (
            "UPDATE operations SET status = ?, retry_count = 0, next_attempt_at = 0 "
            "WHERE status = ?"
        )
        params: list[Any] = [OperationStatus.PENDING.value, OperationStatus.FAILED.value]
        if op_id is not None:
            query += " AND id = ?"
            params.append(op_id)
        with self._lock:
            cursor = self._conn.execute(query, params)
        if cursor.rowcount:
            logger.info("Requeued %d failed operation(s)", cursor.rowcount)
        return cursor.rowcount

    def remap_entity_id(self, entity_type: EntityType, old_id: str, new_id: str) -> int:
        """Follow a server-assigned id into queued operations.

        Rewrites operations targeting the entity and the parent reference
        field of queued child operations (items of a project, photos of
        an item).

        Returns:
            Number of operations rewritten.
        """
        entity_type = EntityType(entity_type)
        changed = 0
        with self.store.transaction():
            for op in self._select("entity_type = ? AND entity_id = ?", (entity_type.value, old_id)):
                if "id" in op.payload:
                    op.payload["id"] = new_id
                self._conn.execute(
                    "UPDATE operations SET entity_id = ?, payload = ? WHERE id = ?",
                    (new_id, json.dumps(op.payload), op.id),
                )
                changed += 1

            for child_type, field in children_of(entity_type):
                for op in self._select("entity_type = ?", (child_type.value,)):
                    if op.payload.get(field) != old_id:
                        continue
                    op.payload[field] = new_id
                    self._conn.execute(
                        "UPDATE operations SET payload = ? WHERE id = ?",
                        (json.dumps(op.payload), op.id),
                    )
                    changed += 1

        if changed:
            logger.debug("Remapped %d operation(s) from %s to %s", changed, old_id, new_id)
        return changed

    def discard_for_entity(self, entity_type: EntityType, entity_id: str) -> list[Operation]:
        """Remove the pending operations of an entity.

        Used when a remote version supersedes local changes.

        Returns:
            The removed operations.
        """
        with self.store.transaction():
            ops = self.for_entity(entity_type, entity_id)
            for op in ops:
                self._conn.execute("DELETE FROM operations WHERE id = ?", (op.id,))
                self._in_flight.discard(op.id)
        return ops

    def mark_in_flight(self, op_id: str) -> None:
        """Flag an operation as being uploaded (no coalescing into it)."""
        with self._lock:
            self._in_flight.add(op_id)

    def clear_in_flight(self, op_id: str) -> None:
        with self._lock:
            self._in_flight.discard(op_id)

    def clear(self) -> int:
        """Drop every queued operation, pending and failed.

        Returns:
            Number of operations removed.
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM operations")
            self._in_flight.clear()
        logger.info("Cleared %d queued operation(s)", cursor.rowcount)
        return cursor.rowcount

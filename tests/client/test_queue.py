"""Tests for the persistent operation queue."""

from __future__ import annotations

from pathlib import Path

from punchlist.client.store import LocalCacheStore
from punchlist.client.sync.queue import OperationQueue
from punchlist.client.sync.types import Operation, OperationStatus
from punchlist.core.types import EntityType, OperationKind


def make_op(
    kind: OperationKind = OperationKind.UPDATE,
    entity_id: str = "i1",
    payload: dict[str, object] | None = None,
    entity_type: EntityType = EntityType.PUNCHLIST_ITEM,
    max_retries: int = 3,
) -> Operation:
    return Operation.create(
        kind,
        entity_type,
        entity_id,
        payload if payload is not None else {"title": "x"},
        max_retries=max_retries,
    )


class TestOperation:
    """Tests for the Operation dataclass."""

    def test_create_assigns_unique_ids(self) -> None:
        first = make_op()
        second = make_op()
        assert first.id.startswith("op_")
        assert first.id != second.id
        assert first.retry_count == 0
        assert first.status == OperationStatus.PENDING

    def test_is_due(self) -> None:
        op = make_op()
        op.next_attempt_at = 100.0
        assert not op.is_due(99.0)
        assert op.is_due(100.0)


class TestEnqueue:
    """Tests for enqueue ordering and coalescing."""

    def test_fifo_order(self, queue: OperationQueue) -> None:
        """Operations should come back in enqueue order."""
        ops = [
            make_op(OperationKind.CREATE, "a", {"id": "a"}),
            make_op(OperationKind.UPDATE, "b"),
            make_op(OperationKind.DELETE, "c", {"id": "c"}),
        ]
        for op in ops:
            queue.enqueue(op)

        assert [op.id for op in queue.pending()] == [op.id for op in ops]
        assert len(queue) == 3

    def test_create_then_update_not_merged(self, queue: OperationQueue) -> None:
        """An UPDATE must stay behind its CREATE."""
        create = queue.enqueue(make_op(OperationKind.CREATE, "a", {"id": "a", "title": "t"}))
        update = queue.enqueue(make_op(OperationKind.UPDATE, "a", {"title": "u"}))

        pending = queue.pending()
        assert [op.id for op in pending] == [create.id, update.id]
        assert [op.kind for op in pending] == [OperationKind.CREATE, OperationKind.UPDATE]

    def test_consecutive_updates_coalesce(self, queue: OperationQueue) -> None:
        """A second UPDATE should merge into the first, newer fields winning."""
        first = queue.enqueue(make_op(payload={"title": "a", "status": "open"}))
        merged = queue.enqueue(make_op(payload={"title": "b"}))

        assert merged.id == first.id
        pending = queue.pending()
        assert len(pending) == 1
        assert pending[0].payload == {"title": "b", "status": "open"}

    def test_coalesced_update_keeps_position(self, queue: OperationQueue) -> None:
        first = queue.enqueue(make_op(entity_id="a"))
        queue.enqueue(make_op(entity_id="b"))
        queue.enqueue(make_op(entity_id="a", payload={"title": "later"}))

        assert [op.entity_id for op in queue.pending()] == ["a", "b"]
        assert queue.pending()[0].id == first.id

    def test_no_coalescing_into_in_flight(self, queue: OperationQueue) -> None:
        """An UPDATE being uploaded must not absorb later changes."""
        first = queue.enqueue(make_op(payload={"title": "a"}))
        queue.mark_in_flight(first.id)
        second = queue.enqueue(make_op(payload={"title": "b"}))

        assert second.id != first.id
        assert len(queue) == 2

    def test_update_after_delete_not_merged(self, queue: OperationQueue) -> None:
        queue.enqueue(make_op(OperationKind.DELETE, "a", {"id": "a"}))
        queue.enqueue(make_op(OperationKind.UPDATE, "a"))
        assert len(queue) == 2

    def test_persists_across_restart(self, tmp_path: Path) -> None:
        """Queued operations should survive a restart."""
        db_path = tmp_path / "offline.db"
        store = LocalCacheStore(db_path)
        op = OperationQueue(store).enqueue(make_op(payload={"title": "kept"}))
        store.close()

        reopened = LocalCacheStore(db_path)
        pending = OperationQueue(reopened).pending()
        assert [p.id for p in pending] == [op.id]
        assert pending[0].payload == {"title": "kept"}
        reopened.close()

    def test_enqueue_rolls_back_with_store_transaction(
        self, store: LocalCacheStore, queue: OperationQueue
    ) -> None:
        """Cache write and enqueue should commit or roll back together."""
        try:
            with store.transaction():
                store.put(EntityType.PROJECT, {"id": "p1"})
                queue.enqueue(make_op(OperationKind.CREATE, "p1", {"id": "p1"}, EntityType.PROJECT))
                raise RuntimeError("crash")
        except RuntimeError:
            pass

        assert len(queue) == 0
        assert store.get(EntityType.PROJECT, "p1") is None


class TestRetries:
    """Tests for retry accounting."""

    def test_increment_retry_keeps_op(self, queue: OperationQueue) -> None:
        op = queue.enqueue(make_op())
        updated = queue.increment_retry(op.id, "server error", delay=30.0)

        assert updated is not None
        assert updated.retry_count == 1
        assert updated.status == OperationStatus.PENDING
        assert updated.last_error == "server error"
        assert len(queue) == 1

    def test_schedules_next_attempt(self, queue: OperationQueue, clock) -> None:  # type: ignore[no-untyped-def]
        op = queue.enqueue(make_op())
        updated = queue.increment_retry(op.id, "boom", delay=30.0)
        assert updated is not None
        assert updated.next_attempt_at == clock.now + 30.0

    def test_terminal_after_max_retries_plus_one(self, queue: OperationQueue) -> None:
        """The (max_retries + 1)th failure should make the op terminal."""
        op = queue.enqueue(make_op(max_retries=2))
        statuses = [queue.increment_retry(op.id, f"fail {n}").status for n in range(3)]  # type: ignore[union-attr]

        assert statuses == [
            OperationStatus.PENDING,
            OperationStatus.PENDING,
            OperationStatus.FAILED,
        ]
        assert len(queue) == 0
        assert [f.id for f in queue.failed()] == [op.id]

    def test_zero_max_retries(self, queue: OperationQueue) -> None:
        op = queue.enqueue(make_op(max_retries=0))
        updated = queue.increment_retry(op.id, "fail")
        assert updated is not None
        assert updated.status == OperationStatus.FAILED

    def test_increment_unknown_returns_none(self, queue: OperationQueue) -> None:
        assert queue.increment_retry("op_missing", "boom") is None

    def test_requeue_failed(self, queue: OperationQueue) -> None:
        op = queue.enqueue(make_op(max_retries=0))
        queue.increment_retry(op.id, "fail")

        assert queue.requeue_failed() == 1
        pending = queue.pending()
        assert [p.id for p in pending] == [op.id]
        assert pending[0].retry_count == 0
        assert queue.failed() == []

    def test_requeue_single(self, queue: OperationQueue) -> None:
        first = queue.enqueue(make_op(entity_id="a", max_retries=0))
        second = queue.enqueue(make_op(entity_id="b", max_retries=0))
        queue.increment_retry(first.id, "fail")
        queue.increment_retry(second.id, "fail")

        assert queue.requeue_failed(second.id) == 1
        assert [p.id for p in queue.pending()] == [second.id]
        assert [f.id for f in queue.failed()] == [first.id]


class TestMaintenance:
    """Tests for dequeue, remapping and discarding."""

    def test_dequeue_succeeded(self, queue: OperationQueue) -> None:
        first = queue.enqueue(make_op(entity_id="a"))
        second = queue.enqueue(make_op(entity_id="b"))

        assert queue.dequeue_succeeded([first.id]) == 1
        assert [op.id for op in queue.pending()] == [second.id]
        assert queue.dequeue_succeeded([]) == 0

    def test_remap_entity_id(self, queue: OperationQueue) -> None:
        """Later operations and child references should follow the server id."""
        queue.enqueue(
            make_op(OperationKind.UPDATE, "offline_p", {"name": "x"}, EntityType.PROJECT)
        )
        child = queue.enqueue(
            make_op(
                OperationKind.CREATE,
                "offline_i",
                {"id": "offline_i", "project_id": "offline_p"},
            )
        )

        changed = queue.remap_entity_id(EntityType.PROJECT, "offline_p", "srv-1")

        assert changed == 2
        assert queue.has_pending(EntityType.PROJECT, "srv-1")
        assert not queue.has_pending(EntityType.PROJECT, "offline_p")
        remapped_child = queue.get(child.id)
        assert remapped_child is not None
        assert remapped_child.payload["project_id"] == "srv-1"

    def test_discard_for_entity(self, queue: OperationQueue) -> None:
        queue.enqueue(make_op(OperationKind.UPDATE, "a"))
        queue.enqueue(make_op(OperationKind.DELETE, "a", {"id": "a"}))
        other = queue.enqueue(make_op(OperationKind.UPDATE, "b"))

        discarded = queue.discard_for_entity(EntityType.PUNCHLIST_ITEM, "a")

        assert len(discarded) == 2
        assert [op.id for op in queue.pending()] == [other.id]

    def test_stats_and_clear(self, queue: OperationQueue) -> None:
        queue.enqueue(make_op(entity_id="a"))
        failing = queue.enqueue(make_op(entity_id="b", max_retries=0))
        queue.increment_retry(failing.id, "fail")

        assert queue.stats() == {"pending": 1, "failed": 1, "in_flight": 0}
        assert queue.entity_keys() == {
            (EntityType.PUNCHLIST_ITEM, "a"),
            (EntityType.PUNCHLIST_ITEM, "b"),
        }
        assert queue.clear() == 2
        assert len(queue) == 0
        assert list(queue) == []

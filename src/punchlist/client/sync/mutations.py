"""Optimistic local mutations while offline.

This module provides:
- OfflineEditor: Apply create/update/delete to the cache and queue the
  matching operation in the same transaction
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from punchlist.client.store import LocalCacheStore
from punchlist.client.sync.queue import OperationQueue
from punchlist.client.sync.types import EntityNotFoundError, Operation
from punchlist.core.types import (
    EntityType,
    ItemStatus,
    OperationKind,
    Priority,
    Trade,
    format_timestamp,
)

logger = logging.getLogger(__name__)

OFFLINE_ID_PREFIX = "offline_"


def is_offline_id(entity_id: str) -> bool:
    """Check whether an id is provisional (not yet assigned by the server)."""
    return entity_id.startswith(OFFLINE_ID_PREFIX)


class OfflineEditor:
    """Local mutation API used by the UI layer (here, the CLI)."""

    def __init__(
        self,
        store: LocalCacheStore,
        queue: OperationQueue,
        max_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue = queue
        self._max_retries = max_retries
        self._clock = clock

    def _operation(
        self,
        kind: OperationKind,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any],
        now: float,
    ) -> Operation:
        return Operation.create(
            kind,
            entity_type,
            entity_id,
            payload,
            max_retries=self._max_retries,
            enqueued_at=now,
        )

    def create(self, entity_type: EntityType, data: dict[str, Any]) -> str:
        """Create an entity locally and queue its upload.

        Args:
            entity_type: Collection of the new entity.
            data: Entity fields (an ``id`` is assigned here).

        Returns:
            The provisional ``offline_*`` id of the new entity.
        """
        entity_type = EntityType(entity_type)
        now = self._clock()
        entity_id = f"{OFFLINE_ID_PREFIX}{uuid.uuid4().hex}"
        stamp = format_timestamp(now)
        document = {**data, "id": entity_id, "created_at": stamp, "updated_at": stamp}

        with self._store.transaction():
            self._store.put(entity_type, document)
            self._queue.enqueue(
                self._operation(OperationKind.CREATE, entity_type, entity_id, document, now)
            )

        logger.info("Created %s %s offline", entity_type.value, entity_id)
        return entity_id

    def update(
        self,
        entity_type: EntityType,
        entity_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply a partial update locally and queue it.

        Returns:
            The updated cached document.

        Raises:
            EntityNotFoundError: If the entity is not cached.
        """
        entity_type = EntityType(entity_type)
        now = self._clock()
        patch = {k: v for k, v in changes.items() if k != "id"}

        with self._store.transaction():
            current = self._store.get(entity_type, entity_id)
            if current is None:
                raise EntityNotFoundError(entity_type, entity_id)
            document = {**current, **patch, "updated_at": format_timestamp(now)}
            self._store.put(entity_type, document)
            self._queue.enqueue(
                self._operation(OperationKind.UPDATE, entity_type, entity_id, patch, now)
            )

        logger.info("Updated %s %s offline", entity_type.value, entity_id)
        return document

    def delete(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete an entity locally and queue the deletion.

        Deleting an entity that was created offline and never uploaded
        drops its queued operations instead of sending anything.

        Raises:
            EntityNotFoundError: If the entity is not cached.
        """
        entity_type = EntityType(entity_type)
        now = self._clock()

        with self._store.transaction():
            if self._store.get(entity_type, entity_id) is None:
                raise EntityNotFoundError(entity_type, entity_id)
            self._store.delete(entity_type, entity_id)
            if is_offline_id(entity_id):
                self._queue.discard_for_entity(entity_type, entity_id)
            else:
                self._queue.enqueue(
                    self._operation(
                        OperationKind.DELETE, entity_type, entity_id, {"id": entity_id}, now
                    )
                )

        logger.info("Deleted %s %s offline", entity_type.value, entity_id)

    # === Builders ===

    def create_punchlist_item(
        self,
        project_id: str,
        title: str,
        description: str = "",
        location: str = "",
        trade: Trade | str = Trade.GENERAL,
        priority: Priority | str = Priority.MEDIUM,
        status: ItemStatus | str = ItemStatus.OPEN,
        assigned_to: str | None = None,
        due_date: str | None = None,
        created_by: str | None = None,
    ) -> str:
        """Create a punchlist item offline.

        Raises:
            EntityNotFoundError: If the project is not cached.
            ValueError: If title is empty or an enum value is unknown.
        """
        if not title.strip():
            raise ValueError("title must not be empty")
        if self._store.get(EntityType.PROJECT, project_id) is None:
            raise EntityNotFoundError(EntityType.PROJECT, project_id)

        return self.create(
            EntityType.PUNCHLIST_ITEM,
            {
                "project_id": project_id,
                "title": title,
                "description": description,
                "location": location,
                "trade": Trade(trade).value,
                "priority": Priority(priority).value,
                "status": ItemStatus(status).value,
                "assigned_to": assigned_to,
                "due_date": due_date,
                "created_by": created_by,
            },
        )

    def create_photo(
        self,
        punchlist_item_id: str,
        url: str,
        caption: str = "",
        annotations: list[dict[str, Any]] | None = None,
    ) -> str:
        """Attach a photo to a punchlist item offline.

        Raises:
            EntityNotFoundError: If the item is not cached.
        """
        if self._store.get(EntityType.PUNCHLIST_ITEM, punchlist_item_id) is None:
            raise EntityNotFoundError(EntityType.PUNCHLIST_ITEM, punchlist_item_id)

        return self.create(
            EntityType.PHOTO,
            {
                "punchlist_item_id": punchlist_item_id,
                "url": url,
                "caption": caption,
                "annotations": annotations or [],
            },
        )

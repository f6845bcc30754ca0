"""Shared types for punchlist.

This module defines enums and timestamp helpers used by both the offline
client and the reference server.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum


class EntityType(str, Enum):
    """Entity collections mirrored by the offline cache."""

    PROJECT = "project"
    PUNCHLIST_ITEM = "punchlist_item"
    PHOTO = "photo"
    USER = "user"


class OperationKind(str, Enum):
    """Kind of a queued local mutation."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncStage(str, Enum):
    """Stages reported by a download pass, in execution order."""

    PROJECTS = "projects"
    PUNCHLIST_ITEMS = "punchlist_items"
    PHOTOS = "photos"
    USERS = "users"
    COMPLETE = "complete"


class SyncState(str, Enum):
    """Sync state of the client, for status display."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class UserRole(str, Enum):
    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"
    INSPECTOR = "inspector"
    CONTRACTOR = "contractor"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class Trade(str, Enum):
    ELECTRICAL = "electrical"
    PLUMBING = "plumbing"
    HVAC = "hvac"
    STRUCTURAL = "structural"
    FINISHES = "finishes"
    LANDSCAPING = "landscaping"
    GENERAL = "general"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ItemStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REJECTED = "rejected"


# Child entity type -> (parent entity type, field holding the parent id)
PARENT_REFERENCES: dict[EntityType, tuple[EntityType, str]] = {
    EntityType.PUNCHLIST_ITEM: (EntityType.PROJECT, "project_id"),
    EntityType.PHOTO: (EntityType.PUNCHLIST_ITEM, "punchlist_item_id"),
}


def parent_id_of(entity_type: EntityType, data: dict[str, object]) -> str | None:
    """Return the parent id referenced by an entity document, if any."""
    reference = PARENT_REFERENCES.get(entity_type)
    if reference is None:
        return None
    value = data.get(reference[1])
    return str(value) if value is not None else None


def children_of(entity_type: EntityType) -> list[tuple[EntityType, str]]:
    """List (child type, reference field) pairs pointing at ``entity_type``."""
    return [
        (child, field)
        for child, (parent, field) in PARENT_REFERENCES.items()
        if parent == entity_type
    ]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def format_timestamp(value: datetime | float) -> str:
    """Serialize a datetime or Unix timestamp to ISO-8601 (UTC)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    return datetime.fromtimestamp(value, UTC).isoformat()


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed

"""Core module - Shared configuration, enums and timestamp helpers."""

from punchlist.core.config import ServerConfig, SyncSettings
from punchlist.core.types import (
    PARENT_REFERENCES,
    EntityType,
    ItemStatus,
    OperationKind,
    Priority,
    ProjectStatus,
    SyncStage,
    SyncState,
    Trade,
    UserRole,
    children_of,
    format_timestamp,
    parent_id_of,
    parse_timestamp,
    utc_now,
)

__all__ = [
    # Config
    "ServerConfig",
    "SyncSettings",
    # Types
    "PARENT_REFERENCES",
    "EntityType",
    "ItemStatus",
    "OperationKind",
    "Priority",
    "ProjectStatus",
    "SyncStage",
    "SyncState",
    "Trade",
    "UserRole",
    "children_of",
    "format_timestamp",
    "parent_id_of",
    "parse_timestamp",
    "utc_now",
]

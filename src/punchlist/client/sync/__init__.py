"""Offline sync for the punchlist client.

Architecture:
    OfflineEditor → LocalCacheStore + OperationQueue → SyncEngine → RemoteAPI

Components:
- **OfflineEditor**: Optimistic local mutations, each paired with a queued operation
- **OperationQueue**: Durable ordered queue of local mutations
- **SyncEngine**: Download pass (projects → items → photos → users) and
  upload pass (queue drain) with conflict handling
- **Conflict policies**: Last-write-wins (default), server-wins, client-wins
- **Retry**: Exponential backoff for failed uploads and flaky fetches
"""

from punchlist.client.sync.conflicts import (
    POLICIES,
    ClientWinsPolicy,
    Conflict,
    ConflictPolicy,
    ConflictState,
    LastWriteWinsPolicy,
    Resolution,
    ServerWinsPolicy,
    detect_conflict,
)
from punchlist.client.sync.engine import SyncEngine
from punchlist.client.sync.mutations import OfflineEditor, is_offline_id
from punchlist.client.sync.queue import OperationQueue
from punchlist.client.sync.retry import (
    NETWORK_EXCEPTIONS,
    compute_backoff,
    retry_with_backoff,
)
from punchlist.client.sync.types import (
    CleanupResult,
    ConflictUnresolvedError,
    EntityNotFoundError,
    Operation,
    OperationError,
    OperationStatus,
    ProgressCallback,
    RemoteRejectedError,
    RetryExhaustedError,
    SyncAlreadyInProgressError,
    SyncError,
    SyncProgress,
    SyncResult,
    SyncStatus,
    UploadResult,
)

__all__ = [
    # Engine
    "SyncEngine",
    "OfflineEditor",
    "OperationQueue",
    "is_offline_id",
    # Conflicts
    "POLICIES",
    "ClientWinsPolicy",
    "Conflict",
    "ConflictPolicy",
    "ConflictState",
    "LastWriteWinsPolicy",
    "Resolution",
    "ServerWinsPolicy",
    "detect_conflict",
    # Retry
    "NETWORK_EXCEPTIONS",
    "compute_backoff",
    "retry_with_backoff",
    # Types
    "CleanupResult",
    "ConflictUnresolvedError",
    "EntityNotFoundError",
    "Operation",
    "OperationError",
    "OperationStatus",
    "ProgressCallback",
    "RemoteRejectedError",
    "RetryExhaustedError",
    "SyncAlreadyInProgressError",
    "SyncError",
    "SyncProgress",
    "SyncResult",
    "SyncStatus",
    "UploadResult",
]

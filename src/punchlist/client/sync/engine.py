"""Sync engine coordinating offline synchronization.

This module provides:
- SyncEngine: Download (pull) of project data into the cache and upload
  (push) of queued local operations, with conflict handling

Download and upload are independent single-flight passes: each has its
own guard, and starting a pass while one of the same direction runs
raises SyncAlreadyInProgressError without touching the cache or queue.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from punchlist.client.api import APIError, NetworkUnavailableError, NotFoundError, RemoteAPI
from punchlist.client.connectivity import ConnectivityMonitor
from punchlist.client.store import LocalCacheStore
from punchlist.client.sync.conflicts import (
    Conflict,
    ConflictPolicy,
    LastWriteWinsPolicy,
    Resolution,
    detect_conflict,
)
from punchlist.client.sync.mutations import is_offline_id
from punchlist.client.sync.queue import OperationQueue
from punchlist.client.sync.retry import NETWORK_EXCEPTIONS, compute_backoff, retry_with_backoff
from punchlist.client.sync.types import (
    CleanupResult,
    ConflictUnresolvedError,
    Operation,
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
from punchlist.core.config import SyncSettings
from punchlist.core.types import (
    PARENT_REFERENCES,
    EntityType,
    OperationKind,
    SyncStage,
    parent_id_of,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class _ProgressTracker:
    """Cumulative progress over a whole download pass.

    Each fetch call is one unit of work. ``total`` grows as work is
    discovered and ``current`` only moves forward.
    """

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self.current = 0
        self.total = 0

    def add(self, units: int) -> None:
        self.total += units

    def advance(self, stage: SyncStage, message: str) -> None:
        self.current += 1
        self._emit(stage, message)

    def complete(self, message: str) -> None:
        # Work skipped by a cancellation is no longer outstanding
        self.total = self.current
        self._emit(SyncStage.COMPLETE, message)

    def _emit(self, stage: SyncStage, message: str) -> None:
        if self._callback:
            self._callback(SyncProgress(self.current, self.total, stage, message))


@dataclass
class _DownloadPass:
    """Mutable accumulator frozen into a SyncResult at the end of a pass."""

    counts: dict[EntityType, int] = field(default_factory=lambda: dict.fromkeys(EntityType, 0))
    errors: list[str] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    superseded: list[str] = field(default_factory=list)
    cancelled: bool = False

    def result(self) -> SyncResult:
        return SyncResult(
            projects_downloaded=self.counts[EntityType.PROJECT],
            punchlist_items_downloaded=self.counts[EntityType.PUNCHLIST_ITEM],
            photos_downloaded=self.counts[EntityType.PHOTO],
            users_downloaded=self.counts[EntityType.USER],
            errors=tuple(self.errors),
            conflicts=tuple(self.conflicts),
            superseded=tuple(self.superseded),
            cancelled=self.cancelled,
        )


class SyncEngine:
    """Coordinates synchronization between the local cache and the server."""

    def __init__(
        self,
        api: RemoteAPI,
        store: LocalCacheStore,
        queue: OperationQueue,
        settings: SyncSettings | None = None,
        policy: ConflictPolicy | None = None,
        connectivity: ConnectivityMonitor | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the sync engine.

        Args:
            api: HTTP client for server communication.
            store: Local cache store.
            queue: Queue of pending local operations.
            settings: Retry and backoff tuning.
            policy: Conflict policy (last-write-wins by default).
            connectivity: Optional reachability monitor consulted before uploads.
            clock: Time source (tests inject a fake).
            sleep: Sleep function used between fetch retries.
        """
        self._api = api
        self._store = store
        self._queue = queue
        self._settings = settings or SyncSettings()
        self._policy = policy or LastWriteWinsPolicy()
        self._connectivity = connectivity
        self._clock = clock
        self._sleep = sleep

        self._download_lock = threading.Lock()
        self._upload_lock = threading.Lock()
        self._download_cancelled = threading.Event()
        self._upload_cancelled = threading.Event()

    @property
    def is_syncing(self) -> bool:
        """True while a download or upload pass runs."""
        return self._download_lock.locked() or self._upload_lock.locked()

    def cancel(self) -> None:
        """Ask running passes to stop at the next entity boundary."""
        logger.info("Sync cancellation requested")
        self._download_cancelled.set()
        self._upload_cancelled.set()

    # === Download (pull) ===

    def download_project_data(
        self,
        project_ids: Iterable[str],
        progress_callback: ProgressCallback | None = None,
    ) -> SyncResult:
        """Download projects with their items, photos, and all users.

        Failed fetches are recorded in ``errors`` and the pass continues.

        Args:
            project_ids: Projects to download.
            progress_callback: Optional callback for progress updates.

        Returns:
            SyncResult for the pass.

        Raises:
            SyncAlreadyInProgressError: If a download pass is already running.
        """
        if not self._download_lock.acquire(blocking=False):
            raise SyncAlreadyInProgressError("download")
        self._download_cancelled.clear()
        try:
            result = self._download(list(project_ids), _ProgressTracker(progress_callback))
        finally:
            self._download_lock.release()

        logger.info(
            "Download finished: %d project(s), %d item(s), %d photo(s), %d user(s), "
            "%d error(s), %d conflict(s)%s",
            result.projects_downloaded,
            result.punchlist_items_downloaded,
            result.photos_downloaded,
            result.users_downloaded,
            len(result.errors),
            len(result.conflicts),
            " (cancelled)" if result.cancelled else "",
        )
        return result

    def _download(self, project_ids: list[str], progress: _ProgressTracker) -> SyncResult:
        state = _DownloadPass()

        # Projects
        progress.add(len(project_ids))
        projects: list[str] = []
        for project_id in project_ids:
            if self._check_cancelled(state):
                break
            project = self._fetch(
                state,
                lambda pid=project_id: self._api.fetch_project(pid),
                f"Failed to download project {project_id}",
            )
            if project is not None and not self._check_cancelled(state):
                merged_id = self._merge_downloaded(state, EntityType.PROJECT, project)
                if merged_id is not None:
                    projects.append(merged_id)
            progress.advance(SyncStage.PROJECTS, f"Project {project_id}")

        # Punchlist items of each downloaded project
        items: list[str] = []
        if not state.cancelled:
            progress.add(len(projects))
        for project_id in projects:
            if self._check_cancelled(state):
                break
            fetched = self._fetch(
                state,
                lambda pid=project_id: self._api.fetch_items(pid),
                f"Failed to download items for project {project_id}",
            )
            for item in fetched or []:
                if self._check_cancelled(state):
                    break
                merged_id = self._merge_downloaded(state, EntityType.PUNCHLIST_ITEM, item)
                if merged_id is not None:
                    items.append(merged_id)
            progress.advance(SyncStage.PUNCHLIST_ITEMS, f"Items of project {project_id}")

        # Photos of each downloaded item
        if not state.cancelled:
            progress.add(len(items))
        for item_id in items:
            if self._check_cancelled(state):
                break
            fetched = self._fetch(
                state,
                lambda iid=item_id: self._api.fetch_photos(iid),
                f"Failed to download photos for item {item_id}",
            )
            for photo in fetched or []:
                if self._check_cancelled(state):
                    break
                self._merge_downloaded(state, EntityType.PHOTO, photo)
            progress.advance(SyncStage.PHOTOS, f"Photos of item {item_id}")

        # Users
        if not self._check_cancelled(state):
            progress.add(1)
            users = self._fetch(state, self._api.fetch_users, "Failed to download users")
            for user in users or []:
                if self._check_cancelled(state):
                    break
                self._merge_downloaded(state, EntityType.USER, user)
            progress.advance(SyncStage.USERS, "Users")

        if state.cancelled:
            progress.complete("Download cancelled")
        else:
            self._store.set_last_sync_time(self._clock())
            progress.complete("Download complete")
        return state.result()

    def _check_cancelled(self, state: _DownloadPass) -> bool:
        if self._download_cancelled.is_set():
            state.cancelled = True
        return state.cancelled

    def _fetch(self, state: _DownloadPass, func: Callable[[], Any], context: str) -> Any:
        """Run one fetch with network retries; record a failure and return None."""
        try:
            return retry_with_backoff(
                func,
                max_retries=self._settings.fetch_retries,
                initial_backoff=self._settings.fetch_backoff,
                max_backoff=self._settings.max_backoff,
                backoff_multiplier=self._settings.backoff_multiplier,
                retryable_exceptions=NETWORK_EXCEPTIONS,
                sleep=self._sleep,
            )
        except (APIError, ValueError, *NETWORK_EXCEPTIONS) as e:
            message = f"{context}: {e}"
            logger.warning(message)
            state.errors.append(message)
            return None

    def _merge_downloaded(
        self, state: _DownloadPass, entity_type: EntityType, remote: Any
    ) -> str | None:
        """Merge one downloaded entity and count it; record a malformed one and return None."""
        try:
            self._merge(state, entity_type, remote)
        except (KeyError, TypeError, ValueError) as e:
            message = f"Invalid {entity_type.value} from server: {e!r}"
            logger.warning(message)
            state.errors.append(message)
            return None
        state.counts[entity_type] += 1
        return str(remote["id"])

    def _merge(self, state: _DownloadPass, entity_type: EntityType, remote: dict[str, Any]) -> None:
        """Write a downloaded entity to the cache through conflict detection."""
        entity_id = str(remote["id"])
        remote_updated_at = remote.get("updated_at")

        record = self._store.get_conflict(entity_type, entity_id)
        if record is not None:
            # Still waiting for a decision; refresh the remote side only
            self._store.save_conflict(
                entity_type,
                entity_id,
                record["local_data"],
                remote,
                record["local_updated_at"],
                parse_timestamp(remote_updated_at),
            )
            return

        conflict = detect_conflict(self._store, self._queue, entity_type, remote)
        if conflict is None:
            if self._queue.has_pending(entity_type, entity_id):
                # Remote unchanged since last sync; local changes stay
                return
            self._store.put(entity_type, remote, synced_at=remote_updated_at)
            return

        conflict.apply(self._policy.resolve(conflict))
        state.conflicts.append(conflict)

        if conflict.resolution == Resolution.REMOTE:
            with self._store.transaction():
                discarded = self._queue.discard_for_entity(entity_type, entity_id)
                self._store.put(entity_type, remote, synced_at=remote_updated_at)
            state.superseded.extend(op.id for op in discarded)
            logger.info(
                "Remote version of %s %s wins; discarded %d queued operation(s)",
                entity_type.value,
                entity_id,
                len(discarded),
            )
        elif conflict.resolution == Resolution.LOCAL:
            if remote_updated_at and not conflict.is_local_delete:
                self._store.mark_synced(entity_type, entity_id, remote_updated_at)
            logger.info("Local version of %s %s wins", entity_type.value, entity_id)
        else:
            self._store.save_conflict(
                entity_type,
                entity_id,
                conflict.local_data,
                remote,
                conflict.local_updated_at,
                conflict.remote_updated_at,
            )
            logger.warning("%s needs a manual decision", conflict)

    # === Upload (push) ===

    def upload_pending_changes(self) -> UploadResult:
        """Upload queued operations in enqueue order.

        Each operation is attempted independently. Later operations of an
        entity whose earlier operation failed, is held or is not yet due
        are deferred to keep per-entity order.

        Returns:
            UploadResult for the pass.

        Raises:
            SyncAlreadyInProgressError: If an upload pass is already running.
        """
        if not self._upload_lock.acquire(blocking=False):
            raise SyncAlreadyInProgressError("upload")
        self._upload_cancelled.clear()
        try:
            if self._connectivity is not None and self._connectivity.is_online is False:
                pending = len(self._queue)
                logger.info("Offline; %d operation(s) left queued", pending)
                error = NetworkUnavailableError(
                    f"Server unreachable; {pending} operation(s) left queued"
                )
                return UploadResult(errors=(str(error),), deferred=pending)
            result = self._upload()
        finally:
            self._upload_lock.release()

        logger.info(
            "Upload finished: %d uploaded, %d error(s), %d failed permanently, %d deferred",
            result.uploaded,
            len(result.errors),
            len(result.failed),
            result.deferred,
        )
        return result

    def _upload(self) -> UploadResult:
        now = self._clock()
        uploaded = 0
        deferred = 0
        cancelled = False
        errors: list[str] = []
        failed: list[Operation] = []
        # Entities whose earlier operation failed permanently stay blocked
        # until it is requeued or discarded
        halted = {op.key for op in self._queue.failed()}
        blocked: set[tuple[EntityType, str]] = set(halted)

        ops = self._queue.pending()
        for index, queued in enumerate(ops):
            if self._upload_cancelled.is_set():
                cancelled = True
                deferred += len(ops) - index
                errors.append(f"Upload cancelled; {len(ops) - index} operation(s) left queued")
                break

            # Re-read: an earlier CREATE may have remapped ids
            op = self._queue.get(queued.id)
            if op is None or op.status != OperationStatus.PENDING:
                continue

            if op.key in halted or self._parent_blocked(op, halted):
                deferred += 1
                halted.add(op.key)
                blocked.add(op.key)
                errors.append(
                    f"{op.entity_type.value} {op.entity_id}: held behind a failed operation"
                )
                continue

            if op.key in blocked or self._parent_blocked(op, blocked):
                deferred += 1
                blocked.add(op.key)
                continue

            if self._store.has_conflict(*op.key):
                errors.append(str(ConflictUnresolvedError(op.entity_type, op.entity_id)))
                blocked.add(op.key)
                continue

            if not op.is_due(now):
                deferred += 1
                blocked.add(op.key)
                errors.append(
                    f"{op.entity_type.value} {op.entity_id}: "
                    f"retry scheduled in {op.next_attempt_at - now:.0f}s"
                )
                continue

            self._queue.mark_in_flight(op.id)
            try:
                response = self._send(op)
            except NETWORK_EXCEPTIONS as e:
                # Connectivity loss does not count against the retry budget
                errors.append(f"{op.entity_type.value} {op.entity_id}: {e}")
                deferred += len(ops) - index - 1
                if self._connectivity is not None:
                    self._connectivity.report(False)
                break
            except APIError as e:
                blocked.add(op.key)
                delay = compute_backoff(
                    op.retry_count + 1,
                    initial=self._settings.initial_backoff,
                    maximum=self._settings.max_backoff,
                    multiplier=self._settings.backoff_multiplier,
                    jitter=self._settings.jitter,
                )
                updated = self._queue.increment_retry(op.id, str(e), delay)
                if updated is not None and updated.status == OperationStatus.FAILED:
                    failed.append(updated)
                    errors.append(str(RetryExhaustedError(op.entity_type, op.entity_id, str(e))))
                else:
                    errors.append(str(RemoteRejectedError(op.entity_type, op.entity_id, str(e))))
                    logger.warning("Upload of %r failed: %s", op, e)
            else:
                self._acknowledge(op, response)
                uploaded += 1
            finally:
                self._queue.clear_in_flight(op.id)

        return UploadResult(
            uploaded=uploaded,
            errors=tuple(errors),
            failed=tuple(failed),
            deferred=deferred,
            cancelled=cancelled,
        )

    @staticmethod
    def _parent_blocked(op: Operation, blocked: set[tuple[EntityType, str]]) -> bool:
        """True if the op references a not-yet-created parent that is blocked."""
        reference = PARENT_REFERENCES.get(op.entity_type)
        if reference is None:
            return False
        parent_id = parent_id_of(op.entity_type, op.payload)
        return (
            parent_id is not None
            and is_offline_id(parent_id)
            and (reference[0], parent_id) in blocked
        )

    def _send(self, op: Operation) -> dict[str, Any] | None:
        """Send one operation to the server."""
        if op.kind == OperationKind.CREATE:
            return self._api.create(op.entity_type, op.payload, idempotency_key=op.id)
        if op.kind == OperationKind.UPDATE:
            return self._api.update(op.entity_type, op.entity_id, op.payload)
        try:
            self._api.delete(op.entity_type, op.entity_id)
        except NotFoundError:
            logger.debug("%s %s already gone on server", op.entity_type.value, op.entity_id)
        return None

    def _acknowledge(self, op: Operation, response: dict[str, Any] | None) -> None:
        """Apply a server acknowledgement and dequeue the operation atomically."""
        with self._store.transaction():
            self._queue.dequeue_succeeded([op.id])
            if response is None:
                return

            entity_id = str(response.get("id") or op.entity_id)
            if entity_id != op.entity_id:
                self._store.rekey(op.entity_type, op.entity_id, entity_id)
                self._queue.remap_entity_id(op.entity_type, op.entity_id, entity_id)
                logger.info(
                    "%s %s is now %s on server", op.entity_type.value, op.entity_id, entity_id
                )

            updated_at = response.get("updated_at")
            if self._queue.has_pending(op.entity_type, entity_id):
                # Later local changes stay cached; only advance the baseline
                if updated_at:
                    self._store.mark_synced(op.entity_type, entity_id, updated_at)
            else:
                self._store.put(op.entity_type, response, synced_at=updated_at)

    # === Conflicts ===

    def list_conflicts(self) -> list[Conflict]:
        """Conflicts waiting for a manual decision."""
        return [Conflict.from_record(r) for r in self._store.list_conflicts()]

    def resolve_conflict(
        self,
        entity_type: EntityType,
        entity_id: str,
        resolution: Resolution | str,
    ) -> Conflict:
        """Settle a conflict left for a manual decision.

        Args:
            entity_type: Collection of the entity.
            entity_id: Id of the entity.
            resolution: ``local`` keeps the queued changes, ``remote``
                discards them and caches the server version.

        Returns:
            The resolved conflict.

        Raises:
            SyncError: If no manual conflict exists for the entity.
            ValueError: If resolution is not local or remote.
        """
        resolution = Resolution(resolution)
        if resolution == Resolution.MANUAL:
            raise ValueError("A conflict must be resolved as local or remote")

        record = self._store.get_conflict(entity_type, entity_id)
        if record is None:
            raise SyncError(f"No pending conflict for {EntityType(entity_type).value} {entity_id}")
        conflict = Conflict.from_record(record)

        with self._store.transaction():
            if resolution == Resolution.REMOTE:
                self._queue.discard_for_entity(entity_type, entity_id)
                self._store.put(
                    entity_type,
                    conflict.remote_data,
                    synced_at=conflict.remote_data.get("updated_at"),
                )
            elif conflict.remote_updated_at is not None and not conflict.is_local_delete:
                self._store.mark_synced(entity_type, entity_id, conflict.remote_updated_at)
            self._store.remove_conflict(entity_type, entity_id)

        logger.info("Resolved %s as %s", conflict, resolution.value)
        return conflict.apply(resolution)

    # === Status and maintenance ===

    def get_sync_status(self) -> SyncStatus:
        """Snapshot of pending work and sync state."""
        stats = self._queue.stats()
        return SyncStatus(
            pending_operations=stats["pending"],
            failed_operations=stats["failed"],
            pending_conflicts=len(self._store.list_conflicts()),
            last_sync_time=self._store.get_last_sync_time(),
            is_online=self._connectivity.is_online if self._connectivity else None,
            sync_in_progress=self.is_syncing,
        )

    def cleanup_old_data(self, max_age_days: int = 90) -> CleanupResult:
        """Remove cached projects, items and photos not updated recently.

        Entities with queued operations or open conflicts are kept, and so
        are parents that still have cached children.

        Args:
            max_age_days: Entities updated within this window are kept.

        Returns:
            Counts of removed entities.
        """
        cutoff = datetime.fromtimestamp(self._clock(), UTC) - timedelta(days=max_age_days)

        keep: dict[EntityType, set[str]] = {t: set() for t in EntityType}
        for entity_type, entity_id in self._queue.entity_keys():
            keep[entity_type].add(entity_id)
        for record in self._store.list_conflicts():
            keep[record["entity_type"]].add(record["entity_id"])

        result = CleanupResult()
        with self._store.transaction():
            result.photos_removed = self._store.remove_stale(
                EntityType.PHOTO, cutoff, keep[EntityType.PHOTO]
            )
            for photo in self._store.list(EntityType.PHOTO):
                keep[EntityType.PUNCHLIST_ITEM].add(str(photo.get("punchlist_item_id")))
            result.items_removed = self._store.remove_stale(
                EntityType.PUNCHLIST_ITEM, cutoff, keep[EntityType.PUNCHLIST_ITEM]
            )
            for item in self._store.list(EntityType.PUNCHLIST_ITEM):
                keep[EntityType.PROJECT].add(str(item.get("project_id")))
            result.projects_removed = self._store.remove_stale(
                EntityType.PROJECT, cutoff, keep[EntityType.PROJECT]
            )

        logger.info(
            "Cleanup removed %d project(s), %d item(s), %d photo(s) older than %d days",
            result.projects_removed,
            result.items_removed,
            result.photos_removed,
            max_age_days,
        )
        return result

    # === Connectivity ===

    def attach(self, monitor: ConnectivityMonitor) -> Callable[[], None]:
        """Drain the queue whenever ``monitor`` reports the server reachable.

        Returns:
            A function that detaches the engine from the monitor.
        """
        self._connectivity = monitor
        return monitor.add_listener(self._on_connectivity_change)

    def _on_connectivity_change(self, online: bool) -> None:
        if not online or len(self._queue) == 0:
            return
        try:
            self.upload_pending_changes()
        except SyncAlreadyInProgressError:
            logger.debug("Upload already running; reconnect drain skipped")

# =============================================================================
# gramsehat_core/offline/sync_engine.py
# Automatic Synchronization Engine
# =============================================================================
"""
SyncEngine - reconciles the local store and outbox with the remote endpoint.

Two independent, idempotent passes:

- Download (reference data): pull healthcare centers, emergency contacts and
  schemes changed since the persisted watermark. Server wins: every incoming
  record overwrites the local copy with the same id.
- Upload (user data): drain the outbox in batches. Entries for the same
  entity are coalesced so only the latest snapshot is sent, and all of them
  are acknowledged together. When the server copy is strictly newer than the
  base timestamp recorded at enqueue time the upload is rejected and the
  local entity is replaced by the server copy (last write wins).

Transient failures bump the retry count of every entry in the failed batch;
entries reaching the retry ceiling are escalated, never dropped. A pass can
be cancelled and stops at the next batch boundary.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from gramsehat_core.api.base_connector import (
    ReferenceRecord,
    RemoteEndpoint,
    UploadItem,
    UploadResult,
)
from gramsehat_core.errors import (
    ConflictError,
    ErrorContext,
    GramSehatError,
    RemoteError,
    RetryExhaustedError,
    TransientError,
    ValidationFailure,
    handle_error,
)
from gramsehat_core.models import REFERENCE_ENTITY_TYPES, entity_class, parse_timestamp, utcnow
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.offline.outbox import MutationType, Outbox, OutboxEntry

logger = logging.getLogger(__name__)


LAST_DOWNLOAD_SETTING = "sync.last_download_at"


class SyncStatus(Enum):
    """Outcome of a sync pass."""
    COMPLETED = "completed"
    PARTIAL = "partial"       # some entries unresolved, see report
    CANCELLED = "cancelled"
    SKIPPED = "skipped"       # offline or another pass running


@dataclass
class DownloadReport:
    """Result of a reference-data download pass."""
    since: Optional[datetime] = None
    watermark: Optional[datetime] = None
    applied: int = 0
    deleted: int = 0
    rejected: List[Tuple[str, str]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class UploadReport:
    """Result of an outbox upload pass; every attempted entry appears exactly once."""
    batches: int = 0
    acked: List[int] = field(default_factory=list)
    conflicts: List[Tuple[str, str]] = field(default_factory=list)
    retried: List[int] = field(default_factory=list)
    escalated: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def unresolved(self) -> List[int]:
        """Entry ids still in the outbox after this pass."""
        return sorted(self.retried + self.escalated)

    @property
    def success(self) -> bool:
        return not self.unresolved and not self.cancelled


@dataclass
class SyncReport:
    """Combined result of one sync_now() call."""
    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    download: Optional[DownloadReport] = None
    upload: Optional[UploadReport] = None

    @property
    def unresolved(self) -> List[int]:
        return self.upload.unresolved if self.upload else []


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    escalated_count: int = 0
    total_synced: int = 0
    last_report: Optional[SyncReport] = None


class SyncEngine:
    """
    Synchronization engine between the local SQLite store and the remote endpoint.

    Usage:
        engine = SyncEngine(local_db, outbox, remote)
        engine.start()            # background passes every SYNC_INTERVAL seconds
        report = engine.sync_now()
    """

    # Configuration
    SYNC_INTERVAL = 30          # Seconds between sync attempts
    MAX_RETRY_ATTEMPTS = 5      # Retry ceiling per outbox entry
    BATCH_SIZE = 50             # Outbox entries per upload batch

    def __init__(
        self,
        db: LocalDatabase,
        outbox: Outbox,
        remote: RemoteEndpoint,
        batch_size: Optional[int] = None,
        max_retry_attempts: Optional[int] = None,
        sync_interval: Optional[float] = None,
        connection_manager: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._outbox = outbox
        self._remote = remote
        self.batch_size = batch_size or self.BATCH_SIZE
        self.max_retry_attempts = max_retry_attempts or self.MAX_RETRY_ATTEMPTS
        self.sync_interval = sync_interval or self.SYNC_INTERVAL
        self._connection_manager = connection_manager
        self._clock = clock

        self._state = SyncState()
        self._pass_lock = threading.Lock()
        self._cancel = threading.Event()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._callbacks: List[Callable[[SyncState], None]] = []

        if connection_manager is not None:
            connection_manager.register_callback(self._on_connection_change)

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def pending_count(self) -> int:
        return self._outbox.pending_count()

    # =========================================================================
    # BACKGROUND OPERATION
    # =========================================================================

    def start(self) -> None:
        """Start background sync thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncEngine"
        )
        self._sync_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop background sync thread, cancelling any pass in flight."""
        self._stop_sync.set()
        self.cancel()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
        logger.info("Sync engine stopped")

    def cancel(self) -> None:
        """Abort the running pass at the next batch boundary."""
        self._cancel.set()

    def _sync_loop(self) -> None:
        """Background sync loop."""
        while not self._stop_sync.is_set():
            if self._stop_sync.wait(timeout=self.sync_interval):
                break

            with ErrorContext("Background sync pass", recoverable=True):
                self.sync_now()

    def _on_connection_change(self, state) -> None:
        """Connectivity restored: trigger a pass off the caller's thread."""
        if state.status.value == "online":
            logger.info("Connection restored, triggering sync")
            threading.Thread(target=self._triggered_sync, daemon=True, name="SyncTrigger").start()

    def _triggered_sync(self) -> None:
        with ErrorContext("Connectivity-triggered sync", recoverable=True):
            self.sync_now()

    # =========================================================================
    # SYNC PASSES
    # =========================================================================

    def sync_now(self) -> SyncReport:
        """
        Run an upload pass followed by a download pass.

        The download watermark is read from the persisted settings, passed
        explicitly into ``download_pass`` and written back on success.
        """
        started = self._clock()
        if self._connection_manager is not None and not self._connection_manager.is_online:
            logger.debug("Cannot sync: offline")
            return SyncReport(status=SyncStatus.SKIPPED, started_at=started, finished_at=started)

        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Sync already in progress")
            return SyncReport(status=SyncStatus.SKIPPED, started_at=started, finished_at=started)

        self._cancel.clear()
        self._state.is_syncing = True
        self._state.last_sync = started
        self._notify_callbacks()

        try:
            report = SyncReport(status=SyncStatus.COMPLETED, started_at=started)
            report.upload = self.upload_pass()

            if not self._cancel.is_set():
                since = self.last_download_at()
                report.download = self.download_pass(since)
                if report.download.success and report.download.watermark != since:
                    self._db.set_setting(LAST_DOWNLOAD_SETTING, report.download.watermark.isoformat())

            report.finished_at = self._clock()
            report.status = self._overall_status(report)
            self._record_outcome(report)
            return report

        finally:
            self._state.is_syncing = False
            self._pass_lock.release()
            self._notify_callbacks()

    def last_download_at(self) -> Optional[datetime]:
        """Persisted reference-data watermark (None before the first download)."""
        return parse_timestamp(self._db.get_setting(LAST_DOWNLOAD_SETTING))

    def download_pass(self, since: Optional[datetime]) -> DownloadReport:
        """
        Pull reference changes newer than ``since`` and apply them (server wins).

        Returns:
            DownloadReport whose ``watermark`` is the newest server timestamp
            applied; the caller decides whether to persist it.
        """
        report = DownloadReport(since=since, watermark=since)

        try:
            batch = self._remote.fetch_reference_changes(since)
        except (TransientError, RemoteError) as e:
            logger.warning(f"Reference download failed: {e}")
            report.error = str(e)
            return report

        for record in batch.records:
            if record.entity_type not in REFERENCE_ENTITY_TYPES:
                logger.warning(f"Ignoring non-reference record {record.entity_type}/{record.entity_id}")
                continue
            try:
                self._apply_reference(record, report)
            except ValidationFailure as e:
                logger.error(f"Rejected reference record {record.entity_type}/{record.entity_id}: {e}")
                report.rejected.append((record.entity_type, record.entity_id))
            except GramSehatError as e:
                report.error = handle_error(e)["message"]
                return report

            if report.watermark is None or record.server_timestamp > report.watermark:
                report.watermark = record.server_timestamp

        logger.info(
            f"Download pass: {report.applied} applied, {report.deleted} deleted, "
            f"{len(report.rejected)} rejected"
        )
        return report

    def _apply_reference(self, record: ReferenceRecord, report: DownloadReport) -> None:
        with self._db.entity_lock(record.entity_type, record.entity_id):
            if record.deleted:
                if self._db.delete(record.entity_type, record.entity_id):
                    report.deleted += 1
                return

            if not isinstance(record.payload, dict):
                raise ValidationFailure(
                    "Reference payload must be an object",
                    entity_type=record.entity_type,
                    details={"entity_id": record.entity_id},
                )
            payload = dict(record.payload)
            payload["id"] = record.entity_id
            payload["last_updated"] = record.server_timestamp.isoformat()
            entity = entity_class(record.entity_type).from_record(payload)
            self._db.put(entity)
            report.applied += 1

    def upload_pass(self) -> UploadReport:
        """
        Drain the outbox batch by batch.

        Each batch ends with every attempted entry acked, retried or
        escalated. Cancellation is honoured between batches only.
        """
        report = UploadReport()
        after_id = 0

        while True:
            if self._cancel.is_set():
                report.cancelled = True
                logger.info("Upload pass cancelled at batch boundary")
                break

            batch = self._outbox.peek_batch(self.batch_size, after_id=after_id)
            if not batch:
                break

            after_id = batch[-1].id
            report.batches += 1
            self._upload_batch(batch, report)

        if report.escalated:
            handle_error(RetryExhaustedError(
                f"{len(report.escalated)} outbox entries reached the retry ceiling",
                entry_ids=report.escalated,
                max_attempts=self.max_retry_attempts,
            ))

        logger.info(
            f"Upload pass: {len(report.acked)} acked, {len(report.conflicts)} conflicts, "
            f"{len(report.retried)} retried, {len(report.escalated)} escalated"
        )
        return report

    def _upload_batch(self, batch: List[OutboxEntry], report: UploadReport) -> None:
        groups = Outbox.coalesce(batch)
        items = []
        for (entity_type, entity_id), entries in groups.items():
            latest = entries[-1]
            items.append(UploadItem(
                entity_type=entity_type,
                entity_id=entity_id,
                operation=latest.operation.value,
                payload=latest.payload,
                base_timestamp=latest.base_timestamp,
            ))

        try:
            results = self._remote.push_changes(items)
        except (TransientError, RemoteError) as e:
            logger.warning(f"Upload batch of {len(batch)} entries failed: {e}")
            report.errors.append(str(e))
            self._record_failure(batch, str(e), report)
            return

        by_key: Dict[Tuple[str, str], UploadResult] = {
            (result.entity_type, result.entity_id): result for result in results
        }
        for key, entries in groups.items():
            result = by_key.get(key)
            if result is None:
                self._record_failure(entries, "No result returned for entity", report)
                continue
            try:
                if result.accepted:
                    self._apply_accept(entries, result, report)
                else:
                    self._apply_conflict(entries, result, report)
            except GramSehatError as e:
                report.errors.append(str(e))
                self._record_failure(entries, str(e), report)

    def _apply_accept(self, entries: List[OutboxEntry], result: UploadResult, report: UploadReport) -> None:
        """Server stored our snapshot: ack the group and record the server timestamp."""
        entity_type, entity_id = entries[-1].entity_key
        latest = entries[-1]
        entry_ids = [e.id for e in entries]

        with self._db.entity_lock(entity_type, entity_id):
            with self._db.transaction():
                self._outbox.ack_many(entry_ids)
                self._outbox.rebase(entity_type, entity_id, latest.id, result.server_timestamp)
                if latest.operation != MutationType.DELETE:
                    local = self._db.get(entity_type, entity_id)
                    if local is not None:
                        local.synced_at = result.server_timestamp
                        self._db.put(local)

        report.acked.extend(entry_ids)

    def _apply_conflict(self, entries: List[OutboxEntry], result: UploadResult, report: UploadReport) -> None:
        """
        Server copy is newer: it replaces the local entity and the whole
        pending lineage of that entity is discarded.
        """
        entity_type, entity_id = entries[-1].entity_key
        conflict = ConflictError(
            "Remote copy is newer; local edit discarded",
            entity_type=entity_type,
            entity_id=entity_id,
            server_timestamp=result.server_timestamp.isoformat(),
        )
        logger.warning(str(conflict))

        with self._db.entity_lock(entity_type, entity_id):
            with self._db.transaction():
                superseded = [e.id for e in self._outbox.entries_for(entity_type, entity_id)]
                self._outbox.ack_many(superseded)

                if result.server_payload is None:
                    self._db.delete(entity_type, entity_id)
                else:
                    payload = dict(result.server_payload)
                    payload["id"] = entity_id
                    payload["last_updated"] = result.server_timestamp.isoformat()
                    server_copy = entity_class(entity_type).from_record(payload)
                    server_copy.synced_at = result.server_timestamp
                    self._db.put(server_copy)

        report.acked.extend(e.id for e in entries)
        report.conflicts.append((entity_type, entity_id))

    def _record_failure(self, entries: List[OutboxEntry], error: str, report: UploadReport) -> None:
        for entry in entries:
            attempts = self._outbox.bump_retry(entry.id, error)
            if attempts >= self.max_retry_attempts:
                self._outbox.escalate(entry.id, f"Retry ceiling reached: {error}")
                report.escalated.append(entry.id)
            else:
                report.retried.append(entry.id)

    # =========================================================================
    # STATE & CALLBACKS
    # =========================================================================

    @staticmethod
    def _overall_status(report: SyncReport) -> SyncStatus:
        if report.upload is not None and report.upload.cancelled:
            return SyncStatus.CANCELLED
        upload_ok = report.upload is None or report.upload.success
        download_ok = report.download is None or report.download.success
        return SyncStatus.COMPLETED if upload_ok and download_ok else SyncStatus.PARTIAL

    def _record_outcome(self, report: SyncReport) -> None:
        if report.upload is not None:
            self._state.total_synced += len(report.upload.acked)
            self._state.failed_count = len(report.upload.unresolved)
        self._state.pending_count = self._outbox.pending_count()
        self._state.escalated_count = self._outbox.escalated_count()
        self._state.last_report = report
        if report.status == SyncStatus.COMPLETED:
            self._state.last_sync_success = report.finished_at

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for display by the UI layer."""
        last_download = self.last_download_at()
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "last_download_at": last_download.isoformat() if last_download else None,
            "pending_count": self.pending_count,
            "escalated_count": self._outbox.escalated_count(),
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
        }

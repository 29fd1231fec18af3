# =============================================================================
# gramsehat_core/offline/outbox.py
# Outbox (Sync Queue) of Pending Local Mutations
# =============================================================================
"""
Outbox - append-only log of user-data mutations awaiting remote confirmation.

Entries live in the ``sync_queue`` table of the local database. Each entry
holds an immutable JSON snapshot of the entity taken at enqueue time together
with the last server timestamp known for that entity (the base timestamp used
for conflict detection).

Several mutations of one entity coalesce logically: the most recent entry id
per entity key supersedes earlier ones for upload purposes. The log itself is
never compacted; the sync engine acknowledges superseded entries together
with the one it uploaded.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

from gramsehat_core.errors import NotFoundError
from gramsehat_core.models import parse_timestamp, utcnow
from gramsehat_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class MutationType(Enum):
    """Kind of local mutation recorded in the outbox."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutboxStatus(Enum):
    PENDING = "pending"
    ESCALATED = "escalated"  # retry ceiling reached; kept for manual follow-up


@dataclass
class OutboxEntry:
    """One pending mutation."""
    id: int
    entity_type: str
    entity_id: str
    operation: MutationType
    payload: Dict[str, Any]
    base_timestamp: Optional[datetime]
    created_at: datetime
    retry_count: int = 0
    status: OutboxStatus = OutboxStatus.PENDING
    last_attempt: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def entity_key(self) -> Tuple[str, str]:
        return (self.entity_type, self.entity_id)


class Outbox:
    """
    Durable queue of pending mutations backed by the local database.

    Usage:
        outbox = Outbox(local_db)
        outbox.enqueue("user_profile", profile.id, MutationType.UPDATE, profile.to_record())
        batch = outbox.peek_batch(50)
        outbox.ack_many([entry.id for entry in batch])
    """

    def __init__(
        self,
        db: LocalDatabase,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._clock = clock

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    def enqueue(
        self,
        entity_type: str,
        entity_id: str,
        operation: MutationType,
        payload: Dict[str, Any],
        base_timestamp: Optional[datetime] = None,
    ) -> OutboxEntry:
        """
        Append a mutation snapshot.

        Joins the caller's transaction when one is open, so the entity write
        and its outbox entry commit together.

        Raises:
            StorageError: the entry could not be persisted
        """
        created_at = self._clock()
        payload_json = json.dumps(payload)
        base = base_timestamp.isoformat() if base_timestamp else None

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue
                    (entity_type, entity_id, operation, payload_json, base_timestamp, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [entity_type, entity_id, operation.value, payload_json, base, created_at.isoformat()],
            )
            entry_id = cursor.lastrowid

        logger.debug(f"Queued {operation.value} {entity_type}/{entity_id} as entry {entry_id}")
        return OutboxEntry(
            id=entry_id,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            payload=json.loads(payload_json),
            base_timestamp=base_timestamp,
            created_at=created_at,
        )

    def ack(self, entry_id: int) -> None:
        """Remove an entry after confirmed remote handling."""
        self.ack_many([entry_id])

    def ack_many(self, entry_ids: Iterable[int]) -> int:
        """Remove several entries in one transaction. Returns rows removed."""
        ids = list(entry_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        return self._db.execute(
            f"DELETE FROM sync_queue WHERE id IN ({placeholders})",
            ids,
        )

    def bump_retry(self, entry_id: int, error: Optional[str] = None) -> int:
        """
        Record a failed attempt.

        Returns:
            The new retry count

        Raises:
            NotFoundError: unknown entry id
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_queue
                SET retry_count = retry_count + 1, last_attempt = ?, error_message = ?
                WHERE id = ?
                """,
                [self._clock().isoformat(), error, entry_id],
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Outbox entry {entry_id} not found", entity_type="outbox_entry",
                                    entity_id=str(entry_id))
            row = conn.execute(
                "SELECT retry_count FROM sync_queue WHERE id = ?", [entry_id]
            ).fetchone()
        return row["retry_count"]

    def escalate(self, entry_id: int, reason: Optional[str] = None) -> None:
        """Flag an entry that reached the retry ceiling. It stays in the log."""
        rows = self._db.execute(
            "UPDATE sync_queue SET status = ?, error_message = COALESCE(?, error_message) WHERE id = ?",
            [OutboxStatus.ESCALATED.value, reason, entry_id],
        )
        if rows == 0:
            raise NotFoundError(f"Outbox entry {entry_id} not found", entity_type="outbox_entry",
                                entity_id=str(entry_id))
        logger.warning(f"Outbox entry {entry_id} escalated: {reason}")

    def requeue_escalated(self) -> int:
        """Return escalated entries to the pending queue with a fresh retry budget."""
        count = self._db.execute(
            "UPDATE sync_queue SET status = ?, retry_count = 0 WHERE status = ?",
            [OutboxStatus.PENDING.value, OutboxStatus.ESCALATED.value],
        )
        if count:
            logger.info(f"Requeued {count} escalated outbox entries")
        return count

    def rebase(
        self,
        entity_type: str,
        entity_id: str,
        after_id: int,
        base_timestamp: datetime,
    ) -> int:
        """
        Move the base timestamp of later entries for an entity forward.

        Used after the server accepted an upload, so edits queued after the
        uploaded snapshot are not mistaken for conflicts with our own write.
        """
        return self._db.execute(
            """
            UPDATE sync_queue SET base_timestamp = ?
            WHERE entity_type = ? AND entity_id = ? AND id > ?
            """,
            [base_timestamp.isoformat(), entity_type, entity_id, after_id],
        )

    # =========================================================================
    # READ PATH
    # =========================================================================

    def peek_batch(self, max_size: int, after_id: int = 0) -> List[OutboxEntry]:
        """Pending entries oldest-first, starting after a given entry id."""
        rows = self._db.fetch(
            """
            SELECT * FROM sync_queue
            WHERE status = ? AND id > ?
            ORDER BY id ASC
            LIMIT ?
            """,
            [OutboxStatus.PENDING.value, after_id, max_size],
        )
        return [self._row_to_entry(row) for row in rows]

    def get(self, entry_id: int) -> Optional[OutboxEntry]:
        rows = self._db.fetch("SELECT * FROM sync_queue WHERE id = ?", [entry_id])
        return self._row_to_entry(rows[0]) if rows else None

    def entries_for(self, entity_type: str, entity_id: str) -> List[OutboxEntry]:
        """Every queued entry (pending or escalated) for one entity, oldest-first."""
        rows = self._db.fetch(
            """
            SELECT * FROM sync_queue
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY id ASC
            """,
            [entity_type, entity_id],
        )
        return [self._row_to_entry(row) for row in rows]

    def latest_entry_id(self, entity_type: str, entity_id: str) -> Optional[int]:
        """Most recent pending entry id for an entity (the coalescing index)."""
        rows = self._db.fetch(
            """
            SELECT MAX(id) AS latest FROM sync_queue
            WHERE entity_type = ? AND entity_id = ? AND status = ?
            """,
            [entity_type, entity_id, OutboxStatus.PENDING.value],
        )
        return rows[0]["latest"] if rows else None

    def latest_entry_ids(self) -> Dict[Tuple[str, str], int]:
        """Index of entity key -> most recent pending entry id."""
        rows = self._db.fetch(
            """
            SELECT entity_type, entity_id, MAX(id) AS latest FROM sync_queue
            WHERE status = ?
            GROUP BY entity_type, entity_id
            """,
            [OutboxStatus.PENDING.value],
        )
        return {(row["entity_type"], row["entity_id"]): row["latest"] for row in rows}

    def escalated(self) -> List[OutboxEntry]:
        rows = self._db.fetch(
            "SELECT * FROM sync_queue WHERE status = ? ORDER BY id ASC",
            [OutboxStatus.ESCALATED.value],
        )
        return [self._row_to_entry(row) for row in rows]

    def pending_count(self) -> int:
        return self._count(OutboxStatus.PENDING)

    def escalated_count(self) -> int:
        return self._count(OutboxStatus.ESCALATED)

    def _count(self, status: OutboxStatus) -> int:
        rows = self._db.fetch(
            "SELECT COUNT(*) AS count FROM sync_queue WHERE status = ?",
            [status.value],
        )
        return rows[0]["count"] if rows else 0

    @staticmethod
    def coalesce(entries: List[OutboxEntry]) -> Dict[Tuple[str, str], List[OutboxEntry]]:
        """
        Group a batch by entity key, preserving first-seen order.

        The last entry of each group carries the payload to upload; the
        earlier ones are superseded.
        """
        groups: Dict[Tuple[str, str], List[OutboxEntry]] = {}
        for entry in sorted(entries, key=lambda e: e.id):
            groups.setdefault(entry.entity_key, []).append(entry)
        return groups

    @staticmethod
    def _row_to_entry(row) -> OutboxEntry:
        return OutboxEntry(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            operation=MutationType(row["operation"]),
            payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
            base_timestamp=parse_timestamp(row["base_timestamp"]),
            created_at=parse_timestamp(row["created_at"]),
            retry_count=row["retry_count"],
            status=OutboxStatus(row["status"]),
            last_attempt=parse_timestamp(row["last_attempt"]),
            error_message=row["error_message"],
        )

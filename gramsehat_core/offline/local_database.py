# =============================================================================
# gramsehat_core/offline/local_database.py
# Local SQLite Entity Store for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-backed store that is the single source of truth on
the device.

Features:
- Automatic schema creation
- Keyed entity CRUD (put / get / query / delete)
- Atomic per-entity writes and per-entity write locks
- Reentrant transactions so a mutation and its outbox entry commit together
- DataFrame export (pandas)
- Persisted app settings (e.g. the download watermark)
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Type
import logging

import pandas as pd

from gramsehat_core.errors import StorageError
from gramsehat_core.models import Entity, entity_class, utcnow

logger = logging.getLogger(__name__)


class LocalDatabase:
    """
    Local SQLite database for offline entity storage.

    Entities are stored as JSON payloads keyed by (entity_type, entity_id).
    The store never enforces cross-entity references: a reminder may exist
    before its owning case has synced.
    """

    # Default database location
    DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "local_data" / "gramsehat.db"

    # Column holding the owning entity id, used for indexed child lookups
    PARENT_FIELDS = {
        "reminder": "owner_id",
        "vaccination_record": "child_id",
        "pregnancy_case": "user_id",
        "child_record": "user_id",
    }

    SCHEMA = {
        "entities": """
            CREATE TABLE IF NOT EXISTS entities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                parent_id TEXT,
                payload_json TEXT NOT NULL,
                last_updated TEXT NOT NULL,
                stored_at TEXT NOT NULL,
                UNIQUE(entity_type, entity_id)
            )
        """,
        "entities_parent_index": """
            CREATE INDEX IF NOT EXISTS idx_entities_parent
            ON entities (entity_type, parent_id)
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                payload_json TEXT,
                base_timestamp TEXT,
                created_at TEXT NOT NULL,
                retry_count INTEGER DEFAULT 0,
                last_attempt TEXT,
                status TEXT DEFAULT 'pending',
                error_message TEXT
            )
        """,
        "sync_queue_entity_index": """
            CREATE INDEX IF NOT EXISTS idx_sync_queue_entity
            ON sync_queue (entity_type, entity_id)
        """,
        "reminder_history": """
            CREATE TABLE IF NOT EXISTS reminder_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                reminder_id TEXT NOT NULL,
                prior_due_date TEXT NOT NULL,
                new_due_date TEXT NOT NULL,
                changed_at TEXT NOT NULL
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    _instance: Optional[LocalDatabase] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None, initialize: bool = True):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
            initialize: Create the schema immediately
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._ensure_directory()
        self._local = threading.local()
        self._initialized = False
        self._entity_locks: Dict[tuple, threading.RLock] = {}
        self._entity_locks_guard = threading.Lock()
        if initialize:
            self.initialize()

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None) -> LocalDatabase:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalDatabase(db_path)
        return cls._instance

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30,
                isolation_level=None,  # transactions are managed explicitly
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA journal_mode = WAL")
            connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection = connection
            self._local.depth = 0
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        Nested use joins the outer transaction; only the outermost block
        commits or rolls back.
        """
        conn = self._get_connection()
        depth = self._local.depth
        self._local.depth = depth + 1
        try:
            if depth == 0:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if depth == 0:
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            if depth == 0:
                conn.execute("ROLLBACK")
            raise StorageError(f"Local store write failed: {e}") from e
        except BaseException:
            if depth == 0:
                conn.execute("ROLLBACK")
            raise
        finally:
            self._local.depth = depth

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        conn = self._get_connection()
        for name, schema in self.SCHEMA.items():
            try:
                conn.execute(schema)
                logger.debug(f"Created/verified: {name}")
            except sqlite3.Error as e:
                logger.error(f"Error creating {name}: {e}")
                raise StorageError(f"Could not create {name}: {e}", table=name) from e

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    def entity_lock(self, entity_type: str, entity_id: str) -> threading.RLock:
        """
        Write lock for a single entity key.

        Foreground mutations and sync resolution both hold this lock, so a
        given entity has at most one writer at a time.
        """
        key = (entity_type, entity_id)
        with self._entity_locks_guard:
            lock = self._entity_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._entity_locks[key] = lock
            return lock

    @contextmanager
    def locked(self, keys: List[tuple]) -> Iterator[None]:
        """
        Hold the write locks of several entities at once.

        Locks are taken in sorted key order and always before a transaction
        begins, so two writers cannot wait on each other.
        """
        with ExitStack() as stack:
            for entity_type, entity_id in sorted(set(keys)):
                stack.enter_context(self.entity_lock(entity_type, entity_id))
            yield

    # =========================================================================
    # ENTITY OPERATIONS
    # =========================================================================

    def put(self, entity: Entity) -> Entity:
        """
        Validate and upsert an entity.

        Overwrites keep the original insertion position, so query order is
        stable across updates.

        Raises:
            ValidationFailure: entity violates an invariant (nothing written)
            StorageError: SQLite could not complete the write
        """
        entity.validate()
        record = entity.to_record()
        parent_field = self.PARENT_FIELDS.get(entity.ENTITY_TYPE)
        parent_id = record.get(parent_field) if parent_field else None

        with self.entity_lock(entity.ENTITY_TYPE, entity.id):
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO entities
                        (entity_type, entity_id, parent_id, payload_json, last_updated, stored_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(entity_type, entity_id) DO UPDATE SET
                        parent_id = excluded.parent_id,
                        payload_json = excluded.payload_json,
                        last_updated = excluded.last_updated,
                        stored_at = excluded.stored_at
                    """,
                    [
                        entity.ENTITY_TYPE,
                        entity.id,
                        parent_id,
                        json.dumps(record),
                        record["last_updated"],
                        utcnow().isoformat(),
                    ],
                )
        return entity

    def get(self, entity_type: str, entity_id: str) -> Optional[Entity]:
        """Get an entity by key, or None if absent."""
        cls = entity_class(entity_type)
        conn = self._get_connection()
        row = conn.execute(
            "SELECT payload_json FROM entities WHERE entity_type = ? AND entity_id = ?",
            [entity_type, entity_id],
        ).fetchone()
        if row is None:
            return None
        return cls.from_record(json.loads(row["payload_json"]))

    def query(
        self,
        entity_type: str,
        predicate: Optional[Callable[[Entity], bool]] = None,
    ) -> List[Entity]:
        """All entities of a type in insertion order, optionally filtered."""
        cls = entity_class(entity_type)
        rows = self._get_connection().execute(
            "SELECT payload_json FROM entities WHERE entity_type = ? ORDER BY id ASC",
            [entity_type],
        ).fetchall()
        return self._materialize(cls, rows, predicate)

    def children_of(
        self,
        entity_type: str,
        parent_id: str,
        predicate: Optional[Callable[[Entity], bool]] = None,
    ) -> List[Entity]:
        """Entities of a type whose owning id equals parent_id (indexed lookup)."""
        cls = entity_class(entity_type)
        rows = self._get_connection().execute(
            """
            SELECT payload_json FROM entities
            WHERE entity_type = ? AND parent_id = ?
            ORDER BY id ASC
            """,
            [entity_type, parent_id],
        ).fetchall()
        return self._materialize(cls, rows, predicate)

    def delete(self, entity_type: str, entity_id: str) -> bool:
        """Delete an entity. Returns True if a row was removed."""
        with self.entity_lock(entity_type, entity_id):
            with self.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM entities WHERE entity_type = ? AND entity_id = ?",
                    [entity_type, entity_id],
                )
                return cursor.rowcount > 0

    def count(self, entity_type: str) -> int:
        row = self._get_connection().execute(
            "SELECT COUNT(*) AS count FROM entities WHERE entity_type = ?",
            [entity_type],
        ).fetchone()
        return row["count"] if row else 0

    @staticmethod
    def _materialize(
        cls: Type[Entity],
        rows: List[sqlite3.Row],
        predicate: Optional[Callable[[Entity], bool]],
    ) -> List[Entity]:
        entities = [cls.from_record(json.loads(row["payload_json"])) for row in rows]
        if predicate is None:
            return entities
        return [e for e in entities if predicate(e)]

    # =========================================================================
    # RAW SQL
    # =========================================================================

    def fetch(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        return self._get_connection().execute(sql, params or []).fetchall()

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a raw SQL statement inside a transaction."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params or [])
            return cursor.rowcount

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, entity_type: str) -> pd.DataFrame:
        """
        Load every entity of a type into a flat DataFrame.

        Nested structures (e.g. scheme criteria) become dotted columns.
        """
        records = [entity.to_record() for entity in self.query(entity_type)]
        if not records:
            return pd.DataFrame()
        return pd.json_normalize(records)

    # =========================================================================
    # REMINDER AUDIT LOG
    # =========================================================================

    def record_reschedule(
        self,
        reminder_id: str,
        prior_due_date: str,
        new_due_date: str,
        changed_at: Optional[datetime] = None,
    ) -> None:
        """Append a reschedule entry to the audit log."""
        self.execute(
            """
            INSERT INTO reminder_history (reminder_id, prior_due_date, new_due_date, changed_at)
            VALUES (?, ?, ?, ?)
            """,
            [reminder_id, prior_due_date, new_due_date, (changed_at or utcnow()).isoformat()],
        )

    def reschedule_history(self, reminder_id: str) -> List[Dict[str, str]]:
        rows = self.fetch(
            """
            SELECT prior_due_date, new_due_date, changed_at FROM reminder_history
            WHERE reminder_id = ? ORDER BY id ASC
            """,
            [reminder_id],
        )
        return [dict(row) for row in rows]

    def delete_reschedule_history(self, reminder_id: str) -> None:
        self.execute("DELETE FROM reminder_history WHERE reminder_id = ?", [reminder_id])

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        result = self.fetch(
            "SELECT value FROM app_settings WHERE key = ?",
            [key]
        )
        if result:
            try:
                return json.loads(result[0]["value"])
            except json.JSONDecodeError:
                return result[0]["value"]
        return default

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        value_str = json.dumps(value) if not isinstance(value, str) else value
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value_str, utcnow().isoformat()]
        )

    def close(self) -> None:
        """Close this thread's database connection."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None


# Singleton accessor
_local_database: Optional[LocalDatabase] = None


def get_local_database(db_path: Optional[Path] = None) -> LocalDatabase:
    """Get the global LocalDatabase instance."""
    global _local_database
    if _local_database is None:
        _local_database = LocalDatabase.get_instance(db_path)
        _local_database.initialize()
    return _local_database

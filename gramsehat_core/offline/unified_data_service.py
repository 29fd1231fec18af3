# =============================================================================
# gramsehat_core/offline/unified_data_service.py
# HealthAssistant - Single API over the Local-First Core
# =============================================================================
"""
HealthAssistant - the primary entry point for the voice/UI layer.

Wires the local store, outbox, engines, command dispatcher and the
background sync engine together. Every operation except sync runs against
the local store and keeps working offline.

Usage:
------
from gramsehat_core.offline import get_health_assistant

assistant = get_health_assistant()
case, reminders = assistant.register_pregnancy("Sunita Devi", date(2025, 3, 14))
result = assistant.dispatch(Command(CommandType.SHOW_REMINDERS), user_id=profile.id)
print(assistant.sync_status())
"""

from __future__ import annotations
import threading
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from gramsehat_core.api.base_connector import RemoteEndpoint
from gramsehat_core.api.config_manager import RemoteConfigManager
from gramsehat_core.config import AppConfig, load_config
from gramsehat_core.errors import error_boundary
from gramsehat_core.logging import setup_logging
from gramsehat_core.models import (
    ChildRecord,
    PregnancyCase,
    Reminder,
    UserProfile,
    VaccinationRecord,
    utcnow,
)
from gramsehat_core.offline.connection_manager import ConnectionManager
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.offline.outbox import Outbox
from gramsehat_core.offline.repository import UserDataRepository
from gramsehat_core.offline.sync_engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)


class HealthAssistant:
    """
    Facade over the local-first core.

    Collaborators can be injected (tests pass a temporary database and a
    mock endpoint); anything omitted is built from the AppConfig.
    """

    _instance: Optional[HealthAssistant] = None
    _lock = threading.Lock()

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        db: Optional[LocalDatabase] = None,
        remote: Optional[RemoteEndpoint] = None,
        connection_manager: Optional[ConnectionManager] = None,
        location_provider: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        # Services import the offline package; load them lazily
        from gramsehat_core.services import (
            CommandDispatcher,
            EligibilityEngine,
            FacilityService,
            ReminderScheduler,
        )

        self.config = config or AppConfig()
        self.db = db or LocalDatabase(self.config.db_path)
        self.outbox = Outbox(self.db, clock=clock)
        self.repository = UserDataRepository(self.db, self.outbox, clock=clock)

        self.eligibility = EligibilityEngine(self.db)
        self.reminders = ReminderScheduler(self.repository, clock=clock)
        self.facilities = FacilityService(self.db, location_provider=location_provider)
        self.dispatcher = CommandDispatcher(
            self.repository,
            self.facilities,
            self.eligibility,
            self.reminders,
            clock=clock,
        )

        self.remote = remote or RemoteConfigManager(self.config).get_endpoint()
        self.connection = connection_manager or ConnectionManager(self.remote)
        self.sync_engine = SyncEngine(
            self.db,
            self.outbox,
            self.remote,
            batch_size=self.config.batch_size,
            max_retry_attempts=self.config.max_retry_attempts,
            sync_interval=self.config.sync_interval,
            connection_manager=self.connection,
            clock=clock,
        )
        self._initialized = False

    @classmethod
    def get_instance(cls) -> HealthAssistant:
        """Get or create the process-wide assistant from the loaded config."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    config = load_config()
                    setup_logging(config.log_level, config.log_to_file)
                    cls._instance = HealthAssistant(config)
        return cls._instance

    def initialize(self, start_sync: bool = True) -> None:
        """Check connectivity and start background monitoring and sync."""
        if self._initialized:
            return
        self.connection.initialize(start_monitoring=start_sync)
        if start_sync:
            self.sync_engine.start()
        self._initialized = True
        logger.info(f"HealthAssistant initialized. Online: {self.is_online}")

    @property
    def is_online(self) -> bool:
        return self.connection.is_online

    @property
    def pending_sync_count(self) -> int:
        return self.outbox.pending_count()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def save_profile(self, profile: UserProfile) -> UserProfile:
        return self.repository.save(profile)

    def register_pregnancy(
        self,
        subject_name: str,
        expected_delivery_date: date,
        user_id: Optional[str] = None,
        registered_by: Optional[str] = None,
    ) -> Tuple[PregnancyCase, List[Reminder]]:
        """Store a pregnancy case and its reminder schedule in one transaction."""
        case = PregnancyCase(
            subject_name=subject_name,
            expected_delivery_date=expected_delivery_date,
            user_id=user_id,
            registered_by=registered_by,
        )
        # Fresh keys: no other writer can hold their locks yet
        with self.db.transaction():
            self.repository.save(case)
            reminders = self.reminders.create_pregnancy_schedule(case.id, expected_delivery_date)
        return case, reminders

    def register_child(
        self,
        child_name: str,
        birth_date: date,
        user_id: Optional[str] = None,
        registered_by: Optional[str] = None,
    ) -> Tuple[ChildRecord, List[Reminder], List[VaccinationRecord]]:
        """Store a child record and its vaccination schedule in one transaction."""
        child = ChildRecord(
            child_name=child_name,
            birth_date=birth_date,
            user_id=user_id,
            registered_by=registered_by,
        )
        with self.db.transaction():
            self.repository.save(child)
            reminders, records = self.reminders.create_child_schedule(child.id, birth_date)
        return child, reminders, records

    def remove_case(self, entity_type: str, entity_id: str) -> int:
        """Delete a case with its reminders and vaccinations. Returns entities removed."""
        return len(self.repository.remove(entity_type, entity_id))

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def dispatch(self, command, user_id: Optional[str] = None):
        """Run a voice/UI command token; always returns a ServiceResult."""
        return self.dispatcher.dispatch(command, user_id)

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync_now(self) -> SyncReport:
        return self.sync_engine.sync_now()

    @error_boundary(default_return={})
    def sync_status(self) -> Dict[str, Any]:
        """Combined connectivity and sync status; never raises."""
        status = self.sync_engine.get_status_display()
        status["connection"] = self.connection.get_status_display()
        return status

    def shutdown(self) -> None:
        """Stop background threads and close this thread's connection."""
        self.sync_engine.stop()
        self.connection.stop_monitoring()
        self.db.close()
        logger.info("HealthAssistant shut down")


def get_health_assistant() -> HealthAssistant:
    """
    Get the global HealthAssistant instance.

    Returns:
        HealthAssistant singleton, initialized
    """
    assistant = HealthAssistant.get_instance()
    assistant.initialize()
    return assistant

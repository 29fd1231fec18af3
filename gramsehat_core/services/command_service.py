# =============================================================================
# gramsehat_core/services/command_service.py
# Command Token Dispatch for the Voice/UI Layer
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, List, Optional

from gramsehat_core.errors import ValidationFailure
from gramsehat_core.models import ChildRecord, PregnancyCase, Reminder, UserProfile, utcnow
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.offline.repository import UserDataRepository
from gramsehat_core.services.base_service import BaseService, ServiceResult
from gramsehat_core.services.eligibility_service import EligibilityEngine
from gramsehat_core.services.facility_service import Coordinate, FacilityService
from gramsehat_core.services.reminder_service import ReminderScheduler


class CommandType(Enum):
    FIND_HEALTHCARE = "find_healthcare"
    SHOW_EMERGENCY = "show_emergency"
    CHECK_SCHEME = "check_scheme"
    SHOW_REMINDERS = "show_reminders"
    UNKNOWN = "unknown"


@dataclass
class Command:
    """A recognised command token; raw_text keeps the utterance for UNKNOWN."""
    command_type: CommandType
    raw_text: str = ""
    position: Optional[Coordinate] = None


class CommandDispatcher(BaseService):
    """
    Routes a command token to the matching local operation.

    Every command runs against the local store only, so it works offline.
    Failures come back as ServiceResult, never as exceptions.
    """

    FACILITY_LIMIT = 5

    def __init__(
        self,
        repository: UserDataRepository,
        facilities: FacilityService,
        eligibility: EligibilityEngine,
        reminders: ReminderScheduler,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__()
        self._repository = repository
        self._db: LocalDatabase = repository.db
        self._facilities = facilities
        self._eligibility = eligibility
        self._reminders = reminders
        self._clock = clock

        self._handlers = {
            CommandType.FIND_HEALTHCARE: self._find_healthcare,
            CommandType.SHOW_EMERGENCY: self._show_emergency,
            CommandType.CHECK_SCHEME: self._check_scheme,
            CommandType.SHOW_REMINDERS: self._show_reminders,
        }

    def dispatch(self, command: Command, user_id: Optional[str] = None) -> ServiceResult:
        handler = self._handlers.get(command.command_type)
        if handler is None:
            return ServiceResult.fail(
                "Command not recognised",
                error_code="CMD_UNKNOWN",
                metadata={"raw_text": command.raw_text},
            )
        return self.safe_execute(
            f"Handling {command.command_type.value}",
            handler,
            command,
            user_id,
        )

    def _profile(self, user_id: Optional[str]) -> Optional[UserProfile]:
        return self._db.get(UserProfile.ENTITY_TYPE, user_id) if user_id else None

    def _find_healthcare(self, command: Command, user_id: Optional[str]):
        profile = self._profile(user_id)
        return self._facilities.nearest(
            position=command.position,
            limit=self.FACILITY_LIMIT,
            district=profile.district if profile else None,
        )

    def _show_emergency(self, command: Command, user_id: Optional[str]):
        profile = self._profile(user_id)
        return self._facilities.emergency_contacts(district=profile.district if profile else None)

    def _check_scheme(self, command: Command, user_id: Optional[str]):
        profile = self._repository.require(UserProfile.ENTITY_TYPE, user_id)
        return self._eligibility.evaluate(profile)

    def _show_reminders(self, command: Command, user_id: Optional[str]) -> List[Reminder]:
        """Upcoming reminders across every case the user owns; a user is required."""
        if not user_id:
            raise ValidationFailure("Showing reminders requires a user", field="user_id")
        today: date = self._clock().date()
        owned = lambda e: e.user_id == user_id
        owner_ids = [case.id for case in self._db.query(PregnancyCase.ENTITY_TYPE, owned)]
        owner_ids += [child.id for child in self._db.query(ChildRecord.ENTITY_TYPE, owned)]

        upcoming: List[Reminder] = []
        for owner_id in owner_ids:
            upcoming.extend(self._reminders.get_upcoming(owner_id, today))
        return sorted(upcoming, key=lambda r: r.due_date)

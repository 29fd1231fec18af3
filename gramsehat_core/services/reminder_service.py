# =============================================================================
# gramsehat_core/services/reminder_service.py
# Maternal and Child Reminder Scheduling
# =============================================================================
"""
ReminderScheduler - generates and maintains reminder schedules.

Pregnancy schedules are fixed calendar offsets from the pregnancy start
(expected delivery date minus 280 days). Child schedules follow the national
immunisation timetable, one VaccinationRecord plus one linked Reminder per
vaccine.

Reminder lifecycle: scheduled -> due -> completed. Rescheduling an open
reminder moves its due date and appends the prior date to the
``reminder_history`` audit table; completed reminders cannot be rescheduled.

All writes go through UserDataRepository so every change is queued for
upload in the same transaction.
"""

from __future__ import annotations
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from gramsehat_core.errors import (
    AlreadyCompletedError,
    ReminderCompletedError,
    ValidationFailure,
)
from gramsehat_core.models import (
    ChildRecord,
    Reminder,
    ReminderType,
    VaccinationRecord,
    utcnow,
)
from gramsehat_core.offline.repository import UserDataRepository
from gramsehat_core.services.base_service import BaseService


# =============================================================================
# SCHEDULE TABLES
# =============================================================================

GESTATION_DAYS = 280  # expected delivery date is gestational week 40

ANTENATAL_CHECKUP_WEEKS = (12, 16, 20, 24, 28, 32, 36, 38)
TETANUS_VACCINATION_WEEKS = {16: "TT-1", 24: "TT-2"}
POSTNATAL_CHECKUP_WEEKS = (42, 48)

# (offset from birth, label, vaccines given together)
CHILD_VACCINATION_SCHEDULE: List[Tuple[pd.DateOffset, str, Tuple[str, ...]]] = [
    (pd.DateOffset(days=0), "at birth", ("BCG", "OPV-0", "HepB-1")),
    (pd.DateOffset(weeks=6), "6 weeks", ("DPT-1", "OPV-1", "HepB-2")),
    (pd.DateOffset(weeks=10), "10 weeks", ("DPT-2", "OPV-2")),
    (pd.DateOffset(weeks=14), "14 weeks", ("DPT-3", "OPV-3", "HepB-3")),
    (pd.DateOffset(months=9), "9 months", ("Measles-1", "Vitamin-A-1")),
    # given between 16 and 24 months; scheduled at the lower bound
    (pd.DateOffset(months=16), "16 months", ("DPT-Booster-1", "OPV-Booster", "Measles-2")),
    (pd.DateOffset(years=5), "5 years", ("DPT-Booster-2",)),
]


class ReminderStatus(Enum):
    SCHEDULED = "scheduled"
    DUE = "due"
    COMPLETED = "completed"


def pregnancy_start(expected_delivery_date: date) -> date:
    return expected_delivery_date - timedelta(days=GESTATION_DAYS)


def _offset_date(start: date, offset: pd.DateOffset) -> date:
    return (pd.Timestamp(start) + offset).date()


class ReminderScheduler(BaseService):
    """
    Usage:
        scheduler = ReminderScheduler(repository)
        reminders = scheduler.create_pregnancy_schedule(case.id, case.expected_delivery_date)
        scheduler.mark_complete(reminders[0].id)
        upcoming = scheduler.get_upcoming(case.id, date.today())
    """

    def __init__(
        self,
        repository: UserDataRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__()
        self._repository = repository
        self._db = repository.db
        self._clock = clock

    # =========================================================================
    # SCHEDULE GENERATION
    # =========================================================================

    def create_pregnancy_schedule(
        self,
        case_id: str,
        expected_delivery_date: date,
    ) -> List[Reminder]:
        """
        Generate the antenatal, tetanus and postnatal reminders of a pregnancy.

        Reminders are returned (and stored) in due-date order; reminders on the
        same date keep their generation order (checkup before vaccination).

        Raises:
            ValidationFailure: missing date, or the case already has a schedule
        """
        if expected_delivery_date is None:
            raise ValidationFailure(
                "Expected delivery date is required",
                entity_type="pregnancy_case",
                field="expected_delivery_date",
            )
        self._ensure_no_schedule(case_id, "reminder", "pregnancy_case")

        start = pregnancy_start(expected_delivery_date)
        reminders: List[Reminder] = []

        for week in ANTENATAL_CHECKUP_WEEKS:
            reminders.append(Reminder(
                reminder_type=ReminderType.MATERNAL_CHECKUP,
                owner_id=case_id,
                title=f"Antenatal checkup (week {week})",
                description="Routine antenatal checkup at the nearest health centre",
                due_date=start + timedelta(weeks=week),
            ))
            if week in TETANUS_VACCINATION_WEEKS:
                dose = TETANUS_VACCINATION_WEEKS[week]
                reminders.append(Reminder(
                    reminder_type=ReminderType.MATERNAL_VACCINATION,
                    owner_id=case_id,
                    title=f"Tetanus toxoid vaccination {dose}",
                    description=f"{dose} dose during week {week} of pregnancy",
                    due_date=start + timedelta(weeks=week),
                ))

        for week in POSTNATAL_CHECKUP_WEEKS:
            reminders.append(Reminder(
                reminder_type=ReminderType.MATERNAL_CHECKUP,
                owner_id=case_id,
                title=f"Postnatal checkup (week {week})",
                description=f"{week - 40} weeks after delivery",
                due_date=start + timedelta(weeks=week),
            ))

        reminders.sort(key=lambda r: r.due_date)

        with self.log_operation(f"Creating pregnancy schedule for {case_id}"):
            self._repository.save_many(reminders)
        return reminders

    def create_child_schedule(
        self,
        child_id: str,
        birth_date: date,
        today: Optional[date] = None,
    ) -> Tuple[List[Reminder], List[VaccinationRecord]]:
        """
        Generate one VaccinationRecord and one linked Reminder per vaccine.

        Raises:
            ValidationFailure: birth date missing or in the future, or the
                child already has a vaccination schedule
        """
        today = today or self._clock().date()
        if birth_date is None:
            raise ValidationFailure("Birth date is required", entity_type="child_record", field="birth_date")
        if birth_date > today:
            raise ValidationFailure(
                "Birth date cannot be in the future",
                entity_type=ChildRecord.ENTITY_TYPE,
                field="birth_date",
                value=birth_date,
            )
        self._ensure_no_schedule(child_id, "vaccination_record", "child_record")

        records: List[VaccinationRecord] = []
        reminders: List[Reminder] = []
        for offset, label, vaccines in CHILD_VACCINATION_SCHEDULE:
            due = _offset_date(birth_date, offset)
            for vaccine in vaccines:
                record = VaccinationRecord(child_id=child_id, vaccine_name=vaccine, scheduled_date=due)
                records.append(record)
                reminders.append(Reminder(
                    reminder_type=ReminderType.CHILD_VACCINATION,
                    owner_id=child_id,
                    title=f"{vaccine} vaccination",
                    description=f"{vaccine} is due {label}",
                    due_date=due,
                    vaccination_record_id=record.id,
                ))

        with self.log_operation(f"Creating vaccination schedule for {child_id}"):
            self._repository.save_many([*records, *reminders])
        return reminders, records

    def _ensure_no_schedule(self, owner_id: str, child_type: str, owner_type: str) -> None:
        if self._db.children_of(child_type, owner_id):
            raise ValidationFailure(
                f"{owner_type} {owner_id} already has a schedule",
                entity_type=owner_type,
                field="id",
                value=owner_id,
            )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def mark_complete(self, reminder_id: str, completed_at: Optional[datetime] = None) -> Reminder:
        """
        Complete a due reminder; a linked vaccination is marked administered.

        A reminder only becomes completable once it is due, so ``completed_at``
        may not fall before ``due_date``. A dose given early is recorded by
        rescheduling the reminder to that day first.

        Raises:
            NotFoundError: unknown reminder
            AlreadyCompletedError: the reminder was already completed (no change)
            ValidationFailure: ``completed_at`` is before the due date (no change)
        """
        reminder = self._repository.require(Reminder.ENTITY_TYPE, reminder_id)
        completed_at = completed_at or self._clock()

        with self._db.locked(self._linked_keys(reminder)):
            reminder = self._repository.require(Reminder.ENTITY_TYPE, reminder_id)
            if reminder.completed:
                raise AlreadyCompletedError(reminder_id)
            if completed_at.date() < reminder.due_date:
                raise ValidationFailure(
                    f"Reminder is not due until {reminder.due_date.isoformat()}",
                    entity_type=Reminder.ENTITY_TYPE,
                    field="completed_at",
                    value=completed_at.isoformat(),
                    details={"entity_id": reminder_id},
                )

            reminder.completed = True
            reminder.completed_at = completed_at
            changed = [reminder]

            record = self._linked_record(reminder)
            if record is not None and not record.administered:
                record.administered = True
                record.administered_date = completed_at.date()
                changed.append(record)

            self._repository.save_many(changed)

        self.logger.info(f"Reminder {reminder_id} completed")
        return reminder

    def reschedule(self, reminder_id: str, new_due_date: date) -> Reminder:
        """
        Move an open reminder to a new due date.

        The linked vaccination's scheduled date follows unless the vaccine
        was already administered.

        Raises:
            NotFoundError: unknown reminder
            ReminderCompletedError: completed reminders are history
        """
        if new_due_date is None:
            raise ValidationFailure("New due date is required", entity_type="reminder", field="due_date")

        reminder = self._repository.require(Reminder.ENTITY_TYPE, reminder_id)

        with self._db.locked(self._linked_keys(reminder)):
            reminder = self._repository.require(Reminder.ENTITY_TYPE, reminder_id)
            if reminder.completed:
                raise ReminderCompletedError(reminder_id)

            prior_due_date = reminder.due_date
            reminder.due_date = new_due_date
            reminder.completed = False
            reminder.completed_at = None
            changed = [reminder]

            record = self._linked_record(reminder)
            if record is not None and not record.administered:
                record.scheduled_date = new_due_date
                changed.append(record)

            with self._db.transaction():
                self._repository.save_many(changed)
                self._db.record_reschedule(
                    reminder_id,
                    prior_due_date.isoformat(),
                    new_due_date.isoformat(),
                    self._clock(),
                )

        self.logger.info(f"Reminder {reminder_id} rescheduled {prior_due_date} -> {new_due_date}")
        return reminder

    def _linked_keys(self, reminder: Reminder) -> List[tuple]:
        keys = [reminder.key]
        if reminder.vaccination_record_id:
            keys.append((VaccinationRecord.ENTITY_TYPE, reminder.vaccination_record_id))
        return keys

    def _linked_record(self, reminder: Reminder) -> Optional[VaccinationRecord]:
        if not reminder.vaccination_record_id:
            return None
        return self._db.get(VaccinationRecord.ENTITY_TYPE, reminder.vaccination_record_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_upcoming(self, owner_id: str, from_date: date) -> List[Reminder]:
        """Open reminders due on or after from_date, earliest first."""
        reminders = self._db.children_of(
            Reminder.ENTITY_TYPE,
            owner_id,
            lambda r: not r.completed and r.due_date >= from_date,
        )
        return sorted(reminders, key=lambda r: r.due_date)

    def get_overdue(self, owner_id: str, today: date) -> List[Reminder]:
        """Open reminders whose due date has passed."""
        reminders = self._db.children_of(
            Reminder.ENTITY_TYPE,
            owner_id,
            lambda r: not r.completed and r.due_date < today,
        )
        return sorted(reminders, key=lambda r: r.due_date)

    @staticmethod
    def status_of(reminder: Reminder, today: date) -> ReminderStatus:
        if reminder.completed:
            return ReminderStatus.COMPLETED
        if reminder.due_date <= today:
            return ReminderStatus.DUE
        return ReminderStatus.SCHEDULED

    def reschedule_history(self, reminder_id: str) -> List[Dict[str, str]]:
        """Prior due dates of a reminder, oldest change first."""
        self._repository.require(Reminder.ENTITY_TYPE, reminder_id)
        return self._db.reschedule_history(reminder_id)

    def vaccinations_for(self, child_id: str) -> List[VaccinationRecord]:
        records = self._db.children_of(VaccinationRecord.ENTITY_TYPE, child_id)
        return sorted(records, key=lambda r: r.scheduled_date)

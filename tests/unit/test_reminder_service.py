# =============================================================================
# tests/unit/test_reminder_service.py
# Unit Tests for Reminder Scheduling
# =============================================================================

import pytest
from datetime import date, datetime, timedelta, timezone


EDD = date(2024, 10, 7)


@pytest.fixture
def scheduler(repository, clock):
    from gramsehat_core.services import ReminderScheduler
    return ReminderScheduler(repository, clock=clock)


class TestPregnancySchedule:
    """Test pregnancy schedule generation"""

    def test_schedule_spans_week_12_to_week_48(self, scheduler):
        from gramsehat_core.services.reminder_service import pregnancy_start

        reminders = scheduler.create_pregnancy_schedule("case-1", EDD)
        start = pregnancy_start(EDD)

        assert start == EDD - timedelta(days=280)
        assert reminders[0].due_date == start + timedelta(days=84)
        assert reminders[-1].due_date == start + timedelta(days=336)

    def test_due_dates_never_decrease(self, scheduler):
        reminders = scheduler.create_pregnancy_schedule("case-1", EDD)
        dates = [r.due_date for r in reminders]

        assert dates == sorted(dates)
        assert len(reminders) == 12

    def test_checkup_precedes_vaccination_on_same_day(self, scheduler):
        from gramsehat_core.models import ReminderType

        reminders = scheduler.create_pregnancy_schedule("case-1", EDD)
        week16 = [r for r in reminders if r.due_date == reminders[1].due_date]

        assert [r.reminder_type for r in week16] == [
            ReminderType.MATERNAL_CHECKUP,
            ReminderType.MATERNAL_VACCINATION,
        ]
        assert "TT-1" in week16[1].title

    def test_reminders_are_stored_and_queued(self, scheduler, local_db, outbox):
        reminders = scheduler.create_pregnancy_schedule("case-1", EDD)

        assert local_db.count("reminder") == len(reminders)
        assert outbox.pending_count() == len(reminders)

    def test_second_schedule_for_same_case_rejected(self, scheduler):
        from gramsehat_core.errors import ValidationFailure

        scheduler.create_pregnancy_schedule("case-1", EDD)
        with pytest.raises(ValidationFailure):
            scheduler.create_pregnancy_schedule("case-1", EDD)

    def test_missing_due_date_rejected(self, scheduler):
        from gramsehat_core.errors import ValidationFailure

        with pytest.raises(ValidationFailure):
            scheduler.create_pregnancy_schedule("case-1", None)


class TestChildSchedule:
    """Test the immunisation timetable"""

    def test_birth_and_six_week_doses(self, scheduler):
        reminders, records = scheduler.create_child_schedule("child-1", date(2024, 1, 1))
        due = {r.vaccine_name: r.scheduled_date for r in records}

        assert due["BCG"] == date(2024, 1, 1)
        assert due["DPT-1"] == date(2024, 2, 12)
        assert due["Measles-1"] == date(2024, 10, 1)
        assert due["DPT-Booster-2"] == date(2029, 1, 1)
        assert len(records) == len(reminders) == 17

    def test_each_reminder_links_its_record(self, scheduler):
        reminders, records = scheduler.create_child_schedule("child-1", date(2024, 1, 1))

        by_id = {r.id: r for r in records}
        for reminder in reminders:
            record = by_id[reminder.vaccination_record_id]
            assert reminder.due_date == record.scheduled_date
            assert record.vaccine_name in reminder.title

    def test_future_birth_date_rejected(self, scheduler):
        from gramsehat_core.errors import ValidationFailure

        with pytest.raises(ValidationFailure):
            scheduler.create_child_schedule("child-1", date(2024, 7, 1))

    def test_vaccinations_for_sorted_by_date(self, scheduler):
        scheduler.create_child_schedule("child-1", date(2024, 1, 1))

        dates = [r.scheduled_date for r in scheduler.vaccinations_for("child-1")]
        assert dates == sorted(dates)


class TestReminderLifecycle:
    """Test completion and rescheduling"""

    def test_mark_complete_sets_completion_time(self, scheduler, clock):
        reminder = scheduler.create_pregnancy_schedule("case-1", EDD)[0]

        done = scheduler.mark_complete(reminder.id)

        assert done.completed is True
        assert done.completed_at == clock()

    def test_second_completion_raises(self, scheduler):
        from gramsehat_core.errors import AlreadyCompletedError

        reminder = scheduler.create_pregnancy_schedule("case-1", EDD)[0]
        scheduler.mark_complete(reminder.id)

        with pytest.raises(AlreadyCompletedError):
            scheduler.mark_complete(reminder.id)

    def test_completing_vaccination_reminder_administers_record(self, scheduler, local_db):
        reminders, _ = scheduler.create_child_schedule("child-1", date(2024, 1, 1))
        given_at = datetime(2024, 1, 2, 8, 0, tzinfo=timezone.utc)

        scheduler.mark_complete(reminders[0].id, completed_at=given_at)

        record = local_db.get("vaccination_record", reminders[0].vaccination_record_id)
        assert record.administered is True
        assert record.administered_date == date(2024, 1, 2)

    def test_completion_before_due_date_rejected(self, scheduler, local_db):
        from gramsehat_core.errors import ValidationFailure

        reminders, _ = scheduler.create_child_schedule("child-1", date(2024, 1, 1))
        measles = next(r for r in reminders if "Measles-1" in r.title)

        with pytest.raises(ValidationFailure):
            scheduler.mark_complete(measles.id)

        assert local_db.get("reminder", measles.id).completed is False
        record = local_db.get("vaccination_record", measles.vaccination_record_id)
        assert record.administered is False

    def test_early_dose_recorded_after_reschedule(self, scheduler, clock):
        reminder = scheduler.create_pregnancy_schedule("case-1", EDD)[-1]

        scheduler.reschedule(reminder.id, clock().date())
        done = scheduler.mark_complete(reminder.id)

        assert done.completed is True
        assert done.due_date == clock().date()

    def test_mark_complete_unknown_reminder(self, scheduler):
        from gramsehat_core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            scheduler.mark_complete("missing")

    def test_reschedule_moves_linked_record_and_logs_history(self, scheduler, local_db):
        reminders, _ = scheduler.create_child_schedule("child-1", date(2024, 1, 1))
        target = reminders[3]
        prior = target.due_date

        moved = scheduler.reschedule(target.id, date(2024, 2, 20))

        assert moved.due_date == date(2024, 2, 20)
        record = local_db.get("vaccination_record", target.vaccination_record_id)
        assert record.scheduled_date == date(2024, 2, 20)
        history = scheduler.reschedule_history(target.id)
        assert history[0]["prior_due_date"] == prior.isoformat()
        assert history[0]["new_due_date"] == "2024-02-20"

    def test_reschedule_completed_reminder_raises(self, scheduler):
        from gramsehat_core.errors import ReminderCompletedError

        reminder = scheduler.create_pregnancy_schedule("case-1", EDD)[0]
        scheduler.mark_complete(reminder.id)

        with pytest.raises(ReminderCompletedError):
            scheduler.reschedule(reminder.id, date(2024, 5, 1))
        assert scheduler.reschedule_history(reminder.id) == []


class TestReminderQueries:
    """Test upcoming / overdue / status"""

    def test_upcoming_excludes_completed_and_past(self, scheduler):
        reminders = scheduler.create_pregnancy_schedule("case-1", EDD)
        scheduler.mark_complete(reminders[-1].id, completed_at=datetime(2024, 12, 5, 10, tzinfo=timezone.utc))
        cutoff = reminders[4].due_date

        upcoming = scheduler.get_upcoming("case-1", cutoff)

        assert upcoming[0].due_date == cutoff
        assert reminders[-1].id not in {r.id for r in upcoming}
        assert all(r.due_date >= cutoff for r in upcoming)

    def test_overdue(self, scheduler):
        reminders = scheduler.create_pregnancy_schedule("case-1", EDD)

        overdue = scheduler.get_overdue("case-1", reminders[3].due_date)

        assert [r.id for r in overdue] == [r.id for r in reminders[:3]]

    def test_status_of(self):
        from gramsehat_core.models import Reminder, ReminderType
        from gramsehat_core.services import ReminderScheduler, ReminderStatus

        reminder = Reminder(reminder_type=ReminderType.CHILD_CHECKUP, owner_id="c1",
                            title="Checkup", due_date=date(2024, 6, 10))

        assert ReminderScheduler.status_of(reminder, date(2024, 6, 1)) == ReminderStatus.SCHEDULED
        assert ReminderScheduler.status_of(reminder, date(2024, 6, 10)) == ReminderStatus.DUE

        reminder.completed = True
        reminder.completed_at = datetime(2024, 6, 10, tzinfo=timezone.utc)
        assert ReminderScheduler.status_of(reminder, date(2024, 6, 1)) == ReminderStatus.COMPLETED

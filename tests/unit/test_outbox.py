# =============================================================================
# tests/unit/test_outbox.py
# Unit Tests for the Outbox and the User-Data Repository
# =============================================================================

import pytest
from datetime import date, datetime, timezone


class TestOutboxQueue:
    """Test enqueue / peek / ack / retry"""

    def test_enqueue_and_peek_oldest_first(self, outbox):
        from gramsehat_core.offline.outbox import MutationType

        first = outbox.enqueue("user_profile", "p1", MutationType.CREATE, {"age": 30})
        second = outbox.enqueue("user_profile", "p2", MutationType.CREATE, {"age": 40})

        batch = outbox.peek_batch(10)
        assert [e.id for e in batch] == [first.id, second.id]
        assert batch[0].payload == {"age": 30}

    def test_peek_respects_max_size_and_after_id(self, outbox):
        from gramsehat_core.offline.outbox import MutationType

        entries = [outbox.enqueue("user_profile", f"p{i}", MutationType.CREATE, {}) for i in range(5)]

        assert len(outbox.peek_batch(2)) == 2
        assert [e.id for e in outbox.peek_batch(10, after_id=entries[2].id)] == [entries[3].id, entries[4].id]

    def test_payload_snapshot_is_immutable(self, outbox):
        """Mutating the caller's dict after enqueue does not alter the entry"""
        from gramsehat_core.offline.outbox import MutationType

        payload = {"age": 30}
        entry = outbox.enqueue("user_profile", "p1", MutationType.UPDATE, payload)
        payload["age"] = 99

        assert outbox.get(entry.id).payload == {"age": 30}

    def test_ack_many_removes_entries(self, outbox):
        from gramsehat_core.offline.outbox import MutationType

        ids = [outbox.enqueue("user_profile", "p1", MutationType.UPDATE, {}).id for _ in range(3)]

        assert outbox.ack_many(ids) == 3
        assert outbox.pending_count() == 0

    def test_bump_retry_counts_attempts(self, outbox):
        from gramsehat_core.offline.outbox import MutationType

        entry = outbox.enqueue("user_profile", "p1", MutationType.CREATE, {})

        assert outbox.bump_retry(entry.id, "timeout") == 1
        assert outbox.bump_retry(entry.id, "timeout") == 2
        assert outbox.get(entry.id).error_message == "timeout"

    def test_bump_retry_unknown_entry(self, outbox):
        from gramsehat_core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            outbox.bump_retry(12345)

    def test_escalated_entries_stay_but_leave_pending_queue(self, outbox):
        from gramsehat_core.offline.outbox import MutationType, OutboxStatus

        entry = outbox.enqueue("user_profile", "p1", MutationType.CREATE, {})
        outbox.escalate(entry.id, "retry ceiling")

        assert outbox.peek_batch(10) == []
        assert [e.id for e in outbox.escalated()] == [entry.id]
        assert outbox.get(entry.id).status == OutboxStatus.ESCALATED

        assert outbox.requeue_escalated() == 1
        assert outbox.get(entry.id).retry_count == 0
        assert outbox.pending_count() == 1

    def test_storage_failure_is_reported(self, local_db, outbox):
        """SQLite errors during enqueue surface as StorageError"""
        from gramsehat_core.errors import StorageError
        from gramsehat_core.offline.outbox import MutationType

        local_db.execute("DROP TABLE sync_queue")

        with pytest.raises(StorageError):
            outbox.enqueue("user_profile", "p1", MutationType.CREATE, {})


class TestCoalescing:
    """Test logical coalescing"""

    def test_coalesce_groups_by_entity_latest_last(self, outbox):
        from gramsehat_core.offline.outbox import Outbox, MutationType

        a1 = outbox.enqueue("user_profile", "a", MutationType.CREATE, {"v": 1})
        b1 = outbox.enqueue("user_profile", "b", MutationType.CREATE, {"v": 1})
        a2 = outbox.enqueue("user_profile", "a", MutationType.UPDATE, {"v": 2})

        groups = Outbox.coalesce(outbox.peek_batch(10))

        assert list(groups) == [("user_profile", "a"), ("user_profile", "b")]
        assert [e.id for e in groups[("user_profile", "a")]] == [a1.id, a2.id]
        assert groups[("user_profile", "a")][-1].payload == {"v": 2}
        assert groups[("user_profile", "b")][0].id == b1.id

    def test_latest_entry_index(self, outbox):
        from gramsehat_core.offline.outbox import MutationType

        outbox.enqueue("user_profile", "a", MutationType.CREATE, {})
        latest = outbox.enqueue("user_profile", "a", MutationType.UPDATE, {})

        assert outbox.latest_entry_ids() == {("user_profile", "a"): latest.id}
        assert outbox.latest_entry_id("user_profile", "a") == latest.id

    def test_rebase_moves_later_entries_only(self, outbox):
        from gramsehat_core.offline.outbox import MutationType

        first = outbox.enqueue("user_profile", "a", MutationType.CREATE, {})
        later = outbox.enqueue("user_profile", "a", MutationType.UPDATE, {})
        stamp = datetime(2024, 1, 1, 0, 0, 5, tzinfo=timezone.utc)

        assert outbox.rebase("user_profile", "a", first.id, stamp) == 1
        assert outbox.get(later.id).base_timestamp == stamp
        assert outbox.get(first.id).base_timestamp is None


class TestUserDataRepository:
    """Test store + outbox atomicity"""

    def test_first_save_is_create_then_update(self, repository, outbox, senior_profile):
        from gramsehat_core.offline.outbox import MutationType

        repository.save(senior_profile)
        senior_profile.village = "Sheo"
        repository.save(senior_profile)

        ops = [e.operation for e in outbox.entries_for("user_profile", senior_profile.id)]
        assert ops == [MutationType.CREATE, MutationType.UPDATE]

    def test_save_stamps_device_time(self, repository, senior_profile, clock):
        repository.save(senior_profile)

        assert repository.get("user_profile", senior_profile.id).last_updated == clock()

    def test_base_timestamp_comes_from_stored_synced_at(self, repository, local_db, outbox, senior_profile):
        stamp = datetime(2024, 1, 1, 0, 0, 3, tzinfo=timezone.utc)
        senior_profile.synced_at = stamp
        local_db.put(senior_profile)

        edited = repository.get("user_profile", senior_profile.id)
        edited.synced_at = None  # caller copies must not reset the remote-known stamp
        repository.save(edited)

        assert outbox.entries_for("user_profile", senior_profile.id)[-1].base_timestamp == stamp

    def test_invalid_entity_writes_nothing(self, repository, outbox, senior_profile):
        from gramsehat_core.models import UserProfile
        from gramsehat_core.errors import ValidationFailure

        with pytest.raises(ValidationFailure):
            repository.save_many([senior_profile, UserProfile(age=-1)])

        assert repository.get("user_profile", senior_profile.id) is None
        assert outbox.pending_count() == 0

    def test_reference_entities_rejected(self, repository, sample_centers):
        from gramsehat_core.errors import ValidationFailure

        with pytest.raises(ValidationFailure):
            repository.save(sample_centers[0])

    def test_remove_cascades_and_queues_deletes(self, repository, outbox):
        from gramsehat_core.models import ChildRecord, Reminder, ReminderType, VaccinationRecord
        from gramsehat_core.offline.outbox import MutationType

        child = ChildRecord(child_name="Asha", birth_date=date(2024, 1, 1))
        record = VaccinationRecord(child_id=child.id, vaccine_name="BCG", scheduled_date=date(2024, 1, 1))
        reminder = Reminder(reminder_type=ReminderType.CHILD_VACCINATION, owner_id=child.id,
                            title="BCG", due_date=date(2024, 1, 1), vaccination_record_id=record.id)
        repository.save_many([child, record, reminder])

        removed = repository.remove("child_record", child.id)

        assert {e.ENTITY_TYPE for e in removed} == {"child_record", "reminder", "vaccination_record"}
        assert repository.get("reminder", reminder.id) is None
        deletes = [e for e in outbox.peek_batch(50) if e.operation == MutationType.DELETE]
        assert len(deletes) == 3

    def test_remove_unknown_raises_not_found(self, repository):
        from gramsehat_core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            repository.remove("pregnancy_case", "missing")

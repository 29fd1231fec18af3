# =============================================================================
# gramsehat_core/offline/repository.py
# User-Data Mutations (Entity Store + Outbox in one transaction)
# =============================================================================
"""
UserDataRepository - the only write path for user-owned entities.

Every save or removal writes the entity store and appends an outbox entry in
the same SQLite transaction while holding the entity's write lock. Reference
data is rejected here; it is written only by the sync engine's download pass.
"""

from __future__ import annotations
from datetime import datetime
from typing import Callable, List, Optional, Sequence
import logging

from gramsehat_core.errors import NotFoundError, ValidationFailure
from gramsehat_core.models import Entity, entity_class, utcnow
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.offline.outbox import MutationType, Outbox

logger = logging.getLogger(__name__)


class UserDataRepository:
    """
    Usage:
        repo = UserDataRepository(local_db, outbox)
        repo.save(profile)            # CREATE or UPDATE, queued for upload
        repo.remove("child_record", child.id)  # cascades reminders/vaccinations
    """

    # Owned children removed together with their owner
    CASCADES = {
        "pregnancy_case": ("reminder",),
        "child_record": ("reminder", "vaccination_record"),
    }

    def __init__(
        self,
        db: LocalDatabase,
        outbox: Outbox,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._outbox = outbox
        self._clock = clock

    @property
    def db(self) -> LocalDatabase:
        return self._db

    def save(self, entity: Entity) -> Entity:
        """Write one user entity and queue it for upload."""
        return self.save_many([entity])[0]

    def save_many(self, entities: Sequence[Entity]) -> List[Entity]:
        """
        Write several user entities atomically.

        Either every entity and outbox entry is committed, or none is
        (validation failures roll the whole group back).
        """
        for entity in entities:
            if entity.IS_REFERENCE:
                raise ValidationFailure(
                    "Reference data can only be written by synchronization",
                    entity_type=entity.ENTITY_TYPE,
                    details={"entity_id": entity.id},
                )

        now = self._clock()
        with self._db.locked([e.key for e in entities]):
            with self._db.transaction():
                for entity in entities:
                    existing = self._db.get(entity.ENTITY_TYPE, entity.id)
                    operation = MutationType.UPDATE if existing else MutationType.CREATE
                    if existing is not None:
                        # The stored copy owns the remote-known timestamp
                        entity.synced_at = existing.synced_at
                    entity.touch(now)
                    self._db.put(entity)
                    self._outbox.enqueue(
                        entity.ENTITY_TYPE,
                        entity.id,
                        operation,
                        entity.to_record(),
                        base_timestamp=entity.synced_at,
                    )
        logger.debug(f"Saved {len(entities)} user entities")
        return list(entities)

    def remove(self, entity_type: str, entity_id: str) -> List[Entity]:
        """
        Delete a user entity and everything it owns, queueing a DELETE for each.

        Returns:
            The removed entities, owner first

        Raises:
            NotFoundError: unknown entity
        """
        cls = entity_class(entity_type)
        if cls.IS_REFERENCE:
            raise ValidationFailure(
                "Reference data can only be removed by synchronization",
                entity_type=entity_type,
            )

        owner = self._db.get(entity_type, entity_id)
        if owner is None:
            raise NotFoundError(f"{entity_type} {entity_id} not found", entity_type=entity_type,
                                entity_id=entity_id)

        doomed: List[Entity] = [owner]
        for child_type in self.CASCADES.get(entity_type, ()):
            doomed.extend(self._db.children_of(child_type, entity_id))

        with self._db.locked([e.key for e in doomed]):
            with self._db.transaction():
                for entity in doomed:
                    self._db.delete(entity.ENTITY_TYPE, entity.id)
                    if entity.ENTITY_TYPE == "reminder":
                        self._db.delete_reschedule_history(entity.id)
                    self._outbox.enqueue(
                        entity.ENTITY_TYPE,
                        entity.id,
                        MutationType.DELETE,
                        entity.to_record(),
                        base_timestamp=entity.synced_at,
                    )

        logger.info(f"Removed {entity_type} {entity_id} and {len(doomed) - 1} owned entities")
        return doomed

    def get(self, entity_type: str, entity_id: str) -> Optional[Entity]:
        return self._db.get(entity_type, entity_id)

    def require(self, entity_type: str, entity_id: str) -> Entity:
        """Get an entity or raise NotFoundError."""
        entity = self._db.get(entity_type, entity_id)
        if entity is None:
            raise NotFoundError(f"{entity_type} {entity_id} not found", entity_type=entity_type,
                                entity_id=entity_id)
        return entity

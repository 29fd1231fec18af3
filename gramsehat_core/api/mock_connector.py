"""
Mock Remote Endpoint
In-memory stand-in for the remote authority, used for demos, offline
development and tests
"""
from __future__ import annotations
import copy
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from gramsehat_core.errors import TransientError
from gramsehat_core.models import Entity

from .base_connector import (
    RemoteConfig,
    RemoteEndpoint,
    ReferenceBatch,
    ReferenceRecord,
    UploadItem,
    UploadResult,
)


class MockRemoteEndpoint(RemoteEndpoint):
    """
    Deterministic in-memory server.

    The server clock advances one second per write, so timestamps are
    strictly increasing and reproducible. Failures can be injected with
    ``fail_next`` and connectivity toggled with ``online``.

    Usage:
        remote = MockRemoteEndpoint()
        remote.publish_reference(center)
        remote.fail_next(2)  # next two calls raise TransientError
    """

    def __init__(self, config: Optional[RemoteConfig] = None, start_time: Optional[datetime] = None):
        super().__init__(config or RemoteConfig(provider="mock"))
        self._clock = start_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._reference: Dict[Tuple[str, str], ReferenceRecord] = {}
        self._user: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._failures: List[Exception] = []
        self._lock = threading.Lock()
        self.online = True
        self.upload_calls: List[List[UploadItem]] = []
        self.download_calls: List[Optional[datetime]] = []

    # =========================================================================
    # SERVER-SIDE HELPERS
    # =========================================================================

    def now(self) -> datetime:
        return self._clock

    def _tick(self) -> datetime:
        self._clock = self._clock + timedelta(seconds=1)
        return self._clock

    def publish_reference(self, entity: Entity) -> ReferenceRecord:
        """Create or overwrite a reference entity on the server."""
        return self.publish_raw(entity.ENTITY_TYPE, entity.id, entity.to_record())

    def publish_raw(self, entity_type: str, entity_id: str, payload: Dict[str, Any]) -> ReferenceRecord:
        """Store a reference payload exactly as given, without local validation."""
        with self._lock:
            stamp = self._tick()
            payload = copy.deepcopy(payload)
            payload["last_updated"] = stamp.isoformat()
            record = ReferenceRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                payload=payload,
                server_timestamp=stamp,
            )
            self._reference[(entity_type, entity_id)] = record
            return record

    def retract_reference(self, entity_type: str, entity_id: str) -> None:
        """Delete a reference entity on the server (delivered as a tombstone)."""
        with self._lock:
            stamp = self._tick()
            self._reference[(entity_type, entity_id)] = ReferenceRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                payload={},
                server_timestamp=stamp,
                deleted=True,
            )

    def write_user_record(self, entity: Entity) -> datetime:
        """Simulate another device writing a user entity directly to the server."""
        with self._lock:
            stamp = self._tick()
            payload = entity.to_record()
            payload["last_updated"] = stamp.isoformat()
            self._user[entity.key] = {
                "payload": payload,
                "server_timestamp": stamp,
                "deleted": False,
            }
            return stamp

    def user_record(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Server copy of a user entity (None if never uploaded)."""
        record = self._user.get((entity_type, entity_id))
        return copy.deepcopy(record) if record else None

    def fail_next(self, count: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``count`` calls raise (TransientError by default)."""
        for _ in range(count):
            self._failures.append(error or TransientError("Simulated network failure", endpoint="mock"))

    def _maybe_fail(self) -> None:
        if not self.online:
            raise TransientError("Remote endpoint unreachable", endpoint="mock")
        if self._failures:
            raise self._failures.pop(0)

    # =========================================================================
    # REMOTE ENDPOINT CONTRACT
    # =========================================================================

    def fetch_reference_changes(self, since: Optional[datetime]) -> ReferenceBatch:
        with self._lock:
            self.download_calls.append(since)
            self._maybe_fail()
            records = sorted(
                (
                    copy.deepcopy(record)
                    for record in self._reference.values()
                    if since is None or record.server_timestamp > since
                ),
                key=lambda r: r.server_timestamp,
            )
            return ReferenceBatch(records=records, server_time=self._clock)

    def push_changes(self, items: List[UploadItem]) -> List[UploadResult]:
        with self._lock:
            self.upload_calls.append(copy.deepcopy(items))
            self._maybe_fail()

            results = []
            for item in items:
                key = (item.entity_type, item.entity_id)
                current = self._user.get(key)
                conflict = (
                    current is not None
                    and item.base_timestamp is not None
                    and current["server_timestamp"] > item.base_timestamp
                )
                if conflict:
                    results.append(UploadResult(
                        entity_type=item.entity_type,
                        entity_id=item.entity_id,
                        accepted=False,
                        server_timestamp=current["server_timestamp"],
                        server_payload=None if current["deleted"] else copy.deepcopy(current["payload"]),
                    ))
                    continue

                stamp = self._tick()
                payload = copy.deepcopy(item.payload)
                payload["last_updated"] = stamp.isoformat()
                self._user[key] = {
                    "payload": payload,
                    "server_timestamp": stamp,
                    "deleted": item.operation == "delete",
                }
                results.append(UploadResult(
                    entity_type=item.entity_type,
                    entity_id=item.entity_id,
                    accepted=True,
                    server_timestamp=stamp,
                ))
            return results

    def ping(self) -> bool:
        return self.online

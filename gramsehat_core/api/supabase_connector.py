"""
Supabase Remote Endpoint
Stores every entity as a JSON payload row: (id, payload, last_updated, deleted)
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

import httpx
from postgrest.exceptions import APIError

from gramsehat_core.errors import ConfigurationError, RemoteError, TransientError
from gramsehat_core.models import REFERENCE_ENTITY_TYPES, parse_timestamp

from .base_connector import (
    RemoteConfig,
    RemoteEndpoint,
    ReferenceBatch,
    ReferenceRecord,
    UploadItem,
    UploadResult,
)

logger = logging.getLogger(__name__)


class SupabaseRemoteEndpoint(RemoteEndpoint):
    """
    Connector for a Supabase project.

    Config:
        base_url: Supabase project URL
        api_key: Supabase anon or service key

    Each entity type maps to a table named ``<entity_type>s`` unless
    overridden through ``additional_params["table_mapping"]``.
    """

    def __init__(self, config: RemoteConfig, client: Any = None):
        super().__init__(config)
        self._client = client
        params = config.additional_params or {}
        self.table_mapping: Dict[str, str] = params.get("table_mapping", {})

    def _get_client(self):
        """Lazy Supabase client creation."""
        if self._client is None:
            if not self.config.base_url or not self.config.api_key:
                raise ConfigurationError(
                    "Supabase URL and key are required",
                    config_key="supabase_url",
                )
            from supabase import create_client
            self._client = create_client(self.config.base_url, self.config.api_key)
        return self._client

    def _table(self, entity_type: str) -> str:
        return self.table_mapping.get(entity_type, f"{entity_type}s")

    def fetch_reference_changes(self, since: Optional[datetime]) -> ReferenceBatch:
        client = self._get_client()
        records: List[ReferenceRecord] = []

        for entity_type in REFERENCE_ENTITY_TYPES:
            def run():
                query = client.table(self._table(entity_type)).select("*")
                if since:
                    query = query.gt("last_updated", since.isoformat())
                return query.execute()

            result = self._call(run)
            for row in result.data or []:
                records.append(ReferenceRecord(
                    entity_type=entity_type,
                    entity_id=row["id"],
                    payload=row.get("payload") or {},
                    server_timestamp=parse_timestamp(row["last_updated"]),
                    deleted=bool(row.get("deleted", False)),
                ))

        records.sort(key=lambda r: r.server_timestamp)
        return ReferenceBatch(records=records, server_time=datetime.now(timezone.utc))

    def push_changes(self, items: List[UploadItem]) -> List[UploadResult]:
        client = self._get_client()
        results: List[UploadResult] = []

        for item in items:
            table = self._table(item.entity_type)
            existing = self._call(
                lambda: client.table(table).select("*").eq("id", item.entity_id).execute()
            ).data
            current = existing[0] if existing else None

            if current is not None and item.base_timestamp is not None:
                current_stamp = parse_timestamp(current["last_updated"])
                if current_stamp > item.base_timestamp:
                    results.append(UploadResult(
                        entity_type=item.entity_type,
                        entity_id=item.entity_id,
                        accepted=False,
                        server_timestamp=current_stamp,
                        server_payload=None if current.get("deleted") else current.get("payload"),
                    ))
                    continue

            stamp = datetime.now(timezone.utc)
            row = {
                "id": item.entity_id,
                "payload": item.payload,
                "last_updated": stamp.isoformat(),
                "deleted": item.operation == "delete",
            }
            self._call(lambda: client.table(table).upsert(row).execute())
            results.append(UploadResult(
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                accepted=True,
                server_timestamp=stamp,
            ))

        return results

    def ping(self) -> bool:
        try:
            client = self._get_client()
            self._call(
                lambda: client.table(self._table(REFERENCE_ENTITY_TYPES[0])).select("id").limit(1).execute()
            )
            return True
        except (TransientError, RemoteError, ConfigurationError) as e:
            logger.debug(f"Supabase ping failed: {e}")
            return False

    def _call(self, func):
        """Run a Supabase request, classifying failures."""
        try:
            return func()
        except httpx.TimeoutException as e:
            raise TransientError(f"Supabase request timed out: {e}", endpoint=self.config.base_url) from e
        except httpx.TransportError as e:
            raise TransientError(f"Supabase unreachable: {e}", endpoint=self.config.base_url) from e
        except APIError as e:
            raise RemoteError(f"Supabase rejected request: {e}", endpoint=self.config.base_url) from e

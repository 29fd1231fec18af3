"""
Base Remote Endpoint Connector
Abstract interface to the remote authority used by the sync engine
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from gramsehat_core.errors import RemoteError, TransientError
from gramsehat_core.models import parse_timestamp


@dataclass
class RemoteConfig:
    """Configuration for the remote endpoint connection"""
    provider: str
    base_url: str = ""
    api_key: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    timeout: float = 30.0  # seconds per request (one batch)
    additional_params: Optional[Dict[str, Any]] = None


@dataclass
class ReferenceRecord:
    """A reference entity as delivered by the server."""
    entity_type: str
    entity_id: str
    payload: Dict[str, Any]
    server_timestamp: datetime
    deleted: bool = False


@dataclass
class ReferenceBatch:
    """Reference changes since a watermark."""
    records: List[ReferenceRecord] = field(default_factory=list)
    server_time: Optional[datetime] = None


@dataclass
class UploadItem:
    """One coalesced user-data mutation sent to the server."""
    entity_type: str
    entity_id: str
    operation: str  # create / update / delete
    payload: Dict[str, Any]
    base_timestamp: Optional[datetime] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "payload": self.payload,
            "base_timestamp": self.base_timestamp.isoformat() if self.base_timestamp else None,
        }


@dataclass
class UploadResult:
    """
    Per-entity server verdict.

    A rejected item carries the server's current copy in ``server_payload``
    (None when the server copy is a deletion).
    """
    entity_type: str
    entity_id: str
    accepted: bool
    server_timestamp: datetime
    server_payload: Optional[Dict[str, Any]] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> UploadResult:
        return cls(
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            accepted=bool(data["accepted"]),
            server_timestamp=parse_timestamp(data["server_timestamp"]),
            server_payload=data.get("server_payload"),
        )


class RemoteEndpoint(ABC):
    """Abstract base class for all remote endpoint connectors"""

    def __init__(self, config: RemoteConfig):
        self.config = config

    @abstractmethod
    def fetch_reference_changes(self, since: Optional[datetime]) -> ReferenceBatch:
        """
        Fetch reference entities changed since a server timestamp

        Args:
            since: Last successful download watermark (None for a full pull)

        Returns:
            ReferenceBatch with server-stamped records

        Raises:
            TransientError: network failure or timeout
        """
        pass

    @abstractmethod
    def push_changes(self, items: List[UploadItem]) -> List[UploadResult]:
        """
        Submit a batch of user-data mutations

        Returns:
            One UploadResult per item

        Raises:
            TransientError: network failure or timeout (nothing applied is assumed)
        """
        pass

    @abstractmethod
    def ping(self) -> bool:
        """Cheap reachability probe used by the connection manager"""
        pass


class HttpRemoteEndpoint(RemoteEndpoint):
    """
    JSON-over-HTTP connector.

    Expected server routes:
        GET  {base_url}/reference/changes?since=<iso>  -> {"records": [...], "server_time": ...}
        POST {base_url}/sync/upload  {"items": [...]}  -> {"results": [...]}
        GET  {base_url}/health                          -> 200
    """

    def __init__(self, config: RemoteConfig):
        super().__init__(config)
        self.session = requests.Session()

        if config.headers:
            self.session.headers.update(config.headers)

        if config.api_key:
            self._set_auth_header()

    def _set_auth_header(self):
        """Bearer token authentication"""
        self.session.headers.update({"Authorization": f"Bearer {self.config.api_key}"})

    def fetch_reference_changes(self, since: Optional[datetime]) -> ReferenceBatch:
        params = {"since": since.isoformat()} if since else None
        body = self._make_request("reference/changes", params=params).json()

        records = [
            ReferenceRecord(
                entity_type=item["entity_type"],
                entity_id=item["entity_id"],
                payload=item.get("payload") or {},
                server_timestamp=parse_timestamp(item["server_timestamp"]),
                deleted=bool(item.get("deleted", False)),
            )
            for item in body.get("records", [])
        ]
        return ReferenceBatch(records=records, server_time=parse_timestamp(body.get("server_time")))

    def push_changes(self, items: List[UploadItem]) -> List[UploadResult]:
        body = self._make_request(
            "sync/upload",
            method="POST",
            data={"items": [item.to_json() for item in items]},
        ).json()
        return [UploadResult.from_json(result) for result in body.get("results", [])]

    def ping(self) -> bool:
        try:
            self._make_request("health")
            return True
        except (TransientError, RemoteError):
            return False

    def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict] = None,
        data: Optional[Dict] = None
    ) -> requests.Response:
        """
        Make HTTP request with error classification

        Timeouts, connection failures and 5xx/429 responses are transient;
        other HTTP errors are permanent.
        """
        url = f"{self.config.base_url.rstrip('/')}/{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=data,
                timeout=self.config.timeout
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientError(f"Remote request failed: {e}", endpoint=url) from e
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Remote request failed: {e}", endpoint=url) from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientError(
                f"Remote endpoint unavailable ({response.status_code})",
                endpoint=url,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise RemoteError(
                f"Remote endpoint rejected request ({response.status_code})",
                endpoint=url,
                status_code=response.status_code,
            )
        return response

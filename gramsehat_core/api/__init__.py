"""
Remote endpoint connectors for synchronization
"""
from .base_connector import (
    RemoteConfig,
    RemoteEndpoint,
    HttpRemoteEndpoint,
    ReferenceRecord,
    ReferenceBatch,
    UploadItem,
    UploadResult,
)
from .mock_connector import MockRemoteEndpoint
from .supabase_connector import SupabaseRemoteEndpoint
from .config_manager import RemoteConfigManager

__all__ = [
    "RemoteConfig",
    "RemoteEndpoint",
    "HttpRemoteEndpoint",
    "ReferenceRecord",
    "ReferenceBatch",
    "UploadItem",
    "UploadResult",
    "MockRemoteEndpoint",
    "SupabaseRemoteEndpoint",
    "RemoteConfigManager",
]

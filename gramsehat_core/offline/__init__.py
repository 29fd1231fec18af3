# =============================================================================
# gramsehat_core/offline/__init__.py
# Local-First Store and Synchronization for GramSehat
# =============================================================================
"""
Local-First Store and Synchronization

Every feature reads and writes the on-device SQLite store; a background
engine reconciles it with the remote authority whenever connectivity allows.

Architecture:
------------

    HealthAssistant (single API for the voice/UI layer)
            |
    UserDataRepository ---- writes ----> LocalDatabase (entities)
            |                                   ^
            +------- same transaction ---> Outbox (sync_queue)
                                                |
    ConnectionManager --- reconnect ---> SyncEngine <----> RemoteEndpoint
                                          download: reference data, server wins
                                          upload: user data, last write wins

Usage:
------
from gramsehat_core.offline import get_health_assistant

assistant = get_health_assistant()
assistant.save_profile(profile)          # stored locally, queued for upload
print(assistant.pending_sync_count)
"""

from gramsehat_core.offline.local_database import (
    LocalDatabase,
    get_local_database,
)

from gramsehat_core.offline.outbox import (
    Outbox,
    OutboxEntry,
    OutboxStatus,
    MutationType,
)

from gramsehat_core.offline.repository import UserDataRepository

from gramsehat_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from gramsehat_core.offline.sync_engine import (
    SyncEngine,
    SyncReport,
    SyncState,
    SyncStatus,
    DownloadReport,
    UploadReport,
)

from gramsehat_core.offline.unified_data_service import (
    HealthAssistant,
    get_health_assistant,
)

__all__ = [
    # Local Database
    "LocalDatabase",
    "get_local_database",
    # Outbox
    "Outbox",
    "OutboxEntry",
    "OutboxStatus",
    "MutationType",
    "UserDataRepository",
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Sync Engine
    "SyncEngine",
    "SyncReport",
    "SyncState",
    "SyncStatus",
    "DownloadReport",
    "UploadReport",
    # Facade (Main API)
    "HealthAssistant",
    "get_health_assistant",
]

# =============================================================================
# gramsehat_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors connectivity to the sync endpoint.

Features:
- Internet probe followed by an endpoint ping
- Periodic health checks on a background thread
- Event callbacks for status changes (the sync engine listens for ONLINE)
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
import logging

from gramsehat_core.api.base_connector import RemoteEndpoint
from gramsehat_core.models import utcnow

logger = logging.getLogger(__name__)


# Well-known DNS resolvers used to tell "no internet" from "endpoint down"
INTERNET_PROBES: Tuple[Tuple[str, int], ...] = (
    ("8.8.8.8", 53),
    ("1.1.1.1", 53),
    ("208.67.222.222", 53),
)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Internet and sync endpoint reachable
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but endpoint unavailable
    CHECKING = "checking"
    UNKNOWN = "unknown"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    endpoint_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Tracks whether the remote endpoint can be reached.

    Usage:
        manager = ConnectionManager(endpoint)
        manager.initialize()
        if manager.is_online:
            engine.sync_now()

    Pass ``probe_hosts=()`` to skip the internet probe and rely on the
    endpoint ping alone.
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline
    CONNECTION_TIMEOUT = 5          # Timeout for the internet probe

    def __init__(
        self,
        remote: RemoteEndpoint,
        probe_hosts: Sequence[Tuple[str, int]] = INTERNET_PROBES,
    ):
        self._remote = remote
        self._probe_hosts = tuple(probe_hosts)
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self._initialized = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    def initialize(self, start_monitoring: bool = False) -> None:
        """Run the first check and optionally start background monitoring."""
        if self._initialized:
            return

        self.check_connection()
        if start_monitoring:
            self.start_monitoring()

        self._initialized = True
        logger.info(f"ConnectionManager initialized. Status: {self._state.status.value}")

    def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        Returns:
            Updated ConnectionState
        """
        old_status = self._state.status
        self._state.status = ConnectionStatus.CHECKING
        self._state.last_check = utcnow()

        internet_ok = self._check_internet()
        self._state.internet_available = internet_ok

        endpoint_ok = self._check_endpoint() if internet_ok else False
        self._state.endpoint_available = endpoint_ok

        if internet_ok and endpoint_ok:
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = self._state.last_check
            self._state.consecutive_failures = 0
            self._state.error_message = None
        elif internet_ok:
            self._state.status = ConnectionStatus.DEGRADED
            self._state.consecutive_failures += 1
        else:
            self._state.status = ConnectionStatus.OFFLINE
            self._state.consecutive_failures += 1

        if old_status != self._state.status:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()

        return self._state

    def _check_internet(self) -> bool:
        if not self._probe_hosts:
            return True

        for host, port in self._probe_hosts:
            try:
                with socket.create_connection((host, port), timeout=self.CONNECTION_TIMEOUT):
                    return True
            except OSError:
                continue
        return False

    def _check_endpoint(self) -> bool:
        try:
            return bool(self._remote.ping())
        except Exception as e:
            self._state.error_message = str(e)
            logger.debug(f"Endpoint check failed: {e}")
            return False

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = (
                self.CHECK_INTERVAL_ONLINE
                if self.is_online
                else self.CHECK_INTERVAL_OFFLINE
            )
            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connection status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def force_offline(self) -> None:
        """Force offline mode (field workers can switch sync off)."""
        self._state.status = ConnectionStatus.OFFLINE
        self._state.internet_available = False
        self._state.endpoint_available = False
        self._notify_callbacks()
        logger.info("Forced offline mode")

    def get_status_display(self) -> dict:
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "internet": self._state.internet_available,
            "endpoint": self._state.endpoint_available,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }

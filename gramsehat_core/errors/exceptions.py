# =============================================================================
# gramsehat_core/errors/exceptions.py
# Custom Exception Hierarchy for GramSehat
# =============================================================================

from typing import Optional, Dict, Any, List


class GramSehatError(Exception):
    """
    Base exception for all GramSehat errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "GS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL STORE EXCEPTIONS
# =============================================================================

class NotFoundError(GramSehatError):
    """Raised when a targeted operation names an unknown id"""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if entity_id:
            details["entity_id"] = entity_id

        super().__init__(
            message=message,
            code=kwargs.pop("code", "STORE_001"),
            details=details,
            **kwargs,
        )


class ValidationFailure(GramSehatError):
    """Raised when an entity violates an invariant; rejected before any write"""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(
            message=message,
            code=kwargs.pop("code", "VALID_001"),
            details=details,
            **kwargs,
        )


class StorageError(GramSehatError):
    """Raised when the local SQLite store cannot complete a write"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table

        super().__init__(
            message=message,
            code="STORE_002",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# REMINDER EXCEPTIONS
# =============================================================================

class AlreadyCompletedError(ValidationFailure):
    """Raised when mark_complete is called on a completed reminder"""

    def __init__(self, reminder_id: str, **kwargs):
        super().__init__(
            message=f"Reminder {reminder_id} is already completed",
            entity_type="reminder",
            field="completed",
            code="REMIND_001",
            details={"reminder_id": reminder_id},
            **kwargs,
        )


class ReminderCompletedError(ValidationFailure):
    """Raised when rescheduling a reminder that is completed history"""

    def __init__(self, reminder_id: str, **kwargs):
        super().__init__(
            message=f"Reminder {reminder_id} is completed and cannot be rescheduled",
            entity_type="reminder",
            field="completed",
            code="REMIND_002",
            details={"reminder_id": reminder_id},
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class ConflictError(GramSehatError):
    """
    Remote copy is newer than the base timestamp recorded at enqueue time.

    Resolved by the sync engine (server copy wins) and only used internally
    or for reporting, never raised to foreground callers.
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        server_timestamp: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if entity_id:
            details["entity_id"] = entity_id
        if server_timestamp:
            details["server_timestamp"] = server_timestamp

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


class TransientError(GramSehatError):
    """Raised on network or I/O failures that are worth retrying"""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="SYNC_002",
            details=details,
            **kwargs,
        )


class RemoteError(GramSehatError):
    """Raised when the remote endpoint rejects a request permanently"""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="SYNC_003",
            details=details,
            recoverable=False,
            **kwargs,
        )


class RetryExhaustedError(GramSehatError):
    """Outbox entries reached the retry ceiling and were escalated"""

    def __init__(
        self,
        message: str,
        entry_ids: Optional[List[int]] = None,
        max_attempts: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entry_ids:
            details["entry_ids"] = entry_ids
        if max_attempts is not None:
            details["max_attempts"] = max_attempts

        super().__init__(
            message=message,
            code="SYNC_004",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(GramSehatError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )

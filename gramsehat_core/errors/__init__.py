# =============================================================================
# gramsehat_core/errors/__init__.py
# Centralized Error Handling for GramSehat
# =============================================================================

from .exceptions import (
    GramSehatError,
    NotFoundError,
    ValidationFailure,
    StorageError,
    AlreadyCompletedError,
    ReminderCompletedError,
    ConflictError,
    TransientError,
    RemoteError,
    RetryExhaustedError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "GramSehatError",
    "NotFoundError",
    "ValidationFailure",
    "StorageError",
    "AlreadyCompletedError",
    "ReminderCompletedError",
    "ConflictError",
    "TransientError",
    "RemoteError",
    "RetryExhaustedError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
    "error_boundary",
]

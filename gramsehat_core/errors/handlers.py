# =============================================================================
# gramsehat_core/errors/handlers.py
# Turning Exceptions into Log Lines and Status Dictionaries
# =============================================================================
"""
The voice/UI layer never sees a raw exception. Background threads (the
sync loop, connectivity triggers) must survive any single failure, and
status queries must always answer. These helpers give those call sites
one way to record an error and carry on.
"""

from __future__ import annotations
import functools
from typing import Any, Callable, Dict, Optional, TypeVar

from gramsehat_core.logging import get_logger
from .exceptions import GramSehatError, TransientError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Describe an error as a plain dictionary and optionally log it.

    Domain errors keep their code and details. Recoverable ones are logged
    at WARNING without a traceback, since the caller will retry or fall
    back. Anything else is logged at ERROR with its traceback.

    Returns:
        {"code", "message", "details", "recoverable", "retryable"}
    """
    if isinstance(error, GramSehatError):
        info = {
            "code": error.code,
            "message": user_message or error.message,
            "details": dict(error.details),
            "recoverable": error.recoverable,
        }
    else:
        info = {
            "code": "UNKNOWN",
            "message": user_message or str(error) or type(error).__name__,
            "details": {"exception_type": type(error).__name__},
            "recoverable": True,
        }
    info["retryable"] = isinstance(error, TransientError)

    if log_error:
        line = f"[{info['code']}] {info['message']}"
        if isinstance(error, GramSehatError) and error.recoverable:
            logger.warning(line)
        else:
            logger.error(line, exc_info=error)

    return info


class ErrorContext:
    """
    Run a block whose failure must not take down the calling thread.

    The handled error is kept on ``ctx.error``. With ``recoverable=False``
    the exception is logged and re-raised.

    Usage:
        with ErrorContext("Background sync pass") as ctx:
            engine.sync_now()
        if ctx.error and ctx.error["retryable"]:
            ...
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[Dict[str, Any]] = None

    def __enter__(self) -> ErrorContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False

        message = None if isinstance(exc_val, GramSehatError) else f"{self.operation} failed: {exc_val}"
        self.error = handle_error(exc_val, user_message=message)
        self.error["operation"] = self.operation
        return self.recoverable


def error_boundary(default_return: Any = None, log: bool = True):
    """
    Decorator for query methods that must always answer.

    Usage:
        @error_boundary(default_return={})
        def sync_status(self) -> dict:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                handle_error(e, log_error=log, user_message=f"{func.__qualname__} unavailable: {e}")
                return default_return

        return wrapper

    return decorator

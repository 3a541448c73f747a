# =============================================================================
# tardiness_core/errors/handlers.py
# Error Handling Utilities for the Tardiness Monitoring System
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar

from tardiness_core.logging import get_logger
from .exceptions import TardinessError

logger = get_logger(__name__)

T = TypeVar("T")

# Receives (message, level); level is one of success, info, warning, error
Notifier = Callable[[str, str], None]


def log_notifier(message: str, level: str = "info") -> None:
    """Default notifier used when no presentation layer is attached."""
    if level == "error":
        logger.error(message)
    elif level == "warning":
        logger.warning(message)
    else:
        logger.info(message)


def handle_error(
    error: Exception,
    notify: Optional[Notifier] = None,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        notify: Where to send the user-facing message (skipped if None)
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, TardinessError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(f"[{code}] {message}", extra={"details": details})

    if notify is not None:
        if recoverable:
            notify(message, "error")
        else:
            notify(f"Critical error: {message}", "error")


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    notify: Optional[Notifier] = None,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        data = safe_execute(
            export_spreadsheet, entries,
            default=b"",
            error_message="Export failed",
            notify=toast,
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, notify=notify, user_message=error_message)
        return default

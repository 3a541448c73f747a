# =============================================================================
# tardiness_core/errors/__init__.py
# Centralized Error Handling for the Tardiness Monitoring System
# =============================================================================

from .exceptions import (
    TardinessError,
    LocalStorageFailure,
    RemoteUnavailable,
    ReplayFailure,
    DuplicateOptionRejected,
    ValidationFailure,
    ConfigurationError,
)

from .handlers import (
    Notifier,
    log_notifier,
    handle_error,
    safe_execute,
)

__all__ = [
    # Exceptions
    "TardinessError",
    "LocalStorageFailure",
    "RemoteUnavailable",
    "ReplayFailure",
    "DuplicateOptionRejected",
    "ValidationFailure",
    "ConfigurationError",
    # Handlers
    "Notifier",
    "log_notifier",
    "handle_error",
    "safe_execute",
]

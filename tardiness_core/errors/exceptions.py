# =============================================================================
# tardiness_core/errors/exceptions.py
# Exception Hierarchy for the Tardiness Monitoring System
# =============================================================================

from typing import Optional, Dict, Any


class TardinessError(Exception):
    """
    Base exception for all tardiness core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "LOCAL_001")
        details: Additional context as a dictionary
        recoverable: Whether the session can carry on after the error
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
        self.code = code or "TM_000"
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
# STORAGE EXCEPTIONS
# =============================================================================

class LocalStorageFailure(TardinessError):
    """Raised when the local cache cannot be read or written"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key

        super().__init__(
            message=message,
            code="LOCAL_001",
            details=details,
            **kwargs,
        )


class RemoteUnavailable(TardinessError):
    """Raised when a single remote store operation fails"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        doc_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation
        if doc_id:
            details["doc_id"] = doc_id

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class ReplayFailure(TardinessError):
    """Raised when a queued mutation fails during a reconnect replay pass"""

    def __init__(
        self,
        message: str,
        position: Optional[int] = None,
        pending: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if position is not None:
            details["position"] = position
        if pending is not None:
            details["pending"] = pending

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# INPUT EXCEPTIONS
# =============================================================================

class DuplicateOptionRejected(TardinessError):
    """Raised when an added grade/strand/section triple already exists"""

    def __init__(self, message: str, option: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if option:
            details["option"] = option

        super().__init__(
            message=message,
            code="OPTION_001",
            details=details,
            **kwargs,
        )


class ValidationFailure(TardinessError):
    """Raised when a required field is missing or empty"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(
            message=message,
            code="VALID_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(TardinessError):
    """Raised when configuration is invalid"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if source:
            details["source"] = source

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )

# =============================================================================
# tardiness_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any
from dataclasses import dataclass

from tardiness_core.logging import get_logger, LogContext
from tardiness_core.errors import Notifier, TardinessError, log_notifier


@dataclass
class ServiceResult:
    """
    Standard result container for service operations.

    Core operations never raise; they return one of these.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None,
        data: Any = None,
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            data=data,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception, data: Any = None) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, TardinessError):
            return cls(
                success=False,
                data=data,
                error=e.message,
                error_code=e.code,
                metadata=e.details,
            )
        return cls(
            success=False,
            data=data,
            error=str(e),
            error_code="EXCEPTION",
        )


class BaseService(ABC):
    """
    Abstract base class for all services.

    Provides logging and user notifications.
    """

    def __init__(self, notifier: Optional[Notifier] = None):
        self.logger = get_logger(self.__class__.__name__)
        self._notifier: Notifier = notifier or log_notifier

    def notify(self, message: str, level: str = "info") -> None:
        try:
            self._notifier(message, level)
        except Exception as e:
            self.logger.error(f"Notifier failed: {e}")

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Replaying pending mutations"):
                ...
        """
        return LogContext(self.logger, operation)


"""Error handlers with context preservation for resolution passes."""

import traceback
from typing import Any, Dict, Optional, List
from datetime import datetime, timezone
from contextlib import contextmanager
import threading
from dataclasses import dataclass, field
from enum import Enum
import logging

from ..audit import AuditLogger


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"
    SCORING = "scoring"
    INVARIANT = "invariant"
    COLLABORATOR = "collaborator"
    UNKNOWN = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ErrorContext:
    """Context information for an error."""
    operation: str
    account_id: Optional[str] = None
    identity_id: Optional[str] = None
    attribute: Optional[str] = None
    algorithm: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    pass_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "operation": self.operation,
            "account_id": self.account_id,
            "identity_id": self.identity_id,
            "attribute": self.attribute,
            "algorithm": self.algorithm,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
            "pass_id": self.pass_id,
        }


class BaseFusionError(Exception):
    """Base exception for all resolution errors."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.cause = cause
        self.severity = severity
        self.category = category
        self.timestamp = _utcnow()

        self.stack_trace = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # "message" clashes with LogRecord
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
            "severity": self.severity.value,
            "category": self.category.value,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(BaseFusionError):
    """Missing or invalid matching policy, algorithm or attribute map.

    Fatal for the account being resolved. When no policy is configured at all
    the whole pass fails with this error.
    """

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
        )
        self.setting = setting


class ScoringError(BaseFusionError):
    """An algorithm could not score a pair of values."""

    def __init__(
        self,
        message: str,
        algorithm: Optional[str] = None,
        value: Optional[Any] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.SCORING,
        )
        self.algorithm = algorithm
        self.value = value


class InvariantViolationError(BaseFusionError):
    """A requested change would break an aggregate invariant."""

    def __init__(
        self,
        message: str,
        fused_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.INVARIANT,
        )
        self.fused_id = fused_id


class CollaboratorError(BaseFusionError):
    """A review, notification or correlation collaborator failed."""

    def __init__(
        self,
        message: str,
        collaborator: str,
        cause: Optional[Exception] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            context=context,
            cause=cause,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.COLLABORATOR,
        )
        self.collaborator = collaborator


class ErrorHandler:
    """Centralized error handler with context preservation."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None, max_history_size: int = 1000):
        """Initialize error handler.

        Args:
            audit_logger: Optional audit logger instance
            max_history_size: Number of handled errors kept for statistics
        """
        self.audit_logger = audit_logger or AuditLogger()
        self._context_stack = threading.local()
        self.logger = logging.getLogger(__name__)

        # Error statistics
        self._error_counts: Dict[str, int] = {}
        self._error_history: List[BaseFusionError] = []
        self._max_history_size = max_history_size

    @contextmanager
    def error_context(self, **kwargs):
        """Context manager for error context.

        Usage:
            with error_handler.error_context(operation="resolve_account", account_id="a1"):
                # Operations that might raise errors
                pass
        """
        if not hasattr(self._context_stack, 'contexts'):
            self._context_stack.contexts = []

        context = ErrorContext(**kwargs)
        self._context_stack.contexts.append(context)

        try:
            yield context
        finally:
            if self._context_stack.contexts:
                self._context_stack.contexts.pop()

    def get_current_context(self) -> Optional[ErrorContext]:
        """Get current error context."""
        if hasattr(self._context_stack, 'contexts') and self._context_stack.contexts:
            return self._context_stack.contexts[-1]
        return None

    def handle_error(
        self,
        error: Exception,
        operation: Optional[str] = None,
        reraise: bool = True,
    ) -> Optional[BaseFusionError]:
        """Handle an error with context preservation.

        Args:
            error: The error to handle
            operation: Operation being performed
            reraise: Whether to re-raise the error

        Returns:
            Wrapped error if applicable
        """
        context = self.get_current_context()
        if operation and context:
            context.operation = operation

        if isinstance(error, BaseFusionError):
            wrapped_error = error
            if not wrapped_error.context and context:
                wrapped_error.context = context
        else:
            wrapped_error = self._wrap_error(error, context)

        self._log_error(wrapped_error)
        self._update_error_stats(wrapped_error)

        if reraise:
            raise wrapped_error

        return wrapped_error

    def _wrap_error(self, error: Exception, context: Optional[ErrorContext]) -> BaseFusionError:
        """Wrap a generic exception in appropriate error type."""
        error_str = str(error)

        if isinstance(error, (TypeError, ValueError)):
            algorithm = context.algorithm if context else None
            return ScoringError(error_str, algorithm=algorithm, context=context)
        else:
            return BaseFusionError(
                error_str,
                context=context,
                cause=error,
            )

    def _log_error(self, error: BaseFusionError) -> None:
        """Log error with appropriate severity."""
        error_dict = error.to_dict()

        self.audit_logger.log_error(
            error_type=error.__class__.__name__,
            error_message=error.message,
            context=error_dict,
        )

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(f"Critical error: {error.message}", extra=error_dict)
        elif error.severity == ErrorSeverity.HIGH:
            self.logger.error(f"Error: {error.message}", extra=error_dict)
        elif error.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(f"Warning: {error.message}", extra=error_dict)
        else:
            self.logger.info(f"Info: {error.message}", extra=error_dict)

    def _update_error_stats(self, error: BaseFusionError) -> None:
        """Update error statistics."""
        error_type = error.__class__.__name__

        if error_type not in self._error_counts:
            self._error_counts[error_type] = 0
        self._error_counts[error_type] += 1

        self._error_history.append(error)

        if len(self._error_history) > self._max_history_size:
            self._error_history = self._error_history[-self._max_history_size:]

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        recent_errors = self._error_history[-100:]

        error_rates: Dict[str, int] = {}
        for error in recent_errors:
            error_type = error.__class__.__name__
            error_rates[error_type] = error_rates.get(error_type, 0) + 1

        severity_dist = {
            severity.value: 0 for severity in ErrorSeverity
        }
        category_dist = {
            category.value: 0 for category in ErrorCategory
        }
        for error in recent_errors:
            severity_dist[error.severity.value] += 1
            category_dist[error.category.value] += 1

        return {
            "total_errors": sum(self._error_counts.values()),
            "error_counts": self._error_counts.copy(),
            "recent_error_rates": error_rates,
            "severity_distribution": severity_dist,
            "category_distribution": category_dist,
        }

    @property
    def errors(self) -> List[BaseFusionError]:
        """Errors handled so far, oldest first."""
        return list(self._error_history)

    def create_user_friendly_message(self, error: BaseFusionError) -> str:
        """Create user-friendly error message."""
        if isinstance(error, ConfigurationError):
            if error.setting:
                return f"Invalid configuration for '{error.setting}': {error.message}"
            return f"Configuration error: {error.message}"
        elif isinstance(error, ScoringError):
            return f"Could not score values with '{error.algorithm}': {error.message}"
        elif isinstance(error, InvariantViolationError):
            return f"Ignored change to {error.fused_id or 'account'}: {error.message}"
        elif isinstance(error, CollaboratorError):
            return f"{error.collaborator} failed: {error.message}"

        return f"An error occurred: {error.message}"

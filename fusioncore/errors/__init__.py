"""Error handling module for identity resolution."""

from .handlers import (
    ErrorHandler,
    ErrorContext,
    ErrorSeverity,
    ErrorCategory,
    BaseFusionError,
    ConfigurationError,
    ScoringError,
    InvariantViolationError,
    CollaboratorError,
)

__all__ = [
    "ErrorHandler",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorCategory",
    "BaseFusionError",
    "ConfigurationError",
    "ScoringError",
    "InvariantViolationError",
    "CollaboratorError",
]

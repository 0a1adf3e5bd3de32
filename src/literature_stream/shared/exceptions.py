"""
Unified Exception Hierarchy for Literature Stream.

Exception Hierarchy:
    LiteratureStreamError (base)
    ├── TransportError
    │   ├── ConnectionLostError
    │   └── ReconnectExhaustedError
    ├── ValidationError
    │   ├── InvalidQueryError
    │   └── InvalidParameterError
    ├── ProtocolError
    │   └── MalformedEventError
    └── ConfigurationError

Session-level failures reported by the server (``search:error``) are not
exceptions: they are recorded as data on the session snapshot. Only local
programming/config mistakes and transport/protocol faults are raised.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    WARNING = auto()  # Recoverable, can continue
    ERROR = auto()  # Failed but can retry
    CRITICAL = auto()  # Cannot continue
    TRANSIENT = auto()  # Temporary, should retry automatically


class ErrorCategory(Enum):
    """Categories for error classification."""

    TRANSPORT = "transport"
    VALIDATION = "validation"
    PROTOCOL = "protocol"
    CONFIGURATION = "config"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Rich context attached to an error."""

    operation: str | None = None
    input_value: Any = None
    suggestion: str | None = None
    retry_after: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class LiteratureStreamError(Exception):
    """
    Base exception for all Literature Stream errors.

    Provides:
    - Structured error context
    - Severity classification
    - Retry guidance
    """

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        category: ErrorCategory = ErrorCategory.TRANSPORT,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.context = context or ErrorContext()
        self.severity = severity
        self.category = category
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error": str(self),
            "category": self.category.value,
            "severity": self.severity.name.lower(),
            "retryable": self.retryable,
        }
        if self.context.operation:
            result["operation"] = self.context.operation
        if self.context.suggestion:
            result["suggestion"] = self.context.suggestion
        if self.context.retry_after:
            result["retry_after_seconds"] = self.context.retry_after
        return result


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(LiteratureStreamError):
    """Base class for stream transport errors."""

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.TRANSIENT if retryable else ErrorSeverity.CRITICAL,
            category=ErrorCategory.TRANSPORT,
            retryable=retryable,
        )


class ConnectionLostError(TransportError):
    """Raised when the stream connection closes or cannot be established."""

    def __init__(
        self,
        message: str = "Stream connection lost",
        *,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message, context=context, retryable=True)


class ReconnectExhaustedError(TransportError):
    """Raised when all reconnection attempts have failed."""

    def __init__(
        self,
        attempts: int,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext()
        ctx = ErrorContext(
            operation=ctx.operation or "reconnect",
            input_value=attempts,
            suggestion=ctx.suggestion or "Check the server and start a new search",
            retry_after=ctx.retry_after,
            metadata=ctx.metadata,
        )
        super().__init__(
            f"Failed to reconnect after {attempts} attempts",
            context=ctx,
            retryable=False,
        )
        self.attempts = attempts


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(LiteratureStreamError):
    """Base class for validation errors."""

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.VALIDATION,
            retryable=False,
        )


class InvalidQueryError(ValidationError):
    """Raised when a search query is invalid."""

    def __init__(
        self,
        query: str | None,
        reason: str = "Query cannot be empty",
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext()
        ctx = ErrorContext(
            operation=ctx.operation or "start_search",
            input_value=query,
            suggestion=ctx.suggestion or "Provide a non-empty search query",
            retry_after=ctx.retry_after,
            metadata=ctx.metadata,
        )
        super().__init__(f"Invalid query: {reason}", context=ctx)


class InvalidParameterError(ValidationError):
    """Raised when a search option or argument is invalid."""

    def __init__(
        self,
        param_name: str,
        value: Any,
        expected: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext()
        ctx = ErrorContext(
            operation=ctx.operation,
            input_value=value,
            suggestion=f"Expected {expected}",
            retry_after=ctx.retry_after,
            metadata=ctx.metadata,
        )
        super().__init__(
            f"Invalid parameter '{param_name}': {value!r} (expected {expected})",
            context=ctx,
        )
        self.param_name = param_name


# =============================================================================
# Protocol Errors
# =============================================================================


class ProtocolError(LiteratureStreamError):
    """Base class for wire protocol errors."""

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.PROTOCOL,
            retryable=False,
        )


class MalformedEventError(ProtocolError):
    """Raised when an inbound frame cannot be decoded into a protocol event."""

    def __init__(
        self,
        message: str,
        *,
        event_name: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        full_msg = f"Malformed event: {message}"
        if event_name:
            full_msg = f"Malformed event ({event_name}): {message}"
        super().__init__(full_msg, context=context)
        self.event_name = event_name


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(LiteratureStreamError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            retryable=False,
        )


# =============================================================================
# Retry helpers
# =============================================================================


def get_retry_delay(
    error: Exception | None,
    attempt: int,
    *,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> float:
    """
    Calculate retry delay with exponential backoff.

    Args:
        error: The exception that occurred (may carry a retry_after hint)
        attempt: Current attempt number (0-based)
        base_delay: Delay for the first retry in seconds
        max_delay: Upper bound for the returned delay

    Returns:
        Delay in seconds before next retry
    """
    if isinstance(error, LiteratureStreamError) and error.context.retry_after:
        base_delay = error.context.retry_after

    delay = base_delay * (2**attempt)
    jitter = random.uniform(0, 0.1 * delay)

    return min(delay + jitter, max_delay)

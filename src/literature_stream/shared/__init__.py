"""
Shared cross-cutting concerns.

Provides:
- Unified exception hierarchy with retry guidance
- Stream client configuration
"""

from .config import DEFAULT_URL, StreamConfig, TierFailurePolicy
from .exceptions import (
    ConfigurationError,
    ConnectionLostError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    InvalidParameterError,
    InvalidQueryError,
    LiteratureStreamError,
    MalformedEventError,
    ProtocolError,
    ReconnectExhaustedError,
    TransportError,
    ValidationError,
    get_retry_delay,
)

__all__ = [
    # Config
    "DEFAULT_URL",
    "StreamConfig",
    "TierFailurePolicy",
    # Base
    "LiteratureStreamError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    # Transport errors
    "TransportError",
    "ConnectionLostError",
    "ReconnectExhaustedError",
    # Validation errors
    "ValidationError",
    "InvalidQueryError",
    "InvalidParameterError",
    # Protocol errors
    "ProtocolError",
    "MalformedEventError",
    # Configuration errors
    "ConfigurationError",
    # Helpers
    "get_retry_delay",
]

"""WebSocket stream transport."""

from .transport import StreamTransport

__all__ = ["StreamTransport"]

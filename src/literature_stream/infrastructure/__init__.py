"""
Infrastructure Layer - External Systems Integration

Contains:
- stream: WebSocket transport to the literature search backend
"""

from .stream import StreamTransport

__all__ = ["StreamTransport"]

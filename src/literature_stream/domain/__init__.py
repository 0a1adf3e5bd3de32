"""
Domain Layer - Core Business Objects

Contains:
- entities: papers, protocol events, commands, session model
"""

from .entities import (
    Paper,
    SearchEvent,
    SearchOptions,
    SearchSnapshot,
    parse_event,
)

__all__ = [
    "Paper",
    "SearchEvent",
    "SearchOptions",
    "SearchSnapshot",
    "parse_event",
]

"""
Client → server commands and search options.

Commands share the server's framing: ``{"event": "<name>", "data": {...}}``
with camelCase payload keys. ``encode_command()`` produces the JSON text frame
the transport sends.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from literature_stream.shared.exceptions import InvalidParameterError, InvalidQueryError


class SortBy(Enum):
    RELEVANCE = "relevance"
    DATE = "date"
    CITATIONS = "citations"


class ResearchPurpose(Enum):
    """Research purpose; tunes server-side quality weights and paper limits."""

    Q_METHODOLOGY = "q_methodology"
    QUALITATIVE_ANALYSIS = "qualitative_analysis"
    LITERATURE_SYNTHESIS = "literature_synthesis"
    HYPOTHESIS_GENERATION = "hypothesis_generation"
    SURVEY_CONSTRUCTION = "survey_construction"


class EnrichmentPriority(Enum):
    HIGH = "high"
    NORMAL = "normal"


@dataclass(frozen=True)
class SearchOptions:
    """
    Options sent with ``search:start``.

    All fields are optional; unset ones are omitted from the wire payload so
    the server applies its own defaults.

    Raises:
        InvalidParameterError: On construction when a value is out of range
    """

    limit: int | None = None
    page: int | None = None
    year_from: int | None = None
    year_to: int | None = None
    min_citations: int | None = None
    publication_type: str | None = None
    author: str | None = None
    sort_by: SortBy | None = None
    sources: tuple[str, ...] = ()
    purpose: ResearchPurpose | None = None
    has_full_text_only: bool | None = None
    exclude_books: bool | None = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit <= 0:
            raise InvalidParameterError("limit", self.limit, "a positive integer")
        if self.page is not None and self.page <= 0:
            raise InvalidParameterError("page", self.page, "a positive integer")
        if self.min_citations is not None and self.min_citations < 0:
            raise InvalidParameterError("min_citations", self.min_citations, "a non-negative integer")
        if self.year_from is not None and self.year_to is not None and self.year_from > self.year_to:
            raise InvalidParameterError("year_from", self.year_from, f"a year <= year_to ({self.year_to})")
        # Accept plain strings for the enum fields
        if isinstance(self.sort_by, str):
            object.__setattr__(self, "sort_by", _to_enum("sort_by", self.sort_by, SortBy))
        if isinstance(self.purpose, str):
            object.__setattr__(self, "purpose", _to_enum("purpose", self.purpose, ResearchPurpose))
        if isinstance(self.sources, (list, str)):
            sources = [self.sources] if isinstance(self.sources, str) else self.sources
            object.__setattr__(self, "sources", tuple(sources))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "limit": self.limit,
            "page": self.page,
            "yearFrom": self.year_from,
            "yearTo": self.year_to,
            "minCitations": self.min_citations,
            "publicationType": self.publication_type,
            "author": self.author,
            "sortBy": self.sort_by.value if self.sort_by else None,
            "sources": list(self.sources) if self.sources else None,
            "purpose": self.purpose.value if self.purpose else None,
            "hasFullTextOnly": self.has_full_text_only,
            "excludeBooks": self.exclude_books,
        }
        return {k: v for k, v in result.items() if v is not None}


def _to_enum(param: str, value: str, enum_type: type[Enum]) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_type)
        raise InvalidParameterError(param, value, f"one of: {allowed}") from None


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class StartSearchCommand:
    name: ClassVar[str] = "search:start"

    search_id: str
    query: str
    options: SearchOptions = field(default_factory=SearchOptions)

    def __post_init__(self) -> None:
        if not self.query or not self.query.strip():
            raise InvalidQueryError(self.query)

    def payload(self) -> dict[str, Any]:
        return {"searchId": self.search_id, "query": self.query.strip(), "options": self.options.to_dict()}


@dataclass(frozen=True)
class CancelSearchCommand:
    name: ClassVar[str] = "search:cancel"

    search_id: str

    def payload(self) -> dict[str, Any]:
        return {"searchId": self.search_id}


@dataclass(frozen=True)
class SubscribeCommand:
    """Re-attach to running searches after a reconnect."""

    name: ClassVar[str] = "search:subscribe"

    search_ids: tuple[str, ...]

    def payload(self) -> dict[str, Any]:
        return {"searchIds": list(self.search_ids)}


@dataclass(frozen=True)
class EnrichmentRequestCommand:
    name: ClassVar[str] = "enrichment:request"

    search_id: str
    paper_ids: tuple[str, ...]
    priority: EnrichmentPriority = EnrichmentPriority.NORMAL

    def payload(self) -> dict[str, Any]:
        return {"searchId": self.search_id, "paperIds": list(self.paper_ids), "priority": self.priority.value}


@dataclass(frozen=True)
class EnrichmentPrefetchCommand:
    name: ClassVar[str] = "enrichment:prefetch"

    search_id: str
    paper_ids: tuple[str, ...]

    def payload(self) -> dict[str, Any]:
        return {"searchId": self.search_id, "paperIds": list(self.paper_ids)}


ClientCommand = Union[
    StartSearchCommand,
    CancelSearchCommand,
    SubscribeCommand,
    EnrichmentRequestCommand,
    EnrichmentPrefetchCommand,
]


def encode_command(command: ClientCommand) -> str:
    """Serialize a command to its JSON text frame."""
    return json.dumps({"event": command.name, "data": command.payload()}, separators=(",", ":"))

"""
Event Protocol - typed server → client events and the frame parser.

Every server frame is a JSON object ``{"event": "<name>", "data": {...}}``
whose payload carries ``searchId`` and ``timestamp`` (ms since epoch).
Each event name maps to one frozen dataclass below.

Architecture Decision:
    Parsing is strict about required fields and enum values (a bad frame
    raises MalformedEventError so the transport can log and drop it) but
    lenient about individual papers: one unusable paper in a batch is
    dropped with a warning and the rest of the batch survives.

    Unknown event names parse to ``None`` so a newer server can add events
    without breaking older clients.

Usage:
    event = parse_event('{"event": "search:progress", "data": {...}}')
    if event is not None:
        reconciler.apply(event)
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Mapping, Union

from literature_stream.domain.entities.paper import Paper
from literature_stream.domain.entities.session import (
    IterationStopReason,
    QueryIntelligence,
    SearchStage,
    SemanticTierName,
    SourceStatus,
    SourceTier,
)
from literature_stream.shared.exceptions import MalformedEventError

logger = logging.getLogger(__name__)


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class SearchStartedEvent:
    name: ClassVar[str] = "search:started"

    search_id: str
    timestamp: float
    query: str
    corrected_query: str
    intelligence: QueryIntelligence | None = None


@dataclass(frozen=True, slots=True)
class SourceStartedEvent:
    name: ClassVar[str] = "search:source-started"

    search_id: str
    timestamp: float
    source: str
    tier: SourceTier
    estimated_time_ms: int | None = None


@dataclass(frozen=True, slots=True)
class SourceCompleteEvent:
    name: ClassVar[str] = "search:source-complete"

    search_id: str
    timestamp: float
    source: str
    tier: SourceTier
    paper_count: int
    time_ms: int


@dataclass(frozen=True, slots=True)
class SourceErrorEvent:
    name: ClassVar[str] = "search:source-error"

    search_id: str
    timestamp: float
    source: str
    error: str
    recoverable: bool = True


@dataclass(frozen=True, slots=True)
class PapersBatchEvent:
    name: ClassVar[str] = "search:papers"

    search_id: str
    timestamp: float
    papers: tuple[Paper, ...]
    source: str
    batch_number: int
    cumulative_count: int
    dropped: int = 0  # malformed papers removed while parsing


@dataclass(frozen=True, slots=True)
class SearchProgressEvent:
    name: ClassVar[str] = "search:progress"

    search_id: str
    timestamp: float
    stage: SearchStage
    percent: float
    message: str
    sources_complete: int
    sources_total: int
    papers_found: int


@dataclass(frozen=True, slots=True)
class PaperEnrichmentEvent:
    """Enrichment for one paper; ``updates`` uses Paper attribute names."""

    name: ClassVar[str] = "search:enrichment"

    search_id: str
    timestamp: float
    paper_id: str
    updates: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class SemanticTierMetadata:
    papers_processed: int | None = None
    cache_hits: int = 0
    embed_generated: int = 0
    used_worker_pool: bool = False


@dataclass(frozen=True, slots=True)
class SemanticTierEvent:
    name: ClassVar[str] = "search:semantic-tier"

    search_id: str
    timestamp: float
    tier: SemanticTierName
    version: int
    papers: tuple[Paper, ...]
    latency_ms: int
    is_complete: bool
    metadata: SemanticTierMetadata = SemanticTierMetadata()


@dataclass(frozen=True, slots=True)
class SemanticProgressEvent:
    name: ClassVar[str] = "search:semantic-progress"

    search_id: str
    timestamp: float
    tier: SemanticTierName
    papers_processed: int
    papers_total: int
    percent: float
    message: str


@dataclass(frozen=True, slots=True)
class IterationEvent:
    """
    Shared payload of the iterative fetch events.

    ``papers_found`` counts papers above the current ``threshold``, which is
    not the same number as the raw papers found reported by search:progress.
    """

    search_id: str
    timestamp: float
    iteration: int
    total_iterations: int
    fetch_limit: int
    threshold: float
    papers_found: int
    target_papers: int
    new_papers_this_iteration: int = 0
    yield_rate: float = 0.0
    sources_exhausted: tuple[str, ...] = ()
    reason: IterationStopReason | None = None


@dataclass(frozen=True, slots=True)
class IterationStartEvent(IterationEvent):
    name: ClassVar[str] = "search:iteration-start"


@dataclass(frozen=True, slots=True)
class IterationProgressEvent(IterationEvent):
    name: ClassVar[str] = "search:iteration-progress"


@dataclass(frozen=True, slots=True)
class IterationCompleteEvent(IterationEvent):
    name: ClassVar[str] = "search:iteration-complete"


@dataclass(frozen=True, slots=True)
class SelectionCompleteEvent:
    name: ClassVar[str] = "search:selection-complete"

    search_id: str
    timestamp: float
    ranked_count: int
    selected_count: int
    target_count: int
    avg_quality_score: float


@dataclass(frozen=True, slots=True)
class SourceStat:
    """Final per-source statistics carried by search:complete."""

    source: str
    status: SourceStatus
    tier: SourceTier | None = None
    paper_count: int = 0
    time_ms: int = 0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class EnrichmentStats:
    enriched: int = 0
    pending: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class SearchCompleteEvent:
    name: ClassVar[str] = "search:complete"

    search_id: str
    timestamp: float
    total_papers: int
    unique_papers: int
    total_time_ms: int
    source_stats: tuple[SourceStat, ...] = ()
    enrichment_stats: EnrichmentStats | None = None


@dataclass(frozen=True, slots=True)
class SearchErrorEvent:
    name: ClassVar[str] = "search:error"

    search_id: str
    timestamp: float
    error: str
    recoverable: bool
    code: str | None = None


SearchEvent = Union[
    SearchStartedEvent,
    SourceStartedEvent,
    SourceCompleteEvent,
    SourceErrorEvent,
    PapersBatchEvent,
    SearchProgressEvent,
    PaperEnrichmentEvent,
    SemanticTierEvent,
    SemanticProgressEvent,
    IterationStartEvent,
    IterationProgressEvent,
    IterationCompleteEvent,
    SelectionCompleteEvent,
    SearchCompleteEvent,
    SearchErrorEvent,
]


# =============================================================================
# Payload reader
# =============================================================================


class _Payload:
    """Typed accessors over one event payload; failures raise MalformedEventError."""

    def __init__(self, event_name: str, data: Mapping[str, Any]) -> None:
        self.event_name = event_name
        self.data = data

    def _fail(self, message: str) -> MalformedEventError:
        return MalformedEventError(message, event_name=self.event_name)

    def _get(self, key: str, required: bool) -> Any:
        value = self.data.get(key)
        if value is None and required:
            raise self._fail(f"missing required field '{key}'")
        return value

    def text(self, key: str, *, required: bool = True, default: str | None = None) -> Any:
        value = self._get(key, required)
        if value is None:
            return default
        if not isinstance(value, str):
            raise self._fail(f"field '{key}' must be a string, got {type(value).__name__}")
        return value

    def _finite(self, key: str, value: Any) -> float | int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._fail(f"field '{key}' must be a number, got {type(value).__name__}")
        # json.loads accepts NaN and Infinity
        if not math.isfinite(value):
            raise self._fail(f"field '{key}' must be finite, got {value!r}")
        return value

    def integer(self, key: str, *, required: bool = True, default: int | None = None) -> Any:
        value = self._get(key, required)
        if value is None:
            return default
        return int(self._finite(key, value))

    def number(self, key: str, *, required: bool = True, default: float | None = None) -> Any:
        value = self._get(key, required)
        if value is None:
            return default
        return float(self._finite(key, value))

    def flag(self, key: str, *, required: bool = True, default: bool | None = None) -> Any:
        value = self._get(key, required)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self._fail(f"field '{key}' must be a boolean, got {type(value).__name__}")
        return value

    def choice(self, key: str, enum_type: type[Enum], *, required: bool = True) -> Any:
        value = self._get(key, required)
        if value is None:
            return None
        try:
            return enum_type(value)
        except ValueError:
            raise self._fail(f"unknown {enum_type.__name__} value {value!r}") from None

    def items(self, key: str, *, required: bool = True) -> list[Any]:
        value = self._get(key, required)
        if value is None:
            return []
        if not isinstance(value, list):
            raise self._fail(f"field '{key}' must be a list, got {type(value).__name__}")
        return value

    def obj(self, key: str, *, required: bool = True) -> Mapping[str, Any] | None:
        value = self._get(key, required)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            raise self._fail(f"field '{key}' must be an object, got {type(value).__name__}")
        return value

    def papers(self, key: str = "papers") -> tuple[tuple[Paper, ...], int]:
        """Parse a paper list, dropping (and counting) unusable entries."""
        papers: list[Paper] = []
        dropped = 0
        for index, raw in enumerate(self.items(key)):
            if not isinstance(raw, Mapping):
                logger.warning(f"{self.event_name}: dropping paper #{index}, not an object")
                dropped += 1
                continue
            try:
                papers.append(Paper.from_dict(raw))
            except (TypeError, ValueError, OverflowError) as e:
                logger.warning(f"{self.event_name}: dropping paper #{index}: {e}")
                dropped += 1
        return tuple(papers), dropped


# =============================================================================
# Per-event builders
# =============================================================================


def _search_started(p: _Payload, sid: str, ts: float) -> SearchStartedEvent:
    query = p.text("query")
    raw_intel = p.obj("intelligence", required=False)
    intelligence = None
    if raw_intel is not None:
        try:
            intelligence = QueryIntelligence.from_dict(raw_intel)
        except (TypeError, ValueError, OverflowError) as e:
            logger.warning(f"search:started: ignoring unreadable intelligence block: {e}")
    return SearchStartedEvent(
        search_id=sid,
        timestamp=ts,
        query=query,
        corrected_query=p.text("correctedQuery", required=False, default=query),
        intelligence=intelligence,
    )


def _source_started(p: _Payload, sid: str, ts: float) -> SourceStartedEvent:
    return SourceStartedEvent(
        search_id=sid,
        timestamp=ts,
        source=p.text("source"),
        tier=p.choice("tier", SourceTier),
        estimated_time_ms=p.integer("estimatedTimeMs", required=False),
    )


def _source_complete(p: _Payload, sid: str, ts: float) -> SourceCompleteEvent:
    return SourceCompleteEvent(
        search_id=sid,
        timestamp=ts,
        source=p.text("source"),
        tier=p.choice("tier", SourceTier),
        paper_count=p.integer("paperCount"),
        time_ms=p.integer("timeMs"),
    )


def _source_error(p: _Payload, sid: str, ts: float) -> SourceErrorEvent:
    return SourceErrorEvent(
        search_id=sid,
        timestamp=ts,
        source=p.text("source"),
        error=p.text("error"),
        recoverable=p.flag("recoverable", required=False, default=True),
    )


def _papers(p: _Payload, sid: str, ts: float) -> PapersBatchEvent:
    papers, dropped = p.papers()
    return PapersBatchEvent(
        search_id=sid,
        timestamp=ts,
        papers=papers,
        source=p.text("source"),
        batch_number=p.integer("batchNumber"),
        cumulative_count=p.integer("cumulativeCount"),
        dropped=dropped,
    )


def _progress(p: _Payload, sid: str, ts: float) -> SearchProgressEvent:
    return SearchProgressEvent(
        search_id=sid,
        timestamp=ts,
        stage=p.choice("stage", SearchStage),
        percent=min(max(p.number("percent"), 0.0), 100.0),
        message=p.text("message", required=False, default=""),
        sources_complete=p.integer("sourcesComplete"),
        sources_total=p.integer("sourcesTotal"),
        papers_found=p.integer("papersFound"),
    )


def _enrichment(p: _Payload, sid: str, ts: float) -> PaperEnrichmentEvent:
    updates: dict[str, Any] = {}
    if (value := p.integer("citationCount", required=False)) is not None:
        updates["citation_count"] = value
    if (value := p.number("impactFactor", required=False)) is not None:
        updates["impact_factor"] = value
    if (value := p.number("hIndexJournal", required=False)) is not None:
        updates["h_index_journal"] = value
    if (value := p.text("quartile", required=False)) is not None:
        if value not in ("Q1", "Q2", "Q3", "Q4"):
            raise MalformedEventError(f"unknown quartile {value!r}", event_name=p.event_name)
        updates["quartile"] = value
    if (value := p.text("venue", required=False)) is not None:
        updates["venue"] = value
    fields = p.items("fieldsOfStudy", required=False)
    if fields:
        updates["fields_of_study"] = tuple(str(f) for f in fields if f)
    return PaperEnrichmentEvent(
        search_id=sid, timestamp=ts, paper_id=p.text("paperId"), updates=MappingProxyType(updates)
    )


def _semantic_tier(p: _Payload, sid: str, ts: float) -> SemanticTierEvent:
    papers, dropped = p.papers()
    if dropped:
        logger.warning(f"search:semantic-tier: {dropped} unusable papers dropped from tier")
    raw_meta = p.obj("metadata", required=False)
    metadata = SemanticTierMetadata()
    if raw_meta is not None:
        meta = _Payload(p.event_name, raw_meta)
        metadata = SemanticTierMetadata(
            papers_processed=meta.integer("papersProcessed", required=False),
            cache_hits=meta.integer("cacheHits", required=False, default=0),
            embed_generated=meta.integer("embedGenerated", required=False, default=0),
            used_worker_pool=meta.flag("usedWorkerPool", required=False, default=False),
        )
    return SemanticTierEvent(
        search_id=sid,
        timestamp=ts,
        tier=p.choice("tier", SemanticTierName),
        version=p.integer("version"),
        papers=papers,
        latency_ms=p.integer("latencyMs", required=False, default=0),
        is_complete=p.flag("isComplete", required=False, default=False),
        metadata=metadata,
    )


def _semantic_progress(p: _Payload, sid: str, ts: float) -> SemanticProgressEvent:
    return SemanticProgressEvent(
        search_id=sid,
        timestamp=ts,
        tier=p.choice("tier", SemanticTierName),
        papers_processed=p.integer("papersProcessed"),
        papers_total=p.integer("papersTotal"),
        percent=min(max(p.number("percent"), 0.0), 100.0),
        message=p.text("message", required=False, default=""),
    )


def _iteration(event_type: type[IterationEvent]) -> Callable[[_Payload, str, float], IterationEvent]:
    def build(p: _Payload, sid: str, ts: float) -> IterationEvent:
        exhausted = p.items("sourcesExhausted", required=False)
        if not all(isinstance(s, str) for s in exhausted):
            raise MalformedEventError("sourcesExhausted entries must be strings", event_name=p.event_name)
        return event_type(
            search_id=sid,
            timestamp=ts,
            iteration=p.integer("iteration"),
            total_iterations=p.integer("totalIterations", required=False, default=0),
            fetch_limit=p.integer("fetchLimit"),
            threshold=p.number("threshold"),
            papers_found=p.integer("papersFound"),
            target_papers=p.integer("targetPapers"),
            new_papers_this_iteration=p.integer("newPapersThisIteration", required=False, default=0),
            yield_rate=p.number("yieldRate", required=False, default=0.0),
            sources_exhausted=tuple(exhausted),
            reason=p.choice("reason", IterationStopReason, required=False),
        )

    return build


def _selection_complete(p: _Payload, sid: str, ts: float) -> SelectionCompleteEvent:
    return SelectionCompleteEvent(
        search_id=sid,
        timestamp=ts,
        ranked_count=p.integer("rankedCount"),
        selected_count=p.integer("selectedCount"),
        target_count=p.integer("targetCount"),
        avg_quality_score=p.number("avgQualityScore", required=False, default=0.0),
    )


def _search_complete(p: _Payload, sid: str, ts: float) -> SearchCompleteEvent:
    stats: list[SourceStat] = []
    for raw in p.items("sourceStats", required=False):
        if not isinstance(raw, Mapping):
            raise MalformedEventError("sourceStats entries must be objects", event_name=p.event_name)
        entry = _Payload(p.event_name, raw)
        stats.append(
            SourceStat(
                source=entry.text("source"),
                status=entry.choice("status", SourceStatus),
                tier=entry.choice("tier", SourceTier, required=False),
                paper_count=entry.integer("paperCount", required=False, default=0),
                time_ms=entry.integer("timeMs", required=False, default=0),
                error=entry.text("error", required=False),
            )
        )

    enrichment = None
    raw_enrichment = p.obj("enrichmentStats", required=False)
    if raw_enrichment is not None:
        entry = _Payload(p.event_name, raw_enrichment)
        enrichment = EnrichmentStats(
            enriched=entry.integer("enriched", required=False, default=0),
            pending=entry.integer("pending", required=False, default=0),
            failed=entry.integer("failed", required=False, default=0),
        )

    return SearchCompleteEvent(
        search_id=sid,
        timestamp=ts,
        total_papers=p.integer("totalPapers"),
        unique_papers=p.integer("uniquePapers"),
        total_time_ms=p.integer("totalTimeMs"),
        source_stats=tuple(stats),
        enrichment_stats=enrichment,
    )


def _search_error(p: _Payload, sid: str, ts: float) -> SearchErrorEvent:
    return SearchErrorEvent(
        search_id=sid,
        timestamp=ts,
        error=p.text("error"),
        recoverable=p.flag("recoverable"),
        code=p.text("code", required=False),
    )


_BUILDERS = {
    SearchStartedEvent.name: _search_started,
    SourceStartedEvent.name: _source_started,
    SourceCompleteEvent.name: _source_complete,
    SourceErrorEvent.name: _source_error,
    PapersBatchEvent.name: _papers,
    SearchProgressEvent.name: _progress,
    PaperEnrichmentEvent.name: _enrichment,
    SemanticTierEvent.name: _semantic_tier,
    SemanticProgressEvent.name: _semantic_progress,
    IterationStartEvent.name: _iteration(IterationStartEvent),
    IterationProgressEvent.name: _iteration(IterationProgressEvent),
    IterationCompleteEvent.name: _iteration(IterationCompleteEvent),
    SelectionCompleteEvent.name: _selection_complete,
    SearchCompleteEvent.name: _search_complete,
    SearchErrorEvent.name: _search_error,
}

EVENT_NAMES: frozenset[str] = frozenset(_BUILDERS)


# =============================================================================
# Entry point
# =============================================================================


def parse_event(frame: str | bytes | Mapping[str, Any]) -> SearchEvent | None:
    """
    Decode one server frame into a typed event.

    Args:
        frame: Raw text/bytes frame or an already-decoded mapping

    Returns:
        The typed event, or None when the event name is unknown

    Raises:
        MalformedEventError: Not JSON, not an object, or a required field is
            missing or has the wrong type
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedEventError(f"frame is not valid JSON: {e}") from e

    if not isinstance(frame, Mapping):
        raise MalformedEventError(f"frame must be a JSON object, got {type(frame).__name__}")

    event_name = frame.get("event")
    if not isinstance(event_name, str) or not event_name:
        raise MalformedEventError("frame has no 'event' name")

    builder = _BUILDERS.get(event_name)
    if builder is None:
        logger.debug(f"Ignoring unknown event type: {event_name}")
        return None

    data = frame.get("data")
    if not isinstance(data, Mapping):
        raise MalformedEventError("frame has no 'data' object", event_name=event_name)

    payload = _Payload(event_name, data)
    search_id = payload.text("searchId")
    timestamp = payload.number("timestamp")
    return builder(payload, search_id, timestamp)

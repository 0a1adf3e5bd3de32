"""
Domain Entities

Papers, protocol events, client commands and the search session model.
"""

from __future__ import annotations

from .commands import (
    CancelSearchCommand,
    ClientCommand,
    EnrichmentPrefetchCommand,
    EnrichmentPriority,
    EnrichmentRequestCommand,
    ResearchPurpose,
    SearchOptions,
    SortBy,
    StartSearchCommand,
    SubscribeCommand,
    encode_command,
)
from .events import (
    EVENT_NAMES,
    EnrichmentStats,
    IterationCompleteEvent,
    IterationEvent,
    IterationProgressEvent,
    IterationStartEvent,
    PaperEnrichmentEvent,
    PapersBatchEvent,
    SearchCompleteEvent,
    SearchErrorEvent,
    SearchEvent,
    SearchProgressEvent,
    SearchStartedEvent,
    SelectionCompleteEvent,
    SemanticProgressEvent,
    SemanticTierEvent,
    SemanticTierMetadata,
    SourceCompleteEvent,
    SourceErrorEvent,
    SourceStartedEvent,
    SourceStat,
    parse_event,
)
from .paper import Paper, normalize_doi, normalize_title
from .session import (
    SEMANTIC_TIER_CONFIG,
    CompletionSummary,
    ConnectionStatus,
    IterationProgress,
    IterationStopReason,
    PositionChange,
    QueryIntelligence,
    RerankResult,
    SearchSnapshot,
    SearchStage,
    SelectionResult,
    SemanticTierName,
    SemanticTierStats,
    SessionError,
    SessionStatus,
    SourceRecord,
    SourceStatus,
    SourceTier,
    SpellCorrection,
)

__all__ = [
    # Paper
    "Paper",
    "normalize_doi",
    "normalize_title",
    # Events
    "EVENT_NAMES",
    "SearchEvent",
    "SearchStartedEvent",
    "SourceStartedEvent",
    "SourceCompleteEvent",
    "SourceErrorEvent",
    "PapersBatchEvent",
    "SearchProgressEvent",
    "PaperEnrichmentEvent",
    "SemanticTierEvent",
    "SemanticTierMetadata",
    "SemanticProgressEvent",
    "IterationEvent",
    "IterationStartEvent",
    "IterationProgressEvent",
    "IterationCompleteEvent",
    "SelectionCompleteEvent",
    "SearchCompleteEvent",
    "SourceStat",
    "EnrichmentStats",
    "SearchErrorEvent",
    "parse_event",
    # Commands
    "ClientCommand",
    "StartSearchCommand",
    "CancelSearchCommand",
    "SubscribeCommand",
    "EnrichmentRequestCommand",
    "EnrichmentPrefetchCommand",
    "EnrichmentPriority",
    "SearchOptions",
    "SortBy",
    "ResearchPurpose",
    "encode_command",
    # Session
    "SessionStatus",
    "SearchStage",
    "SourceTier",
    "SourceStatus",
    "SemanticTierName",
    "ConnectionStatus",
    "IterationStopReason",
    "SEMANTIC_TIER_CONFIG",
    "SourceRecord",
    "SemanticTierStats",
    "PositionChange",
    "RerankResult",
    "IterationProgress",
    "SelectionResult",
    "CompletionSummary",
    "SessionError",
    "SpellCorrection",
    "QueryIntelligence",
    "SearchSnapshot",
]

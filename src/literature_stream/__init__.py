"""
Literature Stream - Progressive Multi-Source Literature Search Client

Consumes the streaming search protocol of a multi-source literature search
backend and reconciles it into a coherent, deduplicated, progressively
re-ranked result set per search.

Usage:
    from literature_stream import SearchOptions, SearchStreamClient, StreamConfig, StreamTransport

    config = StreamConfig.from_env()
    async with SearchStreamClient(StreamTransport(config), config=config) as client:
        search_id = client.start_search("q methodology", SearchOptions(limit=300))
        snapshot = await client.wait_until_finished(search_id, timeout=120)
        for paper in snapshot.papers:
            print(paper.title)

Features:
    - One WebSocket multiplexing many searches, with reconnect and resubscribe
    - Deduplication by DOI / PMID / normalized title across sources
    - Monotonic source and stage progress, tolerant of reordered delivery
    - Versioned semantic re-ranking tiers with position-change tracking
    - Final quality selection (e.g. 600 ranked → 300 selected)
    - Lazy enrichment requests for papers entering view
"""

from .application.search import (
    QualitySelector,
    ResultReconciler,
    SearchStreamClient,
    SemanticRerankMerger,
    SourceTierRegistry,
)
from .container import ApplicationContainer, create_container
from .domain.entities import (
    EnrichmentPriority,
    Paper,
    ResearchPurpose,
    SearchEvent,
    SearchOptions,
    SearchSnapshot,
    SearchStage,
    SessionStatus,
    SourceStatus,
    SourceTier,
    parse_event,
)
from .infrastructure.stream import StreamTransport
from .shared.config import StreamConfig, TierFailurePolicy
from .shared.exceptions import LiteratureStreamError

__version__ = "0.1.0"

__all__ = [
    # High-level API
    "SearchStreamClient",
    "StreamTransport",
    "StreamConfig",
    "TierFailurePolicy",
    "ApplicationContainer",
    "create_container",
    # Pipeline components
    "ResultReconciler",
    "SemanticRerankMerger",
    "QualitySelector",
    "SourceTierRegistry",
    # Domain
    "Paper",
    "SearchEvent",
    "SearchOptions",
    "SearchSnapshot",
    "SearchStage",
    "SessionStatus",
    "SourceStatus",
    "SourceTier",
    "ResearchPurpose",
    "EnrichmentPriority",
    "parse_event",
    # Errors
    "LiteratureStreamError",
]

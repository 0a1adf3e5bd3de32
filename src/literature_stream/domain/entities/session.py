"""
Search session model - stages, statuses, per-source records and snapshots.

Everything here is plain data. The only code that mutates a session is the
ResultReconciler (application.search.reconciler); collaborators receive
``SearchSnapshot`` values, which are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from literature_stream.domain.entities.paper import Paper


# =============================================================================
# Enums
# =============================================================================


class SearchStage(Enum):
    """Pipeline stage reported by progress events, in pipeline order."""

    ANALYZING = "analyzing"
    FAST_SOURCES = "fast-sources"
    MEDIUM_SOURCES = "medium-sources"
    SLOW_SOURCES = "slow-sources"
    RANKING = "ranking"
    SELECTING = "selecting"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return _STAGE_ORDER.index(self)


_STAGE_ORDER = list(SearchStage)


class SessionStatus(Enum):
    """Lifecycle of a search session; the last three are terminal."""

    PENDING = "pending"  # created locally, search:started not yet seen
    ACTIVE = "active"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETE, SessionStatus.ERROR, SessionStatus.CANCELLED)


class SourceTier(Enum):
    """Latency classification of a literature source."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class SourceStatus(Enum):
    """Per-source status; transitions only move to a higher rank."""

    PENDING = "pending"
    SEARCHING = "searching"
    COMPLETE = "complete"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def rank(self) -> int:
        if self is SourceStatus.PENDING:
            return 0
        if self is SourceStatus.SEARCHING:
            return 1
        return 2

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2


class SemanticTierName(Enum):
    """Semantic re-ranking passes, cheapest first."""

    IMMEDIATE = "immediate"
    REFINED = "refined"
    COMPLETE = "complete"


class IterationStopReason(Enum):
    """Why the server's iterative fetch loop stopped (or relaxed its threshold)."""

    TARGET_REACHED = "TARGET_REACHED"
    RELAXING_THRESHOLD = "RELAXING_THRESHOLD"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    DIMINISHING_RETURNS = "DIMINISHING_RETURNS"
    SOURCES_EXHAUSTED = "SOURCES_EXHAUSTED"
    MIN_THRESHOLD = "MIN_THRESHOLD"
    USER_CANCELLED = "USER_CANCELLED"
    TIMEOUT = "TIMEOUT"


class ConnectionStatus(Enum):
    """Stream transport connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class SemanticTierInfo:
    """Documented scope of one semantic tier."""

    display_name: str
    description: str
    paper_range: tuple[int, int]
    target_latency_ms: int


SEMANTIC_TIER_CONFIG: dict[SemanticTierName, SemanticTierInfo] = {
    SemanticTierName.IMMEDIATE: SemanticTierInfo(
        display_name="Instant Preview",
        description="Top 50 papers ranked instantly",
        paper_range=(1, 50),
        target_latency_ms=500,
    ),
    SemanticTierName.REFINED: SemanticTierInfo(
        display_name="Semantic Refinement",
        description="Top 200 papers with semantic scoring",
        paper_range=(51, 200),
        target_latency_ms=3000,
    ),
    SemanticTierName.COMPLETE: SemanticTierInfo(
        display_name="Deep Analysis",
        description="All papers with cross-encoder re-ranking",
        paper_range=(201, 600),
        target_latency_ms=12000,
    ),
}


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class SourceRecord:
    """Status of one literature source within a search."""

    source: str
    tier: SourceTier
    status: SourceStatus = SourceStatus.PENDING
    paper_count: int = 0
    time_ms: int = 0
    error: str | None = None
    estimated_ms: int | None = None
    started_at: float | None = None  # monotonic, local
    skipped_locally: bool = False

    @property
    def display_status(self) -> SourceStatus:
        """Status to show: the local skip guess only applies while still pending."""
        if self.skipped_locally and self.status is SourceStatus.PENDING:
            return SourceStatus.SKIPPED
        return self.status

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "source": self.source,
            "tier": self.tier.value,
            "status": self.display_status.value,
            "paperCount": self.paper_count,
            "timeMs": self.time_ms,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class SemanticTierStats:
    """Observability data for one semantic tier."""

    tier: SemanticTierName
    is_complete: bool = False
    latency_ms: int = 0
    papers_processed: int = 0
    cache_hits: int = 0
    embed_generated: int = 0
    used_worker_pool: bool = False
    progress_percent: float = 0.0
    progress_message: str = ""


@dataclass(frozen=True)
class PositionChange:
    """A paper's move between two consecutive orderings."""

    paper_id: str
    from_index: int
    to_index: int


@dataclass(frozen=True)
class RerankResult:
    """Outcome of applying one semantic tier, for animating the list."""

    tier: SemanticTierName
    version: int
    position_changes: tuple[PositionChange, ...] = ()
    added_ids: tuple[str, ...] = ()
    retained_ids: tuple[str, ...] = ()

    @property
    def animate(self) -> bool:
        return bool(self.position_changes)

    def changes_by_id(self) -> dict[str, tuple[int, int]]:
        return {c.paper_id: (c.from_index, c.to_index) for c in self.position_changes}


@dataclass(frozen=True)
class IterationProgress:
    """
    State of the server's iterative fetch loop.

    The server fetches in rounds, relaxing its quality threshold until it
    has ``target_papers`` above the threshold or another stop reason applies.
    """

    iteration: int
    total_iterations: int
    fetch_limit: int
    threshold: float
    papers_found: int
    target_papers: int
    new_papers_this_iteration: int = 0
    yield_rate: float = 0.0
    sources_exhausted: tuple[str, ...] = ()
    is_complete: bool = False
    reason: IterationStopReason | None = None

    @property
    def target_percent(self) -> float:
        if self.target_papers <= 0:
            return 100.0
        return min(self.papers_found / self.target_papers * 100, 100.0)


@dataclass(frozen=True)
class SelectionResult:
    """Terminal quality-selection outcome."""

    ranked_count: int
    selected_count: int
    target_count: int
    avg_quality_score: float


@dataclass(frozen=True)
class CompletionSummary:
    """Final counts reported by search:complete."""

    total_papers: int
    unique_papers: int
    total_time_ms: int
    enriched: int = 0
    enrichment_pending: int = 0
    enrichment_failed: int = 0


@dataclass(frozen=True)
class SessionError:
    """A session-level failure; recoverable errors keep partial results browsable."""

    message: str
    recoverable: bool
    code: str | None = None


@dataclass(frozen=True)
class SpellCorrection:
    original: str
    corrected: str
    confidence: float


@dataclass(frozen=True)
class QueryIntelligence:
    """
    Output contract of the server's query analysis.

    Only the fields the client displays are typed; the analysis itself is
    opaque to the client.
    """

    original_query: str = ""
    corrected_query: str = ""
    correction: SpellCorrection | None = None
    quality_score: float | None = None
    quality_issues: tuple[str, ...] = ()
    methodology: str | None = None
    controversy_score: float | None = None
    is_too_broad: bool = False
    suggestions: tuple[str, ...] = ()
    analysis_time_ms: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QueryIntelligence:
        """Lenient parse: missing or oddly-typed parts fall back to defaults."""
        corrections = data.get("corrections")
        correction = None
        if isinstance(corrections, Mapping) and corrections.get("corrected"):
            correction = SpellCorrection(
                original=str(corrections.get("original", "")),
                corrected=str(corrections["corrected"]),
                confidence=float(corrections.get("confidence") or 0.0),
            )

        quality = data.get("quality") if isinstance(data.get("quality"), Mapping) else {}
        methodology = data.get("methodology") if isinstance(data.get("methodology"), Mapping) else {}
        controversy = data.get("controversy") if isinstance(data.get("controversy"), Mapping) else {}
        broadness = data.get("broadness") if isinstance(data.get("broadness"), Mapping) else {}
        suggestions = data.get("suggestions") or []

        return cls(
            original_query=str(data.get("originalQuery", "")),
            corrected_query=str(data.get("correctedQuery", "")),
            correction=correction,
            quality_score=_optional_float(quality.get("score")),
            quality_issues=tuple(str(i) for i in quality.get("issues") or []),
            methodology=methodology.get("detected") or None,
            controversy_score=_optional_float(controversy.get("score")),
            is_too_broad=bool(broadness.get("isTooBroad", False)),
            suggestions=tuple(
                str(s.get("query")) if isinstance(s, Mapping) else str(s)
                for s in suggestions
                if s
            ),
            analysis_time_ms=int(data.get("analysisTimeMs") or 0),
        )


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Snapshot
# =============================================================================


@dataclass(frozen=True)
class SearchSnapshot:
    """
    Immutable view of one search session.

    This is the only thing presentation code ever sees: it is rebuilt by
    the reconciler on demand and never changes after construction.
    """

    search_id: str
    status: SessionStatus
    query: str = ""
    corrected_query: str = ""
    intelligence: QueryIntelligence | None = None
    stage: SearchStage | None = None
    percent: float = 0.0
    message: str = ""
    sources: tuple[SourceRecord, ...] = ()
    sources_complete: int = 0
    sources_total: int = 0
    papers: tuple[Paper, ...] = ()
    papers_found: int = 0
    semantic_tier: SemanticTierName | None = None
    semantic_version: int = 0
    semantic_tier_stats: tuple[SemanticTierStats, ...] = ()
    last_rerank: RerankResult | None = None
    iteration: IterationProgress | None = None
    selection: SelectionResult | None = None
    completion: CompletionSummary | None = None
    error: SessionError | None = None
    elapsed_ms: int = 0
    late_sources: tuple[str, ...] = ()
    enriched_paper_ids: frozenset[str] = field(default_factory=frozenset)
    enrichment_pending: int = 0

    @property
    def is_searching(self) -> bool:
        return not self.status.is_terminal

    @property
    def paper_count(self) -> int:
        return len(self.papers)

    def source(self, name: str) -> SourceRecord | None:
        for record in self.sources:
            if record.source == name:
                return record
        return None

    def tier_stats(self, tier: SemanticTierName) -> SemanticTierStats | None:
        for stats in self.semantic_tier_stats:
            if stats.tier is tier:
                return stats
        return None

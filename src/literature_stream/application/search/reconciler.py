"""
Result Reconciler - the per-search state machine.

Folds the stream of protocol events for one ``search_id`` into a coherent,
deduplicated result set. Events may arrive late, duplicated, or out of
order; correctness comes from explicit rules, never from timestamps:

    - events for another search_id are dropped (stale session)
    - nothing is applied once the session is complete/error/cancelled
    - source statuses only move forward (pending → searching → terminal)
    - progress stages only move forward; percent never drops within a stage
    - semantic tiers apply only with a higher version (SemanticRerankMerger)
    - the quality cut happens once (QualitySelector)

Architecture Decision:
    All mutation is synchronous: ``apply()`` finishes an event before the
    caller reads the next frame, so no locking is needed. Consumers only
    ever get frozen ``SearchSnapshot`` values.

Usage:
    reconciler = ResultReconciler("a1b2c3")
    for event in events:
        if reconciler.apply(event):
            render(reconciler.snapshot())
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Iterable

from literature_stream.application.search.quality_selector import QualitySelector
from literature_stream.application.search.semantic_merger import SemanticRerankMerger
from literature_stream.application.search.session_state import SessionState
from literature_stream.application.search.source_tiers import SourceTierRegistry
from literature_stream.domain.entities.events import (
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
    SourceCompleteEvent,
    SourceErrorEvent,
    SourceStartedEvent,
)
from literature_stream.domain.entities.session import (
    CompletionSummary,
    IterationProgress,
    RerankResult,
    SearchSnapshot,
    SearchStage,
    SessionError,
    SessionStatus,
    SourceRecord,
    SourceStatus,
    SourceTier,
)
from literature_stream.shared.config import TierFailurePolicy

logger = logging.getLogger(__name__)

TIER_FAILED_CODE = "TIER_FAILED"

_TIER_STAGES = {
    SourceTier.FAST: SearchStage.FAST_SOURCES,
    SourceTier.MEDIUM: SearchStage.MEDIUM_SOURCES,
    SourceTier.SLOW: SearchStage.SLOW_SOURCES,
}


class ResultReconciler:
    """
    Owns the state of exactly one search session.

    Args:
        search_id: Session this reconciler accepts events for
        registry: Source tier lookup (default registry if omitted)
        sources: Sources requested up front; pre-populated as pending
        tier_failure_policy: What to do when a whole tier errors
        clock: Monotonic clock in seconds, injectable for tests
    """

    def __init__(
        self,
        search_id: str,
        *,
        registry: SourceTierRegistry | None = None,
        sources: Iterable[str] = (),
        tier_failure_policy: TierFailurePolicy = TierFailurePolicy.CONTINUE,
        merger: SemanticRerankMerger | None = None,
        selector: QualitySelector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry or SourceTierRegistry()
        self._merger = merger or SemanticRerankMerger()
        self._selector = selector or QualitySelector()
        self._policy = tier_failure_policy
        self._state = SessionState(search_id=search_id, clock=clock)
        for source in sources:
            self._state.sources[source] = SourceRecord(
                source=source,
                tier=self._registry.tier_of(source),
                estimated_ms=self._registry.info(source).expected_ms,
            )
        self._sources_requested = bool(self._state.sources)

        self._handlers: dict[type, Callable[[object], bool]] = {
            SearchStartedEvent: self._on_started,
            SourceStartedEvent: self._on_source_started,
            SourceCompleteEvent: self._on_source_complete,
            SourceErrorEvent: self._on_source_error,
            PapersBatchEvent: self._on_papers,
            SearchProgressEvent: self._on_progress,
            PaperEnrichmentEvent: self._on_enrichment,
            SemanticTierEvent: self._on_semantic_tier,
            SemanticProgressEvent: self._on_semantic_progress,
            IterationStartEvent: self._on_iteration,
            IterationProgressEvent: self._on_iteration,
            IterationCompleteEvent: self._on_iteration,
            SelectionCompleteEvent: self._on_selection,
            SearchCompleteEvent: self._on_complete,
            SearchErrorEvent: self._on_error,
        }

    # ===================================================================
    # Properties
    # ===================================================================

    @property
    def search_id(self) -> str:
        return self._state.search_id

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def is_terminal(self) -> bool:
        return self._state.status.is_terminal

    @property
    def stage(self) -> SearchStage | None:
        return self._state.stage

    @property
    def last_rerank(self) -> RerankResult | None:
        return self._state.last_rerank

    def seconds_since_fast_tier(self) -> float | None:
        """Time since the session left the fast-sources stage, if it has."""
        if self._state.fast_tier_ended_at is None:
            return None
        return self._state.clock() - self._state.fast_tier_ended_at

    # ===================================================================
    # Public API
    # ===================================================================

    def apply(self, event: SearchEvent) -> bool:
        """
        Apply one protocol event.

        Returns:
            True if the session state changed
        """
        state = self._state
        if event.search_id != state.search_id:
            logger.debug(f"[{state.search_id}] Dropping {event.name} for stale session {event.search_id}")
            return False
        if state.status.is_terminal:
            logger.debug(f"[{state.search_id}] Dropping {event.name}: session is {state.status.value}")
            return False

        if state.last_timestamp is not None and event.timestamp < state.last_timestamp:
            logger.debug(
                f"[{state.search_id}] {event.name} timestamp went backwards "
                f"({event.timestamp} < {state.last_timestamp})"
            )
        state.last_timestamp = max(event.timestamp, state.last_timestamp or event.timestamp)

        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"[{state.search_id}] No handler for {type(event).__name__}")
            return False
        return handler(event)

    def cancel(self) -> bool:
        """Cancel locally and immediately; later events are dropped."""
        if self._state.status.is_terminal:
            return False
        self._state.finish(SessionStatus.CANCELLED)
        self._state.message = "Search cancelled"
        logger.info(f"[{self.search_id}] Search cancelled")
        return True

    def mark_skipped_locally(self, sources: Iterable[str]) -> bool:
        """Flag still-pending sources as skipped for display only."""
        marked = []
        for source in sources:
            record = self._state.sources.get(source)
            if record is None or record.status is not SourceStatus.PENDING or record.skipped_locally:
                continue
            self._state.sources[source] = replace(record, skipped_locally=True)
            marked.append(source)
        if marked:
            logger.debug(f"[{self.search_id}] Marked slow sources as skipped: {marked}")
        return bool(marked)

    def stale_slow_sources(self) -> list[str]:
        return self._registry.stale_slow_sources(self._state.sources.values(), self.seconds_since_fast_tier())

    def request_enrichment(self, paper_ids: Iterable[str]) -> list[str]:
        """
        Record an enrichment request.

        Returns:
            The ids that are known and not yet enriched; only these need
            to go to the server
        """
        state = self._state
        needed = []
        for paper_id in dict.fromkeys(paper_ids):
            key = state.resolve(paper_id)
            if key is None or paper_id in state.enriched_ids:
                continue
            needed.append(paper_id)
        state.enrichment_pending += len(needed)
        return needed

    def late_sources(self) -> list[str]:
        return self._registry.late_sources(self._state.sources.values(), self._state.clock())

    def snapshot(self) -> SearchSnapshot:
        return self._state.snapshot(late_sources=self.late_sources())

    # ===================================================================
    # Lifecycle events
    # ===================================================================

    def _on_started(self, event: SearchStartedEvent) -> bool:
        state = self._state
        if state.status is not SessionStatus.PENDING:
            logger.debug(f"[{state.search_id}] Duplicate search:started ignored")
            return False
        state.status = SessionStatus.ACTIVE
        state.query = event.query
        state.corrected_query = event.corrected_query
        state.intelligence = event.intelligence
        if state.stage is None:
            state.stage = SearchStage.ANALYZING
        logger.info(f"[{state.search_id}] Search started: '{event.query}'")
        return True

    def _on_complete(self, event: SearchCompleteEvent) -> bool:
        state = self._state
        for stat in event.source_stats:
            fields = {"paper_count": stat.paper_count, "time_ms": stat.time_ms}
            if stat.error:
                fields["error"] = stat.error
            self._update_source(stat.source, stat.tier, stat.status, **fields)

        enrichment = event.enrichment_stats
        state.completion = CompletionSummary(
            total_papers=event.total_papers,
            unique_papers=event.unique_papers,
            total_time_ms=event.total_time_ms,
            enriched=enrichment.enriched if enrichment else 0,
            enrichment_pending=enrichment.pending if enrichment else 0,
            enrichment_failed=enrichment.failed if enrichment else 0,
        )
        state.stage = SearchStage.COMPLETE
        state.percent = 100.0
        state.message = f"Found {len(state.order)} papers"
        state.finish(SessionStatus.COMPLETE)
        logger.info(
            f"[{state.search_id}] Search complete: {len(state.order)} papers "
            f"({event.unique_papers} unique of {event.total_papers}) in {event.total_time_ms}ms"
        )
        return True

    def _on_error(self, event: SearchErrorEvent) -> bool:
        self._fail(SessionError(message=event.error, recoverable=event.recoverable, code=event.code))
        return True

    def _fail(self, error: SessionError) -> None:
        state = self._state
        state.error = error
        state.message = error.message
        state.finish(SessionStatus.ERROR)
        logger.error(
            f"[{state.search_id}] Search failed: {error.message} "
            f"(code={error.code}, recoverable={error.recoverable}, {len(state.order)} partial results)"
        )

    # ===================================================================
    # Source events
    # ===================================================================

    def _on_source_started(self, event: SourceStartedEvent) -> bool:
        return self._update_source(
            event.source,
            event.tier,
            SourceStatus.SEARCHING,
            estimated_ms=event.estimated_time_ms,
            started_at=self._state.clock(),
        )

    def _on_source_complete(self, event: SourceCompleteEvent) -> bool:
        return self._update_source(
            event.source,
            event.tier,
            SourceStatus.COMPLETE,
            paper_count=event.paper_count,
            time_ms=event.time_ms,
        )

    def _on_source_error(self, event: SourceErrorEvent) -> bool:
        changed = self._update_source(event.source, None, SourceStatus.ERROR, error=event.error)
        if changed:
            logger.warning(f"[{self.search_id}] Source {event.source} failed: {event.error}")
            if self._policy is TierFailurePolicy.ESCALATE:
                self._check_tier_failure(self._state.sources[event.source].tier)
        return changed

    def _update_source(
        self,
        source: str,
        tier: SourceTier | None,
        status: SourceStatus,
        **fields: object,
    ) -> bool:
        state = self._state
        record = state.sources.get(source)
        if record is None:
            info = self._registry.info(source)
            record = SourceRecord(source=source, tier=tier or info.tier, estimated_ms=info.expected_ms)
        if status.rank <= record.status.rank:
            logger.debug(
                f"[{state.search_id}] Ignoring {source} transition {record.status.value} → {status.value}"
            )
            return False
        updates = {k: v for k, v in fields.items() if v is not None}
        if tier is not None:
            updates["tier"] = tier
        state.sources[source] = replace(record, status=status, skipped_locally=False, **updates)
        return True

    def _tier_membership_known(self, tier: SourceTier) -> bool:
        """
        Whether every source of ``tier`` in this search is being tracked.

        True when the request named its sources up front, or once progress
        has moved past the tier's stage (every source it ran has reported).
        """
        if self._sources_requested:
            return True
        stage = self._state.stage
        return stage is not None and stage.order > _TIER_STAGES[tier].order

    def _check_tier_failure(self, tier: SourceTier) -> bool:
        if not self._tier_membership_known(tier):
            return False
        records = [r for r in self._state.sources.values() if r.tier is tier]
        if not records or any(r.status is not SourceStatus.ERROR for r in records):
            return False
        self._fail(
            SessionError(
                message=f"All {tier.value} sources failed",
                recoverable=True,
                code=TIER_FAILED_CODE,
            )
        )
        return True

    # ===================================================================
    # Papers, progress, enrichment
    # ===================================================================

    def _on_papers(self, event: PapersBatchEvent) -> bool:
        state = self._state
        admit_new = state.selection is None
        added = merged = refused = 0
        for paper in event.papers:
            key, is_new = state.upsert(paper, admit_new=admit_new)
            if key is None:
                refused += 1
            elif is_new:
                added += 1
            else:
                merged += 1

        found_before = state.papers_found
        state.papers_found = max(state.papers_found, event.cumulative_count)
        if refused:
            logger.debug(f"[{state.search_id}] {refused} papers from {event.source} arrived after selection")
        logger.debug(
            f"[{state.search_id}] Batch {event.batch_number} from {event.source}: "
            f"{added} new, {merged} merged, total {len(state.order)}"
        )
        return bool(added or merged or state.papers_found != found_before)

    def _on_progress(self, event: SearchProgressEvent) -> bool:
        state = self._state
        current = state.stage
        if current is not None and event.stage.order < current.order:
            logger.debug(
                f"[{state.search_id}] Dropping progress for earlier stage {event.stage.value} "
                f"(now {current.value})"
            )
            return False

        before = _progress_view(state)

        if current is event.stage:
            if event.percent < state.percent:
                logger.debug(
                    f"[{state.search_id}] Clamping progress regression {event.percent} < {state.percent}"
                )
            state.percent = max(state.percent, event.percent)
        else:
            state.stage = event.stage
            state.percent = event.percent

        if state.fast_tier_ended_at is None and event.stage.order > SearchStage.FAST_SOURCES.order:
            state.fast_tier_ended_at = state.clock()

        state.message = event.message
        state.sources_total = max(state.sources_total, event.sources_total)
        state.reported_sources_complete = max(state.reported_sources_complete, event.sources_complete)
        state.papers_found = max(state.papers_found, event.papers_found)

        if self._policy is TierFailurePolicy.ESCALATE and state.stage is not current:
            for tier in SourceTier:
                if self._check_tier_failure(tier):
                    return True

        return _progress_view(state) != before

    def _on_enrichment(self, event: PaperEnrichmentEvent) -> bool:
        state = self._state
        key = state.resolve(event.paper_id)
        if key is None:
            logger.debug(f"[{state.search_id}] Enrichment for unknown paper {event.paper_id} dropped")
            return False
        state.papers[key] = state.papers[key].with_enrichment(event.updates)
        if event.paper_id not in state.enriched_ids:
            state.enriched_ids.add(event.paper_id)
            state.enrichment_pending = max(state.enrichment_pending - 1, 0)
        return True

    def _on_iteration(self, event: IterationEvent) -> bool:
        state = self._state
        current = state.iteration
        if current is not None and current.is_complete:
            logger.debug(f"[{state.search_id}] Dropping {event.name}: iterative fetch already finished")
            return False
        if current is not None and event.iteration < current.iteration:
            logger.debug(
                f"[{state.search_id}] Dropping {event.name} for iteration {event.iteration} "
                f"(now {current.iteration})"
            )
            return False

        is_complete = isinstance(event, IterationCompleteEvent)
        updated = IterationProgress(
            iteration=event.iteration,
            total_iterations=event.total_iterations,
            fetch_limit=event.fetch_limit,
            threshold=event.threshold,
            papers_found=event.papers_found,
            target_papers=event.target_papers,
            new_papers_this_iteration=event.new_papers_this_iteration,
            yield_rate=event.yield_rate,
            sources_exhausted=event.sources_exhausted,
            is_complete=is_complete,
            reason=event.reason,
        )
        if updated == current:
            return False
        state.iteration = updated

        if is_complete:
            reason = event.reason.value if event.reason else "unknown"
            logger.info(
                f"[{state.search_id}] Iterative fetch finished after {event.iteration} iterations: "
                f"{event.papers_found}/{event.target_papers} papers ({reason})"
            )
        elif isinstance(event, IterationStartEvent):
            logger.debug(
                f"[{state.search_id}] Iteration {event.iteration}/{event.total_iterations} "
                f"(limit {event.fetch_limit}, threshold {event.threshold})"
            )
        return True

    # ===================================================================
    # Delegated events
    # ===================================================================

    def _on_semantic_tier(self, event: SemanticTierEvent) -> bool:
        return self._merger.apply_tier(self._state, event) is not None

    def _on_semantic_progress(self, event: SemanticProgressEvent) -> bool:
        return self._merger.apply_progress(self._state, event)

    def _on_selection(self, event: SelectionCompleteEvent) -> bool:
        return self._selector.apply(self._state, event) is not None


def _progress_view(state: SessionState) -> tuple[object, ...]:
    return (
        state.stage,
        state.percent,
        state.message,
        state.sources_total,
        state.sources_complete,
        state.papers_found,
    )

"""
Semantic Re-Rank Merger - applies progressive semantic tiers to the list.

The server re-ranks results in three passes of increasing cost:

    immediate  top 50,   ~500 ms
    refined    top 200,  ~3 s
    complete   all,      ~12 s (cross-encoder)

Tiers carry a monotonically increasing ``version``; they may arrive out of
order, so anything at or below the applied version is ignored.

Merge rule:
    new order = tier papers (in tier order)
              + previously ordered papers absent from the tier (previous
                relative order)

    so a paper never disappears because a tier did not mention it. When every
    paper in the tier event carries its own combined score the tier order is
    stabilised by sorting on (-combined_score, first-arrival index): equal
    scores never swap places between tiers. Scores kept from an earlier tier
    are never used for this.

Example:
    previous   [A, B, C]
    tier v1    [C, A]        → [C, A, B]   changes: C 2→0, A 0→1, B 1→2
"""

from __future__ import annotations

import logging
from dataclasses import replace

from literature_stream.application.search.session_state import SessionState
from literature_stream.domain.entities.events import SemanticProgressEvent, SemanticTierEvent
from literature_stream.domain.entities.session import (
    PositionChange,
    RerankResult,
    SemanticTierName,
    SemanticTierStats,
)

logger = logging.getLogger(__name__)


class SemanticRerankMerger:
    """Stateless; all state lives in the SessionState passed in."""

    def apply_tier(self, state: SessionState, event: SemanticTierEvent) -> RerankResult | None:
        """
        Merge one semantic tier into the working order.

        Returns:
            The rerank result, or None when the event was ignored
        """
        if state.semantic_closed:
            logger.debug(f"[{state.search_id}] Semantic processing closed, ignoring {event.tier.value} v{event.version}")
            return None
        if state.selection is not None:
            logger.debug(f"[{state.search_id}] Selection already applied, ignoring {event.tier.value} v{event.version}")
            return None
        if event.version <= state.semantic_version:
            logger.debug(
                f"[{state.search_id}] Stale semantic tier {event.tier.value} v{event.version} "
                f"(applied v{state.semantic_version})"
            )
            return None

        previous = list(state.order)
        previous_index = {key: i for i, key in enumerate(previous)}

        tier_keys: list[str] = []
        tier_scores: dict[str, float | None] = {}
        added_ids: list[str] = []
        for paper in event.papers:
            key, is_new = state.upsert(paper, append=False)
            if key is None or key in tier_scores:
                continue
            tier_scores[key] = paper.combined_score
            tier_keys.append(key)
            if is_new:
                added_ids.append(state.papers[key].id)

        if tier_keys and all(score is not None for score in tier_scores.values()):
            tier_keys.sort(key=lambda k: (-tier_scores[k], state.insertion[k]))
        seen = set(tier_scores)

        retained = [key for key in previous if key not in seen]
        merged = tier_keys + retained

        changes = tuple(
            PositionChange(state.papers[key].id, previous_index[key], index)
            for index, key in enumerate(merged)
            if key in previous_index and previous_index[key] != index
        )

        state.order = merged
        state.semantic_version = event.version
        state.semantic_tier = event.tier
        stats = state.tier_stats.get(event.tier) or SemanticTierStats(tier=event.tier)
        state.tier_stats[event.tier] = replace(
            stats,
            is_complete=event.is_complete,
            latency_ms=event.latency_ms,
            papers_processed=(
                event.metadata.papers_processed
                if event.metadata.papers_processed is not None
                else len(event.papers)
            ),
            cache_hits=event.metadata.cache_hits,
            embed_generated=event.metadata.embed_generated,
            used_worker_pool=event.metadata.used_worker_pool,
            progress_percent=100.0 if event.is_complete else stats.progress_percent,
        )
        if event.tier is SemanticTierName.COMPLETE and event.is_complete:
            state.semantic_closed = True

        result = RerankResult(
            tier=event.tier,
            version=event.version,
            position_changes=changes,
            added_ids=tuple(added_ids),
            retained_ids=tuple(state.papers[key].id for key in retained),
        )
        state.last_rerank = result
        logger.info(
            f"[{state.search_id}] Applied semantic tier {event.tier.value} v{event.version}: "
            f"{len(tier_keys)} ranked, {len(added_ids)} new, {len(changes)} moved"
        )
        return result

    def apply_progress(self, state: SessionState, event: SemanticProgressEvent) -> bool:
        """Update a tier's progress unless it (or semantic processing) has finished."""
        if state.semantic_closed:
            logger.debug(f"[{state.search_id}] Semantic processing closed, ignoring progress for {event.tier.value}")
            return False
        current = state.tier_stats.get(event.tier)
        if current is not None and current.is_complete:
            logger.debug(f"[{state.search_id}] Tier {event.tier.value} already complete, ignoring progress")
            return False

        if current is None:
            current = SemanticTierStats(tier=event.tier)
        state.tier_stats[event.tier] = replace(
            current,
            papers_processed=max(current.papers_processed, event.papers_processed),
            progress_percent=max(current.progress_percent, event.percent),
            progress_message=event.message,
        )
        return True


"""
Quality Selector Consumer - applies the server's final quality cut.

After ranking, the server keeps only the best ``selectedCount`` of the
``rankedCount`` papers (typically 600 → 300). The client mirrors that cut
by truncating its working order; it never re-sorts, so the published list
is exactly the head of the order the user was already looking at.

Ties at the cutoff are already resolved by the working order, which breaks
equal combined scores by first arrival: the earlier paper survives.
"""

from __future__ import annotations

import logging

from literature_stream.application.search.session_state import SessionState
from literature_stream.domain.entities.events import SelectionCompleteEvent
from literature_stream.domain.entities.session import SelectionResult

logger = logging.getLogger(__name__)


class QualitySelector:
    def apply(self, state: SessionState, event: SelectionCompleteEvent) -> SelectionResult | None:
        if state.selection is not None:
            logger.debug(f"[{state.search_id}] Duplicate selection-complete ignored")
            return None

        ranked = max(event.ranked_count, 0)
        selected = event.selected_count
        if selected > ranked:
            logger.warning(
                f"[{state.search_id}] selectedCount {selected} exceeds rankedCount {ranked}, clamping"
            )
            selected = ranked
        selected = max(selected, 0)

        if ranked != len(state.order):
            logger.debug(
                f"[{state.search_id}] rankedCount {ranked} differs from local list size {len(state.order)}"
            )

        kept, dropped = state.order[:selected], state.order[selected:]
        for key in dropped:
            state.remove(key)
        state.order = kept

        result = SelectionResult(
            ranked_count=ranked,
            selected_count=selected,
            target_count=event.target_count,
            avg_quality_score=event.avg_quality_score,
        )
        state.selection = result
        logger.info(
            f"[{state.search_id}] Quality selection: kept {len(kept)} of {ranked} "
            f"(target {event.target_count}, avg quality {event.avg_quality_score:.1f})"
        )
        return result

"""Tests for QualitySelector."""

from __future__ import annotations

import logging

import pytest

from literature_stream.application.search.quality_selector import QualitySelector
from literature_stream.application.search.session_state import SessionState
from literature_stream.domain.entities.paper import Paper


@pytest.fixture
def selector():
    return QualitySelector()


def build_state(count: int) -> SessionState:
    state = SessionState(search_id="search-1", clock=lambda: 0.0)
    for index in range(count):
        state.upsert(Paper(id=f"W{index}", doi=f"10.1/{index}"))
    return state


@pytest.fixture
def selection(make_event):
    def _make(ranked, selected, target=None, avg=72.5):
        return make_event(
            "search:selection-complete",
            rankedCount=ranked,
            selectedCount=selected,
            targetCount=target if target is not None else selected,
            avgQualityScore=avg,
        )

    return _make


class TestSelection:
    def test_keeps_head_of_working_order(self, selector, selection):
        state = build_state(600)
        result = selector.apply(state, selection(600, 300))

        assert result.selected_count == 300
        assert len(state.order) == 300
        assert [state.papers[k].id for k in state.order[:3]] == ["W0", "W1", "W2"]
        assert state.papers[state.order[-1]].id == "W299"
        assert len(state.papers) == 300
        assert state.selection is result

    def test_dropped_papers_no_longer_resolve(self, selector, selection):
        state = build_state(5)
        selector.apply(state, selection(5, 2))
        assert state.resolve("W4") is None
        assert state.resolve("W1") is not None

    def test_late_papers_for_dropped_work_refused(self, selector, selection):
        state = build_state(5)
        selector.apply(state, selection(5, 2))
        key, is_new = state.upsert(Paper(id="x-4", doi="10.1/4"), admit_new=state.selection is None)
        assert key is None
        assert not is_new

    def test_selected_count_clamped(self, selector, selection, caplog):
        state = build_state(10)
        with caplog.at_level(logging.WARNING):
            result = selector.apply(state, selection(8, 12))
        assert result.selected_count == 8
        assert len(state.order) == 8
        assert "exceeds rankedCount" in caplog.text

    def test_fewer_local_papers_than_selected(self, selector, selection):
        state = build_state(3)
        result = selector.apply(state, selection(600, 300))
        assert result.selected_count == 300
        assert len(state.order) == 3

    def test_duplicate_selection_ignored(self, selector, selection):
        state = build_state(10)
        selector.apply(state, selection(10, 5))
        assert selector.apply(state, selection(5, 1)) is None
        assert len(state.order) == 5

    def test_result_fields(self, selector, selection):
        result = selector.apply(build_state(4), selection(4, 3, target=3, avg=81.0))
        assert (result.ranked_count, result.target_count, result.avg_quality_score) == (4, 3, 81.0)

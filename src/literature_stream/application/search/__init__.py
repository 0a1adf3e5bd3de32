"""
Progressive Search Pipeline (client side)

Folds the server's event stream into per-search result sets.

Key Components:
- SourceTierRegistry: latency tiers of literature sources, slow-source skip policy
- ResultReconciler: per-search state machine (dedup, monotonic progress)
- SemanticRerankMerger: applies versioned semantic re-ranking tiers
- QualitySelector: applies the final quality cut
- SearchStreamClient: routes transport events to reconcilers

Architecture:
    StreamTransport ──► SearchStreamClient ──► ResultReconciler (per search_id)
                                                   │
                                   ┌───────────────┼───────────────┐
                                   ▼               ▼               ▼
                            source records   SemanticRerank   QualitySelector
                            + paper store       Merger
"""

from __future__ import annotations

from .client import CONNECTION_LOST_CODE, SearchStreamClient
from .quality_selector import QualitySelector
from .reconciler import TIER_FAILED_CODE, ResultReconciler
from .semantic_merger import SemanticRerankMerger
from .source_tiers import SOURCE_TIER_CONFIG, SourceTierInfo, SourceTierRegistry

__all__ = [
    "SearchStreamClient",
    "ResultReconciler",
    "SemanticRerankMerger",
    "QualitySelector",
    "SourceTierRegistry",
    "SourceTierInfo",
    "SOURCE_TIER_CONFIG",
    "CONNECTION_LOST_CODE",
    "TIER_FAILED_CODE",
]

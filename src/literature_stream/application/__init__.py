"""
Application Layer - Use Cases and Orchestration

Contains:
- search: progressive search reconciliation and the stream client
"""

from .search import (
    QualitySelector,
    ResultReconciler,
    SearchStreamClient,
    SemanticRerankMerger,
    SourceTierRegistry,
)

__all__ = [
    "SearchStreamClient",
    "ResultReconciler",
    "SemanticRerankMerger",
    "QualitySelector",
    "SourceTierRegistry",
]

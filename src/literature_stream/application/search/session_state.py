"""
Mutable per-search state owned by one ResultReconciler.

Holds the deduplicated paper store and the working order. The Semantic
Re-Rank Merger and the Quality Selector operate on this object on behalf of
the reconciler; nothing else holds a reference to it.

Deduplication:
    Papers are stored under a canonical key (the identity key of the first
    record seen for a work). Every other key the work is known by (its PMID
    key, its title key, its wire ids) is registered as an alias, so a later
    record that only carries one of them resolves to the same entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from literature_stream.domain.entities.paper import Paper, normalize_doi, normalize_title
from literature_stream.domain.entities.session import (
    CompletionSummary,
    IterationProgress,
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
)

logger = logging.getLogger(__name__)


def _alias_keys(paper: Paper) -> list[str]:
    keys = [paper.identity_key]
    if paper.pmid:
        keys.append(f"pmid:{paper.pmid.strip()}")
    if paper.title and normalize_title(paper.title):
        keys.append(f"title:{normalize_title(paper.title)}")
    keys.append(f"id:{paper.id}")
    return keys


def _dois_conflict(a: Paper, b: Paper) -> bool:
    return bool(a.doi and b.doi and normalize_doi(a.doi) != normalize_doi(b.doi))


@dataclass
class SessionState:
    search_id: str
    clock: Callable[[], float]
    status: SessionStatus = SessionStatus.PENDING
    query: str = ""
    corrected_query: str = ""
    intelligence: QueryIntelligence | None = None

    # Progress
    stage: SearchStage | None = None
    percent: float = 0.0
    message: str = ""
    sources: dict[str, SourceRecord] = field(default_factory=dict)
    sources_total: int = 0
    reported_sources_complete: int = 0
    papers_found: int = 0

    # Papers
    papers: dict[str, Paper] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    insertion: dict[str, int] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    next_insertion: int = 0

    # Semantic tiers
    semantic_version: int = 0
    semantic_tier: SemanticTierName | None = None
    semantic_closed: bool = False
    tier_stats: dict[SemanticTierName, SemanticTierStats] = field(default_factory=dict)
    last_rerank: RerankResult | None = None

    # Iterative fetch
    iteration: IterationProgress | None = None

    # Terminal data
    selection: SelectionResult | None = None
    completion: CompletionSummary | None = None
    error: SessionError | None = None

    # Timing and enrichment
    started_at: float = 0.0
    finished_at: float | None = None
    fast_tier_ended_at: float | None = None
    last_timestamp: float | None = None
    enriched_ids: set[str] = field(default_factory=set)
    enrichment_pending: int = 0

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    # ===================================================================
    # Paper store
    # ===================================================================

    def resolve(self, paper_id: str) -> str | None:
        """Canonical key for a wire id (or identity key), if known."""
        return self.aliases.get(f"id:{paper_id}") or self.aliases.get(paper_id)

    def find(self, paper: Paper) -> str | None:
        """
        Canonical key of the stored work this record belongs to.

        A title match is rejected when both records carry different DOIs,
        so the result does not depend on which record arrived first.
        """
        for key in _alias_keys(paper):
            canonical = self.aliases.get(key)
            if canonical is None:
                continue
            if key.startswith("title:") and _dois_conflict(self.papers[canonical], paper):
                continue
            return canonical
        return None

    def upsert(self, paper: Paper, *, admit_new: bool = True, append: bool = True) -> tuple[str | None, bool]:
        """
        Insert a new work or merge into the existing entry.

        Args:
            paper: Incoming record
            admit_new: False once the result set is frozen by a selection
            append: Whether a new work is appended to the working order

        Returns:
            (canonical key or None if not admitted, whether it was new)
        """
        key = self.find(paper)
        if key is not None:
            merged = self.papers[key].merge_from(paper)
            self.papers[key] = merged
            self._register(key, paper)
            return key, False

        if not admit_new:
            return None, False

        key = paper.identity_key
        self.papers[key] = paper
        self.insertion[key] = self.next_insertion
        self.next_insertion += 1
        self._register(key, paper)
        if append:
            self.order.append(key)
        return key, True

    def remove(self, key: str) -> None:
        self.papers.pop(key, None)
        self.insertion.pop(key, None)
        for alias in [a for a, k in self.aliases.items() if k == key]:
            del self.aliases[alias]

    def _register(self, key: str, paper: Paper) -> None:
        for alias in _alias_keys(paper):
            self.aliases.setdefault(alias, key)

    # ===================================================================
    # Views
    # ===================================================================

    @property
    def sources_complete(self) -> int:
        counted = sum(1 for r in self.sources.values() if r.status.is_terminal)
        return max(counted, self.reported_sources_complete)

    def elapsed_ms(self) -> int:
        end = self.finished_at if self.finished_at is not None else self.clock()
        return int((end - self.started_at) * 1000)

    def finish(self, status: SessionStatus) -> None:
        self.status = status
        self.finished_at = self.clock()

    def snapshot(self, late_sources: Iterable[str] = ()) -> SearchSnapshot:
        return SearchSnapshot(
            search_id=self.search_id,
            status=self.status,
            query=self.query,
            corrected_query=self.corrected_query,
            intelligence=self.intelligence,
            stage=self.stage,
            percent=self.percent,
            message=self.message,
            sources=tuple(self.sources.values()),
            sources_complete=self.sources_complete,
            sources_total=max(self.sources_total, len(self.sources)),
            papers=tuple(self.papers[key] for key in self.order),
            papers_found=self.papers_found,
            semantic_tier=self.semantic_tier,
            semantic_version=self.semantic_version,
            semantic_tier_stats=tuple(self.tier_stats[t] for t in SemanticTierName if t in self.tier_stats),
            last_rerank=self.last_rerank,
            iteration=self.iteration,
            selection=self.selection,
            completion=self.completion,
            error=self.error,
            elapsed_ms=self.elapsed_ms(),
            late_sources=tuple(late_sources),
            enriched_paper_ids=frozenset(self.enriched_ids),
            enrichment_pending=self.enrichment_pending,
        )

"""
Source Tier Registry - latency classification of literature sources.

Sources are grouped by how quickly they usually answer:

    fast    openalex, crossref, eric, arxiv, ssrn              (1.5-2 s)
    medium  semantic_scholar, springer, nature, ieee_xplore,
            wiley, sage, taylor_francis                        (4-5 s)
    slow    pubmed, pmc, core, google_scholar,
            web_of_science, scopus                             (8-15 s)

The registry also owns the slow-source skip heuristic: once the fast tier
has finished and a grace period has passed, slow sources that never started
are shown as skipped. The heuristic is display-only; the reconciler always
lets a later server status for that source win.

Usage:
    registry = SourceTierRegistry()
    registry.tier_of("pubmed")            # SourceTier.SLOW
    registry.group_by_tier(["arxiv", "wiley"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from literature_stream.domain.entities.session import SourceRecord, SourceStatus, SourceTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceTierInfo:
    tier: SourceTier
    expected_ms: int


DEFAULT_SOURCE_INFO = SourceTierInfo(SourceTier.MEDIUM, 5000)

SOURCE_TIER_CONFIG: dict[str, SourceTierInfo] = {
    # Fast
    "openalex": SourceTierInfo(SourceTier.FAST, 1500),
    "crossref": SourceTierInfo(SourceTier.FAST, 1500),
    "eric": SourceTierInfo(SourceTier.FAST, 1500),
    "arxiv": SourceTierInfo(SourceTier.FAST, 2000),
    "ssrn": SourceTierInfo(SourceTier.FAST, 2000),
    # Medium
    "semantic_scholar": SourceTierInfo(SourceTier.MEDIUM, 4000),
    "springer": SourceTierInfo(SourceTier.MEDIUM, 4000),
    "nature": SourceTierInfo(SourceTier.MEDIUM, 4000),
    "ieee_xplore": SourceTierInfo(SourceTier.MEDIUM, 5000),
    "wiley": SourceTierInfo(SourceTier.MEDIUM, 5000),
    "sage": SourceTierInfo(SourceTier.MEDIUM, 5000),
    "taylor_francis": SourceTierInfo(SourceTier.MEDIUM, 5000),
    # Slow
    "pubmed": SourceTierInfo(SourceTier.SLOW, 8000),
    "pmc": SourceTierInfo(SourceTier.SLOW, 10000),
    "core": SourceTierInfo(SourceTier.SLOW, 12000),
    "google_scholar": SourceTierInfo(SourceTier.SLOW, 15000),
    "web_of_science": SourceTierInfo(SourceTier.SLOW, 10000),
    "scopus": SourceTierInfo(SourceTier.SLOW, 10000),
}


class SourceTierRegistry:
    """Pure lookup of source tiers and expected latencies."""

    def __init__(
        self,
        config: dict[str, SourceTierInfo] | None = None,
        *,
        slow_source_grace_seconds: float = 5.0,
        timeout_multiplier: float = 3.0,
    ) -> None:
        self._config = dict(config if config is not None else SOURCE_TIER_CONFIG)
        self.slow_source_grace_seconds = slow_source_grace_seconds
        self.timeout_multiplier = timeout_multiplier

    @property
    def known_sources(self) -> tuple[str, ...]:
        return tuple(self._config)

    def info(self, source: str) -> SourceTierInfo:
        """Tier info for a source; unknown sources are treated as medium."""
        info = self._config.get(source)
        if info is None:
            logger.debug(f"Unknown source '{source}', assuming {DEFAULT_SOURCE_INFO.tier.value} tier")
            return DEFAULT_SOURCE_INFO
        return info

    def tier_of(self, source: str) -> SourceTier:
        return self.info(source).tier

    def is_known(self, source: str) -> bool:
        return source in self._config

    def sources_in_tier(self, tier: SourceTier) -> list[str]:
        return [name for name, info in self._config.items() if info.tier is tier]

    def group_by_tier(self, sources: Iterable[str]) -> dict[SourceTier, list[str]]:
        """Group sources by tier, preserving input order within each tier."""
        groups: dict[SourceTier, list[str]] = {tier: [] for tier in SourceTier}
        for source in sources:
            groups[self.tier_of(source)].append(source)
        return groups

    def timeout_for(self, source: str) -> float:
        """Seconds after which a source that has not answered is considered late."""
        return self.info(source).expected_ms * self.timeout_multiplier / 1000

    def stale_slow_sources(
        self,
        records: Iterable[SourceRecord],
        seconds_since_fast_tier: float | None,
    ) -> list[str]:
        """
        Slow sources that should be shown as skipped.

        Args:
            records: Current source records of one session
            seconds_since_fast_tier: Time since the session left the
                fast-sources stage, or None if it has not yet

        Returns:
            Names of slow-tier sources still pending (and not already
            flagged) once the grace period has elapsed
        """
        if seconds_since_fast_tier is None or seconds_since_fast_tier < self.slow_source_grace_seconds:
            return []
        return [
            record.source
            for record in records
            if record.tier is SourceTier.SLOW
            and record.status is SourceStatus.PENDING
            and not record.skipped_locally
        ]

    def late_sources(self, records: Iterable[SourceRecord], now: float) -> list[str]:
        """Sources still searching past ``timeout_for`` since they started."""
        return [
            record.source
            for record in records
            if record.status is SourceStatus.SEARCHING
            and record.started_at is not None
            and now - record.started_at >= self.timeout_for(record.source)
        ]

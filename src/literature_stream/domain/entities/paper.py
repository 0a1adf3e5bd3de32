"""
Paper - Deduplicated bibliographic record for streamed search results.

Papers arrive from many sources in independent batches; the same work is
often returned by several of them (OpenAlex and CrossRef share DOIs,
PubMed and PMC share PMIDs). Each record therefore exposes an identity key
used for deduplication:

    doi:<normalized doi>  >  pmid:<pmid>  >  title:<normalized title>  >  id:<id>

Architecture Decision:
    Papers are frozen dataclasses. Merging never mutates a record in place;
    it returns a new instance via ``dataclasses.replace`` so that snapshots
    handed to consumers can never change underneath them.

Merge rules:
    - Bibliographic fields are first-seen-wins: only missing values are filled.
    - Enrichment fields (citations, venue, quartile, ...) may be upgraded by
      enrichment events with any non-null value.
    - A non-null value is never replaced by null.

Example:
    >>> first = Paper.from_dict({"id": "W1", "title": "ML", "doi": "10.1/X"})
    >>> second = Paper.from_dict({"id": "c-9", "title": "ML", "doi": "https://doi.org/10.1/x", "year": 2021})
    >>> first.identity_key == second.identity_key
    True
    >>> first.merge_from(second).year
    2021
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

_DOI_PREFIXES = ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/", "doi:")
_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")
TITLE_KEY_LENGTH = 100

QUARTILES = ("Q1", "Q2", "Q3", "Q4")

# Wire (camelCase) name -> attribute name
_WIRE_FIELDS: dict[str, str] = {
    "id": "id",
    "title": "title",
    "authors": "authors",
    "year": "year",
    "abstract": "abstract",
    "doi": "doi",
    "pmid": "pmid",
    "url": "url",
    "venue": "venue",
    "source": "source",
    "citationCount": "citation_count",
    "impactFactor": "impact_factor",
    "hIndexJournal": "h_index_journal",
    "quartile": "quartile",
    "fieldsOfStudy": "fields_of_study",
    "hasFullText": "has_full_text",
    "publicationType": "publication_type",
    "relevanceScore": "relevance_score",
    "qualityScore": "quality_score",
    "semanticScore": "semantic_score",
    "combinedScore": "combined_score",
}

BIBLIOGRAPHIC_FIELDS = (
    "title",
    "authors",
    "year",
    "abstract",
    "doi",
    "pmid",
    "url",
    "source",
    "has_full_text",
    "publication_type",
    "relevance_score",
    "quality_score",
)

ENRICHMENT_FIELDS = (
    "citation_count",
    "impact_factor",
    "h_index_journal",
    "quartile",
    "venue",
    "fields_of_study",
)


def normalize_doi(doi: str) -> str:
    """Normalize DOI for comparison."""
    doi = doi.strip().lower()
    for prefix in _DOI_PREFIXES:
        doi = doi.removeprefix(prefix)
    return doi


def normalize_title(title: str) -> str:
    """Normalize title for identity keys: lowercase alphanumerics, truncated."""
    return _NON_ALPHANUMERIC.sub("", title.lower())[:TITLE_KEY_LENGTH]


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == ()


@dataclass(frozen=True)
class Paper:
    """
    One bibliographic record as streamed by the search backend.

    Only ``id`` is mandatory on the wire; every other field is nullable
    because no single source provides all of them.
    """

    id: str
    title: str | None = None
    authors: tuple[str, ...] = ()
    year: int | None = None
    abstract: str | None = None
    doi: str | None = None
    pmid: str | None = None
    url: str | None = None
    venue: str | None = None
    source: str | None = None

    # === Enrichment ===
    citation_count: int | None = None
    impact_factor: float | None = None
    h_index_journal: float | None = None
    quartile: str | None = None
    fields_of_study: tuple[str, ...] = ()

    # === Classification ===
    has_full_text: bool | None = None
    publication_type: str | None = None

    # === Scores ===
    relevance_score: float | None = None
    quality_score: float | None = None
    semantic_score: float | None = None
    combined_score: float | None = None

    # Unknown wire fields, preserved read-only
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), repr=False, compare=False)

    # ===================================================================
    # Identity
    # ===================================================================

    @property
    def identity_key(self) -> str:
        """Deduplication key: DOI > PMID > normalized title > id."""
        if self.doi:
            return f"doi:{normalize_doi(self.doi)}"
        if self.pmid:
            return f"pmid:{self.pmid.strip()}"
        if self.title:
            normalized = normalize_title(self.title)
            if normalized:
                return f"title:{normalized}"
        return f"id:{self.id}"

    # ===================================================================
    # Merging
    # ===================================================================

    def merge_from(self, other: Paper) -> Paper:
        """
        Fill missing fields from another record of the same work.

        Nothing already present is overwritten, scores included, except that
        semantic/combined scores from ``other`` are taken when present since
        they only ever arrive from a newer ranking pass.
        """
        changes: dict[str, Any] = {}
        for name in BIBLIOGRAPHIC_FIELDS + ENRICHMENT_FIELDS:
            if _is_missing(getattr(self, name)) and not _is_missing(getattr(other, name)):
                changes[name] = getattr(other, name)

        for name in ("semantic_score", "combined_score"):
            value = getattr(other, name)
            if value is not None and value != getattr(self, name):
                changes[name] = value

        if other.extra:
            missing_extra = {k: v for k, v in other.extra.items() if k not in self.extra}
            if missing_extra:
                changes["extra"] = MappingProxyType({**self.extra, **missing_extra})

        return replace(self, **changes) if changes else self

    def with_enrichment(self, updates: Mapping[str, Any]) -> Paper:
        """
        Upgrade enrichment fields with the non-null values in ``updates``.

        Keys are attribute names from ENRICHMENT_FIELDS; other keys are ignored.
        """
        changes = {
            name: value
            for name, value in updates.items()
            if name in ENRICHMENT_FIELDS and not _is_missing(value) and getattr(self, name) != value
        }
        return replace(self, **changes) if changes else self

    # ===================================================================
    # Serialization
    # ===================================================================

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Paper:
        """
        Build a Paper from a wire (camelCase) mapping.

        Raises:
            ValueError: the mapping carries no usable id or identity field
        """
        values: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, raw in data.items():
            name = _WIRE_FIELDS.get(key)
            if name is None:
                extra[key] = raw
                continue
            if raw is None:
                continue
            values[name] = _coerce(name, raw)

        paper_id = values.pop("id", None)
        if not paper_id:
            # Identity fallback mirrors the server's id generation.
            if values.get("doi"):
                paper_id = f"doi:{normalize_doi(values['doi'])}"
            elif values.get("pmid"):
                paper_id = f"pmid:{values['pmid']}"
            elif values.get("title") and normalize_title(values["title"]):
                paper_id = f"title:{normalize_title(values['title'])}"
            else:
                raise ValueError("paper has no id, doi, pmid or title")

        if values.get("quartile") not in (None, *QUARTILES):
            extra["quartile"] = values.pop("quartile")

        return cls(id=str(paper_id), extra=MappingProxyType(extra), **values)

    def to_dict(self) -> dict[str, Any]:
        """Convert back to the wire (camelCase) shape, omitting nulls."""
        result: dict[str, Any] = dict(self.extra)
        for wire_name, name in _WIRE_FIELDS.items():
            value = getattr(self, name)
            if _is_missing(value):
                continue
            result[wire_name] = list(value) if isinstance(value, tuple) else value
        return result


def _coerce(name: str, raw: Any) -> Any:
    """Coerce loosely-typed wire values into the attribute's type."""
    if name in ("authors", "fields_of_study"):
        if isinstance(raw, str):
            return (raw,)
        names = (_author_name(item) for item in raw if item)
        return tuple(name for name in names if name)
    if name in ("year", "citation_count"):
        return int(_finite(name, raw))
    if name in (
        "impact_factor",
        "h_index_journal",
        "relevance_score",
        "quality_score",
        "semantic_score",
        "combined_score",
    ):
        return _finite(name, raw)
    if name == "has_full_text":
        return bool(raw)
    return str(raw)


def _finite(name: str, raw: Any) -> float:
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite, got {raw!r}")
    return value


def _author_name(item: Any) -> str:
    if isinstance(item, Mapping):
        return str(item.get("name") or item.get("displayName") or item.get("fullName") or "")
    return str(item)

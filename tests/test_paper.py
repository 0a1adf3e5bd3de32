"""Tests for the Paper entity - identity keys, wire parsing and merge rules."""

from __future__ import annotations

import pytest

from literature_stream.domain.entities.paper import Paper, normalize_doi, normalize_title


class TestNormalization:
    @pytest.mark.parametrize(
        "raw",
        [
            "10.1000/ABC",
            "https://doi.org/10.1000/abc",
            "http://dx.doi.org/10.1000/ABC",
            "doi:10.1000/abc",
            "  10.1000/abc  ",
        ],
    )
    def test_doi_forms_normalize_identically(self, raw):
        assert normalize_doi(raw) == "10.1000/abc"

    def test_title_keeps_lowercase_alphanumerics(self):
        assert normalize_title("Q-Methodology: A Review (2nd ed.)") == "qmethodologyareview2nded"

    def test_title_truncated(self):
        assert len(normalize_title("a" * 250)) == 100


class TestIdentityKey:
    def test_doi_preferred(self):
        paper = Paper(id="W1", doi="https://doi.org/10.1/X", pmid="123", title="T")
        assert paper.identity_key == "doi:10.1/x"

    def test_pmid_when_no_doi(self):
        assert Paper(id="W1", pmid="123", title="T").identity_key == "pmid:123"

    def test_title_when_no_doi_or_pmid(self):
        assert Paper(id="W1", title="Deep Learning!").identity_key == "title:deeplearning"

    def test_id_fallback(self):
        assert Paper(id="W1").identity_key == "id:W1"

    def test_title_of_only_punctuation_falls_back_to_id(self):
        assert Paper(id="W1", title="???").identity_key == "id:W1"


class TestFromDict:
    def test_camel_case_fields(self):
        paper = Paper.from_dict(
            {
                "id": "W1",
                "title": "T",
                "authors": ["A One", {"name": "B Two"}],
                "year": "2021",
                "citationCount": 12,
                "impactFactor": "3.5",
                "fieldsOfStudy": ["Psychology"],
                "hasFullText": True,
            }
        )
        assert paper.authors == ("A One", "B Two")
        assert paper.year == 2021
        assert paper.citation_count == 12
        assert paper.impact_factor == 3.5
        assert paper.fields_of_study == ("Psychology",)
        assert paper.has_full_text is True

    def test_unknown_fields_preserved_in_extra(self):
        paper = Paper.from_dict({"id": "W1", "openAccessUrl": "https://x"})
        assert paper.extra["openAccessUrl"] == "https://x"
        with pytest.raises(TypeError):
            paper.extra["other"] = 1

    def test_missing_id_uses_identity(self):
        assert Paper.from_dict({"doi": "10.1/AB"}).id == "doi:10.1/ab"
        assert Paper.from_dict({"pmid": "42"}).id == "pmid:42"

    def test_no_identity_raises(self):
        with pytest.raises(ValueError):
            Paper.from_dict({"year": 2020})

    def test_bad_number_raises(self):
        with pytest.raises(ValueError):
            Paper.from_dict({"id": "W1", "year": "soon"})

    @pytest.mark.parametrize(
        "field,value",
        [("year", float("inf")), ("citationCount", float("nan")), ("semanticScore", float("inf"))],
    )
    def test_non_finite_number_raises_value_error(self, field, value):
        with pytest.raises(ValueError, match="finite"):
            Paper.from_dict({"id": "W1", field: value})

    def test_invalid_quartile_moved_to_extra(self):
        paper = Paper.from_dict({"id": "W1", "quartile": "Q7"})
        assert paper.quartile is None
        assert paper.extra["quartile"] == "Q7"

    def test_empty_author_names_dropped(self):
        paper = Paper.from_dict({"id": "W1", "authors": [{"name": ""}, "Real Name", None]})
        assert paper.authors == ("Real Name",)

    def test_to_dict_omits_nulls(self):
        data = Paper.from_dict({"id": "W1", "title": "T", "citationCount": 3, "foo": "bar"}).to_dict()
        assert data == {"id": "W1", "title": "T", "citationCount": 3, "foo": "bar"}


class TestMerge:
    def test_first_seen_bibliographic_wins(self):
        first = Paper(id="W1", title="Original", year=2020)
        second = Paper(id="c-1", title="Other Title", year=2019, abstract="Abstract")
        merged = first.merge_from(second)
        assert merged.title == "Original"
        assert merged.year == 2020
        assert merged.abstract == "Abstract"
        assert merged.id == "W1"

    def test_null_never_replaces_value(self):
        first = Paper(id="W1", venue="Nature", citation_count=5)
        merged = first.merge_from(Paper(id="W1"))
        assert merged is first

    def test_semantic_scores_taken_from_newer_record(self):
        first = Paper(id="W1", semantic_score=0.2, combined_score=0.3)
        merged = first.merge_from(Paper(id="W1", semantic_score=0.9, combined_score=0.8))
        assert merged.semantic_score == 0.9
        assert merged.combined_score == 0.8

    def test_merge_returns_new_instance(self):
        first = Paper(id="W1")
        merged = first.merge_from(Paper(id="W1", year=2020))
        assert merged is not first
        assert first.year is None

    def test_extra_keys_merged(self):
        first = Paper.from_dict({"id": "W1", "a": 1})
        merged = first.merge_from(Paper.from_dict({"id": "W1", "a": 2, "b": 3}))
        assert dict(merged.extra) == {"a": 1, "b": 3}


class TestEnrichment:
    def test_upgrades_enrichment_fields(self):
        paper = Paper(id="W1", citation_count=1, venue="Old")
        enriched = paper.with_enrichment({"citation_count": 40, "venue": "New", "quartile": "Q1"})
        assert enriched.citation_count == 40
        assert enriched.venue == "New"
        assert enriched.quartile == "Q1"

    def test_null_updates_ignored(self):
        paper = Paper(id="W1", citation_count=10)
        assert paper.with_enrichment({"citation_count": None}) is paper

    def test_non_enrichment_fields_ignored(self):
        paper = Paper(id="W1", title="T")
        assert paper.with_enrichment({"title": "Hijacked"}).title == "T"

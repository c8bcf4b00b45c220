"""
Vitae - Merge Engine Unit Tests
===============================
"""

from vitae.ingest.merge import category_key, merge_results
from vitae.shared.models import (
    ExtractedCategory,
    ExtractedEntry,
    ExtractedProfile,
    ExtractionResult,
)


def _result(categories, name=None, error=None):
    return ExtractionResult(
        profile=ExtractedProfile(name=name, email=f"{name}@x.org" if name else None),
        categories=[
            ExtractedCategory(name=cat, entries=[ExtractedEntry(title=t) for t in titles])
            for cat, titles in categories.items()
        ],
        error=error,
    )


def _shape(result):
    return {category_key(c.name): sorted(e.title for e in c.entries) for c in result.categories}


class TestMergeResults:

    def test_empty_input(self):
        merged = merge_results([])
        assert merged.categories == []
        assert not merged.profile.has_name

    def test_case_insensitive_category_merge(self):
        merged = merge_results([
            _result({"Publications": ["A"]}),
            _result({"publications ": ["B"], "Awards": ["C"]}),
        ])

        assert [c.name for c in merged.categories] == ["Publications", "Awards"]
        assert [e.title for e in merged.categories[0].entries] == ["A", "B"]

    def test_first_named_profile_wins(self):
        merged = merge_results([
            _result({}),
            _result({}, name="Jane Doe"),
            _result({}, name="J. Doe"),
        ])

        assert merged.profile.name == "Jane Doe"
        assert merged.profile.email == "Jane Doe@x.org"

    def test_failed_results_contribute_nothing(self):
        merged = merge_results([
            _result({"Grants": ["R01"]}),
            ExtractionResult.empty(error="timeout"),
        ])

        assert merged.entry_count == 1
        assert merged.error is None

    def test_order_independent_content(self):
        a = _result({"Publications": ["A", "B"], "Awards": ["X"]})
        b = _result({"publications": ["C"], "Grants": ["G"]})

        assert _shape(merge_results([a, b])) == _shape(merge_results([b, a]))

    def test_inputs_not_mutated(self):
        a = _result({"Publications": ["A"]})
        b = _result({"Publications": ["B"]})

        merged = merge_results([a, b])
        merged.categories[0].entries[0].title = "changed"

        assert [e.title for e in a.categories[0].entries] == ["A"]
        assert [e.title for e in b.categories[0].entries] == ["B"]

    def test_blank_category_names_skipped(self):
        merged = merge_results([_result({"  ": ["A"], "Awards": ["B"]})])
        assert [c.name for c in merged.categories] == ["Awards"]

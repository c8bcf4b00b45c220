"""
Vitae - Extraction Response Parsing Tests
=========================================
"""

import json

import pytest

from vitae.shared.exceptions import ExtractionParseError
from vitae.shared.parsing import (
    extract_json_string,
    parse_extraction_response,
    strip_markdown_fences,
)


class TestJsonExtraction:

    def test_strip_fences(self):
        assert strip_markdown_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_preamble_and_postscript(self):
        text = 'Sure! Here it is: {"a": {"b": 2}} Let me know if you need more.'
        assert json.loads(extract_json_string(text)) == {"a": {"b": 2}}

    def test_no_json(self):
        with pytest.raises(ExtractionParseError):
            extract_json_string("I could not find any CV content.")


class TestParseExtractionResponse:

    def test_empty_response(self):
        with pytest.raises(ExtractionParseError, match="Empty"):
            parse_extraction_response("   ")

    def test_invalid_json(self):
        with pytest.raises(ExtractionParseError):
            parse_extraction_response('{"profile": {"name": "x",}')

    def test_numbers_and_blanks_coerced(self):
        raw = json.dumps({
            "profile": {"name": "  Jane Doe ", "email": "", "phone": 5551234},
            "categories": [{
                "name": "Awards",
                "entries": [{"title": "Dean's Award", "date": 2019, "url": ""}],
            }],
        })
        result = parse_extraction_response(raw)

        assert result.profile.name == "Jane Doe"
        assert result.profile.email is None
        assert result.profile.phone == "5551234"
        item = result.categories[0].entries[0]
        assert item.date == "2019"
        assert item.url is None

    def test_drops_nameless_categories_and_untitled_entries(self):
        raw = json.dumps({
            "profile": None,
            "categories": [
                {"name": "", "entries": [{"title": "Orphan"}]},
                {"name": "Grants", "entries": [
                    {"title": "R01 NS012345"},
                    {"title": "   ", "description": "no title"},
                    "not an object",
                ]},
                "junk",
            ],
        })
        result = parse_extraction_response(raw)

        assert [c.name for c in result.categories] == ["Grants"]
        assert [e.title for e in result.categories[0].entries] == ["R01 NS012345"]
        assert not result.profile.has_name

    def test_missing_keys_default_empty(self):
        result = parse_extraction_response("{}")

        assert result.categories == []
        assert result.profile.to_dict() == {
            "name": None, "email": None, "phone": None,
            "address": None, "institution": None, "website": None,
        }

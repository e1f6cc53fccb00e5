"""
Unit tests for structured response parsing.

Tests cover:
    - Direct and repaired JSON decoding
    - Rejection of empty, invalid and non-object responses
    - Shape validation against ResponseSchema and ANALYSIS_SCHEMA
"""

import pytest

from xhs_writer.parsers.response_parser import (
    ANALYSIS_SCHEMA,
    ResponseSchema,
    parse_json_object,
    parse_structured_response,
    repair_json_text,
)
from xhs_writer.utils.exceptions import ParsingError, ResponseValidationError


class TestJsonDecoding:
    """Test JSON extraction."""

    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_with_trailing_comma(self):
        """Test that markdown fences and trailing commas are repaired."""
        text = '```json\n{"a": [1, 2,], "b": {"c": 3,},}\n```'
        assert parse_json_object(text) == {"a": [1, 2], "b": {"c": 3}}

    def test_repair_json_text(self):
        assert repair_json_text("```\n[1,]\n```") == "[1]"

    @pytest.mark.parametrize("text", ["", "   ", "not json", "[1, 2]", '"string"'])
    def test_rejected_inputs(self, text):
        """Test that anything but a JSON object is a validation failure."""
        with pytest.raises(ResponseValidationError) as exc_info:
            parse_json_object(text, source="modelA")

        error = exc_info.value
        assert isinstance(error, ParsingError)
        assert error.retryable is True
        assert error.details["source"] == "modelA"


class TestShapeValidation:
    """Test schema checks."""

    def test_valid_analysis_passes(self, valid_analysis):
        """Test that a complete report is returned unchanged."""
        import orjson

        text = orjson.dumps(valid_analysis).decode()
        assert parse_structured_response(text, ANALYSIS_SCHEMA) == valid_analysis

    def test_missing_section(self, valid_analysis):
        """Test that a missing top-level section is reported."""
        import orjson

        del valid_analysis["tagStrategy"]
        with pytest.raises(ResponseValidationError) as exc_info:
            parse_structured_response(orjson.dumps(valid_analysis).decode(), ANALYSIS_SCHEMA)

        assert "missing field: tagStrategy" in exc_info.value.errors

    def test_empty_required_list(self, valid_analysis):
        """Test that an empty opening-hooks list fails."""
        import orjson

        valid_analysis["contentStructure"]["openingHooks"] = []
        with pytest.raises(ResponseValidationError) as exc_info:
            parse_structured_response(orjson.dumps(valid_analysis).decode(), ANALYSIS_SCHEMA)

        assert exc_info.value.errors == ["empty list: contentStructure.openingHooks"]

    def test_wrong_types(self, valid_analysis):
        """Test list and string type checks on optional paths."""
        import orjson

        valid_analysis["tagStrategy"]["commonTags"] = "#防晒"
        valid_analysis["contentStructure"]["bodyTemplate"] = ["not", "a", "string"]
        with pytest.raises(ResponseValidationError) as exc_info:
            parse_structured_response(orjson.dumps(valid_analysis).decode(), ANALYSIS_SCHEMA)

        assert set(exc_info.value.errors) == {
            "not a list: tagStrategy.commonTags",
            "not a string: contentStructure.bodyTemplate",
        }

    def test_required_field_list(self):
        """Test the plain list form of required fields."""
        assert parse_structured_response('{"title": "t", "count": 0}', ["title", "count"]) == {
            "title": "t",
            "count": 0,
        }
        with pytest.raises(ResponseValidationError):
            parse_structured_response('{"title": null}', ["title"])

    def test_coerce(self):
        schema = ResponseSchema(required=("a",))
        assert ResponseSchema.coerce(schema) is schema
        assert ResponseSchema.coerce(["x", "y"]).required == ("x", "y")
        assert ResponseSchema.coerce(None) == ResponseSchema()

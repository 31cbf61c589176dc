"""
Unit tests for the declarative Filter model.

Tests cover:
- Parsing from JSON text, dicts and None
- Include/order shorthands
- Error reporting for malformed input
- JSON round-trip
"""

import pytest

from modelstack.core.errors import InvalidFilterError
from modelstack.core.query_types import Filter


class TestFilterParse:
    """Tests for Filter.parse."""

    def test_parse_none_is_empty(self):
        f = Filter.parse(None)
        assert f.where is None
        assert f.include == []
        assert f.skip == 0 and f.limit == 0

    def test_parse_json_text(self):
        f = Filter.parse('{"where": {"status": "active"}, "limit": 5}')
        assert f.where == {"status": "active"}
        assert f.limit == 5

    def test_include_string_shorthand(self):
        f = Filter.parse({"include": "author"})
        assert [item.relation for item in f.include] == ["author"]
        assert f.include[0].scope is None

    def test_include_list_mixed(self):
        f = Filter.parse({"include": ["author", {"relation": "tags", "scope": {"limit": 2}}]})
        assert [item.relation for item in f.include] == ["author", "tags"]
        assert f.include[1].scope.limit == 2

    def test_include_filter_alias(self):
        f = Filter.parse({"include": [{"relation": "author", "filter": {"where": {"name": "x"}}}]})
        assert f.include[0].scope.where == {"name": "x"}

    def test_order_string_becomes_list(self):
        f = Filter.parse({"order": "createdAt DESC"})
        assert f.order == ["createdAt DESC"]

    def test_null_paging_is_zero(self):
        f = Filter.parse({"skip": None, "limit": None})
        assert f.skip == 0 and f.limit == 0

    def test_invalid_json(self):
        with pytest.raises(InvalidFilterError):
            Filter.parse("{not json")

    def test_non_object(self):
        with pytest.raises(InvalidFilterError):
            Filter.parse("[1, 2]")

    def test_invalid_shape(self):
        with pytest.raises(InvalidFilterError):
            Filter.parse({"limit": "many"})


class TestFilterSerialization:
    """Tests for to_dict/to_json."""

    def test_to_dict_omits_defaults(self):
        assert Filter.parse({"where": {"a": 1}}).to_dict() == {"where": {"a": 1}}

    def test_json_round_trip(self):
        raw = {
            "where": {"status": {"$in": ["a", "b"]}},
            "include": [{"relation": "author", "scope": {"where": {"name": "x"}, "limit": 1}}],
            "order": ["title ASC"],
            "skip": 2,
            "limit": 3,
        }
        f = Filter.parse(raw)
        assert Filter.parse(f.to_json()) == f
        assert f.to_dict() == raw

"""
Unit tests for the instance builder.

Tests cover:
- id renaming and relation materialisation
- Hidden properties
- Duplicate single related documents (lenient and strict)
- Revisited documents on a nesting path
"""

import logging

import pytest
from bson import ObjectId

from modelstack.core.errors import DuplicateRelatedDocumentError
from modelstack.runtime.instance import Instance, InstanceBuilder


@pytest.fixture
def builder(registry):
    return InstanceBuilder(registry)


@pytest.fixture
def strict_builder(registry):
    return InstanceBuilder(registry, strict=True)


class TestBuild:
    """Tests for InstanceBuilder.build."""

    def test_renames_id(self, builder):
        oid = ObjectId()
        note = builder.build("Note", {"_id": oid, "title": "t"})
        assert note.id == oid
        assert note.data == {"id": oid, "title": "t"}
        assert note["title"] == "t"
        assert "title" in note

    def test_belongs_to_is_instance(self, builder):
        uid = ObjectId()
        note = builder.build("Note", {"_id": ObjectId(), "title": "t", "author": {"_id": uid, "name": "Ann"}})
        author = note.related("author")
        assert isinstance(author, Instance)
        assert author.model == "User"
        assert author.id == uid
        assert "author" not in note.data

    def test_has_many_is_list(self, builder):
        user = builder.build("User", {
            "_id": ObjectId(),
            "name": "Ann",
            "notes": [{"_id": ObjectId(), "title": "a"}, {"_id": ObjectId(), "title": "b"}],
        })
        assert [n["title"] for n in user.related("notes")] == ["a", "b"]

    def test_null_single_relation_is_omitted(self, builder):
        note = builder.build("Note", {"_id": ObjectId(), "title": "t", "author": None})
        assert note.related("author") is None
        assert "author" not in note.to_json()

    def test_scalar_under_relation_name_is_data(self, builder):
        user = builder.build("User", {"_id": ObjectId(), "name": "Ann", "notes": 3})
        assert user.data["notes"] == 3
        assert user.relations == {}

    def test_single_relation_given_as_list_keeps_first(self, builder, caplog):
        first, second = {"_id": ObjectId(), "name": "A"}, {"_id": ObjectId(), "name": "B"}
        with caplog.at_level(logging.WARNING):
            note = builder.build("Note", {"_id": ObjectId(), "title": "t", "author": [first, second]})
        assert note.related("author")["name"] == "A"
        assert "more than one related document" in caplog.text

    def test_revisited_document_is_not_expanded(self, builder):
        uid = ObjectId()
        user = builder.build("User", {
            "_id": uid,
            "name": "Ann",
            "profile": {
                "_id": ObjectId(),
                "bio": "b",
                "user": {"_id": uid, "name": "Ann", "notes": [{"_id": ObjectId(), "title": "x"}]},
            },
        })
        inner = user.related("profile").related("user")
        assert inner.id == uid
        assert inner.relations == {}


class TestHiddenProperties:
    """hide_properties is recursive and sticky."""

    def test_hidden_until_applied(self, builder):
        user = builder.build("User", {"_id": ObjectId(), "name": "Ann", "password": "secret"})
        assert user.to_json()["password"] == "secret"
        user.hide_properties()
        assert "password" not in user.to_json()
        assert user.hide_properties().hidden_applied

    def test_recursive(self, builder):
        note = builder.build("Note", {
            "_id": ObjectId(),
            "title": "t",
            "author": {"_id": ObjectId(), "name": "Ann", "password": "secret"},
        })
        note.hide_properties()
        assert "password" not in note.to_json()["author"]


class TestBuildMany:
    """Duplicate rows for a single relation on one level."""

    def _rows(self):
        nid = ObjectId()
        return [
            {"_id": nid, "title": "t", "author": {"_id": ObjectId(), "name": "A"}},
            {"_id": nid, "title": "t", "author": {"_id": ObjectId(), "name": "B"}},
        ]

    def test_lenient_drops_duplicate(self, builder, caplog):
        with caplog.at_level(logging.WARNING):
            notes = builder.build_many("Note", self._rows())
        assert len(notes) == 1
        assert notes[0].related("author")["name"] == "A"
        assert "Note.author" in caplog.text

    def test_strict_raises(self, strict_builder):
        with pytest.raises(DuplicateRelatedDocumentError):
            strict_builder.build_many("Note", self._rows())

    def test_distinct_parents_are_kept(self, builder):
        rows = [
            {"_id": ObjectId(), "title": "a", "author": {"_id": ObjectId(), "name": "A"}},
            {"_id": ObjectId(), "title": "b", "author": {"_id": ObjectId(), "name": "A"}},
        ]
        assert len(builder.build_many("Note", rows)) == 2


class TestToDocument:

    def test_id_back_to_underscore(self, builder):
        oid = ObjectId()
        note = builder.build("Note", {"_id": oid, "title": "t", "author": {"_id": ObjectId(), "name": "A"}})
        assert note.to_document() == {"_id": oid, "title": "t"}

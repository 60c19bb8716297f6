"""
Tests for the entity store and its query builder.
"""
import sqlite3

import pytest

from wdb_importer import EntityKind, EntityStore
from wdb_importer.exceptions import (
    ConflictError,
    DatabaseError,
    EntityNotFoundError,
    ValidationError,
)


@pytest.fixture
def signs(store):
    """Store with four signs in two languages."""
    for code, lang in [("A1", "egy"), ("A2", "egy"), ("B1", "akk"), ("B2", "akk")]:
        store.create("sign", {"sign_code": code, "language": lang})
    return store


class TestCreate:
    """Tests for create and load."""

    def test_create_returns_entity_with_id(self, store):
        sign = store.create(EntityKind.SIGN, {"sign_code": "A1", "language": "egy"})
        assert isinstance(sign["id"], int)
        assert sign["sign_code"] == "A1"

    def test_create_fills_defaults(self, store):
        sign = store.create("sign", {"sign_code": "A1", "language": "egy"})
        sf = store.create("sign_function", {"sign_id": sign["id"], "language": "egy"})
        assert sf["function_name"] == ""

    def test_load(self, store):
        sign = store.create("sign", {"sign_code": "A1", "language": "egy"})
        assert store.load("sign", sign["id"]) == sign

    def test_load_missing(self, store):
        assert store.load("sign", 42) is None

    def test_get_missing_raises(self, store):
        with pytest.raises(EntityNotFoundError):
            store.get("sign", 42)

    def test_duplicate_raises_conflict(self, store):
        store.create("sign", {"sign_code": "A1", "language": "egy"})
        with pytest.raises(ConflictError):
            store.create("sign", {"sign_code": "A1", "language": "egy"})

    def test_foreign_key_failure_propagates(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.create("sign_function", {"sign_id": 99, "language": "egy"})

    def test_unknown_field(self, store):
        with pytest.raises(ValidationError, match="Unknown field"):
            store.create("sign", {"sign_code": "A1", "language": "egy", "x": 1})

    def test_unknown_kind(self, store):
        with pytest.raises(DatabaseError, match="Unknown entity kind"):
            store.create("lemma", {})


class TestFind:
    """Tests for find and the query builder."""

    def test_find_by_fields(self, signs):
        found = signs.find("sign", {"sign_code": "B1", "language": "akk"})
        assert found["sign_code"] == "B1"

    def test_find_no_match(self, signs):
        assert signs.find("sign", {"sign_code": "B1", "language": "egy"}) is None

    def test_none_matches_null(self, store):
        store.create("source", {"source_identifier": "s1"})
        store.create("source", {"source_identifier": "s2", "displayname": "Two"})
        found = store.find("source", {"displayname": None})
        assert found["source_identifier"] == "s1"

    def test_condition_in(self, signs):
        rows = (
            signs.query("sign")
            .condition("sign_code", ["A1", "B2"], "IN")
            .sort("sign_code")
            .execute()
        )
        assert [r["sign_code"] for r in rows] == ["A1", "B2"]

    def test_condition_in_empty(self, signs):
        assert signs.query("sign").condition("sign_code", [], "IN").execute() == []

    def test_sort_and_range(self, signs):
        rows = signs.query("sign").sort("sign_code", "DESC").range(1, 2).execute()
        assert [r["sign_code"] for r in rows] == ["B1", "A2"]

    def test_count(self, signs):
        assert signs.count("sign") == 4
        assert signs.count("sign", {"language": "egy"}) == 2

    def test_find_all(self, signs):
        rows = signs.find_all("sign", {"language": "akk"})
        assert [r["sign_code"] for r in rows] == ["B1", "B2"]

    def test_bad_operator(self, store):
        with pytest.raises(ValidationError):
            store.query("sign").condition("sign_code", "A1", "LIKE")

    def test_bad_sort_field(self, store):
        with pytest.raises(ValidationError):
            store.query("sign").sort("sign_code; DROP TABLE signs")


class TestUpdateDelete:
    """Tests for update and delete."""

    @pytest.fixture
    def word_unit(self, store_with_source):
        store = store_with_source
        noun = store.find("taxonomy_term", {"name": "noun"})
        word = store.create("word", {
            "basic_form": "foo", "lexical_category_id": noun["id"], "language": "egy",
        })
        meaning = store.create("word_meaning", {"word_id": word["id"], "language": "egy"})
        return store.create("word_unit", {
            "original_word_unit_identifier": "src1_1",
            "source_id": 1,
            "word_meaning_id": meaning["id"],
            "word_sequence": 1.0,
            "language": "egy",
        })

    def test_update(self, store):
        source = store.create("source", {"source_identifier": "s1"})
        updated = store.update("source", source["id"], {"displayname": "S One"})
        assert updated["displayname"] == "S One"

    def test_update_protected_field_rejected(self, store_with_source, word_unit):
        with pytest.raises(ValidationError, match="word_sequence"):
            store_with_source.update("word_unit", word_unit["id"], {"word_sequence": 9.0})

    def test_update_unprotected_word_unit_field(self, store_with_source, word_unit):
        updated = store_with_source.update(
            "word_unit", word_unit["id"], {"realized_form": "fooo"}
        )
        assert updated["realized_form"] == "fooo"

    def test_update_missing(self, store):
        with pytest.raises(EntityNotFoundError):
            store.update("source", 7, {"displayname": "x"})

    def test_delete(self, store):
        source = store.create("source", {"source_identifier": "s1"})
        assert store.delete("source", source["id"]) is True
        assert store.load("source", source["id"]) is None

    def test_delete_missing(self, store):
        assert store.delete("source", 7) is False

    def test_delete_referenced_fails(self, store):
        sign = store.create("sign", {"sign_code": "A1", "language": "egy"})
        store.create("sign_function", {"sign_id": sign["id"], "language": "egy"})
        with pytest.raises(sqlite3.IntegrityError):
            store.delete("sign", sign["id"])
        assert store.load("sign", sign["id"]) is not None


class TestPageRefs:
    """Tests for word unit page references."""

    @pytest.fixture
    def setup(self, store_with_source):
        store = store_with_source
        noun = store.find("taxonomy_term", {"name": "noun"})
        word = store.create("word", {
            "basic_form": "foo", "lexical_category_id": noun["id"], "language": "egy",
        })
        meaning = store.create("word_meaning", {"word_id": word["id"], "language": "egy"})
        wu = store.create("word_unit", {
            "original_word_unit_identifier": "src1_1",
            "source_id": 1,
            "word_meaning_id": meaning["id"],
            "language": "egy",
        })
        p1 = store.create("annotation_page", {"source_id": 1, "page_number": 1})
        p2 = store.create("annotation_page", {"source_id": 1, "page_number": 2})
        return store, wu, p1, p2

    def test_append_keeps_order(self, setup):
        store, wu, p1, p2 = setup
        assert store.add_page_ref(wu["id"], p2["id"])
        assert store.add_page_ref(wu["id"], p1["id"])
        assert store.page_refs(wu["id"]) == [p2["id"], p1["id"]]

    def test_append_is_set_union(self, setup):
        store, wu, p1, _ = setup
        store.add_page_ref(wu["id"], p1["id"])
        assert store.add_page_ref(wu["id"], p1["id"]) is False
        assert store.page_refs(wu["id"]) == [p1["id"]]

    def test_deleting_page_removes_ref(self, setup):
        store, wu, p1, p2 = setup
        store.add_page_ref(wu["id"], p1["id"])
        store.add_page_ref(wu["id"], p2["id"])
        assert store.delete("annotation_page", p2["id"])
        assert store.page_refs(wu["id"]) == [p1["id"]]


class TestBatch:
    """Tests for the batch context manager."""

    def test_batch_commits(self, tmp_path):
        path = tmp_path / "wdb.sqlite3"
        with EntityStore(path) as store:
            with store.batch():
                store.create("source", {"source_identifier": "s1"})
                store.create("source", {"source_identifier": "s2"})
        with EntityStore(path) as store:
            assert store.count("source") == 2

    def test_batch_rolls_back_on_error(self, store):
        with pytest.raises(ConflictError):
            with store.batch():
                store.create("source", {"source_identifier": "s1"})
                store.create("source", {"source_identifier": "s1"})
        assert store.count("source") == 0

    def test_nested_batch(self, store):
        with store.batch():
            store.create("source", {"source_identifier": "s1"})
            with store.batch():
                store.create("source", {"source_identifier": "s2"})
        assert store.count("source") == 2


class TestJobStates:
    """Saved job states through the store."""

    def test_round_trip(self, store):
        store.save_job_state("j", {"a": [1, 2]})
        assert store.load_job_state("j") == {"a": [1, 2]}
        assert store.list_job_ids() == ["j"]
        store.delete_job_state("j")
        assert store.load_job_state("j") is None

"""
Tests for the entity graph builder.
"""
import pytest

from wdb_importer import EntityGraphBuilder, ImportResults, ImportRow
from wdb_importer.resolvers import sign_interpretation_code

EXPECTED_KINDS = [
    "word",
    "word_meaning",
    "annotation_page",
    "sign",
    "sign_function",
    "sign_interpretation",
    "word_unit",
    "word_map",
]


def make_row(**overrides):
    values = dict(
        source="src1",
        page=3,
        sign="A1",
        basic_form="foo",
        word_unit=10,
        lexical_category_name="noun",
        word_sequence=10.0,
    )
    values.update(overrides)
    return ImportRow(**values)


@pytest.fixture
def builder(store_with_source):
    return EntityGraphBuilder(store_with_source)


def process(builder, row, results, language="egy", sign_sequence=1):
    return builder.process_row(row, language, row.word_sequence, sign_sequence, results)


class TestProcessRow:
    """Happy path and idempotency."""

    def test_first_run_creates_full_graph(self, builder):
        results = ImportResults()
        assert process(builder, make_row(), results) is True
        assert results.processed == 1
        assert [c.kind for c in results.created_entities] == EXPECTED_KINDS

    def test_second_run_creates_nothing(self, builder):
        first = ImportResults()
        process(builder, make_row(), first)
        second = ImportResults()
        assert process(builder, make_row(), second) is True
        assert second.created_entities == []
        assert second.processed == 1

    def test_graph_links(self, builder, store_with_source):
        store = store_with_source
        results = ImportResults()
        process(builder, make_row(realized_form="fo", meaning=2,
                                  explanation="a foo"), results, sign_sequence=4)
        ids = {c.kind: c.id for c in results.created_entities}
        noun = store.find("taxonomy_term", {"name": "noun"})

        word = store.get("word", ids["word"])
        assert word["word_code"] == f"foo_{noun['id']}"
        assert word["lexical_category_id"] == noun["id"]

        meaning = store.get("word_meaning", ids["word_meaning"])
        assert meaning["word_id"] == word["id"]
        assert meaning["meaning_identifier"] == 2
        assert meaning["word_meaning_code"] == f"foo_{noun['id']}_2"
        assert meaning["explanation"] == "a foo"

        page = store.get("annotation_page", ids["annotation_page"])
        assert page["page_number"] == 3
        assert page["page_name"] == "p. 3"

        sf = store.get("sign_function", ids["sign_function"])
        assert sf["function_name"] == ""
        assert sf["sign_function_code"] == "A1_"

        si = store.get("sign_interpretation", ids["sign_interpretation"])
        assert si["sign_function_id"] == sf["id"]
        assert si["label_id"] is None
        assert si["line_number"] == 0
        assert len(si["code"]) == 20

        wu = store.get("word_unit", ids["word_unit"])
        assert wu["original_word_unit_identifier"] == "src1_10"
        assert wu["word_meaning_id"] == meaning["id"]
        assert wu["realized_form"] == "fo"
        assert wu["word_sequence"] == 10.0
        assert wu["language"] == "egy"

        wm = store.get("word_map", ids["word_map"])
        assert wm["word_unit_id"] == wu["id"]
        assert wm["sign_interpretation_id"] == si["id"]
        assert wm["sign_sequence"] == 4

    def test_existing_page_is_reused(self, builder, store_with_source):
        # page 5 was created by the label fixture
        results = ImportResults()
        process(builder, make_row(page=5, image_identifier="img-5.tif"), results)
        page = store_with_source.find("annotation_page", {"page_number": 5})
        assert page["page_name"] == "p. 5"
        assert page["image_identifier"] == "img-5.tif"
        assert "annotation_page" not in [c.kind for c in results.created_entities]

    def test_existing_image_is_kept(self, builder, store_with_source):
        process(builder, make_row(page=9, image_identifier="first.tif"),
                ImportResults())
        process(builder, make_row(page=9, sign="A2", image_identifier="second.tif"),
                ImportResults())
        page = store_with_source.find("annotation_page", {"page_number": 9})
        assert page["image_identifier"] == "first.tif"

    def test_new_page_records_image(self, builder, store_with_source):
        results = ImportResults()
        process(builder, make_row(page=9, image_identifier="img-9.tif"), results)
        page = store_with_source.find("annotation_page", {"page_number": 9})
        assert page["page_name"] == "p. 9"
        assert page["image_identifier"] == "img-9.tif"


class TestLabels:
    """Label lookup and line numbers."""

    def test_label_found(self, builder, store_with_source):
        results = ImportResults()
        process(builder, make_row(page=5, label_name="2-1"), results)
        si = store_with_source.find("sign_interpretation", {})
        label = store_with_source.find("label", {"label_name": "2-1"})
        assert si["label_id"] == label["id"]
        assert si["line_number"] == 2
        assert results.warnings == []

    def test_label_missing_warns_and_continues(self, builder, store_with_source):
        results = ImportResults()
        assert process(builder, make_row(label_name="4-7"), results) is True
        assert results.warnings == [
            'Row 1: Label "4-7" not found, proceeding without label link.'
        ]
        si = store_with_source.find("sign_interpretation", {})
        assert si["label_id"] is None
        assert si["line_number"] == 4

    def test_phone_and_note(self, builder, store_with_source):
        results = ImportResults()
        process(builder, make_row(phone="a", note="unclear"), results)
        si = store_with_source.find("sign_interpretation", {})
        assert si["phone"] == "a"
        assert si["note"] == "unclear"


class TestFailures:
    """Rows that fail."""

    def test_missing_required_data(self, builder, store_with_source):
        results = ImportResults()
        assert process(builder, make_row(sign=None), results) is False
        assert results.failed == 1
        assert results.errors == ["Skipped row 1 due to missing required data."]
        assert results.created_entities == []
        assert store_with_source.count("word") == 0

    def test_missing_lexical_category_fails(self, builder, store_with_source):
        results = ImportResults()
        assert process(builder, make_row(lexical_category_name=None), results) is False
        assert results.errors == [
            "Failed to process row 1. Error: "
            "Lexical category term could not be found or created."
        ]
        assert store_with_source.count("word") == 0

    def test_unknown_source_keeps_partial_creations(self, builder, store_with_source):
        results = ImportResults()
        assert process(builder, make_row(source="nope"), results) is False
        assert results.failed == 1
        assert "Source entity not found: nope" in results.errors[0]
        assert [c.kind for c in results.created_entities] == ["word", "word_meaning"]
        assert store_with_source.count("word") == 1

    def test_row_number_counts_previous_rows(self, builder):
        results = ImportResults(processed=4, failed=1)
        process(builder, make_row(basic_form=None), results)
        assert results.errors == ["Skipped row 6 due to missing required data."]

    def test_new_category_is_logged(self, builder, store_with_source):
        results = ImportResults()
        process(builder, make_row(lexical_category_name="verb"), results)
        assert results.created_entities[0].kind == "taxonomy_term"
        term = store_with_source.get("taxonomy_term", results.created_entities[0].id)
        assert term["vocabulary"] == "lexical_category"
        assert term["language"] == "egy"


class TestWordUnits:
    """Word unit accumulation and fixed fields."""

    def test_page_accumulation(self, builder, store_with_source):
        store = store_with_source
        results = ImportResults()
        process(builder, make_row(page=1, sign="A1"), results)
        process(builder, make_row(page=2, sign="A2"), results, sign_sequence=2)
        assert store.count("word_unit") == 1
        wu = store.find("word_unit", {})
        pages = [store.get("annotation_page", p)["page_number"]
                 for p in store.page_refs(wu["id"])]
        assert sorted(pages) == [1, 2]

    def test_fields_fixed_at_creation(self, builder, store_with_source):
        results = ImportResults()
        process(builder, make_row(realized_form="first"), results)
        process(builder, make_row(realized_form="second", word_sequence=99.0,
                                  sign="A2"), results, sign_sequence=2)
        wu = store_with_source.find("word_unit", {})
        assert wu["realized_form"] == "first"
        assert wu["word_sequence"] == 10.0

    def test_grammar_terms(self, builder, store_with_source):
        store = store_with_source
        results = ImportResults()
        process(builder, make_row(person_name="3", grammatical_case_name="nominative"),
                results)
        wu = store.find("word_unit", {})
        person = store.get("taxonomy_term", wu["person_id"])
        case = store.get("taxonomy_term", wu["case_id"])
        assert (person["vocabulary"], person["name"]) == ("person", "3")
        assert (case["vocabulary"], case["name"]) == ("grammatical_case", "nominative")
        assert wu["gender_id"] is None
        kinds = [c.kind for c in results.created_entities]
        assert kinds.count("taxonomy_term") == 2
        # grammar terms come before the word unit that uses them
        assert kinds.index("word_unit") > kinds.index("taxonomy_term")


class TestLanguages:
    """Language handling."""

    def test_sign_function_uses_sign_language(self, builder, store_with_source):
        store = store_with_source
        store.create("sign", {"sign_code": "A1", "language": "akk"})
        results = ImportResults()
        process(builder, make_row(), results, language="akk")
        sf = store.find("sign_function", {})
        assert sf["language"] == "akk"

    def test_languages_are_kept_apart(self, builder, store_with_source):
        results = ImportResults()
        process(builder, make_row(), results, language="egy")
        process(builder, make_row(word_unit=11), results, language="akk")
        assert store_with_source.count("word") == 2
        assert store_with_source.count("sign") == 2


def test_sign_interpretation_code_is_stable():
    a = sign_interpretation_code(1, None, 2, 0, "")
    assert a == sign_interpretation_code(1, None, 2, 0, "")
    assert a != sign_interpretation_code(1, 5, 2, 0, "")
    assert len(a) == 20

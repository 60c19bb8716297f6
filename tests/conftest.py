"""Shared test fixtures for wdb-importer."""

import pytest

from wdb_importer import EntityStore, SourceRepository, resolve_term

HEADER = [
    "source", "page", "labelname", "sign", "function", "phone",
    "word_unit", "basic_form", "lexical_category_name", "meaning",
    "word_sequence",
]


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    with EntityStore(":memory:") as st:
        yield st


@pytest.fixture
def store_with_source(store):
    """Store with source 'src1', a label '2-1' on page 5, and the term 'noun'."""
    repo = SourceRepository(store)
    repo.create_source("src1", "Source One")
    repo.create_label("src1", 5, "2-1")
    resolve_term(store, "lexical_category", "noun", "en")
    return store


@pytest.fixture
def write_tsv(tmp_path):
    """Write rows to a delimited file and return its path."""

    def _write(rows, header=HEADER, name="import.tsv", delimiter="\t"):
        lines = [delimiter.join(header)]
        lines.extend(delimiter.join(str(c) for c in row) for row in rows)
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


def _make_row(
    word_unit,
    sign="A1",
    page=3,
    source="src1",
    basic_form="foo",
    category="noun",
    label="",
    function="",
    phone="",
    meaning=0,
    word_sequence=None,
):
    """One row in HEADER order."""
    if word_sequence is None:
        word_sequence = word_unit
    return [
        source, page, label, sign, function, phone,
        word_unit, basic_form, category, meaning, word_sequence,
    ]


@pytest.fixture
def make_row():
    """Build rows in HEADER order."""
    return _make_row


@pytest.fixture
def header():
    """The default column list, for files that need extra columns."""
    return list(HEADER)

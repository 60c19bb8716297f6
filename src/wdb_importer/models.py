"""Domain model dataclasses and enums for wdb-importer."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class EntityKind(str, Enum):
    """Entity kinds held in the store."""

    SOURCE = "source"
    TAXONOMY_TERM = "taxonomy_term"
    SIGN = "sign"
    SIGN_FUNCTION = "sign_function"
    WORD = "word"
    WORD_MEANING = "word_meaning"
    ANNOTATION_PAGE = "annotation_page"
    LABEL = "label"
    SIGN_INTERPRETATION = "sign_interpretation"
    WORD_UNIT = "word_unit"
    WORD_MAP = "word_map"
    IMPORT_LOG = "import_log"


# Vocabulary -> (column in the import file, reference field on word_units).
# Order is the resolution order used by the importer.
GRAMMAR_CATEGORIES: dict[str, tuple[str, str]] = {
    "person": ("person_name", "person_id"),
    "gender": ("gender_name", "gender_id"),
    "number": ("number_name", "number_id"),
    "verbal_form": ("verbal_form_name", "verbal_form_id"),
    "aspect": ("aspect_name", "aspect_id"),
    "mood": ("mood_name", "mood_id"),
    "voice": ("voice_name", "voice_id"),
    "grammatical_case": ("grammatical_case_name", "case_id"),
}

LEXICAL_CATEGORY_VOCABULARY = "lexical_category"

# Accepted alternative spellings of import columns
COLUMN_ALIASES: dict[str, str] = {
    "label_name": "labelname",
    "word_unit_id": "word_unit",
    "meaning_id": "meaning",
    "case_name": "grammatical_case_name",
}

REQUIRED_COLUMNS = ("source", "page", "sign", "basic_form", "word_unit")


# ---------------------------------------------------------------------------
# Import row
# ---------------------------------------------------------------------------

def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_float(value: str | None) -> float | None:
    """Parse a finite number; anything else is None."""
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _to_int(value: str | None) -> int | None:
    number = _to_float(value)
    return int(number) if number is not None else None


@dataclass(frozen=True, slots=True)
class ImportRow:
    """One normalized row of the import file.

    Blank cells are ``None``. ``page`` and ``word_unit`` are ``None`` when
    blank or not numeric, so they count as missing.
    """

    source: str | None
    page: int | None
    sign: str | None
    basic_form: str | None
    word_unit: int | None
    label_name: str | None = None
    image_identifier: str | None = None
    function: str | None = None
    phone: str | None = None
    note: str | None = None
    realized_form: str | None = None
    lexical_category_name: str | None = None
    meaning: int = 0
    explanation: str | None = None
    person_name: str | None = None
    gender_name: str | None = None
    number_name: str | None = None
    verbal_form_name: str | None = None
    aspect_name: str | None = None
    mood_name: str | None = None
    voice_name: str | None = None
    grammatical_case_name: str | None = None
    word_sequence: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ImportRow:
        """Build a row from a header -> cell mapping."""
        cells: dict[str, str | None] = {}
        for key, value in data.items():
            if key is None:
                continue
            name = str(key).strip()
            name = COLUMN_ALIASES.get(name, name)
            cleaned = _clean(value)
            # Canonical column wins over an alias when both are present
            if cleaned is not None or name not in cells:
                cells[name] = cleaned

        grammar = {
            column: cells.get(column)
            for column, _ref in GRAMMAR_CATEGORIES.values()
        }
        page = _to_int(cells.get("page"))
        word_unit = _to_int(cells.get("word_unit"))
        return cls(
            source=cells.get("source"),
            page=page or None,
            sign=cells.get("sign"),
            basic_form=cells.get("basic_form"),
            word_unit=word_unit or None,
            label_name=cells.get("labelname"),
            image_identifier=cells.get("image_identifier"),
            function=cells.get("function"),
            phone=cells.get("phone"),
            note=cells.get("note"),
            realized_form=cells.get("realized_form"),
            lexical_category_name=cells.get("lexical_category_name"),
            meaning=_to_int(cells.get("meaning")) or 0,
            explanation=cells.get("explanation"),
            word_sequence=_to_float(cells.get("word_sequence")) or 0.0,
            **grammar,
        )

    def missing_required(self) -> list[str]:
        """Names of required fields that are empty."""
        return [name for name in REQUIRED_COLUMNS if not getattr(self, name)]

    def grammar_names(self) -> dict[str, str | None]:
        """Vocabulary -> term name for the grammar categories, in order."""
        return {
            vocabulary: getattr(self, column)
            for vocabulary, (column, _ref) in GRAMMAR_CATEGORIES.items()
        }

    @property
    def line_number(self) -> int:
        """Leading integer of the label's first ``-`` segment, else 0."""
        if not self.label_name:
            return 0
        head = self.label_name.split("-", 1)[0].strip()
        digits = ""
        for ch in head:
            if not ch.isdigit():
                break
            digits += ch
        return int(digits) if digits else 0


# ---------------------------------------------------------------------------
# Job results and audit records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CreatedEntity:
    """One ``(kind, id)`` entry of a job's creation log."""

    kind: str
    id: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "id": self.id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CreatedEntity:
        return cls(kind=str(data["type"]), id=int(data["id"]))


@dataclass
class ImportResults:
    """Running counters of an import job."""

    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    created_entities: list[CreatedEntity] = field(default_factory=list)

    @property
    def rows_seen(self) -> int:
        return self.processed + self.failed

    def record_created(self, kind: EntityKind | str, entity_id: int) -> None:
        self.created_entities.append(CreatedEntity(str(EntityKind(kind).value), entity_id))

    def summary(self) -> str:
        return (
            f"Processed: {self.rows_seen}, Succeeded: {self.processed}, "
            f"Failed: {self.failed}, Warnings: {len(self.warnings)}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "created_entities": [c.to_dict() for c in self.created_entities],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ImportResults:
        return cls(
            processed=int(data.get("processed", 0)),
            failed=int(data.get("failed", 0)),
            errors=list(data.get("errors", [])),
            warnings=list(data.get("warnings", [])),
            created_entities=[
                CreatedEntity.from_dict(c) for c in data.get("created_entities", [])
            ],
        )


@dataclass(frozen=True, slots=True)
class SourceModel:
    """A source document, provisioned outside the importer."""

    id: int
    source_identifier: str
    displayname: str | None


@dataclass(frozen=True, slots=True)
class LabelModel:
    """A polygon region on an annotation page."""

    id: int
    annotation_page_id: int
    label_name: str


@dataclass(frozen=True, slots=True)
class ImportLogModel:
    """The audit record of one finished import job."""

    id: int
    label: str
    operator: str | None
    created: str
    status: bool
    summary: str | None
    created_entities: tuple[CreatedEntity, ...]
    source_filename: str | None
    language: str | None

    @property
    def can_rollback(self) -> bool:
        return bool(self.created_entities)

    @property
    def rolled_back(self) -> bool:
        return not self.status and (self.summary or "").startswith("ROLLED BACK")


@dataclass
class RollbackSummary:
    """Outcome of rolling back one import log."""

    deleted: int = 0
    failed: int = 0
    not_found: int = 0
    errors: list[str] = field(default_factory=list)
    by_kind: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.deleted + self.failed + self.not_found

    def tally(self, kind: str, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)
        counts = self.by_kind.setdefault(
            kind, {"deleted": 0, "failed": 0, "not_found": 0}
        )
        counts[outcome] += 1

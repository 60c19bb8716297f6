"""
Entity graph builder: turns one import row into signs, words and their links.

Each row runs through an ordered pipeline of resolver methods. A resolver
reads what earlier resolvers put on the shared row context and adds its
own entity. Every entity a resolver creates goes straight into the job's
creation log, so a row that fails halfway can still be rolled back.
"""
from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from wdb_importer.exceptions import EntityNotFoundError, RowValidationError
from wdb_importer.models import (
    GRAMMAR_CATEGORIES,
    LEXICAL_CATEGORY_VOCABULARY,
    EntityKind,
    ImportResults,
    ImportRow,
    LabelModel,
    SourceModel,
)
from wdb_importer.repository import SourceRepository
from wdb_importer.store import EntityStore
from wdb_importer.taxonomy import resolve_term
from wdb_importer.upsert import resolve

logger = logging.getLogger(__name__)


@dataclass
class RowContext:
    """Everything resolved so far for the row being processed."""
    row: ImportRow
    row_number: int
    language: str
    word_sequence: float
    sign_sequence: int
    results: ImportResults
    lexical_category: dict[str, Any] | None = None
    word: dict[str, Any] | None = None
    word_meaning: dict[str, Any] | None = None
    source: SourceModel | None = None
    page: dict[str, Any] | None = None
    label: LabelModel | None = None
    sign: dict[str, Any] | None = None
    sign_function: dict[str, Any] | None = None
    sign_interpretation: dict[str, Any] | None = None
    grammar_refs: dict[str, int] = field(default_factory=dict)
    word_unit: dict[str, Any] | None = None
    word_map: dict[str, Any] | None = None


def sign_interpretation_code(
    annotation_page_id: int,
    label_id: int | None,
    sign_function_id: int,
    line_number: int,
    phone: str,
) -> str:
    """Content hash identifying a sign interpretation (20 hex chars)."""
    label_part = label_id if label_id is not None else "nolabel"
    content = (
        f"si_{annotation_page_id}_{label_part}_{sign_function_id}"
        f"_{line_number}_{phone}"
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:20]


class EntityGraphBuilder:
    """Resolves or creates the entities behind each import row."""

    def __init__(
        self,
        store: EntityStore,
        sources: SourceRepository | None = None,
    ) -> None:
        self._store = store
        self._sources = sources or SourceRepository(store)
        self._pipeline: list[Callable[[RowContext], None]] = [
            self._resolve_lexical_category,
            self._resolve_word,
            self._resolve_word_meaning,
            self._resolve_source,
            self._resolve_page,
            self._resolve_label,
            self._resolve_sign,
            self._resolve_sign_function,
            self._resolve_sign_interpretation,
            self._resolve_grammar_terms,
            self._resolve_word_unit,
            self._resolve_word_map,
        ]

    def process_row(
        self,
        row: ImportRow,
        language: str,
        word_sequence: float,
        sign_sequence: int,
        results: ImportResults,
        row_number: int | None = None,
    ) -> bool:
        """Process one row, updating ``results`` in place.

        Args:
            row: The normalized import row.
            language: Language code for new entities.
            word_sequence: Sequence stored on a newly created word unit.
            sign_sequence: Position of this sign within its word unit.
            results: Job counters and creation log.
            row_number: 1-based row number for messages. Defaults to the
                number of rows already seen plus one.

        Returns:
            True if the row succeeded.
        """
        if row_number is None:
            row_number = results.rows_seen + 1

        missing = row.missing_required()
        if missing:
            logger.debug(f"Row {row_number} missing: {', '.join(missing)}")
            results.failed += 1
            results.errors.append(
                f"Skipped row {row_number} due to missing required data."
            )
            return False

        ctx = RowContext(
            row=row,
            row_number=row_number,
            language=language,
            word_sequence=word_sequence,
            sign_sequence=sign_sequence,
            results=results,
        )
        try:
            for step in self._pipeline:
                step(ctx)
        except Exception as e:
            logger.exception(f"Error processing row {row_number}")
            results.failed += 1
            results.errors.append(
                f"Failed to process row {row_number}. Error: {e}"
            )
            return False

        results.processed += 1
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _upsert(
        self,
        ctx: RowContext,
        kind: EntityKind,
        natural_key: dict[str, Any],
        values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        entity, created = resolve(self._store, kind, natural_key, values)
        if created:
            ctx.results.record_created(kind, entity["id"])
        return entity

    def _term(self, ctx: RowContext, vocabulary: str, name: str | None):
        term, created = resolve_term(self._store, vocabulary, name, ctx.language)
        if created:
            ctx.results.record_created(EntityKind.TAXONOMY_TERM, term["id"])
        return term

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _resolve_lexical_category(self, ctx: RowContext) -> None:
        term = self._term(
            ctx, LEXICAL_CATEGORY_VOCABULARY, ctx.row.lexical_category_name
        )
        if term is None:
            raise RowValidationError(
                "Lexical category term could not be found or created."
            )
        ctx.lexical_category = term

    def _resolve_word(self, ctx: RowContext) -> None:
        category_id = ctx.lexical_category["id"]
        ctx.word = self._upsert(
            ctx,
            EntityKind.WORD,
            {
                "basic_form": ctx.row.basic_form,
                "lexical_category_id": category_id,
                "language": ctx.language,
            },
            {"word_code": f"{ctx.row.basic_form}_{category_id}"},
        )

    def _resolve_word_meaning(self, ctx: RowContext) -> None:
        word = ctx.word
        ctx.word_meaning = self._upsert(
            ctx,
            EntityKind.WORD_MEANING,
            {
                "word_id": word["id"],
                "meaning_identifier": ctx.row.meaning,
                "language": word["language"],
            },
            {
                "word_meaning_code": f"{word['word_code']}_{ctx.row.meaning}",
                "explanation": ctx.row.explanation,
            },
        )

    def _resolve_source(self, ctx: RowContext) -> None:
        source = self._sources.find_by_identifier(ctx.row.source)
        if source is None:
            raise EntityNotFoundError(f"Source entity not found: {ctx.row.source}")
        ctx.source = source

    def _resolve_page(self, ctx: RowContext) -> None:
        page = self._upsert(
            ctx,
            EntityKind.ANNOTATION_PAGE,
            {"source_id": ctx.source.id, "page_number": ctx.row.page},
            {
                "page_name": f"p. {ctx.row.page}",
                "image_identifier": ctx.row.image_identifier,
            },
        )
        # Pages provisioned without an image pick it up from the first row
        if ctx.row.image_identifier and not page["image_identifier"]:
            page = self._store.update(
                EntityKind.ANNOTATION_PAGE,
                page["id"],
                {"image_identifier": ctx.row.image_identifier},
            )
            logger.debug(
                f"Page {page['page_number']} image set to {page['image_identifier']}"
            )
        ctx.page = page

    def _resolve_label(self, ctx: RowContext) -> None:
        name = ctx.row.label_name
        if not name:
            return
        ctx.label = self._sources.find_label(ctx.page["id"], name)
        if ctx.label is None:
            ctx.results.warnings.append(
                f'Row {ctx.row_number}: Label "{name}" not found, '
                "proceeding without label link."
            )

    def _resolve_sign(self, ctx: RowContext) -> None:
        ctx.sign = self._upsert(
            ctx,
            EntityKind.SIGN,
            {"sign_code": ctx.row.sign, "language": ctx.language},
        )

    def _resolve_sign_function(self, ctx: RowContext) -> None:
        sign = ctx.sign
        function_name = ctx.row.function or ""
        ctx.sign_function = self._upsert(
            ctx,
            EntityKind.SIGN_FUNCTION,
            {"sign_id": sign["id"], "function_name": function_name},
            {
                "sign_function_code": f"{sign['sign_code']}_{function_name}",
                "language": sign["language"],
            },
        )

    def _resolve_sign_interpretation(self, ctx: RowContext) -> None:
        label_id = ctx.label.id if ctx.label else None
        phone = ctx.row.phone or ""
        key = {
            "annotation_page_id": ctx.page["id"],
            "label_id": label_id,
            "sign_function_id": ctx.sign_function["id"],
            "line_number": ctx.row.line_number,
            "phone": phone,
        }
        ctx.sign_interpretation = self._upsert(
            ctx,
            EntityKind.SIGN_INTERPRETATION,
            key,
            {
                "code": sign_interpretation_code(
                    key["annotation_page_id"],
                    label_id,
                    key["sign_function_id"],
                    key["line_number"],
                    phone,
                ),
                "note": ctx.row.note,
                "language": ctx.language,
            },
        )

    def _resolve_grammar_terms(self, ctx: RowContext) -> None:
        for vocabulary, name in ctx.row.grammar_names().items():
            term = self._term(ctx, vocabulary, name)
            if term is not None:
                ref_field = GRAMMAR_CATEGORIES[vocabulary][1]
                ctx.grammar_refs[ref_field] = term["id"]

    def _resolve_word_unit(self, ctx: RowContext) -> None:
        identifier = f"{ctx.source.source_identifier}_{ctx.row.word_unit}"
        word_unit, created = resolve(
            self._store,
            EntityKind.WORD_UNIT,
            {"original_word_unit_identifier": identifier},
            {
                "source_id": ctx.source.id,
                "word_meaning_id": ctx.word_meaning["id"],
                "realized_form": ctx.row.realized_form,
                "word_sequence": ctx.word_sequence,
                "language": ctx.language,
                **ctx.grammar_refs,
            },
        )
        if created:
            ctx.results.record_created(EntityKind.WORD_UNIT, word_unit["id"])
        if self._store.add_page_ref(word_unit["id"], ctx.page["id"]):
            logger.debug(
                f"Word unit {identifier} now on page {ctx.page['page_number']}"
            )
        ctx.word_unit = word_unit

    def _resolve_word_map(self, ctx: RowContext) -> None:
        ctx.word_map = self._upsert(
            ctx,
            EntityKind.WORD_MAP,
            {
                "sign_interpretation_id": ctx.sign_interpretation["id"],
                "word_unit_id": ctx.word_unit["id"],
            },
            {"sign_sequence": ctx.sign_sequence},
        )

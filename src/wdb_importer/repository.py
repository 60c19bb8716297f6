"""Sources and labels: provisioned outside the importer, looked up by it."""

from __future__ import annotations

import logging

from wdb_importer.exceptions import EntityNotFoundError, ValidationError
from wdb_importer.models import EntityKind, LabelModel, SourceModel
from wdb_importer.store import EntityStore
from wdb_importer.upsert import resolve

logger = logging.getLogger(__name__)


def _source_model(row: dict) -> SourceModel:
    return SourceModel(
        id=row["id"],
        source_identifier=row["source_identifier"],
        displayname=row["displayname"],
    )


def _label_model(row: dict) -> LabelModel:
    return LabelModel(
        id=row["id"],
        annotation_page_id=row["annotation_page_id"],
        label_name=row["label_name"],
    )


class SourceRepository:
    """Read access to sources and labels, plus out-of-band provisioning."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    def find_by_identifier(self, source_identifier: str) -> SourceModel | None:
        row = self._store.find(
            EntityKind.SOURCE, {"source_identifier": source_identifier}
        )
        return _source_model(row) if row else None

    def find_label(
        self, annotation_page_id: int, label_name: str
    ) -> LabelModel | None:
        row = self._store.find(
            EntityKind.LABEL,
            {"annotation_page_id": annotation_page_id, "label_name": label_name},
        )
        return _label_model(row) if row else None

    def list_sources(self) -> list[SourceModel]:
        return [
            _source_model(r)
            for r in self._store.query(EntityKind.SOURCE)
            .sort("source_identifier")
            .execute()
        ]

    def create_source(
        self, source_identifier: str, displayname: str | None = None
    ) -> SourceModel:
        """Provision a source document.

        Raises:
            ValidationError: If the identifier is blank.
            ConflictError: If the identifier is already taken.
        """
        if not source_identifier or not source_identifier.strip():
            raise ValidationError("Source identifier must not be empty")
        row = self._store.create(
            EntityKind.SOURCE,
            {
                "source_identifier": source_identifier.strip(),
                "displayname": displayname,
            },
        )
        logger.info(f"Created source {row['source_identifier']} ({row['id']})")
        return _source_model(row)

    def create_label(
        self, source_identifier: str, page_number: int, label_name: str
    ) -> LabelModel:
        """Provision a label region on a page, creating the page if needed.

        Raises:
            EntityNotFoundError: If the source does not exist.
            ConflictError: If the page already has this label.
        """
        source = self.find_by_identifier(source_identifier)
        if source is None:
            raise EntityNotFoundError(f"Source not found: {source_identifier}")
        if page_number < 1:
            raise ValidationError(f"Invalid page number: {page_number}")
        if not label_name or not label_name.strip():
            raise ValidationError("Label name must not be empty")
        page, _created = resolve(
            self._store,
            EntityKind.ANNOTATION_PAGE,
            {"source_id": source.id, "page_number": page_number},
            {"page_name": f"p. {page_number}"},
        )
        row = self._store.create(
            EntityKind.LABEL,
            {"annotation_page_id": page["id"], "label_name": label_name.strip()},
        )
        return _label_model(row)

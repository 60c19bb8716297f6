"""Natural-key find-or-create for every entity kind."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from wdb_importer.exceptions import ConflictError
from wdb_importer.models import EntityKind
from wdb_importer.store import EntityStore

logger = logging.getLogger(__name__)


def resolve(
    store: EntityStore,
    kind: EntityKind | str,
    natural_key: Mapping[str, Any],
    values: Mapping[str, Any] | None = None,
) -> tuple[dict[str, Any], bool]:
    """Find the entity matching ``natural_key`` or create it.

    Args:
        store: The entity store.
        kind: Entity kind to resolve.
        natural_key: Field -> value pairs that identify the entity. A
            ``None`` value matches a NULL field.
        values: Extra fields written only when the entity is created.

    Returns:
        ``(entity, created)``. ``created`` is True only when this call
        inserted the entity.

    Raises:
        ConflictError: If creation hit a uniqueness violation and the
            entity still cannot be found afterwards.
    """
    existing = store.find(kind, natural_key)
    if existing is not None:
        return existing, False

    fields = {**natural_key, **(values or {})}
    try:
        entity = store.create(kind, fields)
    except ConflictError:
        logger.debug(
            f"Conflict creating {EntityKind(kind).value} {dict(natural_key)!r}, "
            "retrying lookup"
        )
        existing = store.find(kind, natural_key)
        if existing is None:
            raise
        return existing, False

    logger.debug(f"Created {EntityKind(kind).value} {entity['id']}")
    return entity, True

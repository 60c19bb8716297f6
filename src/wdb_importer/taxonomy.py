"""Taxonomy term lookup and lazy creation."""

from __future__ import annotations

from typing import Any

from wdb_importer.models import EntityKind
from wdb_importer.store import EntityStore
from wdb_importer.upsert import resolve


def resolve_term(
    store: EntityStore,
    vocabulary: str,
    name: str | None,
    language: str,
) -> tuple[dict[str, Any] | None, bool]:
    """Resolve a term by ``(vocabulary, name)``, creating it when missing.

    A term of another language with the same name is reused. Blank names
    resolve to ``(None, False)``.
    """
    if name is None or not name.strip():
        return None, False
    return resolve(
        store,
        EntityKind.TAXONOMY_TERM,
        {"vocabulary": vocabulary, "name": name.strip()},
        {"language": language},
    )

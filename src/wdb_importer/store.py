"""EntityStore: generic create/load/query/delete over the importer schema."""

from __future__ import annotations

import functools
import logging
import sqlite3
from collections.abc import Callable, Generator, Iterable, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from wdb_importer import db as _db
from wdb_importer.exceptions import (
    ConflictError,
    DatabaseError,
    EntityNotFoundError,
    ValidationError,
)
from wdb_importer.models import EntityKind

logger = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])

_TABLES: dict[EntityKind, str] = {
    EntityKind.SOURCE: "sources",
    EntityKind.TAXONOMY_TERM: "taxonomy_terms",
    EntityKind.SIGN: "signs",
    EntityKind.SIGN_FUNCTION: "sign_functions",
    EntityKind.WORD: "words",
    EntityKind.WORD_MEANING: "word_meanings",
    EntityKind.ANNOTATION_PAGE: "annotation_pages",
    EntityKind.LABEL: "labels",
    EntityKind.SIGN_INTERPRETATION: "sign_interpretations",
    EntityKind.WORD_UNIT: "word_units",
    EntityKind.WORD_MAP: "word_maps",
    EntityKind.IMPORT_LOG: "import_logs",
}

# Fields fixed at creation time
_PROTECTED_FIELDS: dict[EntityKind, frozenset[str]] = {
    EntityKind.WORD_UNIT: frozenset({
        "source_id",
        "word_meaning_id",
        "word_sequence",
        "language",
        "original_word_unit_identifier",
    }),
}

_OPERATORS = frozenset({"=", "IN"})


def _kind(kind: EntityKind | str) -> EntityKind:
    try:
        return EntityKind(kind)
    except ValueError:
        raise DatabaseError(f"Unknown entity kind: {kind!r}") from None


def _modifies_db(method: _F) -> _F:
    """Decorator: wraps mutation methods in a transaction (unless in batch)."""

    @functools.wraps(method)
    def wrapper(self: EntityStore, *args: Any, **kwargs: Any) -> Any:
        if self._in_batch:
            return method(self, *args, **kwargs)
        with self._conn:
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class Query:
    """Query builder over one entity kind.

    Supports equality and IN conditions, sorting and row ranges::

        store.query("word").condition("basic_form", "foo").range(0, 1).execute()
    """

    def __init__(self, store: EntityStore, kind: EntityKind | str) -> None:
        self._store = store
        self._kind = _kind(kind)
        self._conditions: list[tuple[str, Any, str]] = []
        self._sort: list[tuple[str, str]] = []
        self._range: tuple[int, int] | None = None

    def condition(self, field: str, value: Any, operator: str = "=") -> Query:
        operator = operator.upper()
        if operator not in _OPERATORS:
            raise ValidationError(f"Unsupported operator: {operator!r}")
        self._store._check_fields(self._kind, [field])
        self._conditions.append((field, value, operator))
        return self

    def sort(self, field: str, direction: str = "ASC") -> Query:
        direction = direction.upper()
        if direction not in ("ASC", "DESC"):
            raise ValidationError(f"Unsupported sort direction: {direction!r}")
        self._store._check_fields(self._kind, [field])
        self._sort.append((field, direction))
        return self

    def range(self, start: int, length: int) -> Query:
        self._range = (start, length)
        return self

    def _where(self) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for field, value, operator in self._conditions:
            if operator == "IN":
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                placeholders = ", ".join("?" * len(values))
                clauses.append(f"{field} IN ({placeholders})")
                params.extend(values)
            elif value is None:
                clauses.append(f"{field} IS NULL")
            else:
                clauses.append(f"{field} = ?")
                params.append(value)
        where = " AND ".join(clauses) if clauses else "1=1"
        return where, params

    def execute(self) -> list[dict[str, Any]]:
        where, params = self._where()
        table = _TABLES[self._kind]
        sql = f"SELECT * FROM {table} WHERE {where}"
        if self._sort:
            sql += " ORDER BY " + ", ".join(f"{f} {d}" for f, d in self._sort)
        if self._range is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([self._range[1], self._range[0]])
        rows = self._store._conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    def first(self) -> dict[str, Any] | None:
        if not self._sort:
            self.sort("id")
        self.range(0, 1)
        rows = self.execute()
        return rows[0] if rows else None

    def count(self) -> int:
        where, params = self._where()
        table = _TABLES[self._kind]
        row = self._store._conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE {where}", params
        ).fetchone()
        return row[0]


class EntityStore:
    """A shared entity store backed by one SQLite connection."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn = _db.connect(db_path)
        _db.check_schema_version(self._conn)
        _db.init_db(self._conn)
        self._in_batch = False
        self._batch_depth = 0
        self._columns: dict[EntityKind, frozenset[str]] = {}

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> EntityStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Batch context manager
    # ------------------------------------------------------------------

    @contextmanager
    def batch(self) -> Generator[None, None, None]:
        """Group multiple mutations into a single transaction."""
        self._batch_depth += 1
        if self._batch_depth == 1:
            self._in_batch = True
            self._conn.execute("BEGIN")
        try:
            yield
        except BaseException:
            if self._batch_depth == 1:
                self._conn.rollback()
                self._in_batch = False
            self._batch_depth -= 1
            raise
        else:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self._conn.commit()
                self._in_batch = False

    # ------------------------------------------------------------------
    # Schema helpers
    # ------------------------------------------------------------------

    def _check_fields(self, kind: EntityKind, fields: Iterable[str]) -> None:
        columns = self._columns.get(kind)
        if columns is None:
            rows = self._conn.execute(
                f"PRAGMA table_info({_TABLES[kind]})"
            ).fetchall()
            columns = frozenset(r["name"] for r in rows)
            self._columns[kind] = columns
        unknown = [f for f in fields if f not in columns]
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {kind.value}: {', '.join(sorted(unknown))}"
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, kind: EntityKind | str) -> Query:
        return Query(self, kind)

    def find(
        self, kind: EntityKind | str, filters: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """First entity (lowest id) whose fields equal all ``filters``."""
        query = self.query(kind)
        for field, value in filters.items():
            query.condition(field, value)
        return query.first()

    def find_all(
        self, kind: EntityKind | str, filters: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        query = self.query(kind)
        for field, value in filters.items():
            query.condition(field, value)
        return query.sort("id").execute()

    def load(self, kind: EntityKind | str, entity_id: int) -> dict[str, Any] | None:
        return self.find(kind, {"id": entity_id})

    def get(self, kind: EntityKind | str, entity_id: int) -> dict[str, Any]:
        entity = self.load(kind, entity_id)
        if entity is None:
            raise EntityNotFoundError(
                f"{_kind(kind).value} not found: {entity_id!r}"
            )
        return entity

    def count(
        self, kind: EntityKind | str, filters: Mapping[str, Any] | None = None
    ) -> int:
        query = self.query(kind)
        for field, value in (filters or {}).items():
            query.condition(field, value)
        return query.count()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @_modifies_db
    def create(
        self, kind: EntityKind | str, fields: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Insert a new entity and return it.

        Raises ConflictError when a uniqueness constraint is violated.
        Any other integrity failure propagates unchanged.
        """
        k = _kind(kind)
        names = [f for f in fields if f != "id"]
        self._check_fields(k, names)
        placeholders = ", ".join("?" * len(names))
        try:
            cur = self._conn.execute(
                f"INSERT INTO {_TABLES[k]} ({', '.join(names)}) "
                f"VALUES ({placeholders})",
                [fields[n] for n in names],
            )
        except sqlite3.IntegrityError as e:
            if _db.is_unique_violation(e):
                raise ConflictError(
                    f"{k.value} already exists: {dict(fields)!r}"
                ) from e
            raise
        entity = {**fields, "id": cur.lastrowid}
        row = self._conn.execute(
            f"SELECT * FROM {_TABLES[k]} WHERE id = ?", (cur.lastrowid,)
        ).fetchone()
        return dict(row) if row else entity

    @_modifies_db
    def update(
        self, kind: EntityKind | str, entity_id: int, fields: Mapping[str, Any]
    ) -> dict[str, Any]:
        k = _kind(kind)
        row = self.get(k, entity_id)
        protected = _PROTECTED_FIELDS.get(k, frozenset())
        changed = sorted(
            f for f in fields if f in protected and fields[f] != row.get(f)
        )
        if changed:
            raise ValidationError(
                f"Protected fields cannot be changed on {k.value}: "
                f"{', '.join(changed)}"
            )
        self._check_fields(k, fields)
        if fields:
            assignments = ", ".join(f"{f} = ?" for f in fields)
            self._conn.execute(
                f"UPDATE {_TABLES[k]} SET {assignments} WHERE id = ?",
                [*fields.values(), entity_id],
            )
        return self.get(k, entity_id)

    @_modifies_db
    def delete(self, kind: EntityKind | str, entity_id: int) -> bool:
        """Delete an entity by id. Returns False when it does not exist."""
        k = _kind(kind)
        cur = self._conn.execute(
            f"DELETE FROM {_TABLES[k]} WHERE id = ?", (entity_id,)
        )
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Word unit page references
    # ------------------------------------------------------------------

    def page_refs(self, word_unit_id: int) -> list[int]:
        """Annotation page ids referenced by a word unit, in append order."""
        rows = self._conn.execute(
            "SELECT annotation_page_id FROM word_unit_pages "
            "WHERE word_unit_id = ? ORDER BY delta ASC",
            (word_unit_id,),
        ).fetchall()
        return [r["annotation_page_id"] for r in rows]

    @_modifies_db
    def add_page_ref(self, word_unit_id: int, annotation_page_id: int) -> bool:
        """Append a page to a word unit's page set. False if already there."""
        cur = self._conn.execute(
            "INSERT OR IGNORE INTO word_unit_pages "
            "(word_unit_id, annotation_page_id, delta) "
            "SELECT ?, ?, COALESCE(MAX(delta) + 1, 0) FROM word_unit_pages "
            "WHERE word_unit_id = ?",
            (word_unit_id, annotation_page_id, word_unit_id),
        )
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Saved job state
    # ------------------------------------------------------------------

    @_modifies_db
    def save_job_state(self, job_id: str, state: dict) -> None:
        _db.save_job_state(self._conn, job_id, state)

    def load_job_state(self, job_id: str) -> dict | None:
        return _db.load_job_state(self._conn, job_id)

    @_modifies_db
    def delete_job_state(self, job_id: str) -> None:
        _db.delete_job_state(self._conn, job_id)

    def list_job_ids(self) -> list[str]:
        return _db.list_job_ids(self._conn)

"""Database connection, DDL, and low-level helpers for wdb-importer."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from wdb_importer.exceptions import DatabaseError

SCHEMA_VERSION = "1.0"

# ---------------------------------------------------------------------------
# DDL statements
# ---------------------------------------------------------------------------

_DDL = """
-- Meta table
CREATE TABLE IF NOT EXISTS meta (
    key TEXT NOT NULL,
    value TEXT,
    UNIQUE (key)
);

-- Provisioned out of band
CREATE TABLE IF NOT EXISTS sources (
    id INTEGER PRIMARY KEY,
    source_identifier TEXT NOT NULL,
    displayname TEXT,
    UNIQUE (source_identifier)
);

-- Taxonomy
CREATE TABLE IF NOT EXISTS taxonomy_terms (
    id INTEGER PRIMARY KEY,
    vocabulary TEXT NOT NULL,
    name TEXT NOT NULL,
    language TEXT NOT NULL,
    UNIQUE (vocabulary, name)
);
CREATE INDEX IF NOT EXISTS taxonomy_term_name_index ON taxonomy_terms (name);

-- Sign tables
CREATE TABLE IF NOT EXISTS signs (
    id INTEGER PRIMARY KEY,
    sign_code TEXT NOT NULL,
    language TEXT NOT NULL,
    UNIQUE (sign_code, language)
);

CREATE TABLE IF NOT EXISTS sign_functions (
    id INTEGER PRIMARY KEY,
    sign_id INTEGER NOT NULL REFERENCES signs (id),
    function_name TEXT NOT NULL DEFAULT '',
    sign_function_code TEXT,
    language TEXT NOT NULL,
    UNIQUE (sign_id, function_name)
);
CREATE INDEX IF NOT EXISTS sign_function_sign_index ON sign_functions (sign_id);

-- Word tables
CREATE TABLE IF NOT EXISTS words (
    id INTEGER PRIMARY KEY,
    word_code TEXT,
    basic_form TEXT NOT NULL,
    lexical_category_id INTEGER NOT NULL REFERENCES taxonomy_terms (id),
    language TEXT NOT NULL,
    UNIQUE (basic_form, lexical_category_id, language)
);
CREATE INDEX IF NOT EXISTS word_code_index ON words (word_code);

CREATE TABLE IF NOT EXISTS word_meanings (
    id INTEGER PRIMARY KEY,
    word_id INTEGER NOT NULL REFERENCES words (id),
    meaning_identifier INTEGER NOT NULL DEFAULT 0,
    word_meaning_code TEXT,
    explanation TEXT,
    language TEXT NOT NULL,
    UNIQUE (word_id, meaning_identifier, language)
);
CREATE INDEX IF NOT EXISTS word_meaning_word_index ON word_meanings (word_id);

-- Page and region tables
CREATE TABLE IF NOT EXISTS annotation_pages (
    id INTEGER PRIMARY KEY,
    source_id INTEGER NOT NULL REFERENCES sources (id),
    page_number INTEGER NOT NULL,
    page_name TEXT,
    image_identifier TEXT,
    UNIQUE (source_id, page_number)
);

CREATE TABLE IF NOT EXISTS labels (
    id INTEGER PRIMARY KEY,
    annotation_page_id INTEGER NOT NULL REFERENCES annotation_pages (id),
    label_name TEXT NOT NULL,
    UNIQUE (annotation_page_id, label_name)
);

CREATE TABLE IF NOT EXISTS sign_interpretations (
    id INTEGER PRIMARY KEY,
    code TEXT NOT NULL,
    annotation_page_id INTEGER NOT NULL REFERENCES annotation_pages (id),
    label_id INTEGER REFERENCES labels (id),
    sign_function_id INTEGER NOT NULL REFERENCES sign_functions (id),
    line_number INTEGER NOT NULL DEFAULT 0,
    phone TEXT NOT NULL DEFAULT '',
    note TEXT,
    language TEXT NOT NULL
);
-- label_id is nullable, so NULL is folded to 0 to keep the key unique
CREATE UNIQUE INDEX IF NOT EXISTS sign_interpretation_key_index
    ON sign_interpretations (
        annotation_page_id, IFNULL(label_id, 0), sign_function_id,
        line_number, phone
    );

-- Word unit tables
CREATE TABLE IF NOT EXISTS word_units (
    id INTEGER PRIMARY KEY,
    original_word_unit_identifier TEXT NOT NULL,
    source_id INTEGER NOT NULL REFERENCES sources (id),
    word_meaning_id INTEGER NOT NULL REFERENCES word_meanings (id),
    realized_form TEXT,
    word_sequence REAL NOT NULL DEFAULT 0,
    language TEXT NOT NULL,
    person_id INTEGER REFERENCES taxonomy_terms (id),
    gender_id INTEGER REFERENCES taxonomy_terms (id),
    number_id INTEGER REFERENCES taxonomy_terms (id),
    verbal_form_id INTEGER REFERENCES taxonomy_terms (id),
    aspect_id INTEGER REFERENCES taxonomy_terms (id),
    mood_id INTEGER REFERENCES taxonomy_terms (id),
    voice_id INTEGER REFERENCES taxonomy_terms (id),
    case_id INTEGER REFERENCES taxonomy_terms (id),
    UNIQUE (original_word_unit_identifier)
);

CREATE TABLE IF NOT EXISTS word_unit_pages (
    word_unit_id INTEGER NOT NULL REFERENCES word_units (id) ON DELETE CASCADE,
    annotation_page_id INTEGER NOT NULL REFERENCES annotation_pages (id) ON DELETE CASCADE,
    delta INTEGER NOT NULL,
    UNIQUE (word_unit_id, annotation_page_id)
);
CREATE INDEX IF NOT EXISTS word_unit_page_unit_index ON word_unit_pages (word_unit_id);

CREATE TABLE IF NOT EXISTS word_maps (
    id INTEGER PRIMARY KEY,
    sign_interpretation_id INTEGER NOT NULL REFERENCES sign_interpretations (id),
    word_unit_id INTEGER NOT NULL REFERENCES word_units (id),
    sign_sequence REAL NOT NULL,
    UNIQUE (sign_interpretation_id, word_unit_id)
);
CREATE INDEX IF NOT EXISTS word_map_unit_index ON word_maps (word_unit_id);

-- Import audit
CREATE TABLE IF NOT EXISTS import_logs (
    id INTEGER PRIMARY KEY,
    label TEXT NOT NULL,
    operator TEXT,
    created TEXT NOT NULL,
    status BOOLEAN CHECK( status IN (0, 1) ) NOT NULL,
    summary TEXT,
    created_entities TEXT NOT NULL DEFAULT '[]',
    source_filename TEXT,
    language TEXT
);

CREATE TABLE IF NOT EXISTS import_jobs (
    job_id TEXT PRIMARY KEY,
    state TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
"""


def connect(db_path: str | Path = ":memory:") -> sqlite3.Connection:
    """Open a database connection with importer PRAGMA settings."""
    db_path_str = str(db_path)
    conn = sqlite3.connect(db_path_str)
    conn.execute("PRAGMA foreign_keys = ON")
    if db_path_str != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize all tables if they don't exist. Set schema version."""
    conn.executescript(_DDL)
    conn.execute(
        "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
        (SCHEMA_VERSION,),
    )
    conn.execute(
        "INSERT OR IGNORE INTO meta (key, value) "
        "VALUES ('created_at', strftime('%Y-%m-%dT%H:%M:%f', 'now'))",
    )
    conn.commit()


def check_schema_version(conn: sqlite3.Connection) -> None:
    """Verify the database schema version is compatible."""
    try:
        row = conn.execute(
            "SELECT value FROM meta WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        # meta table doesn't exist - uninitialized DB
        return
    if row is None:
        return
    version = row[0]
    if version != SCHEMA_VERSION:
        raise DatabaseError(
            f"Incompatible schema version: {version} "
            f"(expected {SCHEMA_VERSION})"
        )


def is_unique_violation(error: sqlite3.IntegrityError) -> bool:
    """Tell a uniqueness violation apart from FK/NOT NULL/CHECK failures."""
    code = getattr(error, "sqlite_errorcode", None)
    if code is not None:
        return code in _UNIQUE_ERRORCODES
    return "UNIQUE constraint failed" in str(error)


# SQLITE_CONSTRAINT_UNIQUE / SQLITE_CONSTRAINT_PRIMARYKEY extended codes
_UNIQUE_ERRORCODES = frozenset({
    getattr(sqlite3, "SQLITE_CONSTRAINT_UNIQUE", 2067),
    getattr(sqlite3, "SQLITE_CONSTRAINT_PRIMARYKEY", 1555),
})


# ---------------------------------------------------------------------------
# Job state persistence
# ---------------------------------------------------------------------------

def save_job_state(conn: sqlite3.Connection, job_id: str, state: dict) -> None:
    """Insert or replace the serialized state of a running job."""
    conn.execute(
        "INSERT INTO import_jobs (job_id, state) VALUES (?, ?) "
        "ON CONFLICT (job_id) DO UPDATE SET state = excluded.state, "
        "updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')",
        (job_id, json.dumps(state)),
    )


def load_job_state(conn: sqlite3.Connection, job_id: str) -> dict | None:
    """Get the serialized state of a saved job, or None."""
    row = conn.execute(
        "SELECT state FROM import_jobs WHERE job_id = ?",
        (job_id,),
    ).fetchone()
    return json.loads(row["state"]) if row else None


def delete_job_state(conn: sqlite3.Connection, job_id: str) -> None:
    """Forget a saved job."""
    conn.execute("DELETE FROM import_jobs WHERE job_id = ?", (job_id,))


def list_job_ids(conn: sqlite3.Connection) -> list[str]:
    """Get the ids of all saved (unfinished) jobs, oldest first."""
    rows = conn.execute(
        "SELECT job_id FROM import_jobs ORDER BY updated_at ASC"
    ).fetchall()
    return [r["job_id"] for r in rows]

"""Byte-offset addressable reader for delimited import files."""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from wdb_importer.exceptions import DataImportError

logger = logging.getLogger(__name__)

_BOM = "\ufeff"


@dataclass(frozen=True, slots=True)
class Record:
    """One logical record of the file and where it sits."""

    cells: list[str]
    start: int
    end: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class Header:
    """The parsed header line."""

    columns: tuple[str, ...]
    delimiter: str
    data_offset: int


def detect_delimiter(header_line: str) -> str:
    """Tab when the header contains one, otherwise comma."""
    return "\t" if "\t" in header_line else ","


def _open(path: str | Path):
    try:
        return open(path, "rb")
    except OSError as e:
        raise DataImportError(f"Cannot open import file {path}: {e}") from e


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Invalid UTF-8 in import file, replacing bad bytes")
        return raw.decode("utf-8", errors="replace")


def _still_quoted(line: str, delimiters: str, quoted: bool) -> bool:
    """Whether a quoted field is still open at the end of ``line``.

    A quote opens a field only at the start of that field; anywhere else it
    is a literal character. Inside a quoted field ``""`` is an escaped quote.
    """
    field_start = not quoted
    i = 0
    while i < len(line):
        ch = line[i]
        if quoted:
            if ch == '"':
                if line[i + 1:i + 2] == '"':
                    i += 2
                    continue
                quoted = False
        elif ch == '"' and field_start:
            quoted = True
        field_start = not quoted and ch in delimiters
        i += 1
    return quoted


def _read_record(f, delimiters: str) -> tuple[str | None, int]:
    """Read one logical record. Returns (text, bytes consumed)."""
    chunks: list[bytes] = []
    consumed = 0
    quoted = False
    while True:
        line = f.readline()
        if not line:
            break
        chunks.append(line)
        consumed += len(line)
        quoted = _still_quoted(
            line.decode("utf-8", errors="replace"), delimiters, quoted
        )
        if not quoted:
            break
    if not chunks:
        return None, 0
    return _decode(b"".join(chunks)), consumed


def _split(text: str, delimiter: str) -> list[str]:
    """Split one record into cells.

    Raises:
        csv.Error: If the record cannot be parsed, e.g. an oversized field.
    """
    reader = csv.reader(
        io.StringIO(text.rstrip("\r\n")), delimiter=delimiter, strict=False
    )
    cells: list[str] = []
    for row in reader:
        cells.extend(row)
    return cells


def iter_records(
    path: str | Path, offset: int, delimiter: str
) -> Iterator[Record]:
    """Yield the non-blank records of ``path`` starting at byte ``offset``.

    A record that cannot be parsed is still yielded, with no cells and
    ``error`` set, so the caller can count it and move on.
    """
    with _open(path) as f:
        f.seek(offset)
        position = offset
        while True:
            text, consumed = _read_record(f, delimiter)
            if text is None:
                return
            start = position
            position += consumed
            if not text.strip():
                continue
            try:
                cells = _split(text, delimiter)
            except csv.Error as e:
                logger.debug(f"Unparsable record at byte {start}: {e}")
                yield Record(cells=[], start=start, end=position, error=str(e))
                continue
            yield Record(cells=cells, start=start, end=position)


def read_header(path: str | Path, delimiter: str | None = None) -> Header:
    """Parse the header once, from the first non-blank line of the file.

    Raises:
        DataImportError: If the file cannot be read or has no header.
    """
    with _open(path) as f:
        position = 0
        while True:
            text, consumed = _read_record(f, delimiter or "\t,")
            if text is None:
                raise DataImportError(f"Import file is empty: {path}")
            position += consumed
            if position == consumed and text.startswith(_BOM):
                text = text[len(_BOM):]
            if text.strip():
                break

    delim = delimiter or detect_delimiter(text)
    try:
        columns = tuple(c.strip() for c in _split(text, delim))
    except csv.Error as e:
        raise DataImportError(f"Unreadable header in {path}: {e}") from e
    if not any(columns):
        raise DataImportError(f"Import file has no header: {path}")
    return Header(columns=columns, delimiter=delim, data_offset=position)


def estimate_rows(path: str | Path) -> int:
    """Count non-blank lines, minus the header."""
    count = 0
    with _open(path) as f:
        for line in f:
            if line.strip():
                count += 1
    return max(count - 1, 0)

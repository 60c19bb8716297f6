"""
Chunked, resumable import jobs.

A job walks its file in bounded chunks. Everything needed to pick the job
up again (byte offset, cached header, sequencing state and counters) lives
in a JSON-safe ``JobState`` that the caller persists between chunks.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from wdb_importer import sequencing
from wdb_importer.exceptions import DataImportError
from wdb_importer.models import ImportResults, ImportRow
from wdb_importer.reader import estimate_rows, iter_records, read_header
from wdb_importer.resolvers import EntityGraphBuilder
from wdb_importer.sequencing import SequencingState
from wdb_importer.store import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50


@dataclass
class JobState:
    """Resumable state of one import job."""
    job_id: str
    file_path: str
    source_filename: str
    language: str
    operator: str | None
    delimiter: str
    header: list[str]
    offset: int
    sequencing: SequencingState = field(default_factory=SequencingState)
    progress: int = 0
    total: int = 0
    results: ImportResults = field(default_factory=ImportResults)
    finished: bool = False

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(self.progress / self.total, 1.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "file_path": self.file_path,
            "source_filename": self.source_filename,
            "language": self.language,
            "operator": self.operator,
            "delimiter": self.delimiter,
            "header": list(self.header),
            "offset": self.offset,
            "sequencing": self.sequencing.to_dict(),
            "progress": self.progress,
            "total": self.total,
            "results": self.results.to_dict(),
            "finished": self.finished,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobState:
        return cls(
            job_id=data["job_id"],
            file_path=data["file_path"],
            source_filename=data.get("source_filename") or Path(data["file_path"]).name,
            language=data["language"],
            operator=data.get("operator"),
            delimiter=data["delimiter"],
            header=list(data["header"]),
            offset=int(data["offset"]),
            sequencing=SequencingState.from_dict(data.get("sequencing", {})),
            progress=int(data.get("progress", 0)),
            total=int(data.get("total", 0)),
            results=ImportResults.from_dict(data.get("results", {})),
            finished=bool(data.get("finished", False)),
        )

    def copy(self) -> JobState:
        return JobState.from_dict(self.to_dict())


def start_job(
    path: str | Path,
    language: str,
    *,
    operator: str | None,
    delimiter: str | None = None,
    job_id: str | None = None,
) -> JobState:
    """Open a new job on ``path``: parse the header and estimate the rows.

    Raises:
        DataImportError: If the file cannot be read or has no header.
    """
    path = Path(path)
    if not path.is_file():
        raise DataImportError(f"File not found: {path}")
    header = read_header(path, delimiter)
    state = JobState(
        job_id=job_id or uuid.uuid4().hex,
        file_path=str(path),
        source_filename=path.name,
        language=language,
        operator=operator,
        delimiter=header.delimiter,
        header=list(header.columns),
        offset=header.data_offset,
        total=estimate_rows(path),
    )
    logger.info(
        f"Started job {state.job_id} on {state.source_filename} "
        f"(~{state.total} rows, delimiter {state.delimiter!r})"
    )
    return state


def process_chunk(
    store: EntityStore,
    job_state: JobState,
    limit: int = DEFAULT_CHUNK_SIZE,
    builder: EntityGraphBuilder | None = None,
) -> JobState:
    """Process up to ``limit`` rows and return the advanced state.

    ``job_state`` itself is left untouched.
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")
    state = job_state.copy()
    if state.finished:
        return state
    builder = builder or EntityGraphBuilder(store)
    results = state.results

    done = 0
    exhausted = True
    with closing(iter_records(state.file_path, state.offset, state.delimiter)) as records:
        for record in records:
            if done >= limit:
                state.offset = record.start
                exhausted = False
                break
            done += 1
            row_number = state.progress + 1
            state.progress += 1
            state.offset = record.end

            if record.error is not None:
                results.failed += 1
                results.errors.append(
                    f"Skipped row {row_number} due to unreadable data: "
                    f"{record.error}"
                )
                continue

            if len(record.cells) != len(state.header):
                results.failed += 1
                results.errors.append(
                    f"Skipped row {row_number} due to column count mismatch."
                )
                continue

            try:
                row = ImportRow.from_mapping(dict(zip(state.header, record.cells)))
            except Exception as e:
                logger.exception(f"Cannot parse row {row_number}")
                results.failed += 1
                results.errors.append(
                    f"Skipped row {row_number} due to unreadable data: {e}"
                )
                continue

            seq_state, sign_sequence = sequencing.begin_row(
                state.sequencing, row.word_unit
            )
            success = builder.process_row(
                row,
                state.language,
                row.word_sequence,
                sign_sequence,
                results,
                row_number=row_number,
            )
            state.sequencing = sequencing.end_row(seq_state, row.word_unit, success)

    state.finished = exhausted
    logger.debug(
        f"Job {state.job_id}: {done} row(s) this chunk, "
        f"{state.progress}/{state.total} overall"
    )
    return state


def save_job(store: EntityStore, job_state: JobState) -> None:
    """Persist a job's state so it can be resumed later."""
    store.save_job_state(job_state.job_id, job_state.to_dict())


def load_job(store: EntityStore, job_id: str) -> JobState | None:
    data = store.load_job_state(job_id)
    return JobState.from_dict(data) if data is not None else None


def run_job(
    store: EntityStore,
    job_state: JobState,
    limit: int = DEFAULT_CHUNK_SIZE,
    progress_callback=None,
) -> JobState:
    """Drive a job to the end of its file, saving state after each chunk.

    Args:
        store: The entity store.
        job_state: State to start from (new or resumed).
        limit: Rows per chunk.
        progress_callback: Optional callable receiving each new state.

    Returns:
        The final, finished state.
    """
    state = job_state
    while not state.finished:
        state = process_chunk(store, state, limit)
        save_job(store, state)
        logger.info(
            f"Job {state.job_id}: {state.progress}/{state.total} rows "
            f"({state.fraction:.0%})"
        )
        if progress_callback is not None:
            progress_callback(state)
    return state

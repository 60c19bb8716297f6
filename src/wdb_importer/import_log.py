"""
Import audit log and compensating rollback.

A finished job leaves one import log holding the ordered list of every
entity it created. Rolling the log back deletes those entities newest
first, then marks the log as rolled back and empties its list so the
rollback cannot run twice.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from wdb_importer.exceptions import EntityNotFoundError
from wdb_importer.models import (
    CreatedEntity,
    EntityKind,
    ImportLogModel,
    RollbackSummary,
)
from wdb_importer.scheduler import JobState
from wdb_importer.store import EntityStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _row_to_log(row: dict[str, Any]) -> ImportLogModel:
    entries = json.loads(row["created_entities"] or "[]")
    return ImportLogModel(
        id=row["id"],
        label=row["label"],
        operator=row["operator"],
        created=row["created"],
        status=bool(row["status"]),
        summary=row["summary"],
        created_entities=tuple(CreatedEntity.from_dict(e) for e in entries),
        source_filename=row["source_filename"],
        language=row["language"],
    )


def finish_job(
    store: EntityStore,
    job_state: JobState,
    *,
    clock: Clock | None = None,
) -> ImportLogModel | None:
    """Write the import log for a job and forget its saved state.

    A job that has not reached the end of its file is still logged, with
    ``(incomplete)`` added to its label, so its creations can be rolled back.
    A job that neither created an entity nor failed a row leaves no log and
    returns None.
    """
    now = (clock or datetime.now)()
    results = job_state.results

    for error in results.errors:
        logger.warning(error)
    for warning in results.warnings:
        logger.warning(warning)

    if not results.created_entities and not results.failed:
        store.delete_job_state(job_state.job_id)
        logger.info(
            f"Job {job_state.job_id} created nothing and had no failures, "
            f"no import log written"
        )
        return None

    label = f"Import on {now:%Y-%m-%d %H:%M}"
    if not job_state.finished:
        label += " (incomplete)"

    with store.batch():
        row = store.create(
            EntityKind.IMPORT_LOG,
            {
                "label": label,
                "operator": job_state.operator,
                "created": now.isoformat(timespec="seconds"),
                "status": results.failed == 0,
                "summary": results.summary(),
                "created_entities": json.dumps(
                    [c.to_dict() for c in results.created_entities]
                ),
                "source_filename": job_state.source_filename,
                "language": job_state.language,
            },
        )
        store.delete_job_state(job_state.job_id)

    log = _row_to_log(row)
    logger.info(
        f"Import log {log.id} written for job {job_state.job_id}: {log.summary}"
    )
    return log


def get_log(store: EntityStore, log_id: int) -> ImportLogModel:
    """Load one import log.

    Raises:
        EntityNotFoundError: If no log has this id.
    """
    row = store.load(EntityKind.IMPORT_LOG, log_id)
    if row is None:
        raise EntityNotFoundError(f"Import log not found: {log_id}")
    return _row_to_log(row)


def list_logs(store: EntityStore, limit: int | None = None) -> list[ImportLogModel]:
    """Import logs, newest first."""
    query = store.query(EntityKind.IMPORT_LOG).sort("id", "DESC")
    if limit is not None:
        query.range(0, limit)
    return [_row_to_log(r) for r in query.execute()]


def delete_log(store: EntityStore, log_id: int) -> None:
    """Remove an import log record. Its entities are left alone."""
    if not store.delete(EntityKind.IMPORT_LOG, log_id):
        raise EntityNotFoundError(f"Import log not found: {log_id}")


def rollback(
    store: EntityStore,
    log: ImportLogModel | int,
    *,
    clock: Clock | None = None,
) -> RollbackSummary:
    """Delete every entity an import created, newest first.

    Deletion failures are counted and logged but never stop the rollback.
    Afterwards the log is marked rolled back and its creation list cleared.
    """
    log_id = log if isinstance(log, int) else log.id
    # Reload so a stale model cannot roll back twice
    current = get_log(store, log_id)
    summary = RollbackSummary()
    if not current.created_entities:
        logger.info(f"Import log {log_id} has nothing to roll back")
        return summary

    for entry in reversed(current.created_entities):
        try:
            deleted = store.delete(entry.kind, entry.id)
        except Exception as e:
            message = f"Failed to delete {entry.kind} {entry.id}: {e}"
            logger.error(message)
            summary.errors.append(message)
            summary.tally(entry.kind, "failed")
            continue
        if deleted:
            logger.debug(f"Deleted {entry.kind} {entry.id}")
            summary.tally(entry.kind, "deleted")
        else:
            summary.tally(entry.kind, "not_found")

    now = (clock or datetime.now)()
    store.update(
        EntityKind.IMPORT_LOG,
        log_id,
        {
            "status": False,
            "summary": (
                f"ROLLED BACK on {now:%Y-%m-%d %H:%M}. "
                f"({summary.deleted} entities deleted)"
            ),
            "created_entities": "[]",
        },
    )
    logger.info(
        f"Rolled back import log {log_id}: {summary.deleted} deleted, "
        f"{summary.not_found} not found, {summary.failed} failed"
    )
    return summary

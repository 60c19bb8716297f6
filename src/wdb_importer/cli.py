"""
Command-line interface for importing annotation files.
"""
from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from pathlib import Path

from wdb_importer import __version__
from wdb_importer.config import ImporterSettings, load_settings
from wdb_importer.exceptions import WdbImporterError
from wdb_importer.import_log import finish_job, get_log, list_logs, rollback
from wdb_importer.models import ImportLogModel
from wdb_importer.repository import SourceRepository
from wdb_importer.scheduler import JobState, load_job, run_job, start_job
from wdb_importer.store import EntityStore

_MAX_MESSAGES = 20


def main(argv: list[str] | None = None) -> int:
    """Main entry point for wdb-import CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = _settings(args)
        return args.func(args, settings)
    except WdbImporterError as e:
        print(f"\n  [ERROR] {e}")
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="wdb-import",
        description="Import linguistic annotation files and roll imports back",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="YAML settings file",
    )
    parser.add_argument(
        "--database", "-d",
        type=str,
        help="SQLite database file (overrides settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase log output (-v info, -vv debug)",
    )

    subparsers = parser.add_subparsers(title="commands", dest="command")

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Create the database schema",
    )
    init_parser.set_defaults(func=cmd_init)

    # add-source command
    source_parser = subparsers.add_parser(
        "add-source",
        help="Register a source document",
    )
    source_parser.add_argument("identifier", help="Source identifier")
    source_parser.add_argument("--name", help="Display name")
    source_parser.set_defaults(func=cmd_add_source)

    # add-label command
    label_parser = subparsers.add_parser(
        "add-label",
        help="Register a label region on a source page",
    )
    label_parser.add_argument("source", help="Source identifier")
    label_parser.add_argument("page", type=int, help="Page number")
    label_parser.add_argument("label", help="Label name, e.g. 1-3")
    label_parser.set_defaults(func=cmd_add_label)

    # import command
    import_parser = subparsers.add_parser(
        "import",
        help="Import a TSV/CSV annotation file",
    )
    import_parser.add_argument(
        "file",
        type=Path,
        help="Delimited file with a header row",
    )
    import_parser.add_argument("--language", "-l", help="Language code")
    import_parser.add_argument("--operator", help="Operator recorded in the log")
    _add_chunk_size(import_parser)
    import_parser.add_argument(
        "--delimiter",
        help="Column delimiter ('tab' or one character; default: detect)",
    )
    import_parser.set_defaults(func=cmd_import)

    # resume command
    resume_parser = subparsers.add_parser(
        "resume",
        help="Continue an interrupted import (lists saved jobs without an id)",
    )
    resume_parser.add_argument("job_id", nargs="?", help="Saved job id")
    _add_chunk_size(resume_parser)
    resume_parser.set_defaults(func=cmd_resume)

    # finish command
    finish_parser = subparsers.add_parser(
        "finish",
        help="Write the import log for a saved job without resuming it",
    )
    finish_parser.add_argument("job_id", help="Saved job id")
    finish_parser.set_defaults(func=cmd_finish)

    # history command
    history_parser = subparsers.add_parser(
        "history",
        help="List import logs",
    )
    history_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of logs to show (default: 10)",
    )
    history_parser.set_defaults(func=cmd_history)

    # show command
    show_parser = subparsers.add_parser(
        "show",
        help="Show details of an import log",
    )
    show_parser.add_argument("log_id", type=int, help="Import log ID")
    show_parser.set_defaults(func=cmd_show)

    # rollback command
    rollback_parser = subparsers.add_parser(
        "rollback",
        help="Delete every entity an import created",
    )
    rollback_parser.add_argument("log_id", type=int, help="Import log ID")
    rollback_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip confirmation prompt",
    )
    rollback_parser.set_defaults(func=cmd_rollback)

    return parser


def _add_chunk_size(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--chunk-size",
        type=int,
        help="Rows per chunk (default from settings)",
    )


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _settings(args: argparse.Namespace) -> ImporterSettings:
    settings = load_settings(args.config)
    delimiter = getattr(args, "delimiter", None)
    if delimiter == "tab":
        delimiter = "\t"
    return settings.override(
        database=args.database,
        language=getattr(args, "language", None),
        operator=getattr(args, "operator", None),
        chunk_size=getattr(args, "chunk_size", None),
        delimiter=delimiter,
    )


def cmd_init(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle init command."""
    with EntityStore(settings.database):
        pass
    print(f"Database ready: {settings.database}")
    return 0


def cmd_add_source(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle add-source command."""
    with EntityStore(settings.database) as store:
        source = SourceRepository(store).create_source(args.identifier, args.name)
    print(f"Source {source.source_identifier} created (id {source.id}).")
    return 0


def cmd_add_label(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle add-label command."""
    with EntityStore(settings.database) as store:
        label = SourceRepository(store).create_label(
            args.source, args.page, args.label
        )
    print(
        f"Label {label.label_name} created on page {args.page} "
        f"of {args.source} (id {label.id})."
    )
    return 0


def cmd_import(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle import command."""
    print(f"\nLoading {args.file}...")
    state = start_job(
        args.file,
        settings.language,
        operator=settings.operator,
        delimiter=settings.delimiter,
    )
    print(f"  Job:      {state.job_id}")
    print(f"  Language: {state.language}")
    print(f"  Rows:     ~{state.total}")

    with EntityStore(settings.database) as store:
        return _run_and_finish(store, state, settings.chunk_size)


def cmd_resume(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle resume command."""
    with EntityStore(settings.database) as store:
        if args.job_id is None:
            return _print_saved_jobs(store)
        state = load_job(store, args.job_id)
        if state is None:
            print(f"Job {args.job_id} not found.")
            return 1
        print(f"\nResuming job {state.job_id} at row {state.progress + 1}...")
        return _run_and_finish(store, state, settings.chunk_size)


def cmd_finish(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle finish command."""
    with EntityStore(settings.database) as store:
        state = load_job(store, args.job_id)
        if state is None:
            print(f"Job {args.job_id} not found.")
            return 1
        log = finish_job(store, state)
    if log is None:
        print(f"\nJob {args.job_id} created nothing; no import log written.")
        return 0
    print(f"\nImport log {log.id} written: {log.label}")
    print(f"  {log.summary}")
    print(f"\nTo rollback: wdb-import rollback {log.id}")
    return 0


def cmd_history(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle history command."""
    with EntityStore(settings.database) as store:
        logs = list_logs(store, limit=args.limit)

    if not logs:
        print("No imports found.")
        return 0

    print(f"\nRecent imports (showing {len(logs)}):\n")
    print(f"{'ID':<6} {'Label':<36} {'Entities':<9} {'Status':<12} {'File'}")
    print("-" * 80)

    for log in logs:
        label = (log.label[:33] + "...") if len(log.label) > 36 else log.label
        print(
            f"{log.id:<6} {label:<36} {len(log.created_entities):<9} "
            f"{_status(log):<12} {log.source_filename or ''}"
        )

    print("\nTo see details: wdb-import show <log_id>")
    print("To rollback:    wdb-import rollback <log_id>")
    return 0


def cmd_show(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle show command."""
    with EntityStore(settings.database) as store:
        log = get_log(store, args.log_id)

    print(f"\nImport log {log.id}")
    print(f"  Label:    {log.label}")
    print(f"  Operator: {log.operator or '(unknown)'}")
    print(f"  Created:  {log.created}")
    print(f"  File:     {log.source_filename or '(unknown)'}")
    print(f"  Language: {log.language or '(unknown)'}")
    print(f"  Status:   {_status(log)}")
    print(f"  Summary:  {log.summary}")

    if log.created_entities:
        print(f"\nCreated entities ({len(log.created_entities)}):")
        counts = Counter(e.kind for e in log.created_entities)
        for kind, count in sorted(counts.items()):
            print(f"  {kind:<22} {count}")
    return 0


def cmd_rollback(args: argparse.Namespace, settings: ImporterSettings) -> int:
    """Handle rollback command."""
    with EntityStore(settings.database) as store:
        log = get_log(store, args.log_id)

        if not log.can_rollback:
            print(f"Import log {log.id} has nothing to roll back.")
            return 1

        print(f"\nImport log {log.id}: {log.label}")
        print(f"  File:     {log.source_filename or '(unknown)'}")
        print(f"  Entities: {len(log.created_entities)}")

        # Confirm unless --yes
        if not args.yes:
            response = input(
                f"\nDelete {len(log.created_entities)} entities? [y/N] "
            )
            if response.lower() not in ("y", "yes"):
                print("Aborted.")
                return 1

        print("\nRolling back...")
        summary = rollback(store, log)

    print("\nResults:")
    print(f"  Deleted:   {summary.deleted}")
    print(f"  Not found: {summary.not_found}")
    print(f"  Failed:    {summary.failed}")
    for error in summary.errors[:_MAX_MESSAGES]:
        print(f"  [ERROR] {error}")

    return 1 if summary.failed else 0


def _run_and_finish(store: EntityStore, state: JobState, chunk_size: int) -> int:
    def report(current: JobState) -> None:
        print(
            f"  [{current.progress}/{current.total}] {current.fraction:.0%}",
            flush=True,
        )

    print("\nImporting...")
    try:
        state = run_job(store, state, chunk_size, progress_callback=report)
    except KeyboardInterrupt:
        print(f"\nInterrupted. Resume with: wdb-import resume {state.job_id}")
        return 1

    log = finish_job(store, state)
    results = state.results
    _print_messages("ERROR", results.errors)
    _print_messages("WARN", results.warnings)

    print("\nResults:")
    print(f"  Rows:      {results.rows_seen}")
    print(f"  Succeeded: {results.processed}")
    print(f"  Failed:    {results.failed}")
    print(f"  Warnings:  {len(results.warnings)}")
    print(f"  Created:   {len(results.created_entities)} entities")
    if log is None:
        print("  Log:       none (nothing created)")
    else:
        print(f"  Log:       {log.id}")
        print(f"\nTo rollback: wdb-import rollback {log.id}")

    return 1 if results.failed else 0


def _print_saved_jobs(store: EntityStore) -> int:
    job_ids = store.list_job_ids()
    if not job_ids:
        print("No saved jobs.")
        return 0
    print("\nSaved jobs:\n")
    for job_id in job_ids:
        state = load_job(store, job_id)
        print(
            f"  {job_id}  {state.source_filename}  "
            f"{state.progress}/{state.total} rows"
        )
    return 0


def _print_messages(tag: str, messages: list[str]) -> None:
    if not messages:
        return
    print()
    for message in messages[:_MAX_MESSAGES]:
        print(f"  [{tag}] {message}")
    if len(messages) > _MAX_MESSAGES:
        print(f"  ... and {len(messages) - _MAX_MESSAGES} more")


def _status(log: ImportLogModel) -> str:
    if log.rolled_back:
        return "rolled back"
    return "ok" if log.status else "with errors"


if __name__ == "__main__":
    sys.exit(main())

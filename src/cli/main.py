"""labintake CLI entry points.
This module exposes commands for automated intake, chunked uploads,
and ledger and notice inspection. It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from core.config import LabIntakeConfig
from core.constants import ACCESS_LEVELS
from core.errors import LabIntakeError
from core.logging_config import configure_logging
from core.types import ChunkOutcome, FileOutcome, JobSummary, Submitter
from store.intake_sdk import IntakeClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="labintake", description="Lab CSV intake pipeline")
    parser.add_argument("--intake-root", help="Override LABINTAKE_INTAKE_ROOT for this command")
    parser.add_argument("--store-root", help="Override LABINTAKE_STORE_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_process_command(subparsers)
    _add_scan_command(subparsers)
    _add_upload_command(subparsers)
    _add_resume_command(subparsers)
    _add_ledger_command(subparsers)
    _add_notices_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the labintake CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(
            args.intake_root, args.store_root, getattr(args, "chunk_rows", None)
        )
        if args.command == "process":
            return _run_process_command(client, args)
        if args.command == "scan":
            return _run_scan_command(client, args)
        if args.command == "upload":
            return _run_upload_command(client, args)
        if args.command == "resume":
            return _run_resume_command(client, args)
        if args.command == "ledger":
            return _run_ledger_command(client, args)
        if args.command == "notices":
            return _run_notices_command(client, args)
    except LabIntakeError as error:
        print(f"error={error}")
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(
    intake_root: str | None,
    store_root: str | None,
    chunk_rows: int | None = None,
) -> IntakeClient:
    """Build SDK client with optional overrides.

    Args:
        intake_root: Optional staging root override.
        store_root: Optional store root override.
        chunk_rows: Optional row budget per upload chunk.

    Returns:
        Configured SDK client.
    """
    config = LabIntakeConfig.from_env()
    if intake_root:
        config = replace(config, intake_root=Path(intake_root).expanduser().resolve())
    if store_root:
        config = replace(config, store_root=Path(store_root).expanduser().resolve())
    if chunk_rows is not None:
        config = replace(config, chunk_row_limit=chunk_rows)
    configure_logging(config.log_level)
    return IntakeClient(config)


def _add_process_command(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("process", help="Process one lab-result CSV file")
    parser.add_argument("path", help="CSV file path")


def _add_scan_command(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("scan", help="Process every file waiting in incoming")
    parser.add_argument(
        "--include-processing",
        action="store_true",
        help="Also retry files left in processing by an earlier run",
    )


def _add_upload_command(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("upload", help="Start a chunked sample upload")
    parser.add_argument("path", help="CSV file path")
    parser.add_argument("--job-id", required=True, help="Upload job identifier")
    parser.add_argument("--submitter", default="cli", help="Submitter name for notices")
    parser.add_argument("--access", choices=ACCESS_LEVELS, default="user")
    parser.add_argument("--client-ucr", help="Fallback client identifier of the submitter")
    parser.add_argument("--chunk-rows", type=_positive_int, help="Rows per upload chunk")
    parser.add_argument(
        "--no-header",
        action="store_true",
        help="Treat the first row as data and use the default column order",
    )
    parser.add_argument(
        "--single-chunk",
        action="store_true",
        help="Stop after one bounded invocation",
    )


def _add_resume_command(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("resume", help="Advance a chunked upload job")
    parser.add_argument("job_id", help="Upload job identifier")
    parser.add_argument("--chunk-rows", type=_positive_int, help="Rows per upload chunk")
    parser.add_argument("--single-chunk", action="store_true")


def _add_ledger_command(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("ledger", help="List or purge intake ledger entries")
    parser.add_argument("--purge", action="store_true", help="Delete finished entries")
    parser.add_argument("--limit", type=int, help="Maximum entries to purge")


def _add_notices_command(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("notices", help="List recorded error notices")
    parser.add_argument("--limit", type=int, default=20)


def _run_process_command(client: IntakeClient, args: argparse.Namespace) -> int:
    """Handle process command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code; non-zero when the file did not archive.
    """
    outcome = client.process_file(Path(args.path))
    _print_file_outcome(outcome)
    return 0 if outcome.status in ("archived", "deferred") else 1


def _run_scan_command(client: IntakeClient, args: argparse.Namespace) -> int:
    outcomes = client.scan(include_processing=args.include_processing)
    for outcome in outcomes:
        _print_file_outcome(outcome)
    print(f"files={len(outcomes)}")
    return 0


def _run_upload_command(client: IntakeClient, args: argparse.Namespace) -> int:
    """Handle upload command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    submitter = Submitter(name=args.submitter, access=args.access, ucr=args.client_ucr)
    outcome = client.upload(
        Path(args.path),
        args.job_id,
        submitter,
        has_header=not args.no_header,
        single_chunk=args.single_chunk,
    )
    _print_chunk_outcome(outcome)
    return _chunk_exit_code(outcome)


def _run_resume_command(client: IntakeClient, args: argparse.Namespace) -> int:
    outcome = client.resume(args.job_id, single_chunk=args.single_chunk)
    _print_chunk_outcome(outcome)
    return _chunk_exit_code(outcome)


def _run_ledger_command(client: IntakeClient, args: argparse.Namespace) -> int:
    """Handle ledger command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    if args.purge:
        print(f"purged={client.purge_ledger(args.limit)}")
        return 0
    for entry in client.ledger_entries():
        print(
            f"{entry.filename}\t"
            f"{entry.status}\t"
            f"{entry.refname or '-'}\t"
            f"{entry.uploaded_at.isoformat()}\t"
            f"{entry.processed_at.isoformat() if entry.processed_at else '-'}"
        )
    return 0


def _run_notices_command(client: IntakeClient, args: argparse.Namespace) -> int:
    for notice in client.notices(args.limit):
        print(
            f"{notice.created_at.isoformat()}\t"
            f"{notice.source_filename}\t"
            f"{notice.title}\t"
            f"{' | '.join(notice.messages)}"
        )
    return 0


def _print_file_outcome(outcome: FileOutcome) -> None:
    print(f"file={outcome.file.filename}")
    print(f"status={outcome.status}")
    print(f"stage={outcome.file.stage}")
    _print_summary(outcome.summary)


def _print_chunk_outcome(outcome: ChunkOutcome) -> None:
    print(f"job_id={outcome.state.job_id}")
    print(f"finished={str(outcome.finished).lower()}")
    print(f"offset={outcome.state.offset}")
    if outcome.file is not None:
        print(f"stage={outcome.file.stage}")
    _print_summary(outcome.state.summary)


def _print_summary(summary: JobSummary) -> None:
    print(f"processed={summary.processed}")
    print(f"empty_lines={summary.empty_lines}")
    print(f"errors={summary.errors}")
    print(f"committed={summary.committed}")


def _chunk_exit_code(outcome: ChunkOutcome) -> int:
    if outcome.finished and outcome.file is not None and outcome.file.stage == "failed":
        return 1
    return 0


def _positive_int(raw_value: str) -> int:
    """Parse a strictly positive integer CLI argument."""
    try:
        value = int(raw_value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{raw_value}'") from error
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return value

"""Single-shot automated intake worker.

The worker takes one file from incoming to archive or failed within a
wall-clock budget. When the budget runs out mid-file, the remaining
groups are abandoned and the file stays in processing for a retry pass.
Notices are held until the file reaches archive or failed, so a retried
file reports each failure once.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import time
from typing import Callable

from core.constants import STAGE_ARCHIVE, STAGE_FAILED, STAGE_PROCESSING
from core.errors import MissingAnchorColumnError
from core.logging_config import get_logger
from core.types import (
    ColumnMapping,
    DispatchResult,
    FileOutcome,
    FileStatus,
    IntakeFile,
    JobSummary,
    RawRow,
    Submitter,
    TypedRow,
)
from ingest.column_mapper import build_typed_row
from ingest.csv_reader import CsvRowReader, HeaderIndex
from ingest.dispatcher import Dispatcher
from ingest.group_processor import (
    GroupProcessor,
    missing_key_message,
    resolve_columns,
    tally_result,
)
from ingest.notice_reporter import NoticeReporter
from ingest.profiles import IntakeProfile
from ingest.row_grouper import group_rows
from ingest.stage_directory import StageDirectoryManager
from store.intake_ledger import IntakeLedger
from store.notice_store import NoticeSink

_LOGGER = get_logger(__name__)

AUTOMATED_SUBMITTER = Submitter(name="automated-intake", access="admin")


@dataclass(frozen=True)
class ParsedFile:
    """Rows read from one file, before grouping."""

    mapping: ColumnMapping
    typed_rows: tuple[TypedRow, ...]
    bad_rows: tuple[RawRow, ...]
    empty_lines: int


class AutomatedIntakeWorker:
    """Process one staged CSV file end to end."""

    def __init__(
        self,
        stages: StageDirectoryManager,
        ledger: IntakeLedger,
        profile: IntakeProfile,
        dispatcher: Dispatcher,
        notices: NoticeSink,
        time_budget_seconds: float,
        submitter: Submitter = AUTOMATED_SUBMITTER,
        has_header: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stages = stages
        self._ledger = ledger
        self._profile = profile
        self._dispatcher = dispatcher
        self._notices = notices
        self._time_budget_seconds = time_budget_seconds
        self._submitter = submitter
        self._has_header = has_header
        self._clock = clock

    def process(self, intake_file: IntakeFile, process_type: str = "automatic") -> FileOutcome:
        """Process one file.

        Args:
            intake_file: File in the incoming or processing stage.
            process_type: Ledger process type, ``automatic`` or ``manual``.

        Returns:
            Outcome with the final file location and summary counters.

        Raises:
            LabIntakeStageError: If a stage directory is unusable.
            LabIntakeStoreError: If the intake ledger cannot be updated.
        """
        self._stages.ensure_all()
        working = intake_file
        if intake_file.stage != STAGE_PROCESSING:
            working = self._stages.move(intake_file, STAGE_PROCESSING)
        if working.stage != STAGE_PROCESSING or not working.path.exists():
            _LOGGER.warning("intake_file_missing", filename=intake_file.filename)
            return FileOutcome(file=working, status="missing", summary=JobSummary())
        reporter = NoticeReporter(
            self._notices, self._submitter.name, working.filename, defer_publish=True
        )
        if self._ledger.is_duplicate(working):
            return self._reject_duplicate(working, reporter)
        self._ledger.start(working, process_type)
        started_at = self._clock()
        try:
            parsed = self._read_file(working)
        except MissingAnchorColumnError as error:
            reporter.record((), {}, [str(error)])
            return self._finish(working, JobSummary(errors=reporter.errors), (), None, reporter)
        processor = GroupProcessor(self._profile, self._dispatcher, reporter, parsed.mapping.accepted)
        for bad_row in parsed.bad_rows:
            processor.reject_row(bad_row, f"Row could not be parsed: {bad_row.parse_error}")
        grouping = group_rows(parsed.typed_rows, self._profile.anchor_field)
        for row in grouping.missing_key_rows:
            processor.reject_row(row.raw, missing_key_message(self._profile))
        summary = JobSummary(
            processed=len(parsed.typed_rows) + len(parsed.bad_rows),
            empty_lines=parsed.empty_lines,
        )
        refname = grouping.groups[0].group_key if grouping.groups else None
        results: list[DispatchResult] = []
        for group in grouping.groups:
            if self._clock() - started_at >= self._time_budget_seconds:
                return self._defer(
                    working, replace(summary, errors=reporter.errors), results, reporter
                )
            result = processor.process_group(group)
            results.append(result)
            summary = tally_result(summary, result)
        if not grouping.groups and reporter.errors == 0:
            reporter.record((), parsed.mapping.accepted, ["No data found in file."])
        summary = replace(summary, errors=reporter.errors)
        return self._finish(working, summary, tuple(results), refname, reporter)

    def _read_file(self, working: IntakeFile) -> ParsedFile:
        typed_rows: list[TypedRow] = []
        bad_rows: list[RawRow] = []
        empty_lines = 0
        with CsvRowReader(working.path) as reader:
            mapping, _ = resolve_columns(
                reader, self._profile, self._submitter.access, self._has_header
            )
            header_index = HeaderIndex(mapping.accepted)
            for row in reader:
                if row.is_empty:
                    empty_lines += 1
                elif row.parse_error is not None:
                    bad_rows.append(row)
                else:
                    typed_rows.append(build_typed_row(row, header_index))
        return ParsedFile(
            mapping=mapping,
            typed_rows=tuple(typed_rows),
            bad_rows=tuple(bad_rows),
            empty_lines=empty_lines,
        )

    def _reject_duplicate(self, working: IntakeFile, reporter: NoticeReporter) -> FileOutcome:
        reporter.record(
            (),
            {},
            [
                f"File {working.filename} was already processed with the same "
                "modification time and was not processed again."
            ],
            title="Duplicate CSV file",
        )
        reporter.flush()
        failed_file = self._stages.move(working, STAGE_FAILED)
        _LOGGER.warning("intake_file_duplicate", filename=working.filename)
        return FileOutcome(file=failed_file, status="duplicate", summary=JobSummary(errors=1))

    def _defer(
        self,
        working: IntakeFile,
        summary: JobSummary,
        results: list[DispatchResult],
        reporter: NoticeReporter,
    ) -> FileOutcome:
        # The retry pass re-reads the whole file and reports its failures again.
        withheld = reporter.discard()
        _LOGGER.warning(
            "intake_time_budget_exhausted",
            filename=working.filename,
            budget_seconds=self._time_budget_seconds,
            dispatched_groups=len(results),
            notices_withheld=withheld,
        )
        return FileOutcome(file=working, status="deferred", summary=summary, results=tuple(results))

    def _finish(
        self,
        working: IntakeFile,
        summary: JobSummary,
        results: tuple[DispatchResult, ...],
        refname: str | None,
        reporter: NoticeReporter,
    ) -> FileOutcome:
        status: FileStatus
        if summary.is_clean:
            final_file = self._stages.move(working, STAGE_ARCHIVE)
            self._ledger.finish(final_file, "success", refname)
            status = "archived"
        else:
            final_file = self._stages.move(working, STAGE_FAILED)
            self._ledger.finish(final_file, "failed", refname)
            status = "failed"
        reporter.flush()
        _LOGGER.info(
            "intake_file_completed",
            filename=working.filename,
            status=status,
            processed=summary.processed,
            errors=summary.errors,
            empty_lines=summary.empty_lines,
            committed=summary.committed,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return FileOutcome(file=final_file, status=status, summary=summary, results=results)

"""Chunked, resumable upload driver.

Each invocation processes at most a fixed row budget, persists a
``ResumableJobState`` cursor, and yields. The next invocation seeks to
the saved byte offset instead of re-reading consumed rows. A run of
rows sharing one grouping key is never split across chunks.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable

from core.constants import STAGE_ARCHIVE, STAGE_FAILED, STAGE_PROCESSING
from core.errors import LabIntakeJobStateError, MissingAnchorColumnError
from core.logging_config import get_logger
from core.types import (
    ChunkOutcome,
    DispatchResult,
    IntakeFile,
    JobSummary,
    RawRow,
    ResumableJobState,
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
from store.job_state_store import FileJobStateStore
from store.notice_store import NoticeSink

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ChunkSlice:
    """Rows read by one invocation and the cursor after them."""

    typed_rows: tuple[TypedRow, ...]
    bad_rows: tuple[RawRow, ...]
    empty_lines: int
    next_offset: int
    next_line_number: int
    reached_eof: bool


class ChunkedUploadDriver:
    """Drive a sample upload through bounded, resumable invocations."""

    def __init__(
        self,
        stages: StageDirectoryManager,
        state_store: FileJobStateStore,
        profile: IntakeProfile,
        dispatcher_factory: Callable[[Submitter], Dispatcher],
        notices: NoticeSink,
        row_limit: int,
    ) -> None:
        self._stages = stages
        self._state_store = state_store
        self._profile = profile
        self._dispatcher_factory = dispatcher_factory
        self._notices = notices
        self._row_limit = row_limit

    def start(
        self,
        intake_file: IntakeFile,
        job_id: str,
        submitter: Submitter,
        has_header: bool = True,
    ) -> ResumableJobState:
        """Claim a file for this job and persist a fresh job cursor.

        The file moves into a processing area private to the job, and its
        size and modification time are recorded so later invocations can
        detect a replaced source.

        Args:
            intake_file: Uploaded file, usually in incoming.
            job_id: Identifier for the new job.
            submitter: Uploader identity and access level.
            has_header: Whether the first record is a header row.

        Returns:
            Initial job state.

        Raises:
            LabIntakeJobStateError: If the job id is already in use.
            LabIntakeStageError: If a stage directory or the job's claim is unusable.
        """
        if self._state_store.load(job_id) is not None:
            raise LabIntakeJobStateError(
                f"Upload job '{job_id}' already exists. Resume it or choose another job id."
            )
        self._stages.ensure_all()
        working = self._stages.claim(intake_file, job_id)
        source_stat = working.path.stat()
        state = ResumableJobState(
            job_id=job_id,
            source_path=str(working.path),
            filename=working.filename,
            profile=self._profile.name,
            submitter=submitter,
            has_header=has_header,
            source_size=source_stat.st_size,
            source_modified_at=source_stat.st_mtime,
        )
        self._state_store.save(job_id, state)
        _LOGGER.info("upload_job_started", job_id=job_id, filename=working.filename)
        return state

    def run_chunk(self, job_id: str) -> ChunkOutcome:
        """Run one bounded invocation of a job.

        Args:
            job_id: Job to advance.

        Returns:
            Chunk outcome; ``finished`` is true once the job is done.

        Raises:
            LabIntakeJobStateError: If no state exists for the job or its
                source file is missing or was changed since the job started.
        """
        state = self._state_store.load(job_id)
        if state is None:
            raise LabIntakeJobStateError(
                f"No upload job state found for '{job_id}'. Start the upload before resuming it."
            )
        _verify_source(state)
        reporter = NoticeReporter(self._notices, state.submitter.name, state.filename)
        with CsvRowReader(
            Path(state.source_path),
            offset=state.offset,
            line_number=state.line_number,
            expected_width=state.expected_width,
        ) as reader:
            if state.phase == "unstarted":
                try:
                    mapping, header_row = resolve_columns(
                        reader, self._profile, state.submitter.access, state.has_header
                    )
                except MissingAnchorColumnError as error:
                    reporter.record((), {}, [str(error)])
                    summary = replace(state.summary, errors=state.summary.errors + reporter.errors)
                    return self._complete(replace(state, summary=summary), (), rows_read=0)
                state = replace(
                    state,
                    phase="header_resolved",
                    headers=dict(mapping.accepted),
                    rejected=dict(mapping.rejected),
                    expected_width=len(header_row.cells) if header_row is not None else None,
                    offset=reader.offset,
                    line_number=reader.line_number,
                    results={**state.results, "rejected_columns": sorted(mapping.rejected.values())},
                )
            chunk = self._read_slice(reader, state)
        results = self._process_slice(state, chunk, reporter)
        summary = JobSummary(
            processed=state.summary.processed + len(chunk.typed_rows) + len(chunk.bad_rows),
            errors=state.summary.errors,
            empty_lines=state.summary.empty_lines + chunk.empty_lines,
            committed=state.summary.committed,
            skipped=state.summary.skipped,
            failed=state.summary.failed,
        )
        for result in results:
            summary = tally_result(summary, result)
        warnings = sum(len(result.warnings) for result in results)
        state = replace(
            state,
            phase="in_progress",
            offset=chunk.next_offset,
            line_number=chunk.next_line_number,
            summary=replace(summary, errors=summary.errors + reporter.errors),
            results={**state.results, "warnings": int(state.results.get("warnings", 0)) + warnings},
        )
        rows_read = len(chunk.typed_rows) + len(chunk.bad_rows)
        if chunk.reached_eof:
            return self._complete(state, tuple(results), rows_read)
        self._state_store.save(job_id, state)
        _LOGGER.info(
            "upload_chunk_completed",
            job_id=job_id,
            rows_read=rows_read,
            offset=state.offset,
            processed=state.summary.processed,
        )
        return ChunkOutcome(state=state, finished=False, rows_read=rows_read, results=tuple(results))

    def run_to_completion(self, job_id: str) -> ChunkOutcome:
        """Run invocations until the job is done."""
        while True:
            outcome = self.run_chunk(job_id)
            if outcome.finished:
                return outcome

    def _read_slice(self, reader: CsvRowReader, state: ResumableJobState) -> ChunkSlice:
        """Read up to the row budget, extending to the end of the current group."""
        typed_rows: list[TypedRow] = []
        bad_rows: list[RawRow] = []
        empty_lines = 0
        current_key: str | None = None
        header_index = HeaderIndex(state.headers)
        while True:
            row_offset = reader.offset
            row_line_number = reader.line_number
            row = reader.read_row()
            if row is None:
                return ChunkSlice(
                    tuple(typed_rows),
                    tuple(bad_rows),
                    empty_lines,
                    reader.offset,
                    reader.line_number,
                    reached_eof=True,
                )
            if row.is_empty:
                empty_lines += 1
                continue
            typed_row = None if row.parse_error else build_typed_row(row, header_index)
            row_key = (
                typed_row.values.get(self._profile.anchor_field, "").strip()
                if typed_row is not None
                else None
            )
            rows_read = len(typed_rows) + len(bad_rows)
            if rows_read >= self._row_limit and (row_key is None or row_key != current_key):
                return ChunkSlice(
                    tuple(typed_rows),
                    tuple(bad_rows),
                    empty_lines,
                    row_offset,
                    row_line_number,
                    reached_eof=False,
                )
            if typed_row is None:
                bad_rows.append(row)
                current_key = None
            else:
                typed_rows.append(typed_row)
                current_key = row_key

    def _process_slice(
        self,
        state: ResumableJobState,
        chunk: ChunkSlice,
        reporter: NoticeReporter,
    ) -> list[DispatchResult]:
        processor = GroupProcessor(
            self._profile,
            self._dispatcher_factory(state.submitter),
            reporter,
            state.headers,
        )
        for bad_row in chunk.bad_rows:
            processor.reject_row(bad_row, f"Row could not be parsed: {bad_row.parse_error}")
        grouping = group_rows(chunk.typed_rows, self._profile.anchor_field)
        for row in grouping.missing_key_rows:
            processor.reject_row(row.raw, missing_key_message(self._profile))
        return [processor.process_group(group) for group in grouping.groups]

    def _complete(
        self,
        state: ResumableJobState,
        results: tuple[DispatchResult, ...],
        rows_read: int,
    ) -> ChunkOutcome:
        summary = state.summary
        if summary.processed == 0 and summary.errors == 0:
            reporter = NoticeReporter(self._notices, state.submitter.name, state.filename)
            reporter.record((), state.headers, ["No data found in file."])
            summary = replace(summary, errors=summary.errors + reporter.errors)
        source = Path(state.source_path)
        working = IntakeFile(
            path=source,
            filename=state.filename,
            modified_at=source.stat().st_mtime if source.exists() else 0.0,
            stage=STAGE_PROCESSING,
        )
        target_stage = STAGE_ARCHIVE if summary.is_clean else STAGE_FAILED
        final_file = self._stages.move(working, target_stage)
        self._stages.release_claim(state.job_id)
        final_state = replace(state, phase="done", summary=summary, source_path=str(final_file.path))
        self._state_store.delete(state.job_id)
        _LOGGER.info(
            "upload_job_completed",
            job_id=state.job_id,
            filename=state.filename,
            stage=final_file.stage,
            processed=summary.processed,
            empty_lines=summary.empty_lines,
            errors=summary.errors,
        )
        return ChunkOutcome(
            state=final_state,
            finished=True,
            rows_read=rows_read,
            results=results,
            file=final_file,
        )


def _verify_source(state: ResumableJobState) -> None:
    """Fail when the job's claimed file is gone or differs from the one started.

    Raises:
        LabIntakeJobStateError: If the source is missing or its size or
            modification time changed.
    """
    source = Path(state.source_path)
    try:
        source_stat = source.stat()
    except FileNotFoundError as error:
        raise LabIntakeJobStateError(
            f"Source file {source} for upload job '{state.job_id}' is missing. "
            "Delete the job state and start the upload again."
        ) from error
    if state.source_size is None or state.source_modified_at is None:
        return
    if (
        source_stat.st_size != state.source_size
        or source_stat.st_mtime != state.source_modified_at
    ):
        raise LabIntakeJobStateError(
            f"Source file {source} for upload job '{state.job_id}' changed since the job "
            "started. Delete the job state and start the upload again."
        )

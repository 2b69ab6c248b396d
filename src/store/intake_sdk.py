"""Python SDK for intake operations.

This module exposes high-level APIs for automated file processing,
chunked uploads, and inspection of the ledger, notices, and records.
"""

from __future__ import annotations

from pathlib import Path

from core.config import LabIntakeConfig
from core.constants import RESULTS_COLLECTION, SAMPLES_COLLECTION
from core.errors import LabIntakeStoreError
from core.types import (
    ChunkOutcome,
    FileOutcome,
    LedgerEntry,
    Notice,
    ResumableJobState,
    StoredRecord,
    Submitter,
)
from ingest.pipeline import IntakeRuntime, build_runtime, process_pending_files, stage_source_file
from store.remote_sink import ResultSink


class IntakeClient:
    """Primary SDK entry point for intake workflows."""

    def __init__(
        self,
        config: LabIntakeConfig | None = None,
        sink: ResultSink | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
            sink: Optional result sink replacing the configured HTTP sink.
        """
        self._config = config or LabIntakeConfig.from_env()
        self._runtime = build_runtime(self._config, sink)

    @property
    def runtime(self) -> IntakeRuntime:
        return self._runtime

    def process_file(self, source_path: Path) -> FileOutcome:
        """Process one lab-result file with the automated worker.

        Args:
            source_path: File inside a stage directory, or an outside file
                that is first copied into incoming.

        Returns:
            File outcome.

        Raises:
            LabIntakeStageError: If staging fails.
        """
        intake_file = stage_source_file(self._runtime.stages, source_path)
        return self._runtime.worker.process(intake_file, process_type="manual")

    def scan(self, include_processing: bool = False) -> list[FileOutcome]:
        """Process every file waiting in incoming."""
        return process_pending_files(self._runtime, include_processing)

    def start_upload(
        self,
        source_path: Path,
        job_id: str,
        submitter: Submitter,
        has_header: bool = True,
    ) -> ResumableJobState:
        """Stage a sample upload and create its job state."""
        intake_file = stage_source_file(self._runtime.stages, source_path)
        return self._runtime.uploads.start(intake_file, job_id, submitter, has_header)

    def upload(
        self,
        source_path: Path,
        job_id: str,
        submitter: Submitter,
        has_header: bool = True,
        single_chunk: bool = False,
    ) -> ChunkOutcome:
        """Start a sample upload and run one chunk or the whole job.

        Args:
            source_path: CSV file to upload.
            job_id: Job identifier.
            submitter: Uploader identity and access level.
            has_header: Whether the first record is a header row.
            single_chunk: Stop after one bounded invocation.

        Returns:
            Outcome of the last invocation.
        """
        self.start_upload(source_path, job_id, submitter, has_header)
        return self.resume(job_id, single_chunk)

    def resume(self, job_id: str, single_chunk: bool = False) -> ChunkOutcome:
        """Advance an existing upload job."""
        if single_chunk:
            return self._runtime.uploads.run_chunk(job_id)
        return self._runtime.uploads.run_to_completion(job_id)

    def pending_jobs(self) -> list[str]:
        return self._runtime.jobs.list_job_ids()

    def ledger_entries(self) -> list[LedgerEntry]:
        return self._runtime.ledger.entries()

    def purge_ledger(self, limit: int | None = None) -> int:
        return self._runtime.ledger.purge(limit)

    def notices(self, limit: int | None = None) -> list[Notice]:
        return self._runtime.notices.list_notices(limit)

    def records(self, collection: str) -> list[StoredRecord]:
        """List stored records of the ``samples`` or ``results`` collection.

        Raises:
            LabIntakeStoreError: If the collection name is unknown.
        """
        if collection == SAMPLES_COLLECTION:
            return self._runtime.samples.list_records()
        if collection == RESULTS_COLLECTION:
            return self._runtime.results.list_records()
        raise LabIntakeStoreError(
            f"Unknown record collection '{collection}'. "
            f"Use '{SAMPLES_COLLECTION}' or '{RESULTS_COLLECTION}'."
        )

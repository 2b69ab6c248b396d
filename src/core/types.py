"""Shared typed models.

This module defines immutable data models used by the staging,
parsing, dispatch, and reporting layers to keep interfaces explicit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal, Mapping

StageName = Literal["incoming", "processing", "archive", "failed"]
AccessLevel = Literal["user", "admin"]
DispatchStatus = Literal["committed", "skipped", "failed"]
FileStatus = Literal["archived", "failed", "deferred", "duplicate", "missing"]
JobPhase = Literal["unstarted", "header_resolved", "in_progress", "done"]
LedgerStatus = Literal["processing", "success", "failed"]


@dataclass(frozen=True)
class IntakeFile:
    """A CSV file tracked through the staging directories.

    Attributes:
        path: Absolute path of the file in its current stage.
        filename: Logical file name, stable across stages.
        modified_at: Source modification time as a POSIX timestamp.
        stage: Stage directory currently holding the file.
    """

    path: Path
    filename: str
    modified_at: float
    stage: StageName


@dataclass(frozen=True)
class RawRow:
    """One CSV record as read from disk.

    Attributes:
        line_number: One-based physical line where the record starts.
        cells: Trimmed cell values in column order.
        parse_error: Reason the record could not be parsed, if any.
    """

    line_number: int
    cells: tuple[str, ...]
    parse_error: str | None = None

    @property
    def is_empty(self) -> bool:
        """Return whether every cell is blank."""
        return self.parse_error is None and all(not cell for cell in self.cells)


@dataclass(frozen=True)
class FieldSpec:
    """Known-field registry entry."""

    name: str
    access: AccessLevel


@dataclass(frozen=True)
class ColumnMapping:
    """Header mapping result.

    Attributes:
        accepted: Column position to accepted field name, in column order.
        rejected: Column position to raw header text that was not accepted.
    """

    accepted: Mapping[int, str]
    rejected: Mapping[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TypedRow:
    """A row keyed by accepted field name."""

    line_number: int
    values: Mapping[str, str]
    raw: RawRow


@dataclass(frozen=True)
class RowGroup:
    """Rows sharing one grouping key, in first-seen order."""

    group_key: str
    rows: tuple[TypedRow, ...]


@dataclass(frozen=True)
class FieldError:
    """Field-level validation message."""

    field: str
    message: str


@dataclass(frozen=True)
class ValidationOutcome:
    """Per-group validation result.

    Attributes:
        group: Validated row group.
        record: Record folded from the group rows.
        errors: Field errors; empty when the group is valid.
    """

    group: RowGroup
    record: Mapping[str, object]
    errors: tuple[FieldError, ...] = ()

    @property
    def is_valid(self) -> bool:
        """Return whether the group may be dispatched."""
        return not self.errors


@dataclass(frozen=True)
class StoredRecord:
    """Record persisted in a record store collection.

    Attributes:
        natural_key: Externally meaningful identifier.
        fields: Record field values.
        revision: Number of commits applied to this key.
        created_at: UTC timestamp of the first commit.
        updated_at: UTC timestamp of the latest commit.
    """

    natural_key: str
    fields: Mapping[str, object]
    revision: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ResolvedKey:
    """Secondary key plus extra fields merged into the record."""

    value: str
    fields: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    """Per-group dispatch outcome.

    Attributes:
        group_key: Grouping key of the dispatched group.
        status: ``committed``, ``skipped``, or ``failed``.
        reason: Skip reason or failure message.
        record: Locally committed record, when the commit happened.
        warnings: Non-fatal issues such as a placeholder secondary key.
    """

    group_key: str
    status: DispatchStatus
    reason: str | None = None
    record: StoredRecord | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class JobSummary:
    """File-level counters.

    Attributes:
        processed: Data rows read, excluding empty lines.
        errors: Notices recorded for the file.
        empty_lines: Rows whose every cell was blank.
        committed: Groups committed.
        skipped: Groups skipped as invalid.
        failed: Groups whose dispatch failed.
    """

    processed: int = 0
    errors: int = 0
    empty_lines: int = 0
    committed: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def is_clean(self) -> bool:
        """Return whether the file qualifies for archival."""
        return self.errors == 0 and self.committed > 0


@dataclass(frozen=True)
class Submitter:
    """Identity and access level of whoever supplied the file.

    Attributes:
        name: Display name or account identifier.
        access: Column access level for the submitter.
        client_id: Client the submitter belongs to, if known.
        client_name: Display name of that client.
        ucr: Business identifier of that client.
    """

    name: str
    access: AccessLevel = "user"
    client_id: str | None = None
    client_name: str | None = None
    ucr: str | None = None


@dataclass(frozen=True)
class Notice:
    """Persisted error report.

    Attributes:
        notice_id: Unique notice identifier.
        title: Short notice title.
        messages: Human readable error messages.
        raw_cells: Snapshot of the offending raw row, when row-scoped.
        header_snapshot: Accepted header map at the time of the error.
        submitter: Identity of the submitter.
        created_at: UTC creation timestamp.
        source_filename: Name of the CSV file the error came from.
        line_number: Line where the offending row starts, when known.
        group_key: Grouping key, when group-scoped.
    """

    notice_id: str
    title: str
    messages: tuple[str, ...]
    raw_cells: tuple[str, ...]
    header_snapshot: Mapping[int, str]
    submitter: str
    created_at: datetime
    source_filename: str
    line_number: int | None = None
    group_key: str | None = None


@dataclass(frozen=True)
class FileOutcome:
    """Automated worker result for one file."""

    file: IntakeFile
    status: FileStatus
    summary: JobSummary
    results: tuple[DispatchResult, ...] = ()


@dataclass(frozen=True)
class ResumableJobState:
    """Serializable cursor for a chunked upload job.

    Attributes:
        job_id: Job identifier.
        source_path: Current path of the CSV file.
        filename: Logical file name.
        profile: Intake profile name.
        submitter: Submitter identity and access level.
        has_header: Whether the first record is a header row.
        phase: Job state machine phase.
        offset: Byte offset of the next unread record.
        line_number: Physical line number of the next unread record.
        headers: Accepted header map (position to field name).
        rejected: Rejected header map (position to raw header text).
        expected_width: Column count declared by the header row, if any.
        summary: Running counters.
        results: Free-form values for end-of-job reporting.
        source_size: Byte size of the claimed file when the job started.
        source_modified_at: Modification time of the claimed file when the job started.
    """

    job_id: str
    source_path: str
    filename: str
    profile: str
    submitter: Submitter
    has_header: bool = True
    phase: JobPhase = "unstarted"
    offset: int = 0
    line_number: int = 1
    headers: Mapping[int, str] = field(default_factory=dict)
    rejected: Mapping[int, str] = field(default_factory=dict)
    expected_width: int | None = None
    summary: JobSummary = field(default_factory=JobSummary)
    results: Mapping[str, object] = field(default_factory=dict)
    source_size: int | None = None
    source_modified_at: float | None = None


@dataclass(frozen=True)
class ChunkOutcome:
    """Result of one chunked driver invocation."""

    state: ResumableJobState
    finished: bool
    rows_read: int
    results: tuple[DispatchResult, ...] = ()
    file: IntakeFile | None = None


@dataclass(frozen=True)
class LedgerEntry:
    """Intake ledger entry for one automated file.

    Attributes:
        filename: Logical file name.
        path: Path of the file when the entry was last updated.
        refname: First grouping key seen in the file.
        status: ``processing``, ``success``, or ``failed``.
        process_type: ``automatic`` or ``manual``.
        source_modified_at: Modification time of the source file.
        uploaded_at: UTC timestamp when the file entered processing.
        processed_at: UTC timestamp of the terminal status, if any.
    """

    filename: str
    path: str
    refname: str | None
    status: LedgerStatus
    process_type: str
    source_modified_at: float
    uploaded_at: datetime
    processed_at: datetime | None = None

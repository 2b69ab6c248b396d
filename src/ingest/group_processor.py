"""Shared per-group processing for both intake drivers.

This module resolves header mappings, runs map, validate, and dispatch
for each group, and records notices for every rejected row or group.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Mapping

from core.constants import ANCHOR_FIELD
from core.logging_config import get_logger
from core.types import AccessLevel, ColumnMapping, DispatchResult, JobSummary, RawRow, RowGroup
from ingest.column_mapper import map_columns
from ingest.csv_reader import CsvRowReader
from ingest.dispatcher import Dispatcher
from ingest.notice_reporter import NoticeReporter
from ingest.profiles import IntakeProfile

_LOGGER = get_logger(__name__)


def resolve_columns(
    reader: CsvRowReader,
    profile: IntakeProfile,
    access: AccessLevel,
    has_header: bool,
) -> tuple[ColumnMapping, RawRow | None]:
    """Read the header row, if declared, and map it onto profile fields.

    Args:
        reader: Reader positioned at the start of the file.
        profile: Intake profile.
        access: Submitter access level.
        has_header: Whether the first record is a header row.

    Returns:
        Column mapping and the header row that was consumed.

    Raises:
        MissingAnchorColumnError: If the anchor field is not accepted.
    """
    header_row: RawRow | None = None
    header_cells: tuple[str, ...] | None = None
    if has_header:
        header_row = reader.read_row()
        header_cells = header_row.cells if header_row is not None else ()
    mapping = map_columns(
        header_cells,
        profile.registry,
        access,
        profile.anchor_field,
        profile.default_headers,
    )
    if header_row is not None:
        reader.expected_width = len(header_row.cells)
    if mapping.rejected:
        _LOGGER.info("columns_rejected", columns=sorted(mapping.rejected.values()))
    return mapping, header_row


def tally_result(summary: JobSummary, result: DispatchResult) -> JobSummary:
    """Add one dispatch result to the group counters."""
    if result.status == "committed":
        return replace(summary, committed=summary.committed + 1)
    if result.status == "skipped":
        return replace(summary, skipped=summary.skipped + 1)
    return replace(summary, failed=summary.failed + 1)


class GroupProcessor:
    """Map, validate, and dispatch groups for one file."""

    def __init__(
        self,
        profile: IntakeProfile,
        dispatcher: Dispatcher,
        reporter: NoticeReporter,
        header_snapshot: Mapping[int, str],
    ) -> None:
        self._profile = profile
        self._dispatcher = dispatcher
        self._reporter = reporter
        self._header_snapshot = dict(header_snapshot)

    def process_group(self, group: RowGroup) -> DispatchResult:
        """Process one group and record a notice if it does not commit.

        Args:
            group: Rows sharing one grouping key.

        Returns:
            Dispatch result for the group.
        """
        record = self._profile.field_mapper.map_group(group)
        outcome = self._profile.validator(group, record)
        result = self._dispatcher.dispatch(outcome)
        first_row = group.rows[0]
        if result.status == "skipped":
            self._reporter.record(
                first_row.raw.cells,
                self._header_snapshot,
                [error.message for error in outcome.errors],
                line_number=first_row.line_number,
                group_key=group.group_key,
            )
        elif result.status == "failed":
            self._reporter.record(
                first_row.raw.cells,
                self._header_snapshot,
                [f"Failed to save data for {group.group_key}: {result.reason}"],
                title="CSV processing failure",
                line_number=first_row.line_number,
                group_key=group.group_key,
            )
        _LOGGER.info(
            "group_dispatched",
            group_key=group.group_key,
            status=result.status,
            rows=len(group.rows),
            warnings=len(result.warnings),
        )
        return result

    def reject_row(self, row: RawRow, message: str) -> None:
        """Record a notice for a row that never reached a group."""
        self._reporter.record(
            row.cells,
            self._header_snapshot,
            [f"Row {row.line_number}: {message}"],
            line_number=row.line_number,
        )


def missing_key_message(profile: IntakeProfile) -> str:
    """Return the notice message for a row without a grouping key."""
    if profile.anchor_field == ANCHOR_FIELD:
        return "Pack reference number missing."
    return f"{profile.anchor_field} missing."

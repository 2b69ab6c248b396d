"""Streaming CSV reader with byte-offset resume support.

This module reads one CSV record at a time from a binary handle so the
current byte offset can be persisted and resumed by the chunked driver.
Malformed records are returned flagged instead of raising.
"""

from __future__ import annotations

import codecs
import csv
import io
from pathlib import Path
import re
from types import TracebackType
from typing import BinaryIO, Iterator, Mapping, Sequence

from core.constants import HEADER_SYNONYMS
from core.errors import LabIntakeStageError
from core.types import RawRow

_WHITESPACE_RUN = re.compile(r"\s+")
_QUOTE = b'"'
_FIELD_BOUNDARIES = (b",", b"\r", b"\n")


def normalize_header_label(label: str) -> str:
    """Normalize a raw header label into a field name.

    Lower-cases, trims, treats dashes as spaces, collapses whitespace,
    applies the synonym table, then joins the remaining words with
    underscores.

    Args:
        label: Raw header cell.

    Returns:
        Normalized field name, or an empty string for blank labels.
    """
    cleaned = label.replace("\ufeff", "").strip().lower().replace("-", " ")
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()
    if not cleaned:
        return ""
    synonym = HEADER_SYNONYMS.get(cleaned)
    if synonym is not None:
        return synonym
    return cleaned.replace(" ", "_")


class HeaderIndex:
    """Header-to-column-index lookups for an accepted header map."""

    def __init__(self, accepted: Mapping[int, str]) -> None:
        self._positions: dict[str, int] = {}
        for position, field_name in sorted(accepted.items()):
            self._positions.setdefault(field_name, position)

    def position(self, field_name: str) -> int | None:
        """Return the first column position for a field, if present."""
        return self._positions.get(field_name)

    def cell(self, cells: Sequence[str], field_name: str) -> str:
        """Return the cell for a field; short rows and unknown fields yield blanks."""
        position = self.position(field_name)
        if position is None or position >= len(cells):
            return ""
        return cells[position]

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._positions

    def field_names(self) -> tuple[str, ...]:
        """Return accepted field names in column order."""
        return tuple(self._positions)


class CsvRowReader:
    """Read ``RawRow`` records from a CSV file starting at a byte offset."""

    def __init__(
        self,
        path: Path,
        offset: int = 0,
        line_number: int = 1,
        expected_width: int | None = None,
    ) -> None:
        self._path = path
        self._start_offset = offset
        self._line_number = line_number
        self.expected_width = expected_width
        self._handle: BinaryIO | None = None

    def __enter__(self) -> "CsvRowReader":
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __iter__(self) -> Iterator[RawRow]:
        while True:
            row = self.read_row()
            if row is None:
                return
            yield row

    def open(self) -> BinaryIO:
        """Open the file and seek to the start offset.

        Returns:
            The opened binary handle.

        Raises:
            LabIntakeStageError: If the file cannot be opened.
        """
        try:
            handle = self._path.open("rb")
        except OSError as error:
            raise LabIntakeStageError(
                f"Failed to open CSV file {self._path}: {error}. "
                "Check that the file is still in its stage directory."
            ) from error
        handle.seek(self._start_offset)
        self._handle = handle
        return handle

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    @property
    def offset(self) -> int:
        """Byte offset of the next unread record."""
        if self._handle is None:
            return self._start_offset
        return self._handle.tell()

    @property
    def line_number(self) -> int:
        """Physical line number of the next unread record."""
        return self._line_number

    def read_row(self) -> RawRow | None:
        """Read the next record.

        Returns:
            Parsed row, a row flagged with ``parse_error``, or ``None`` at EOF.
        """
        handle = self._handle if self._handle is not None else self.open()
        record_start = handle.tell()
        line_number = self._line_number
        chunk = handle.readline()
        if not chunk:
            return None
        chunks = [chunk]
        while chunk and _ends_inside_quotes(b"".join(chunks)):
            chunk = handle.readline()
            if chunk:
                chunks.append(chunk)
        self._line_number += len(chunks)
        data = b"".join(chunks)
        if _ends_inside_quotes(data):
            return RawRow(line_number, (), parse_error="unterminated quoted field")
        encoding = "utf-8-sig" if record_start == 0 else "utf-8"
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as error:
            return RawRow(line_number, (), parse_error=f"invalid UTF-8 data: {error.reason}")
        return self._parse_record(text, line_number)

    def _parse_record(self, text: str, line_number: int) -> RawRow:
        try:
            records = list(csv.reader(io.StringIO(text, newline=""), strict=True))
        except csv.Error as error:
            return RawRow(line_number, (), parse_error=f"malformed CSV: {error}")
        if len(records) > 1:
            return RawRow(line_number, (), parse_error="unexpected line break inside record")
        cells = tuple(cell.strip() for cell in records[0]) if records else ()
        row = RawRow(line_number, cells)
        if row.is_empty:
            return row
        if self.expected_width is not None and len(cells) != self.expected_width:
            return RawRow(
                line_number,
                cells,
                parse_error=f"expected {self.expected_width} columns, found {len(cells)}",
            )
        return row


def _ends_inside_quotes(data: bytes) -> bool:
    """Return whether raw record bytes leave a quoted field open.

    Follows the default csv dialect: a quote opens a quoted field only as
    the first character of a field, and a doubled quote inside a quoted
    field is an escaped literal. Quotes inside unquoted cells are data.
    """
    if data.startswith(codecs.BOM_UTF8):
        data = data[len(codecs.BOM_UTF8) :]
    in_quotes = False
    at_field_start = True
    position = 0
    while position < len(data):
        byte = data[position : position + 1]
        if in_quotes:
            if byte == _QUOTE:
                if data[position + 1 : position + 2] == _QUOTE:
                    position += 1
                else:
                    in_quotes = False
        elif byte == _QUOTE and at_field_start:
            in_quotes = True
            at_field_start = False
        else:
            at_field_start = byte in _FIELD_BOUNDARIES
        position += 1
    return in_quotes

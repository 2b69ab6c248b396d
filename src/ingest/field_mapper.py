"""Field mapping for grouped rows.

Each mapper folds the rows of one group into a single record. Lab
results pivot one-analyte-per-row data through a keyword rule table;
sample uploads take the last non-empty value per column.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal, Protocol

from core.constants import (
    ANCHOR_FIELD,
    DEFAULT_PACK_TYPE,
    PACK_TYPE_PREFIXES,
    SAMPLE_DATE_FIELDS,
    SENTINEL_EMPTY_TOKENS,
    ZERO_FILLED_ANALYTES,
)
from core.types import RowGroup
from ingest.date_parsing import OUTPUT_DATE_FORMAT, format_date


class FieldMapper(Protocol):
    """Folds a row group into one record."""

    def map_group(self, group: RowGroup) -> dict[str, object]:
        ...


@dataclass(frozen=True)
class AnalyteRule:
    """Maps a variable label to a result field.

    Attributes:
        target: Result field name.
        keywords: Substrings that must all occur in the lower-cased label.
        location: Required sample-point keyword, if the label is ambiguous.
    """

    target: str
    keywords: tuple[str, ...]
    location: str | None = None


@dataclass(frozen=True)
class DateRule:
    """Maps a date column of the first or last row to a record field."""

    source: str
    target: str
    row: Literal["first", "last"]


LAB_RESULT_RULES = (
    AnalyteRule("ph_result", ("ph", "lab")),
    AnalyteRule("boron_result", ("boron",)),
    AnalyteRule("molybdenum_result", ("molybdenum",)),
    AnalyteRule("mains_cond_result", ("conductivity",), location="main"),
    AnalyteRule("sys_cond_result", ("conductivity",), location="system"),
    AnalyteRule("mains_calcium_result", ("calcium",), location="main"),
    AnalyteRule("sys_calcium_result", ("calcium",), location="system"),
    AnalyteRule("iron_result", ("iron",)),
    AnalyteRule("copper_result", ("copper",)),
    AnalyteRule("aluminium_result", ("aluminium",)),
    AnalyteRule("aluminium_result", ("aluminum",)),
    AnalyteRule("appearance_result", ("appearance",)),
    AnalyteRule("nitrate_result", ("nitrate",)),
    AnalyteRule("manganese_result", ("manganese",)),
)
LAB_DATE_RULES = (
    DateRule("date_received", "date_booked", "first"),
    DateRule("analysis_date", "date_processed", "last"),
)


def is_sentinel(value: str) -> bool:
    """Return whether a cell counts as absent."""
    return value.strip().lower() in SENTINEL_EMPTY_TOKENS


def clean_result_value(value: str) -> str | None:
    """Strip detection-limit markers; return ``None`` for absent values."""
    cleaned = value.replace("<", "").strip()
    if is_sentinel(cleaned):
        return None
    return cleaned


def match_analyte(
    variable: str,
    sample_point: str,
    rules: tuple[AnalyteRule, ...] = LAB_RESULT_RULES,
) -> str | None:
    """Return the result field for a variable label and sample point.

    Args:
        variable: Variable (determinand) label.
        sample_point: Sample location label, e.g. ``Main`` or ``System``.
        rules: Ordered rule table; the first match wins.

    Returns:
        Target field name, or ``None`` when no rule matches.
    """
    label = variable.lower()
    location = sample_point.lower()
    for rule in rules:
        if not all(keyword in label for keyword in rule.keywords):
            continue
        if rule.location is not None and rule.location not in location:
            continue
        return rule.target
    return None


def derive_pack_type(pack_reference: str) -> str:
    """Derive the pack type from the pack reference prefix."""
    for prefix, pack_type in PACK_TYPE_PREFIXES.items():
        if pack_reference.startswith(prefix):
            return pack_type
    return DEFAULT_PACK_TYPE


class LabResultFieldMapper:
    """Pivot one-analyte-per-row lab data into a result record."""

    def __init__(
        self,
        rules: tuple[AnalyteRule, ...] = LAB_RESULT_RULES,
        date_rules: tuple[DateRule, ...] = LAB_DATE_RULES,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._rules = rules
        self._date_rules = date_rules
        self._now = now or (lambda: datetime.now(timezone.utc))

    def map_group(self, group: RowGroup) -> dict[str, object]:
        """Fold a lab-result group into one record.

        Args:
            group: Rows sharing one pack reference.

        Returns:
            Result record with analyte, date, and reference fields.
        """
        record: dict[str, object] = {ANCHOR_FIELD: group.group_key}
        record.update({field_name: "0" for field_name in ZERO_FILLED_ANALYTES})
        lab_reference = group.rows[0].values.get("lab_reference", "")
        if not is_sentinel(lab_reference):
            record["lab_reference"] = lab_reference.strip()
        for row in group.rows:
            target = match_analyte(
                row.values.get("variable", ""),
                row.values.get("sample_point", ""),
                self._rules,
            )
            value = clean_result_value(row.values.get("value", ""))
            if target is not None and value is not None:
                record[target] = value
        for date_rule in self._date_rules:
            source_row = group.rows[0] if date_rule.row == "first" else group.rows[-1]
            formatted = format_date(source_row.values.get(date_rule.source, ""))
            if formatted is not None:
                record[date_rule.target] = formatted
        record["date_reported"] = self._now().strftime(OUTPUT_DATE_FORMAT)
        return record


class SampleFieldMapper:
    """Fold sample-upload rows, keeping the last non-empty value per field."""

    def map_group(self, group: RowGroup) -> dict[str, object]:
        """Fold a sample group into one record.

        Args:
            group: Rows sharing one pack reference.

        Returns:
            Sample record with normalized dates and derived pack type.
        """
        record: dict[str, object] = {}
        for row in group.rows:
            for field_name, value in row.values.items():
                if value:
                    record[field_name] = value
        record[ANCHOR_FIELD] = group.group_key
        for field_name in SAMPLE_DATE_FIELDS:
            raw_value = record.pop(field_name, None)
            if raw_value is None:
                continue
            formatted = format_date(str(raw_value))
            if formatted is not None:
                record[field_name] = formatted
        record["pack_type"] = derive_pack_type(group.group_key)
        return record

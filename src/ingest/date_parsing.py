"""Date normalization for CSV cells.

Known formats are tried in order after a two-digit-year repair pass;
pandas is the generic fallback. Unparseable values yield ``None``.
"""

from __future__ import annotations

from datetime import datetime
import re
import warnings

import pandas as pd

from core.constants import SENTINEL_EMPTY_TOKENS

OUTPUT_DATE_FORMAT = "%Y-%m-%dT%H:%M:00"
_KNOWN_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
    "%Y%m%dT%H:%M:%S",
    "%Y%m%dT%H:%M",
    "%Y%m%d",
)
_TWO_DIGIT_YEAR = re.compile(r"^(\d{1,2})([/-])(\d{1,2})\2(\d{2})(\s.*)?$")
_RELATIVE_WORDS = ("now", "today", "tomorrow", "yesterday")


def repair_two_digit_year(value: str) -> str:
    """Expand ``dd/mm/yy`` and ``dd-mm-yy`` into four-digit years in 2000-2099."""
    match = _TWO_DIGIT_YEAR.match(value)
    if match is None:
        return value
    day, separator, month, year, rest = match.groups()
    return f"{day}{separator}{month}{separator}20{year}{rest or ''}"


def parse_date(value: str) -> datetime | None:
    """Parse a date cell.

    Args:
        value: Raw cell value.

    Returns:
        Naive datetime, or ``None`` when the value is empty or unparseable.
    """
    cleaned = value.strip()
    if cleaned.lower() in SENTINEL_EMPTY_TOKENS:
        return None
    cleaned = repair_two_digit_year(cleaned)
    for date_format in _KNOWN_FORMATS:
        try:
            return datetime.strptime(cleaned, date_format)
        except ValueError:
            continue
    return _parse_generic(cleaned)


def format_date(value: str) -> str | None:
    """Parse a date cell and render it in the record date format."""
    parsed = parse_date(value)
    if parsed is None:
        return None
    return parsed.strftime(OUTPUT_DATE_FORMAT)


def _parse_generic(value: str) -> datetime | None:
    """Fall back to pandas' flexible parser, day-first."""
    if value.lower() in _RELATIVE_WORDS:
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        parsed = pd.to_datetime(value, errors="coerce", dayfirst=True)
    if pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert(None)
    return parsed.to_pydatetime()

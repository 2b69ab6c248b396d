"""Group validation rules.

Validators are pure and total: every record maps to exactly one
``ValidationOutcome`` and no validator raises.
"""

from __future__ import annotations

import re
from typing import Mapping, Protocol

from core.constants import ANALYTE_FIELDS, ANCHOR_FIELD, INVALID_RESULT_TOKENS
from core.types import FieldError, RowGroup, ValidationOutcome

PACK_REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9]+(?:[-/ ][A-Za-z0-9]+)*$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Validator(Protocol):
    """Validates a mapped group record."""

    def __call__(self, group: RowGroup, record: Mapping[str, object]) -> ValidationOutcome:
        ...


def is_valid_email(value: object) -> bool:
    """Return whether a value looks like an email address."""
    return isinstance(value, str) and EMAIL_PATTERN.match(value.strip()) is not None


def has_result_value(value: object) -> bool:
    """Return whether an analyte value carries a real result."""
    if value is None:
        return False
    return str(value).strip().lower() not in INVALID_RESULT_TOKENS


def validate_lab_result(group: RowGroup, record: Mapping[str, object]) -> ValidationOutcome:
    """Require at least one real analyte result in a lab-result record.

    Args:
        group: Source row group.
        record: Mapped result record.

    Returns:
        Valid outcome, or an invalid one with a single explanatory error.
    """
    if any(has_result_value(record.get(field_name)) for field_name in ANALYTE_FIELDS):
        return ValidationOutcome(group=group, record=record)
    error = FieldError(
        field="results",
        message=(
            f"No valid test result data found for pack {group.group_key}. "
            "All result fields are empty, zero or pending."
        ),
    )
    return ValidationOutcome(group=group, record=record, errors=(error,))


def validate_sample(group: RowGroup, record: Mapping[str, object]) -> ValidationOutcome:
    """Check the pack reference of a sample-upload record.

    Args:
        group: Source row group.
        record: Mapped sample record.

    Returns:
        Validation outcome listing every field error found.
    """
    errors: list[FieldError] = []
    pack_reference = str(record.get(ANCHOR_FIELD) or "").strip()
    if not pack_reference:
        errors.append(FieldError(ANCHOR_FIELD, "Pack reference number missing."))
    elif PACK_REFERENCE_PATTERN.match(pack_reference) is None:
        errors.append(
            FieldError(ANCHOR_FIELD, f"Pack reference number {pack_reference} is invalid.")
        )
    return ValidationOutcome(group=group, record=record, errors=tuple(errors))

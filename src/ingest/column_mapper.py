"""Column permission mapping.

This module filters a header row against a known-field registry and
the submitter's access level, and turns raw rows into typed rows.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Sequence, cast

from core.constants import (
    ACCESS_ADMIN,
    ACCESS_LEVELS,
    ACCESS_USER,
    CELL_HEAD_LENGTH,
    CELL_TAIL_LENGTH,
    LAB_DEFAULT_HEADERS,
    MAX_CELL_LENGTH,
    SAMPLE_DEFAULT_HEADERS,
    TRUNCATION_MARKER,
)
from core.errors import LabIntakeConfigError, LabIntakeDependencyError, MissingAnchorColumnError
from core.types import AccessLevel, ColumnMapping, FieldSpec, RawRow, TypedRow
from ingest.csv_reader import HeaderIndex, normalize_header_label

_ADMIN_ONLY_SAMPLE_FIELDS = ("project_id", "customer_id")


class FieldRegistry:
    """Known fields and the access level needed to populate each."""

    def __init__(self, fields: Iterable[FieldSpec]) -> None:
        self._fields = {field.name: field for field in fields}

    def get(self, name: str) -> FieldSpec | None:
        return self._fields.get(name)

    def names(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def allows(self, name: str, access: AccessLevel) -> bool:
        """Return whether a caller with ``access`` may populate ``name``."""
        field_spec = self._fields.get(name)
        if field_spec is None:
            return False
        return field_spec.access == ACCESS_USER or access == ACCESS_ADMIN

    def with_overrides(self, overrides: Mapping[str, AccessLevel]) -> "FieldRegistry":
        """Return a registry with field access levels replaced or added."""
        merged = dict(self._fields)
        for name, access in overrides.items():
            merged[name] = FieldSpec(name=name, access=access)
        return FieldRegistry(merged.values())


def lab_result_registry() -> FieldRegistry:
    """Return the registry of lab-result CSV columns."""
    return FieldRegistry(FieldSpec(name=name, access="user") for name in LAB_DEFAULT_HEADERS)


def sample_registry() -> FieldRegistry:
    """Return the registry of sample-upload CSV columns."""
    return FieldRegistry(
        FieldSpec(
            name=name,
            access="admin" if name in _ADMIN_ONLY_SAMPLE_FIELDS else "user",
        )
        for name in SAMPLE_DEFAULT_HEADERS
    )


def map_columns(
    header_row: Sequence[str] | None,
    registry: FieldRegistry,
    access: AccessLevel,
    anchor_field: str,
    default_headers: Sequence[str],
) -> ColumnMapping:
    """Map a header row onto accepted and rejected column positions.

    Args:
        header_row: Raw header cells, or ``None`` when the file has no header.
        registry: Known-field registry.
        access: Access level of the submitter.
        anchor_field: Mandatory grouping-key field.
        default_headers: Column ordering used when no header is present.

    Returns:
        Accepted and rejected column maps.

    Raises:
        MissingAnchorColumnError: If the anchor field is not accepted.
    """
    labels = default_headers if header_row is None else header_row
    accepted: dict[int, str] = {}
    rejected: dict[int, str] = {}
    for position, label in enumerate(labels):
        field_name = normalize_header_label(label)
        if not field_name:
            continue
        if registry.allows(field_name, access) and field_name not in accepted.values():
            accepted[position] = field_name
        else:
            rejected[position] = label
    if anchor_field not in HeaderIndex(accepted):
        raise MissingAnchorColumnError(
            f"No {anchor_field} field found in the header row. "
            "Ensure the CSV has a header row containing this column, "
            "or de-select the header line option to use the default column order."
        )
    return ColumnMapping(accepted=accepted, rejected=rejected)


def build_typed_row(raw_row: RawRow, header_index: HeaderIndex) -> TypedRow:
    """Project a raw row onto its accepted fields.

    Args:
        raw_row: Parsed CSV row.
        header_index: Column lookups for the accepted header.

    Returns:
        Typed row keyed by field name; missing trailing cells are blank.
    """
    values = {
        field_name: sanitize_cell(header_index.cell(raw_row.cells, field_name))
        for field_name in header_index.field_names()
    }
    return TypedRow(line_number=raw_row.line_number, values=values, raw=raw_row)


def sanitize_cell(value: str) -> str:
    """Cap oversized cells, keeping the head and tail of the value."""
    if len(value) <= MAX_CELL_LENGTH:
        return value
    return value[:CELL_HEAD_LENGTH] + TRUNCATION_MARKER + value[-CELL_TAIL_LENGTH:]


def load_field_registry(registry_path: Path, base: FieldRegistry) -> FieldRegistry:
    """Apply access overrides from a YAML registry file.

    The file holds a ``fields`` mapping of field name to ``user`` or ``admin``.

    Args:
        registry_path: YAML file path.
        base: Registry the overrides apply to.

    Returns:
        Registry with overrides applied.

    Raises:
        LabIntakeConfigError: If the file is missing or malformed.
        LabIntakeDependencyError: If PyYAML is unavailable.
    """
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise LabIntakeDependencyError(
            "Field registry files require PyYAML. Install with 'pip install pyyaml'."
        ) from error
    if not registry_path.exists():
        raise LabIntakeConfigError(
            f"Field registry file does not exist at {registry_path}. "
            "Fix LABINTAKE_FIELD_REGISTRY or unset it."
        )
    try:
        payload = yaml.safe_load(registry_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as error:
        raise LabIntakeConfigError(
            f"Failed to load field registry at {registry_path}: {error}. "
            "Fix YAML syntax and retry."
        ) from error
    fields = payload.get("fields") if isinstance(payload, dict) else None
    if not isinstance(fields, dict):
        raise LabIntakeConfigError(
            f"Field registry at {registry_path} must define a 'fields' mapping "
            "of field name to access level."
        )
    overrides: dict[str, AccessLevel] = {}
    for name, access in fields.items():
        if access not in ACCESS_LEVELS:
            raise LabIntakeConfigError(
                f"Invalid access level '{access}' for field '{name}' in {registry_path}. "
                f"Use one of {ACCESS_LEVELS}."
            )
        overrides[normalize_header_label(str(name))] = cast(AccessLevel, access)
    return base.with_overrides(overrides)

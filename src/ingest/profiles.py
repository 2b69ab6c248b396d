"""Intake profiles.

A profile bundles everything that differs between the lab-result feed
and interactive sample uploads: the field registry, anchor column,
default column order, field mapper, and validator.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from core.constants import ANCHOR_FIELD, LAB_DEFAULT_HEADERS, SAMPLE_DEFAULT_HEADERS
from core.errors import LabIntakeConfigError
from ingest.column_mapper import (
    FieldRegistry,
    lab_result_registry,
    load_field_registry,
    sample_registry,
)
from ingest.field_mapper import FieldMapper, LabResultFieldMapper, SampleFieldMapper
from ingest.validator import Validator, validate_lab_result, validate_sample

LAB_RESULT_PROFILE = "lab_results"
SAMPLE_UPLOAD_PROFILE = "sample_upload"
PROFILE_NAMES = (LAB_RESULT_PROFILE, SAMPLE_UPLOAD_PROFILE)


@dataclass(frozen=True)
class IntakeProfile:
    """Per-feed parsing and validation settings.

    Attributes:
        name: Profile identifier stored in job state.
        registry: Known-field registry with access levels.
        anchor_field: Mandatory grouping-key field.
        default_headers: Column order used when a file has no header row.
        field_mapper: Folds a group into one record.
        validator: Validates the folded record.
    """

    name: str
    registry: FieldRegistry
    anchor_field: str
    default_headers: tuple[str, ...]
    field_mapper: FieldMapper
    validator: Validator


def lab_result_profile(registry: FieldRegistry | None = None) -> IntakeProfile:
    """Build the lab-result profile used by the automated worker."""
    return IntakeProfile(
        name=LAB_RESULT_PROFILE,
        registry=registry or lab_result_registry(),
        anchor_field=ANCHOR_FIELD,
        default_headers=LAB_DEFAULT_HEADERS,
        field_mapper=LabResultFieldMapper(),
        validator=validate_lab_result,
    )


def sample_upload_profile(registry: FieldRegistry | None = None) -> IntakeProfile:
    """Build the sample-upload profile used by the chunked driver."""
    return IntakeProfile(
        name=SAMPLE_UPLOAD_PROFILE,
        registry=registry or sample_registry(),
        anchor_field=ANCHOR_FIELD,
        default_headers=SAMPLE_DEFAULT_HEADERS,
        field_mapper=SampleFieldMapper(),
        validator=validate_sample,
    )


def build_profile(name: str, field_registry_path: Path | None = None) -> IntakeProfile:
    """Build a profile by name, applying registry overrides when configured.

    Args:
        name: Profile name.
        field_registry_path: Optional YAML access override file.

    Returns:
        Intake profile.

    Raises:
        LabIntakeConfigError: If the name is unknown or the registry file is invalid.
    """
    if name == LAB_RESULT_PROFILE:
        registry = lab_result_registry()
        if field_registry_path is not None:
            registry = load_field_registry(field_registry_path, registry)
        return lab_result_profile(registry)
    if name == SAMPLE_UPLOAD_PROFILE:
        registry = sample_registry()
        if field_registry_path is not None:
            registry = load_field_registry(field_registry_path, registry)
        return sample_upload_profile(registry)
    raise LabIntakeConfigError(f"Unknown intake profile '{name}'. Use one of {PROFILE_NAMES}.")

"""labintake exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Only file-level setup failures surface as exceptions; row and group
failures are captured as outcome data by the pipeline.
"""

from __future__ import annotations


class LabIntakeError(Exception):
    """Base exception for all labintake failures."""


class LabIntakeConfigError(LabIntakeError):
    """Raised for invalid runtime configuration."""


class LabIntakeStageError(LabIntakeError):
    """Raised when a staging directory cannot be created or written."""


class MissingAnchorColumnError(LabIntakeError):
    """Raised when a header row lacks the mandatory grouping column."""


class LabIntakeStoreError(LabIntakeError):
    """Raised for record store, ledger, and notice persistence failures."""


class LabIntakeSinkError(LabIntakeError):
    """Raised for remote result sink failures."""


class SinkTimeoutError(LabIntakeSinkError):
    """Raised when the remote result sink does not answer in time."""


class LabIntakeJobStateError(LabIntakeError):
    """Raised for missing or corrupt resumable job state."""


class LabIntakeDependencyError(LabIntakeError):
    """Raised when an optional runtime dependency is missing."""

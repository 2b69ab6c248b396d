"""Public SDK surface for labintake.

This module provides a stable import path for programmatic users.
It re-exports the primary client and typed models.
"""

from __future__ import annotations

from core.config import LabIntakeConfig
from core.errors import (
    LabIntakeError,
    LabIntakeJobStateError,
    LabIntakeStageError,
    MissingAnchorColumnError,
)
from core.types import (
    ChunkOutcome,
    DispatchResult,
    FileOutcome,
    IntakeFile,
    JobSummary,
    Notice,
    ResumableJobState,
    Submitter,
)
from ingest.pipeline import build_runtime
from store.intake_sdk import IntakeClient

__all__ = [
    "ChunkOutcome",
    "DispatchResult",
    "FileOutcome",
    "IntakeClient",
    "IntakeFile",
    "JobSummary",
    "LabIntakeConfig",
    "LabIntakeError",
    "LabIntakeJobStateError",
    "LabIntakeStageError",
    "MissingAnchorColumnError",
    "Notice",
    "ResumableJobState",
    "Submitter",
    "build_runtime",
]

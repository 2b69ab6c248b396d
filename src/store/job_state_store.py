"""Resumable job state persistence.

This module stores one JSON document per chunked upload job so a job
can resume across process restarts.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
import re
from typing import Any, cast

from core.constants import JOBS_DIR_NAME
from core.errors import LabIntakeJobStateError, LabIntakeStoreError
from core.types import AccessLevel, JobPhase, JobSummary, ResumableJobState, Submitter
from store.json_io import read_json_object, write_json_atomic

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
_PHASES = ("unstarted", "header_resolved", "in_progress", "done")


class FileJobStateStore:
    """Filesystem-backed resumable job state store."""

    def __init__(self, store_root: Path) -> None:
        self._jobs_dir = store_root / JOBS_DIR_NAME
        self._jobs_dir.mkdir(parents=True, exist_ok=True)

    def load(self, job_id: str) -> ResumableJobState | None:
        """Load job state if present.

        Raises:
            LabIntakeJobStateError: If the stored state is corrupt.
        """
        state_path = self._state_path(job_id)
        try:
            payload = read_json_object(state_path)
        except LabIntakeStoreError as error:
            raise LabIntakeJobStateError(
                f"Failed to read job state for '{job_id}': {error}"
            ) from error
        if payload is None:
            return None
        return state_from_payload(payload, state_path)

    def save(self, job_id: str, state: ResumableJobState) -> None:
        """Persist job state."""
        write_json_atomic(self._state_path(job_id), state_to_payload(state))

    def delete(self, job_id: str) -> None:
        """Remove job state once the job is done."""
        self._state_path(job_id).unlink(missing_ok=True)

    def list_job_ids(self) -> list[str]:
        return sorted(path.stem for path in self._jobs_dir.glob("*.json"))

    def _state_path(self, job_id: str) -> Path:
        if _JOB_ID_PATTERN.match(job_id) is None:
            raise LabIntakeJobStateError(
                f"Invalid job id '{job_id}'. Use letters, digits, '.', '_' or '-'."
            )
        return self._jobs_dir / f"{job_id}.json"


def state_to_payload(state: ResumableJobState) -> dict[str, Any]:
    """Serialize job state into a JSON-compatible mapping."""
    return {
        "job_id": state.job_id,
        "source_path": state.source_path,
        "filename": state.filename,
        "profile": state.profile,
        "submitter": asdict(state.submitter),
        "has_header": state.has_header,
        "phase": state.phase,
        "offset": state.offset,
        "line_number": state.line_number,
        "headers": {str(key): value for key, value in state.headers.items()},
        "rejected": {str(key): value for key, value in state.rejected.items()},
        "expected_width": state.expected_width,
        "summary": asdict(state.summary),
        "results": dict(state.results),
        "source_size": state.source_size,
        "source_modified_at": state.source_modified_at,
    }


def state_from_payload(payload: dict[str, Any], state_path: Path) -> ResumableJobState:
    """Deserialize and validate job state.

    Args:
        payload: Parsed JSON state document.
        state_path: Source path used in error messages.

    Returns:
        Typed job state.

    Raises:
        LabIntakeJobStateError: If required keys are missing or invalid.
    """
    try:
        phase = str(payload["phase"])
        if phase not in _PHASES:
            raise ValueError(f"unknown phase '{phase}'")
        submitter_payload = payload["submitter"]
        expected_width = payload.get("expected_width")
        source_size = payload.get("source_size")
        source_modified_at = payload.get("source_modified_at")
        return ResumableJobState(
            job_id=str(payload["job_id"]),
            source_path=str(payload["source_path"]),
            filename=str(payload["filename"]),
            profile=str(payload["profile"]),
            submitter=Submitter(
                name=str(submitter_payload["name"]),
                access=cast(AccessLevel, submitter_payload["access"]),
                client_id=submitter_payload.get("client_id"),
                client_name=submitter_payload.get("client_name"),
                ucr=submitter_payload.get("ucr"),
            ),
            has_header=bool(payload["has_header"]),
            phase=cast(JobPhase, phase),
            offset=int(payload["offset"]),
            line_number=int(payload["line_number"]),
            headers={int(key): str(value) for key, value in payload["headers"].items()},
            rejected={int(key): str(value) for key, value in payload["rejected"].items()},
            expected_width=int(expected_width) if expected_width is not None else None,
            summary=JobSummary(**{key: int(value) for key, value in payload["summary"].items()}),
            results=dict(payload.get("results") or {}),
            source_size=int(source_size) if source_size is not None else None,
            source_modified_at=(
                float(source_modified_at) if source_modified_at is not None else None
            ),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as error:
        raise LabIntakeJobStateError(
            f"Invalid job state at {state_path}: {error}. "
            "Delete the job state file and restart the upload."
        ) from error

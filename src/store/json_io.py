"""JSON persistence helpers for filesystem stores.

Writes go through a temp file plus rename so concurrent readers never
observe a partially written document.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
import tempfile
from typing import Any

from core.constants import HASH_ALGORITHM
from core.errors import LabIntakeStoreError


def key_file_name(natural_key: str) -> str:
    """Build a filesystem-safe file name for an arbitrary key."""
    digest = hashlib.new(HASH_ALGORITHM, natural_key.encode("utf-8")).hexdigest()
    return f"{digest[:32]}.json"


def write_json_atomic(target_path: Path, payload: dict[str, Any]) -> None:
    """Write a JSON document atomically.

    Args:
        target_path: Destination file.
        payload: JSON-serializable object.

    Raises:
        LabIntakeStoreError: If the document cannot be written.
    """
    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(
            prefix=f".{target_path.name}.", suffix=".tmp", dir=target_path.parent
        )
        with os.fdopen(handle, "w", encoding="utf-8") as temp_file:
            temp_file.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")
        os.replace(temp_name, target_path)
    except OSError as error:
        raise LabIntakeStoreError(
            f"Failed to write {target_path}: {error}. Check store root permissions and retry."
        ) from error


def read_json_object(source_path: Path) -> dict[str, Any] | None:
    """Read a JSON object, returning ``None`` when the file is absent.

    Args:
        source_path: JSON file path.

    Returns:
        Parsed object, or ``None`` if the file does not exist.

    Raises:
        LabIntakeStoreError: If the file is unreadable or not a JSON object.
    """
    try:
        text = source_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as error:
        raise LabIntakeStoreError(
            f"Failed to read {source_path}: {error}. Check store root permissions and retry."
        ) from error
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise LabIntakeStoreError(
            f"Failed to parse {source_path}: {error.msg}. Remove the corrupt file and retry."
        ) from error
    if not isinstance(payload, dict):
        raise LabIntakeStoreError(
            f"Failed to parse {source_path}: expected JSON object at top level. "
            "Remove the corrupt file and retry."
        )
    return payload

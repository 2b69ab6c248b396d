"""Record store with create-or-update semantics.

Each collection keeps one JSON document per natural key, so repeated
commits for the same key converge on a single stored record.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from core.constants import RECORDS_DIR_NAME
from core.errors import LabIntakeStoreError
from core.types import StoredRecord
from store.json_io import key_file_name, read_json_object, write_json_atomic


class RecordStore(Protocol):
    """Record store contract consumed by the dispatcher."""

    def find_by_natural_key(self, natural_key: str) -> StoredRecord | None:
        ...

    def create_or_update(self, natural_key: str, fields: Mapping[str, object]) -> StoredRecord:
        ...


class JsonRecordStore:
    """Filesystem-backed record collection."""

    def __init__(
        self,
        store_root: Path,
        collection: str,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._collection = collection
        self._collection_dir = store_root / RECORDS_DIR_NAME / collection
        self._collection_dir.mkdir(parents=True, exist_ok=True)
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def collection(self) -> str:
        return self._collection

    def find_by_natural_key(self, natural_key: str) -> StoredRecord | None:
        """Return the record stored under a natural key, if any."""
        payload = read_json_object(self._record_path(natural_key))
        if payload is None:
            return None
        return _record_from_payload(payload, self._record_path(natural_key))

    def create_or_update(self, natural_key: str, fields: Mapping[str, object]) -> StoredRecord:
        """Create a record or merge fields into the existing one.

        Args:
            natural_key: Externally meaningful identifier.
            fields: Field values to store; existing fields not given are kept.

        Returns:
            The committed record.

        Raises:
            LabIntakeStoreError: If the record cannot be persisted.
        """
        existing = self.find_by_natural_key(natural_key)
        timestamp = self._now()
        if existing is None:
            record = StoredRecord(
                natural_key=natural_key,
                fields=dict(fields),
                revision=1,
                created_at=timestamp,
                updated_at=timestamp,
            )
        else:
            record = StoredRecord(
                natural_key=natural_key,
                fields={**existing.fields, **fields},
                revision=existing.revision + 1,
                created_at=existing.created_at,
                updated_at=timestamp,
            )
        write_json_atomic(self._record_path(natural_key), _record_to_payload(record))
        return record

    def list_records(self) -> list[StoredRecord]:
        """Return all records in the collection, ordered by natural key."""
        records = []
        for record_path in self._collection_dir.glob("*.json"):
            payload = read_json_object(record_path)
            if payload is not None:
                records.append(_record_from_payload(payload, record_path))
        return sorted(records, key=lambda record: record.natural_key)

    def count(self) -> int:
        return sum(1 for _ in self._collection_dir.glob("*.json"))

    def _record_path(self, natural_key: str) -> Path:
        return self._collection_dir / key_file_name(natural_key)


def _record_to_payload(record: StoredRecord) -> dict[str, Any]:
    return {
        "natural_key": record.natural_key,
        "fields": dict(record.fields),
        "revision": record.revision,
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


def _record_from_payload(payload: dict[str, Any], record_path: Path) -> StoredRecord:
    """Deserialize a stored record payload."""
    try:
        return StoredRecord(
            natural_key=str(payload["natural_key"]),
            fields=dict(payload["fields"]),
            revision=int(payload["revision"]),
            created_at=datetime.fromisoformat(str(payload["created_at"])),
            updated_at=datetime.fromisoformat(str(payload["updated_at"])),
        )
    except (KeyError, TypeError, ValueError) as error:
        raise LabIntakeStoreError(
            f"Invalid record payload at {record_path}: {error}. "
            "Remove the corrupt record and re-run the intake."
        ) from error

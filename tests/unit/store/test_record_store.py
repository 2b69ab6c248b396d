"""Unit tests for the JSON record store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.errors import LabIntakeStoreError
from store.client_directory import ClientDirectory, build_client_ucr
from store.record_store import JsonRecordStore


def _clock(*moments: datetime):
    remaining = list(moments)
    return lambda: remaining.pop(0)


def test_create_or_update_merges_fields_and_bumps_revision(tmp_path: Path) -> None:
    """Updates should keep unmentioned fields and the creation time."""
    first = datetime(2024, 1, 1, tzinfo=timezone.utc)
    second = first + timedelta(hours=1)
    store = JsonRecordStore(tmp_path, "results", now=_clock(first, second))

    store.create_or_update("PK1", {"ph_result": "7.2", "iron_result": "0.1"})
    updated = store.create_or_update("PK1", {"ph_result": "7.4"})

    assert updated.fields == {"ph_result": "7.4", "iron_result": "0.1"}
    assert updated.revision == 2
    assert updated.created_at == first and updated.updated_at == second


def test_records_survive_reopening_the_collection(tmp_path: Path) -> None:
    """A new store instance should see previously committed records."""
    JsonRecordStore(tmp_path, "samples").create_or_update("102-0001", {"ucr": "1"})

    reopened = JsonRecordStore(tmp_path, "samples")

    record = reopened.find_by_natural_key("102-0001")
    assert record is not None and record.fields == {"ucr": "1"}


def test_list_records_orders_by_natural_key(tmp_path: Path) -> None:
    """Listing should be ordered by natural key."""
    store = JsonRecordStore(tmp_path, "samples")
    store.create_or_update("B", {})
    store.create_or_update("A", {})

    assert [record.natural_key for record in store.list_records()] == ["A", "B"]
    assert store.count() == 2


def test_collections_are_isolated(tmp_path: Path) -> None:
    """The same key in different collections should not collide."""
    JsonRecordStore(tmp_path, "samples").create_or_update("PK1", {"kind": "sample"})

    assert JsonRecordStore(tmp_path, "results").find_by_natural_key("PK1") is None


def test_corrupt_record_raises_store_error(tmp_path: Path) -> None:
    """Corrupt documents should surface as store errors."""
    store = JsonRecordStore(tmp_path, "results")
    store.create_or_update("PK1", {})
    record_path = next((tmp_path / "records" / "results").glob("*.json"))
    record_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(LabIntakeStoreError, match="Remove the corrupt file"):
        store.find_by_natural_key("PK1")


def test_client_directory_find_or_create_is_stable(tmp_path: Path) -> None:
    """The same email should resolve to one client with a stable ucr."""
    directory = ClientDirectory(JsonRecordStore(tmp_path, "clients"))

    created = directory.find_or_create("Ann@Example.com", name="Ann")
    again = directory.find_or_create("ann@example.com")

    assert created.natural_key == again.natural_key == "ann@example.com"
    assert again.fields["ucr"] == build_client_ucr("ann@example.com")
    assert len(str(again.fields["ucr"])) == 6

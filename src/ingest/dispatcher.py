"""Group dispatch to the record store and remote sink.

Each valid group resolves its secondary key, is committed locally with
create-or-update semantics, and is then optionally POSTed to the remote
sink. A remote failure never rolls back the local commit.
"""

from __future__ import annotations

from typing import Mapping, Protocol

from core.constants import ANCHOR_FIELD, PLACEHOLDER_SECONDARY_KEY
from core.errors import LabIntakeSinkError, LabIntakeStoreError
from core.logging_config import get_logger
from core.types import DispatchResult, ResolvedKey, StoredRecord, Submitter, ValidationOutcome
from ingest.validator import is_valid_email
from store.client_directory import ClientDirectory
from store.record_store import RecordStore
from store.remote_sink import ResultSink

_LOGGER = get_logger(__name__)


class SecondaryKeyResolver(Protocol):
    """Looks up the business identifier for a mapped record."""

    def resolve(self, record: Mapping[str, object]) -> ResolvedKey | None:
        ...


class SampleKeyResolver:
    """Resolve a lab result's ``ucr`` from the sample with the same pack reference.

    When the sample exists its ``lab_ref`` is linked to the result's lab
    reference.
    """

    def __init__(self, samples: RecordStore) -> None:
        self._samples = samples

    def resolve(self, record: Mapping[str, object]) -> ResolvedKey | None:
        pack_reference = str(record.get(ANCHOR_FIELD) or "")
        sample = self._samples.find_by_natural_key(pack_reference)
        if sample is None:
            return None
        lab_reference = record.get("lab_reference")
        if lab_reference and sample.fields.get("lab_ref") != lab_reference:
            self._samples.create_or_update(pack_reference, {"lab_ref": lab_reference})
        ucr = str(sample.fields.get("ucr") or "")
        if not ucr or ucr == PLACEHOLDER_SECONDARY_KEY:
            return None
        return ResolvedKey(value=ucr)


class ClientKeyResolver:
    """Resolve a sample's ``ucr`` through the client directory.

    The installer email wins over the company email; without a valid
    email the submitter's own client is used.
    """

    def __init__(self, clients: ClientDirectory, submitter: Submitter) -> None:
        self._clients = clients
        self._submitter = submitter

    def resolve(self, record: Mapping[str, object]) -> ResolvedKey | None:
        for email_field, name_field in (
            ("installer_email", "installer_name"),
            ("company_email", "company_name"),
        ):
            email = record.get(email_field)
            if not is_valid_email(email):
                continue
            name = str(record.get(name_field) or "") or None
            client = self._clients.find_or_create(str(email), name=name)
            return ResolvedKey(
                value=str(client.fields["ucr"]),
                fields={"client_id": client.natural_key, "client_name": client.fields.get("name")},
            )
        if self._submitter.ucr:
            return ResolvedKey(
                value=self._submitter.ucr,
                fields={
                    "client_id": self._submitter.client_id,
                    "client_name": self._submitter.client_name,
                },
            )
        return None


class Dispatcher:
    """Commit validated groups and notify the optional remote sink."""

    def __init__(
        self,
        records: RecordStore,
        resolver: SecondaryKeyResolver,
        sink: ResultSink | None = None,
        secondary_key_field: str = "ucr",
        placeholder_fields: Mapping[str, object] | None = None,
    ) -> None:
        self._records = records
        self._resolver = resolver
        self._sink = sink
        self._secondary_key_field = secondary_key_field
        self._placeholder_fields = dict(placeholder_fields or {})

    def dispatch(self, outcome: ValidationOutcome) -> DispatchResult:
        """Dispatch one validated group.

        Args:
            outcome: Validation outcome for the group.

        Returns:
            ``skipped`` for invalid groups, ``failed`` when the commit or
            the remote sink fails, else ``committed``.
        """
        group_key = outcome.group.group_key
        if not outcome.is_valid:
            reason = "; ".join(error.message for error in outcome.errors)
            return DispatchResult(group_key=group_key, status="skipped", reason=reason)
        warnings: list[str] = []
        try:
            resolved = self._resolver.resolve(outcome.record)
            if resolved is None:
                resolved = ResolvedKey(PLACEHOLDER_SECONDARY_KEY, self._placeholder_fields)
                warnings.append(
                    f"No {self._secondary_key_field} found for {group_key}; "
                    f"using placeholder '{PLACEHOLDER_SECONDARY_KEY}'."
                )
                _LOGGER.warning(
                    "secondary_key_unresolved",
                    group_key=group_key,
                    field=self._secondary_key_field,
                )
            fields = {
                **outcome.record,
                **resolved.fields,
                self._secondary_key_field: resolved.value,
            }
            committed = self._records.create_or_update(group_key, fields)
        except LabIntakeStoreError as error:
            return DispatchResult(
                group_key=group_key, status="failed", reason=str(error), warnings=tuple(warnings)
            )
        if self._sink is not None:
            try:
                self._sink.send(build_sink_payload(committed, self._secondary_key_field))
            except LabIntakeSinkError as error:
                _LOGGER.error("result_sink_failed", group_key=group_key, error=str(error))
                return DispatchResult(
                    group_key=group_key,
                    status="failed",
                    reason=str(error),
                    record=committed,
                    warnings=tuple(warnings),
                )
        return DispatchResult(
            group_key=group_key,
            status="committed",
            record=committed,
            warnings=tuple(warnings),
        )


def build_sink_payload(record: StoredRecord, secondary_key_field: str) -> dict[str, object]:
    """Build the remote sink body; numeric secondary keys are sent as integers."""
    payload = dict(record.fields)
    key_value = str(payload.get(secondary_key_field) or PLACEHOLDER_SECONDARY_KEY)
    payload[secondary_key_field] = int(key_value) if key_value.isdigit() else key_value
    return payload

"""Client lookup for sample uploads.

Clients are keyed by lower-cased email. Their business identifier is
derived from the email so retried uploads resolve the same client.
"""

from __future__ import annotations

import hashlib

from core.constants import HASH_ALGORITHM
from core.types import StoredRecord
from store.record_store import RecordStore


def build_client_ucr(email: str) -> str:
    """Derive a stable six-digit identifier from a client email."""
    digest = hashlib.new(HASH_ALGORITHM, email.encode("utf-8")).hexdigest()
    return str(100000 + int(digest[:12], 16) % 900000)


class ClientDirectory:
    """Find-or-create client records backed by a record store."""

    def __init__(self, clients: RecordStore) -> None:
        self._clients = clients

    def find(self, email: str) -> StoredRecord | None:
        return self._clients.find_by_natural_key(email.strip().lower())

    def find_or_create(self, email: str, name: str | None = None) -> StoredRecord:
        """Return the client for an email, creating it when absent.

        Args:
            email: Client contact email.
            name: Display name used when creating the client.

        Returns:
            Stored client record carrying ``ucr``, ``email`` and ``name``.
        """
        client_key = email.strip().lower()
        existing = self._clients.find_by_natural_key(client_key)
        if existing is not None:
            return existing
        return self._clients.create_or_update(
            client_key,
            {"email": client_key, "name": name or client_key, "ucr": build_client_ucr(client_key)},
        )

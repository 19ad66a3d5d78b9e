from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dataclasses_json import Undefined, dataclass_json

from .common import as_optional_str
from .json_file import read_json_object_or_empty, updating_json_object

PENDING_STORE_VERSION = 1
PENDING_STORE_LABEL = "pending auth file"


@dataclass_json(undefined=Undefined.EXCLUDE)
@dataclass(frozen=True, slots=True)
class PendingAuthorization:
    """Everything needed to finish a flow once the authorization code arrives."""

    server_id: str
    client_id: str
    redirect_uri: str
    code_verifier: str
    state: str
    token_endpoint: str
    resource_value: str
    client_secret: str | None = None
    authorization_url: str | None = None
    created_at: int | None = None

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> PendingAuthorization:
        pending = cls.from_dict(doc)
        pending.validate()
        return pending

    def to_doc(self) -> dict[str, Any]:
        doc = self.to_dict()
        return {key: value for key, value in doc.items() if value is not None}

    def validate(self) -> None:
        for key in (
            "server_id",
            "client_id",
            "redirect_uri",
            "code_verifier",
            "state",
            "token_endpoint",
            "resource_value",
        ):
            if not as_optional_str(getattr(self, key)):
                raise ValueError(f"invalid pending authorization: missing {key}")


class PendingStore:
    """Pending authorizations keyed by server id, persisted in one JSON file.

    At most one record exists per server id; `put` replaces, `take` consumes.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def put(self, pending: PendingAuthorization) -> PendingAuthorization | None:
        pending.validate()
        with updating_json_object(
            self.path, label=PENDING_STORE_LABEL, private=True
        ) as doc:
            entries = _entries(doc)
            previous = entries.get(pending.server_id)
            entries[pending.server_id] = pending.to_doc()
        if isinstance(previous, dict):
            return PendingAuthorization.from_doc(previous)
        return None

    def get(self, server_id: str) -> PendingAuthorization | None:
        doc = read_json_object_or_empty(self.path, label=PENDING_STORE_LABEL)
        entry = _entries(doc).get(server_id)
        if not isinstance(entry, dict):
            return None
        return PendingAuthorization.from_doc(entry)

    def take(
        self, server_id: str, *, expected_state: str | None = None
    ) -> PendingAuthorization | None:
        """Remove and return the record, if present and (optionally) still the same flow."""

        with updating_json_object(
            self.path, label=PENDING_STORE_LABEL, private=True
        ) as doc:
            entries = _entries(doc)
            entry = entries.get(server_id)
            if not isinstance(entry, dict):
                return None
            pending = PendingAuthorization.from_doc(entry)
            if expected_state is not None and pending.state != expected_state:
                return None
            del entries[server_id]
        return pending

    def server_ids(self) -> list[str]:
        doc = read_json_object_or_empty(self.path, label=PENDING_STORE_LABEL)
        return sorted(_entries(doc))


def _entries(doc: dict[str, Any]) -> dict[str, Any]:
    version = doc.setdefault("version", PENDING_STORE_VERSION)
    if version != PENDING_STORE_VERSION:
        raise ValueError(f"unsupported {PENDING_STORE_LABEL} version: {version}")
    entries = doc.get("pending")
    if not isinstance(entries, dict):
        entries = {}
        doc["pending"] = entries
    return entries

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable

from dataclasses_json import Undefined, dataclass_json

from .json_file import read_json_object_or_empty, updating_json_object
from .oauth_token import OAuthToken

CREDENTIAL_STORE_LABEL = "credential store"


@dataclass_json(undefined=Undefined.EXCLUDE)
@dataclass(frozen=True, slots=True)
class StoredCredentials:
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str | None = None
    scope: str | None = None
    expires_at: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    updated_at: int | None = None


class CredentialStore:
    """Tokens and client identities the CLI keeps per server id."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get(self, server_id: str) -> StoredCredentials | None:
        doc = read_json_object_or_empty(self.path, label=CREDENTIAL_STORE_LABEL)
        entry = _servers(doc).get(server_id)
        if not isinstance(entry, dict):
            return None
        return StoredCredentials.from_dict(entry)

    def remember_client(
        self, server_id: str, *, client_id: str, client_secret: str | None, now: int
    ) -> StoredCredentials:
        def apply(current: StoredCredentials) -> StoredCredentials:
            return replace(
                current, client_id=client_id, client_secret=client_secret, updated_at=now
            )

        return self._update(server_id, apply)

    def save_token(self, server_id: str, token: OAuthToken, *, now: int) -> StoredCredentials:
        def apply(current: StoredCredentials) -> StoredCredentials:
            same_client = token.client_id is None or token.client_id == current.client_id
            return replace(
                current,
                access_token=token.access_token,
                refresh_token=token.refresh_token or current.refresh_token,
                token_type=token.token_type,
                scope=token.scope,
                expires_at=token.expires_at(now=now),
                client_id=token.client_id or current.client_id,
                client_secret=current.client_secret if same_client else None,
                updated_at=now,
            )

        return self._update(server_id, apply)

    def _update(
        self, server_id: str, apply: Callable[[StoredCredentials], StoredCredentials]
    ) -> StoredCredentials:
        with updating_json_object(
            self.path, label=CREDENTIAL_STORE_LABEL, private=True
        ) as doc:
            servers = _servers(doc)
            raw = servers.get(server_id)
            current = (
                StoredCredentials.from_dict(raw)
                if isinstance(raw, dict)
                else StoredCredentials()
            )
            updated = apply(current)
            servers[server_id] = {
                key: value for key, value in updated.to_dict().items() if value is not None
            }
        return updated


def _servers(doc: dict[str, Any]) -> dict[str, Any]:
    doc.setdefault("version", 1)
    servers = doc.get("servers")
    if not isinstance(servers, dict):
        servers = {}
        doc["servers"] = servers
    return servers

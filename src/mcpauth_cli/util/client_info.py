from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping

from .common import as_optional_str
from .credential_store import CredentialStore
from .server_config import ServerAuth

ClientSource = Literal["config", "env", "cache", "registration"]


@dataclass(frozen=True, slots=True)
class ClientIdentity:
    client_id: str
    client_secret: str | None = None
    source: ClientSource = "config"


def resolve_client_secret(
    auth: ServerAuth, *, environ: Mapping[str, str] | None = None
) -> str | None:
    env = os.environ if environ is None else environ
    if as_optional_str(auth.client_secret):
        return auth.client_secret
    if auth.client_secret_env:
        return as_optional_str(env.get(auth.client_secret_env))
    return None


def resolve_client_identity(
    auth: ServerAuth,
    *,
    server_id: str,
    credentials: CredentialStore | None,
    environ: Mapping[str, str] | None = None,
) -> ClientIdentity | None:
    """Client id from config, then the env var it names, then the local cache.

    `None` means the flow has to register a client dynamically.
    """

    env = os.environ if environ is None else environ
    secret = resolve_client_secret(auth, environ=env)

    configured = as_optional_str(auth.client_id)
    if configured:
        return ClientIdentity(configured, secret, "config")

    if auth.client_id_env:
        from_env = as_optional_str(env.get(auth.client_id_env))
        if from_env:
            return ClientIdentity(from_env, secret, "env")

    if credentials is not None:
        cached = credentials.get(server_id)
        if cached is not None and as_optional_str(cached.client_id):
            assert cached.client_id is not None
            return ClientIdentity(
                cached.client_id, secret or cached.client_secret, "cache"
            )

    return None

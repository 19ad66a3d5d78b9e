from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import typer
from dataclasses_json import Undefined, config, dataclass_json

from .common import as_optional_str
from .json_file import read_json_object

APP_NAME = "mcpauth"
CONFIG_ENV_VAR = "MCPAUTH_MCP_JSON"
CONFIG_FILE_NAME = "mcp.json"
OAUTH_BROWSER = "oauth_browser"


@dataclass_json(undefined=Undefined.EXCLUDE)
@dataclass(frozen=True, slots=True)
class ServerAuth:
    auth_type: str = field(default=OAUTH_BROWSER, metadata=config(field_name="type"))
    client_id: str | None = None
    client_id_env: str | None = None
    client_secret: str | None = None
    client_secret_env: str | None = None
    scopes: list[str] | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    registration_endpoint: str | None = None

    def has_static_endpoints(self) -> bool:
        return bool(
            as_optional_str(self.authorization_endpoint)
            and as_optional_str(self.token_endpoint)
        )


@dataclass_json(undefined=Undefined.EXCLUDE)
@dataclass(frozen=True, slots=True)
class ServerEntry:
    id: str
    url: str
    name: str | None = None
    auth: ServerAuth | None = None

    def display_name(self) -> str:
        return self.name or self.id

    def oauth(self) -> ServerAuth:
        auth = self.auth or ServerAuth()
        if auth.auth_type != OAUTH_BROWSER:
            raise ValueError(
                f"server '{self.id}' uses auth type '{auth.auth_type}'; "
                f"only {OAUTH_BROWSER} supports the browser flow"
            )
        return auth


@dataclass(frozen=True, slots=True)
class ServerConfig:
    servers: list[ServerEntry]
    source: str

    @classmethod
    def from_doc(cls, doc: dict[str, Any], *, source: str) -> ServerConfig:
        raw_servers = doc.get("servers")
        if not isinstance(raw_servers, list):
            raise ValueError(f"invalid server config {source}: missing servers list")
        servers: list[ServerEntry] = []
        for index, raw in enumerate(raw_servers):
            if not isinstance(raw, dict):
                raise ValueError(
                    f"invalid server config {source}: servers[{index}] must be an object"
                )
            if not as_optional_str(raw.get("id")) or not as_optional_str(raw.get("url")):
                raise ValueError(
                    f"invalid server config {source}: servers[{index}] needs id and url"
                )
            servers.append(ServerEntry.from_dict(raw))
        return cls(servers=servers, source=source)

    def find(self, query: str) -> ServerEntry | None:
        wanted = query.strip().lower()
        for server in self.servers:
            if server.id.lower() == wanted:
                return server
            if server.name and server.name.lower() == wanted:
                return server
        return None

    def require(self, query: str) -> ServerEntry:
        server = self.find(query)
        if server is None:
            raise ValueError(f"unknown MCP server: {query} (config: {self.source})")
        return server


def default_app_dir() -> Path:
    return Path(typer.get_app_dir(APP_NAME))


def resolve_config_path(explicit: str | None = None) -> Path | None:
    if explicit:
        return Path(explicit)
    from_env = as_optional_str(os.environ.get(CONFIG_ENV_VAR))
    if from_env:
        return Path(from_env)
    cwd_path = Path(CONFIG_FILE_NAME)
    if cwd_path.exists():
        return cwd_path
    app_path = default_app_dir() / CONFIG_FILE_NAME
    if app_path.exists():
        return app_path
    return None


def load_server_config(explicit: str | None = None) -> ServerConfig:
    path = resolve_config_path(explicit)
    if path is None:
        raise ValueError(
            f"no {CONFIG_FILE_NAME} found (use --config, ${CONFIG_ENV_VAR}, "
            f"./{CONFIG_FILE_NAME} or {default_app_dir() / CONFIG_FILE_NAME})"
        )
    doc = read_json_object(
        path,
        not_found_message=f"server config not found: {path}",
        invalid_json_prefix=f"invalid server config JSON/JSON5 in {path}",
        expected_object_message=f"invalid server config {path}: expected object",
        read_error_prefix=f"unable to read server config {path}",
    )
    return ServerConfig.from_doc(doc, source=str(path))

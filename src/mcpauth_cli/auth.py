from __future__ import annotations

import hashlib
import json
import logging
import os
import queue
import secrets
import socket
import sys
import threading
import time
from dataclasses import dataclass, replace
from http.client import HTTPException
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

import typer

from .errors import (
    CallbackError,
    CallbackListenerError,
    CallbackTimeout,
    DiscoveryExhausted,
    HttpJsonError,
    InputParseFailed,
    MissingCode,
    NoClientAvailable,
    NoPendingFlow,
    RegistrationFailed,
    StateMismatch,
    TokenExchangeFailed,
)
from .util.auth_state import PendingAuthorization, PendingStore
from .util.client_info import (
    ClientIdentity,
    resolve_client_identity,
    resolve_client_secret,
)
from .util.common import as_optional_str, as_optional_str_list, b64url
from .util.credential_store import CredentialStore
from .util.key_ref import write_key_ref_value
from .util.oauth_discovery import (
    build_authorization_server_metadata_urls,
    build_issuer_candidates,
    build_protected_resource_metadata_urls,
    default_registration_endpoint,
    first_success,
    resolve_scope,
    resource_identifier,
    url_origin,
)
from .util.oauth_token import OAuthToken
from .util.server_config import (
    ServerAuth,
    ServerEntry,
    default_app_dir,
    load_server_config,
)
from .util.www_authenticate import AuthChallenge, find_bearer_challenge

LOGGER = logging.getLogger("mcpauth.auth")

MCP_PROTOCOL_VERSION = "2024-11-05"
USER_AGENT = "mcpauth-cli/0.1"
CLIENT_NAME = "mcpauth"
CALLBACK_PATH = "/callback"
LOOPBACK_BIND_HOST = "127.0.0.1"
HTTP_TIMEOUT_S = 30.0
DEFAULT_CALLBACK_TIMEOUT_S = 120.0
REGISTRATION_AUTH_METHODS = ("none", "client_secret_post")
STATE_DIR_ENV_VAR = "MCPAUTH_STATE_DIR"

CALLBACK_PAGE = (
    b"Authorization received. You can close this window and return to the terminal.\n"
)


@dataclass(frozen=True, slots=True)
class ProtectedResourceMetadata:
    resource: str | None = None
    authorization_servers: list[str] | None = None
    scopes_supported: list[str] | None = None

    @classmethod
    def from_doc(cls, doc: Any) -> ProtectedResourceMetadata:
        if not isinstance(doc, dict):
            raise ValueError("protected resource metadata is not a JSON object")
        return cls(
            resource=as_optional_str(doc.get("resource")),
            authorization_servers=as_optional_str_list(
                doc.get("authorization_servers")
            ),
            scopes_supported=as_optional_str_list(doc.get("scopes_supported")),
        )


@dataclass(frozen=True, slots=True)
class AuthServerMetadata:
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    issuer: str | None = None

    @classmethod
    def from_doc(cls, doc: Any) -> AuthServerMetadata:
        if not isinstance(doc, dict):
            raise ValueError("authorization server metadata is not a JSON object")
        authorization_endpoint = as_optional_str(doc.get("authorization_endpoint"))
        token_endpoint = as_optional_str(doc.get("token_endpoint"))
        if not authorization_endpoint:
            raise ValueError("metadata missing authorization_endpoint")
        if not token_endpoint:
            raise ValueError("metadata missing token_endpoint")
        return cls(
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            registration_endpoint=as_optional_str(doc.get("registration_endpoint")),
            scopes_supported=as_optional_str_list(doc.get("scopes_supported")),
            issuer=as_optional_str(doc.get("issuer")),
        )


@dataclass(frozen=True, slots=True)
class ResourceDiscovery:
    resource: str
    challenge: AuthChallenge | None
    metadata: ProtectedResourceMetadata | None


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    url: str
    pending: PendingAuthorization
    client: ClientIdentity


@dataclass(frozen=True, slots=True)
class CallbackResult:
    code: str | None
    state: str | None
    error: str | None


@dataclass(slots=True)
class CallbackListener:
    server: ThreadingHTTPServer
    thread: threading.Thread
    channel: queue.Queue[CallbackResult]
    stop: threading.Event
    redirect_uri: str


# Caller-facing operations used by the CLI.


def list_servers(*, config_path: str | None) -> dict[str, Any]:
    config = load_server_config(config_path)
    pending_store, credentials = _stores()
    pending_ids = set(pending_store.server_ids())
    servers: list[dict[str, Any]] = []
    for server in config.servers:
        stored = credentials.get(server.id)
        servers.append(
            {
                "id": server.id,
                "name": server.display_name(),
                "url": server.url,
                "auth_type": (server.auth.auth_type if server.auth else "oauth_browser"),
                "pending": server.id in pending_ids,
                "authenticated": bool(stored and stored.access_token),
            }
        )
    return {"config": config.source, "servers": servers}


def start_auth(
    *,
    server_query: str,
    config_path: str | None,
    wait: bool,
    timeout_s: float,
    open_browser: bool,
    out_key_ref: str | None,
    overwrite: bool,
) -> dict[str, Any]:
    server = load_server_config(config_path).require(server_query)
    auth = server.oauth()
    pending_store, credentials = _stores()

    client = resolve_client_identity(auth, server_id=server.id, credentials=credentials)
    LOGGER.info(
        "auth.start server=%s client_source=%s wait=%s",
        server.id,
        client.source if client else "registration",
        wait,
    )
    request = prepare_authorization(
        server,
        client=client,
        client_secret_hint=resolve_client_secret(auth),
        now=_now_epoch(),
    )
    if request.client.source == "registration":
        credentials.remember_client(
            server.id,
            client_id=request.client.client_id,
            client_secret=request.client.client_secret,
            now=_now_epoch(),
        )

    if pending_store.put(request.pending) is not None:
        LOGGER.info("auth.start replaced pending flow server=%s", server.id)

    if not wait:
        _print_authorization_url(request.url, open_browser=open_browser)
        return _pending_result(request.pending)

    return _await_callback(
        pending_store,
        credentials,
        server.id,
        timeout_s=timeout_s,
        announce=lambda pending: _print_authorization_url(
            request.url, open_browser=open_browser
        ),
        out_key_ref=out_key_ref,
        overwrite=overwrite,
    )


def wait_auth(
    *,
    server_query: str,
    config_path: str | None,
    timeout_s: float,
    out_key_ref: str | None,
    overwrite: bool,
) -> dict[str, Any]:
    server = load_server_config(config_path).require(server_query)
    pending_store, credentials = _stores()
    LOGGER.info("auth.wait server=%s", server.id)
    return _await_callback(
        pending_store,
        credentials,
        server.id,
        timeout_s=timeout_s,
        announce=lambda pending: _print_authorization_url(
            pending.authorization_url, open_browser=False
        ),
        out_key_ref=out_key_ref,
        overwrite=overwrite,
    )


def complete_auth_code(
    *,
    server_query: str,
    config_path: str | None,
    url_or_code: str,
    out_key_ref: str | None,
    overwrite: bool,
) -> dict[str, Any]:
    server = load_server_config(config_path).require(server_query)
    pending_store, credentials = _stores()
    LOGGER.info("auth.code server=%s", server.id)
    token = complete_with_manual_input(pending_store, server.id, url_or_code)
    return _finalize(
        credentials, server.id, token, out_key_ref=out_key_ref, overwrite=overwrite
    )


def _await_callback(
    pending_store: PendingStore,
    credentials: CredentialStore,
    server_id: str,
    *,
    timeout_s: float,
    announce: Callable[[PendingAuthorization], None],
    out_key_ref: str | None,
    overwrite: bool,
) -> dict[str, Any]:
    try:
        token = complete_with_callback(
            pending_store, server_id, timeout_s=timeout_s, on_listening=announce
        )
    except CallbackTimeout as exc:
        pending = pending_store.get(server_id)
        if pending is None:
            raise
        LOGGER.info("auth.wait timeout server=%s", server_id)
        return _pending_result(pending, message=str(exc))
    return _finalize(
        credentials, server_id, token, out_key_ref=out_key_ref, overwrite=overwrite
    )


def _pending_result(
    pending: PendingAuthorization, *, message: str | None = None
) -> dict[str, Any]:
    action: dict[str, Any] = {"redirect_uri": pending.redirect_uri}
    if pending.authorization_url:
        action["url"] = pending.authorization_url
    result: dict[str, Any] = {
        "status": "pending",
        "server": pending.server_id,
        "action": action,
        "next": [
            f"mcpauth auth wait {pending.server_id}",
            f"mcpauth auth code {pending.server_id} REDIRECT_URL_OR_CODE",
        ],
    }
    if message:
        result["message"] = message
    return result


def _finalize(
    credentials: CredentialStore,
    server_id: str,
    token: OAuthToken,
    *,
    out_key_ref: str | None,
    overwrite: bool,
) -> dict[str, Any]:
    now = _now_epoch()
    stored = credentials.save_token(server_id, token, now=now)
    LOGGER.info("auth.complete server=%s", server_id)
    result: dict[str, Any] = {
        "status": "complete",
        "server": server_id,
        "client_id": token.client_id,
        "token_type": token.token_type,
        "scope": token.scope,
        "expires_at": stored.expires_at,
        "refresh_token": token.refresh_token is not None,
    }
    if out_key_ref:
        result["stored"] = write_key_ref_value(
            out_key_ref, token.to_doc(now=now), overwrite=overwrite
        )
    return {key: value for key, value in result.items() if value is not None}


def _print_authorization_url(url: str | None, *, open_browser: bool) -> None:
    if not url:
        return
    # Human-only guidance on stderr; stdout remains JSON result.
    print(f"Open: {url}", file=sys.stderr)
    if open_browser:
        typer.launch(url)


def state_dir() -> Path:
    from_env = as_optional_str(os.environ.get(STATE_DIR_ENV_VAR))
    if from_env:
        return Path(from_env)
    return default_app_dir()


def _stores() -> tuple[PendingStore, CredentialStore]:
    base = state_dir()
    return PendingStore(base / "pending.json"), CredentialStore(
        base / "credentials.json"
    )


# Flow preparation.


def prepare_authorization(
    server: ServerEntry,
    *,
    client: ClientIdentity | None,
    client_secret_hint: str | None = None,
    redirect_uri: str | None = None,
    now: int | None = None,
) -> AuthorizationRequest:
    """Discover endpoints, settle the client and build the authorization URL.

    With `client=None` a client is registered dynamically against the
    discovered (or default) registration endpoint.
    """

    auth = server.oauth()
    resource = resource_identifier(server.url)
    LOGGER.info("auth.flow discovering server=%s resource=%s", server.id, resource)

    discovery = discover_resource_metadata(resource)
    as_meta = resolve_authorization_server(auth, discovery)
    challenge = discovery.challenge
    metadata = discovery.metadata
    scope = resolve_scope(
        challenge_scope=challenge.scope if challenge else None,
        configured_scopes=auth.scopes,
        resource_scopes=metadata.scopes_supported if metadata else None,
    )

    if redirect_uri is None:
        redirect_uri = loopback_redirect_uri(reserve_loopback_port())

    if client is None:
        endpoint = as_meta.registration_endpoint or default_registration_endpoint(
            as_meta.authorization_endpoint
        )
        if not endpoint:
            raise NoClientAvailable(
                f"no client_id configured for '{server.id}' and no registration endpoint"
            )
        registered = register_client(endpoint, redirect_uri)
        client = replace(
            registered, client_secret=registered.client_secret or client_secret_hint
        )

    resource_value = (
        (metadata.resource if metadata else None)
        or (challenge.resource if challenge else None)
        or resource
    )
    code_verifier = _generate_pkce_verifier()
    state = generate_state()
    url = build_authorization_url(
        authorization_endpoint=as_meta.authorization_endpoint,
        client_id=client.client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=_pkce_challenge_s256(code_verifier),
        scope=scope,
        resource=resource_value,
    )
    LOGGER.info(
        "auth.flow awaiting authorization server=%s client_source=%s scope=%s",
        server.id,
        client.source,
        scope,
    )
    pending = PendingAuthorization(
        server_id=server.id,
        client_id=client.client_id,
        client_secret=client.client_secret,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        state=state,
        token_endpoint=as_meta.token_endpoint,
        resource_value=resource_value,
        authorization_url=url,
        created_at=now if now is not None else _now_epoch(),
    )
    return AuthorizationRequest(url=url, pending=pending, client=client)


def resolve_authorization_server(
    auth: ServerAuth, discovery: ResourceDiscovery
) -> AuthServerMetadata:
    if auth.has_static_endpoints():
        LOGGER.info("auth.discovery using configured endpoints")
        assert auth.authorization_endpoint is not None
        assert auth.token_endpoint is not None
        return AuthServerMetadata(
            authorization_endpoint=auth.authorization_endpoint.strip(),
            token_endpoint=auth.token_endpoint.strip(),
            registration_endpoint=as_optional_str(auth.registration_endpoint),
        )

    challenge = discovery.challenge
    metadata = discovery.metadata
    issuers = build_issuer_candidates(
        discovery.resource,
        discovered_authorization_servers=(
            metadata.authorization_servers if metadata else None
        ),
        hinted_issuer=challenge.authorization_server if challenge else None,
    )
    discovered = discover_authorization_server_metadata(issuers)
    return replace(
        discovered,
        authorization_endpoint=as_optional_str(auth.authorization_endpoint)
        or discovered.authorization_endpoint,
        token_endpoint=as_optional_str(auth.token_endpoint)
        or discovered.token_endpoint,
        registration_endpoint=as_optional_str(auth.registration_endpoint)
        or discovered.registration_endpoint,
    )


# Discovery.


class _NoRedirectHandler(urlrequest.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[no-untyped-def]
        return None


def probe_bearer_challenge(resource: str) -> AuthChallenge | None:
    """Unauthenticated GET without redirects; `None` when there is no usable challenge."""

    req = urlrequest.Request(
        url=resource,
        method="GET",
        headers={
            "User-Agent": USER_AGENT,
            "Accept": "application/json, text/event-stream",
        },
    )
    opener = urlrequest.build_opener(_NoRedirectHandler)
    LOGGER.info("auth.http GET %s probe", resource)
    try:
        with opener.open(req, timeout=HTTP_TIMEOUT_S) as resp:
            status = int(getattr(resp, "status", 200))
            headers = resp.headers
    except urlerror.HTTPError as exc:
        status = int(exc.code)
        headers = exc.headers
        exc.close()
    except (OSError, HTTPException) as exc:
        reason = getattr(exc, "reason", exc)
        LOGGER.info("auth.discovery probe miss resource=%s err=%s", resource, reason)
        return None

    LOGGER.info("auth.http GET %s -> %s", resource, status)
    challenge = find_bearer_challenge(headers)
    if challenge is None:
        LOGGER.info("auth.discovery probe found no bearer challenge")
        return challenge
    LOGGER.info(
        "auth.discovery probe bearer resource_metadata=%s authorization_server=%s scope=%s",
        challenge.resource_metadata_url,
        challenge.authorization_server,
        challenge.scope,
    )
    return challenge


def discover_resource_metadata(resource: str) -> ResourceDiscovery:
    challenge = probe_bearer_challenge(resource)
    candidates = build_protected_resource_metadata_urls(
        resource,
        hinted_resource_metadata=challenge.resource_metadata_url if challenge else None,
    )
    errors: list[str] = []
    metadata = first_success(
        candidates, _fetch_protected_resource_metadata, errors=errors
    )
    for err in errors:
        LOGGER.info("auth.discovery protected-resource miss %s", err)
    if metadata is None:
        LOGGER.info("auth.discovery no protected resource metadata for %s", resource)
    return ResourceDiscovery(resource=resource, challenge=challenge, metadata=metadata)


def _fetch_protected_resource_metadata(url: str) -> ProtectedResourceMetadata:
    return ProtectedResourceMetadata.from_doc(
        _http_json("GET", url, extra_headers=_mcp_headers())
    )


def discover_authorization_server_metadata(issuers: list[str]) -> AuthServerMetadata:
    errors: list[str] = []
    for issuer in issuers:
        attempts: list[str] = []
        found = first_success(
            build_authorization_server_metadata_urls(issuer),
            _fetch_authorization_server_metadata,
            errors=attempts,
        )
        errors.extend(f"{issuer}: {attempt}" for attempt in attempts)
        if found is not None:
            LOGGER.info("auth.discovery authorization server issuer=%s", issuer)
            return found
        LOGGER.info("auth.discovery issuer miss issuer=%s", issuer)
    raise DiscoveryExhausted(errors)


def _fetch_authorization_server_metadata(url: str) -> AuthServerMetadata:
    return AuthServerMetadata.from_doc(
        _http_json("GET", url, extra_headers=_mcp_headers())
    )


# Dynamic client registration.


def register_client(endpoint: str, redirect_uri: str) -> ClientIdentity:
    errors: list[str] = []
    client = first_success(
        REGISTRATION_AUTH_METHODS,
        lambda method: _register_client_with_method(endpoint, redirect_uri, method),
        errors=errors,
    )
    if client is None:
        raise RegistrationFailed(endpoint, errors)
    LOGGER.info("auth.registration registered client at %s", endpoint)
    return client


def _register_client_with_method(
    endpoint: str, redirect_uri: str, auth_method: str
) -> ClientIdentity:
    payload: dict[str, Any] = {
        "client_name": CLIENT_NAME,
        "redirect_uris": [redirect_uri],
        "token_endpoint_auth_method": auth_method,
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "application_type": "native",
    }
    resp = _http_json(
        "POST",
        endpoint,
        json_body=payload,
        extra_headers={"Accept": "application/json", **_mcp_headers()},
    )
    if not isinstance(resp, dict):
        raise ValueError("invalid registration response")
    client_id = as_optional_str(resp.get("client_id"))
    if not client_id:
        raise ValueError("registration response missing client_id")
    return ClientIdentity(
        client_id=client_id,
        client_secret=as_optional_str(resp.get("client_secret")),
        source="registration",
    )


# PKCE, state and the authorization URL.


def _generate_pkce_verifier() -> str:
    return b64url(secrets.token_bytes(32))


def _pkce_challenge_s256(verifier: str) -> str:
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    return b64url(secrets.token_bytes(16))


def build_authorization_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scope: str | None,
    resource: str,
) -> str:
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
        "resource": resource,
    }
    if scope:
        params["scope"] = scope
    sep = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{sep}{urlparse.urlencode(params)}"


# Loopback callback listener.


def reserve_loopback_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK_BIND_HOST, 0))
        return int(sock.getsockname()[1])


def loopback_redirect_uri(port: int) -> str:
    return f"http://localhost:{port}{CALLBACK_PATH}"


def start_callback_listener(redirect_uri: str) -> CallbackListener:
    parts = urlparse.urlsplit(redirect_uri)
    if (
        parts.scheme != "http"
        or parts.hostname not in {"localhost", LOOPBACK_BIND_HOST}
        or not parts.port
    ):
        raise CallbackListenerError(
            f"redirect URI is not a loopback URI with a port: {redirect_uri}"
        )

    channel: queue.Queue[CallbackResult] = queue.Queue(maxsize=1)
    stop = threading.Event()
    handled = threading.Event()
    claim = threading.Lock()

    class Handler(BaseHTTPRequestHandler):
        # Drops connections that open and never send a request line.
        timeout = 5

        def do_GET(self) -> None:  # noqa: N802
            with claim:
                first = not handled.is_set()
                handled.set()
            if not first:
                LOGGER.info("auth.callback_listener ignored extra request")
                self.send_error(409, "callback already received")
                return

            qs = urlparse.parse_qs(urlparse.urlsplit(self.path).query)
            result = CallbackResult(
                code=(qs.get("code") or [None])[0],
                state=(qs.get("state") or [None])[0],
                error=(qs.get("error") or [None])[0],
            )
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(CALLBACK_PAGE)))
            self.end_headers()
            self.wfile.write(CALLBACK_PAGE)
            channel.put_nowait(result)

        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            return

    try:
        server = ThreadingHTTPServer((LOOPBACK_BIND_HOST, parts.port), Handler)
    except OSError as exc:
        raise CallbackListenerError(
            f"unable to listen on {LOOPBACK_BIND_HOST}:{parts.port} for {redirect_uri}: {exc}"
        ) from None
    server.timeout = 0.2

    thread = threading.Thread(
        target=_serve_until_callback, args=(server, handled, stop), daemon=True
    )
    thread.start()
    LOGGER.info("auth.callback_listener started redirect_uri=%s", redirect_uri)
    return CallbackListener(
        server=server,
        thread=thread,
        channel=channel,
        stop=stop,
        redirect_uri=redirect_uri,
    )


def _serve_until_callback(
    server: ThreadingHTTPServer,
    handled: threading.Event,
    stop: threading.Event,
) -> None:
    try:
        while not stop.is_set() and not handled.is_set():
            server.handle_request()
    finally:
        server.server_close()


def wait_for_callback(listener: CallbackListener, *, timeout_s: float) -> CallbackResult:
    try:
        return listener.channel.get(timeout=timeout_s)
    except queue.Empty:
        raise CallbackTimeout(listener.redirect_uri, timeout_s) from None


def stop_callback_listener(listener: CallbackListener) -> None:
    listener.stop.set()
    listener.thread.join(timeout=2.0)
    LOGGER.info(
        "auth.callback_listener stopped redirect_uri=%s", listener.redirect_uri
    )


def check_callback(result: CallbackResult, expected_state: str) -> str:
    if result.error:
        raise CallbackError(result.error)
    if result.state is not None and result.state != expected_state:
        raise StateMismatch("OAuth callback state mismatch")
    if not result.code:
        raise MissingCode("OAuth callback missing authorization code")
    return result.code


def complete_with_callback(
    store: PendingStore,
    server_id: str,
    *,
    timeout_s: float = DEFAULT_CALLBACK_TIMEOUT_S,
    on_listening: Callable[[PendingAuthorization], None] | None = None,
) -> OAuthToken:
    """Listen on the pending redirect URI and exchange the code it receives.

    A timeout leaves the pending record in place for the manual path.
    """

    pending = store.get(server_id)
    if pending is None:
        raise NoPendingFlow(server_id)

    listener = start_callback_listener(pending.redirect_uri)
    try:
        if on_listening is not None:
            on_listening(pending)
        result = wait_for_callback(listener, timeout_s=timeout_s)
    finally:
        stop_callback_listener(listener)

    try:
        code = check_callback(result, pending.state)
    except StateMismatch:
        store.take(server_id, expected_state=pending.state)
        raise

    taken = store.take(server_id, expected_state=pending.state)
    if taken is None:
        if store.get(server_id) is None:
            raise NoPendingFlow(server_id)
        raise StateMismatch(
            f"pending flow for '{server_id}' was replaced by a newer `auth start`"
        )
    return exchange_authorization_code(taken, code)


# Manual completion.


def extract_code_from_input(raw: str) -> str:
    text = raw.strip()
    if text.startswith("http://") or text.startswith("https://"):
        qs = urlparse.parse_qs(urlparse.urlsplit(text).query)
        code = as_optional_str((qs.get("code") or [None])[0])
        if not code:
            raise InputParseFailed("redirect URL has no `code` query parameter")
        return code
    if not text:
        raise InputParseFailed("empty authorization code")
    return text


def _state_from_input(raw: str) -> str | None:
    text = raw.strip()
    if not (text.startswith("http://") or text.startswith("https://")):
        return None
    qs = urlparse.parse_qs(urlparse.urlsplit(text).query)
    return as_optional_str((qs.get("state") or [None])[0])


def complete_with_manual_input(
    store: PendingStore, server_id: str, raw_input: str
) -> OAuthToken:
    code = extract_code_from_input(raw_input)
    state = _state_from_input(raw_input)
    pending = store.take(server_id, expected_state=state)
    if pending is None:
        if state is not None and store.get(server_id) is not None:
            raise StateMismatch("redirect URL state does not match the pending flow")
        raise NoPendingFlow(server_id)
    return exchange_authorization_code(pending, code)


# Token exchange.


def exchange_authorization_code(
    pending: PendingAuthorization, code: str
) -> OAuthToken:
    form: dict[str, str] = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": pending.redirect_uri,
        "client_id": pending.client_id,
        "code_verifier": pending.code_verifier,
        "resource": pending.resource_value,
    }
    if pending.client_secret:
        form["client_secret"] = pending.client_secret

    url = pending.token_endpoint
    try:
        resp = _http_json(
            "POST", url, form=form, extra_headers={"Accept": "application/json"}
        )
    except HttpJsonError as exc:
        raise TokenExchangeFailed(
            f"token exchange failed at {url}: {exc.describe()}",
            url=url,
            status=exc.status,
            body=exc.body_text,
        ) from None
    except ValueError as exc:
        raise TokenExchangeFailed(
            f"token exchange failed at {url}: {exc}", url=url
        ) from None

    if not isinstance(resp, dict):
        raise TokenExchangeFailed(
            f"token exchange failed at {url}: invalid token response", url=url
        )
    try:
        token = OAuthToken.from_token_response(resp, client_id=pending.client_id)
    except ValueError as exc:
        raise TokenExchangeFailed(
            f"token exchange failed at {url}: {exc}", url=url
        ) from None
    LOGGER.info("auth.token received token_type=%s", token.token_type)
    return token


# HTTP.


def _mcp_headers() -> dict[str, str]:
    return {"MCP-Protocol-Version": MCP_PROTOCOL_VERSION}


def _http_json(
    method: str,
    url: str,
    *,
    form: dict[str, str] | None = None,
    json_body: dict[str, Any] | list[Any] | None = None,
    extra_headers: dict[str, str] | None = None,
    timeout_s: float = HTTP_TIMEOUT_S,
) -> Any:
    if form is not None and json_body is not None:
        raise ValueError("internal error: form and json_body are mutually exclusive")
    if url_origin(url) is None:
        raise ValueError(f"refusing non-HTTP URL: {url}")
    headers = {
        "User-Agent": USER_AGENT,
    }
    data: bytes | None = None
    if form is not None:
        data = urlparse.urlencode(form).encode("utf-8")
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        LOGGER.info(
            "auth.http %s %s form_keys=%s", method, url, ",".join(sorted(form))
        )
    elif json_body is not None:
        data = json.dumps(json_body, separators=(",", ":")).encode("utf-8")
        headers["Content-Type"] = "application/json"
        LOGGER.info("auth.http %s %s json", method, url)
    else:
        LOGGER.info("auth.http %s %s", method, url)

    if extra_headers:
        headers.update(extra_headers)

    req = urlrequest.Request(url=url, method=method, data=data, headers=headers)
    try:
        with urlrequest.urlopen(req, timeout=timeout_s) as resp:
            status = getattr(resp, "status", 200)
            text = resp.read().decode("utf-8", errors="replace")
    except urlerror.HTTPError as exc:
        text = exc.read().decode("utf-8", errors="replace")
        payload: Any | None = None
        try:
            payload = json.loads(text) if text else None
        except json.JSONDecodeError:
            payload = None
        LOGGER.info("auth.http %s %s -> %s", method, url, exc.code)
        raise HttpJsonError(
            status=int(exc.code), url=url, body_text=text, payload=payload
        ) from None
    except urlerror.URLError as exc:
        reason = getattr(exc, "reason", exc)
        raise ValueError(f"network error contacting {url}: {reason}") from None
    except (OSError, HTTPException) as exc:
        raise ValueError(f"network error contacting {url}: {exc}") from None

    LOGGER.info("auth.http %s %s -> %s", method, url, status)
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        raise ValueError(f"invalid JSON response from {url}") from None


def _now_epoch() -> int:
    return int(time.time())

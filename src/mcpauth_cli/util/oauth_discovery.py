from __future__ import annotations

from typing import Callable, Iterable, TypeVar
from urllib import parse as urlparse

from ..errors import HttpJsonError
from .common import dedupe, normalize_url, require_absolute_url

T = TypeVar("T")

PROTECTED_RESOURCE_WELL_KNOWN = "/.well-known/oauth-protected-resource"
OAUTH_AS_WELL_KNOWN = "/.well-known/oauth-authorization-server"
OIDC_WELL_KNOWN = "/.well-known/openid-configuration"
HTTP_SCHEMES = frozenset({"http", "https"})


def resource_identifier(raw_url: str) -> str:
    """Canonical resource URL: no query or fragment, no trailing slash, `/` for root."""

    parsed = require_absolute_url(normalize_url(raw_url), field="server URL")
    path = parsed.path.rstrip("/") or "/"
    return urlparse.urlunsplit((parsed.scheme, parsed.netloc, path, "", ""))


def url_origin(url: str) -> str | None:
    parsed = urlparse.urlsplit(url)
    if parsed.scheme.lower() not in HTTP_SCHEMES or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def build_protected_resource_metadata_urls(
    resource: str, *, hinted_resource_metadata: str | None = None
) -> list[str]:
    candidates: list[str] = []

    hinted = hinted_resource_metadata.strip() if hinted_resource_metadata else ""
    if hinted and url_origin(hinted):
        candidates.append(hinted)

    origin = url_origin(resource)
    if origin is None:
        return dedupe(candidates)

    path = urlparse.urlsplit(resource).path.rstrip("/")
    if path:
        candidates.append(f"{origin}{PROTECTED_RESOURCE_WELL_KNOWN}{path}")
    candidates.append(f"{origin}{PROTECTED_RESOURCE_WELL_KNOWN}")
    return dedupe(candidates)


def build_issuer_candidates(
    resource: str,
    *,
    discovered_authorization_servers: list[str] | None,
    hinted_issuer: str | None,
) -> list[str]:
    candidates: list[str] = []

    hinted = hinted_issuer.strip() if hinted_issuer else ""
    if hinted and url_origin(hinted):
        candidates.append(hinted)

    candidates.extend(
        issuer.strip()
        for issuer in discovered_authorization_servers or []
        if isinstance(issuer, str) and url_origin(issuer.strip())
    )

    if not candidates:
        origin = url_origin(resource)
        if origin:
            candidates.append(origin)

    return dedupe(candidates)


def build_authorization_server_metadata_urls(issuer: str) -> list[str]:
    """OAuth AS metadata first, then OIDC discovery.

    RFC 8414 inserts the well-known segment before the issuer path, while OIDC
    appends it after the path, so the two candidates differ for path issuers.
    """

    parsed = urlparse.urlsplit(issuer.strip())
    if url_origin(issuer.strip()) is None:
        return []
    if "/.well-known/" in parsed.path:
        return [issuer.strip()]

    origin = f"{parsed.scheme}://{parsed.netloc}"
    path = parsed.path.rstrip("/")
    return dedupe(
        [
            f"{origin}{OAUTH_AS_WELL_KNOWN}{path}",
            f"{origin}{path}{OIDC_WELL_KNOWN}",
        ]
    )


def default_registration_endpoint(authorization_endpoint: str) -> str | None:
    origin = url_origin(authorization_endpoint)
    if origin is None:
        return None
    return f"{origin}/register"


def resolve_scope(
    *,
    challenge_scope: str | None,
    configured_scopes: list[str] | None,
    resource_scopes: list[str] | None,
) -> str | None:
    # Authorization-server scopes_supported is never used: broad scopes such as
    # offline_access switch some servers into a different login flow.
    if challenge_scope and challenge_scope.strip():
        return challenge_scope.strip()
    for scopes in (configured_scopes, resource_scopes):
        joined = " ".join(s.strip() for s in scopes or [] if s and s.strip())
        if joined:
            return joined
    return None


def first_success(
    candidates: Iterable[str],
    attempt: Callable[[str], T],
    *,
    errors: list[str],
) -> T | None:
    """Return the first candidate result, appending `candidate: error` per miss."""

    for candidate in candidates:
        try:
            return attempt(candidate)
        except HttpJsonError as exc:
            errors.append(f"{candidate}: {exc.describe()}")
        except ValueError as exc:
            errors.append(f"{candidate}: {exc}")
    return None

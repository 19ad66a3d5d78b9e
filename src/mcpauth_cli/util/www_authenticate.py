from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

# CloudFront renames the origin's WWW-Authenticate header on some distributions.
CHALLENGE_HEADERS = ("WWW-Authenticate", "x-amzn-remapped-www-authenticate")

_BEARER_RE = re.compile(r"\bbearer\b", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class AuthChallenge:
    resource_metadata_url: str | None = None
    scope: str | None = None
    authorization_server: str | None = None
    resource: str | None = None


def parse_bearer_challenge(value: str) -> AuthChallenge | None:
    match = _BEARER_RE.search(value)
    if match is None:
        return None

    params: dict[str, str] = {}
    for part in _split_quoted_commas(value[match.end() :]):
        key, sep, raw = part.partition("=")
        if not sep:
            continue
        params.setdefault(key.strip().lower(), _unquote(raw.strip()))

    challenge = AuthChallenge(
        resource_metadata_url=params.get("resource_metadata"),
        scope=params.get("scope"),
        authorization_server=params.get("authorization_server"),
        resource=params.get("resource"),
    )
    if challenge == AuthChallenge():
        return None
    return challenge


def find_bearer_challenge(headers: Any) -> AuthChallenge | None:
    for name in CHALLENGE_HEADERS:
        for value in get_header_values(headers, name):
            challenge = parse_bearer_challenge(value)
            if challenge is not None:
                return challenge
    return None


def get_header_values(headers: Any, name: str) -> list[str]:
    if headers is None:
        return []
    get_all = getattr(headers, "get_all", None)
    if callable(get_all):
        values = get_all(name)
        if values:
            return [str(v) for v in values if v is not None]
    get = getattr(headers, "get", None)
    if callable(get):
        value = get(name)
        if value:
            return [str(value)]
    return []


def _split_quoted_commas(value: str) -> list[str]:
    parts: list[str] = []
    buf: list[str] = []
    in_quotes = False
    escaped = False
    for ch in value:
        if escaped:
            buf.append(ch)
            escaped = False
            continue
        if ch == "\\" and in_quotes:
            buf.append(ch)
            escaped = True
            continue
        if ch == '"':
            buf.append(ch)
            in_quotes = not in_quotes
            continue
        if ch == "," and not in_quotes:
            part = "".join(buf).strip()
            if part:
                parts.append(part)
            buf = []
            continue
        buf.append(ch)
    part = "".join(buf).strip()
    if part:
        parts.append(part)
    return parts


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value

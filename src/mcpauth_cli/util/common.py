from __future__ import annotations

import base64
from typing import Any
from urllib import parse as urlparse


def as_optional_str(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def as_optional_str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def normalize_url(value: str) -> str:
    """Add a scheme to bare host[:port][/path] values.

    Local hosts and explicit port 80 default to http, everything else to https.
    """

    text = value.strip()
    if "://" in text:
        return text
    if text.startswith("localhost") or text.startswith("127.") or ":80" in text:
        return f"http://{text}"
    return f"https://{text}"


def require_absolute_url(value: str, *, field: str) -> urlparse.SplitResult:
    parsed = urlparse.urlsplit(value)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"{field} must be an absolute URL: {value}")
    return parsed


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if value not in seen:
            out.append(value)
            seen.add(value)
    return out

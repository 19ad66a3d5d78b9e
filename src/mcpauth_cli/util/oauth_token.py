from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from dataclasses_json import Undefined, dataclass_json

from .common import as_optional_str


@dataclass_json(undefined=Undefined.EXCLUDE)
@dataclass(frozen=True, slots=True)
class OAuthToken:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str | None = None
    client_id: str | None = None

    @classmethod
    def from_token_response(
        cls, payload: dict[str, Any], *, client_id: str | None
    ) -> OAuthToken:
        access_token = as_optional_str(payload.get("access_token"))
        if not access_token:
            raise ValueError("token response missing access_token")
        return cls(
            access_token=access_token,
            refresh_token=as_optional_str(payload.get("refresh_token")),
            expires_in=_as_int(payload.get("expires_in")),
            scope=as_optional_str(payload.get("scope")),
            token_type=as_optional_str(payload.get("token_type")),
            client_id=client_id,
        )

    def expires_at(self, *, now: int) -> str | None:
        if self.expires_in is None:
            return None
        return _iso_utc(now + self.expires_in)

    def to_doc(self, *, now: int | None = None) -> dict[str, Any]:
        doc = {key: value for key, value in self.to_dict().items() if value is not None}
        if now is not None:
            expires_at = self.expires_at(now=now)
            if expires_at:
                doc["expires_at"] = expires_at
        return doc


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _iso_utc(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=UTC).isoformat().replace("+00:00", "Z")

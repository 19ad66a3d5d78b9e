from __future__ import annotations

from typing import Any


class HttpJsonError(RuntimeError):
    def __init__(
        self,
        *,
        status: int,
        url: str,
        body_text: str,
        payload: Any | None,
    ) -> None:
        self.status = status
        self.url = url
        self.body_text = body_text
        self.payload = payload
        super().__init__(f"HTTP {status} for {url}")

    def describe(self) -> str:
        body = self.body_text.strip()
        if not body:
            return f"HTTP {self.status}"
        return f"HTTP {self.status}: {body[:300]}"


class OAuthFlowError(ValueError):
    """Base class for every user-visible authorization failure."""

    retryable = False


class DiscoveryExhausted(OAuthFlowError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        tried = " | ".join(self.errors) if self.errors else "no issuer candidates"
        super().__init__(f"failed to discover OAuth metadata. Tried: {tried}")


class RegistrationFailed(OAuthFlowError):
    def __init__(self, endpoint: str, errors: list[str]) -> None:
        self.endpoint = endpoint
        self.errors = list(errors)
        super().__init__(
            f"client registration at {endpoint} failed. Tried: {' | '.join(self.errors)}"
        )


class NoClientAvailable(OAuthFlowError):
    pass


class CallbackListenerError(OAuthFlowError):
    pass


class CallbackTimeout(OAuthFlowError):
    # The pending authorization survives; the manual path can still finish it.
    retryable = True

    def __init__(self, redirect_uri: str, timeout_s: float) -> None:
        self.redirect_uri = redirect_uri
        self.timeout_s = timeout_s
        super().__init__(
            f"no OAuth callback received on {redirect_uri} within {timeout_s:g}s"
        )


class CallbackError(OAuthFlowError):
    def __init__(self, error: str) -> None:
        self.error = error
        super().__init__(f"OAuth error: {error}")


class StateMismatch(OAuthFlowError):
    pass


class MissingCode(OAuthFlowError):
    pass


class TokenExchangeFailed(OAuthFlowError):
    def __init__(
        self, message: str, *, url: str, status: int | None = None, body: str = ""
    ) -> None:
        self.url = url
        self.status = status
        self.body = body
        super().__init__(message)


class InputParseFailed(OAuthFlowError):
    pass


class NoPendingFlow(OAuthFlowError):
    def __init__(self, server_id: str) -> None:
        self.server_id = server_id
        super().__init__(
            f"no pending flow for '{server_id}' (run `mcpauth auth start {server_id}` first)"
        )

"""Authorization flow models for SMART on FHIR.

Contains models for the authorization request, the redirect callback and the
record kept for an authorization that is waiting for its callback.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlencode


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization code request parameters for a SMART launch."""

    authorization_endpoint: str
    client_id: str
    scope: str
    redirect_uri: str
    aud: str
    state: str

    def to_query_params(self) -> dict[str, str]:
        return {
            "response_type": "code",
            "client_id": self.client_id,
            "scope": self.scope,
            "redirect_uri": self.redirect_uri,
            "aud": self.aud,
            "state": self.state,
        }

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        return f"{self.authorization_endpoint}?{urlencode(self.to_query_params())}"


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_redirect(cls, redirected_path: str) -> AuthorizationResponse:
        """Parse the query string of a redirect (full URL or path+query).

        Everything after the first ``?`` is treated as the query string.
        """
        _, _, query = redirected_path.partition("?")
        query_params = parse_qs(query)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
        )

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class PendingAuthorization:
    """An issued authorization request waiting for its redirect.

    Holds the client secret needed for a confidential client's token exchange;
    the secret never appears in the authorization URL.
    """

    state: str
    client_id: str
    redirect_uri: str
    scope: str
    iss: str
    client_secret: str | None = field(default=None, repr=False)
    created_at: float = field(default_factory=time.time)

    def is_expired(self, ttl: float, now: float | None = None) -> bool:
        if now is None:
            now = time.time()
        return now - self.created_at >= ttl

"""Token state and token endpoint models for SMART on FHIR.

Contains mutable token state for one session, the two token endpoint request
shapes (authorization code and refresh token grants) and the token response.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

DEFAULT_SCOPE = "offline_access"


@dataclass
class TokenState:
    """Mutable token state for one authenticated session.

    ``access_token`` and ``expires_at`` are set together or not at all.
    Mutated in place whenever a refresh succeeds.
    """

    access_token: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: float | None = None  # Unix timestamp
    patient: str | None = None

    def needs_refresh(self, margin: float = 1.0) -> bool:
        """Check whether the access token must be refreshed before use.

        A token is treated as expired ``margin`` seconds early. A session that
        never held an access token also needs a refresh.
        """
        if self.access_token is None or self.expires_at is None:
            return True
        return time.time() >= self.expires_at - margin

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def apply_refresh(self, token_response: TokenResponse) -> None:
        """Update state from a successful refresh_token grant response."""
        self.access_token = token_response.access_token
        self.expires_at = token_response.calculate_expires_at()
        self.patient = token_response.patient or self.patient
        self.refresh_token = token_response.refresh_token or self.refresh_token


@dataclass(frozen=True)
class AuthorizationCodeRequest:
    """authorization_code grant parameters for a SMART token exchange.

    Confidential clients authenticate with an HTTP Basic header. With
    ``unsafe_url_encode`` the credentials are also sent in the form body for
    servers that reject Basic authentication.
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    client_secret: str | None = field(default=None, repr=False)
    grant_type: str = "authorization_code"

    def uses_basic_auth(self) -> bool:
        return bool(self.client_secret)

    def to_form_data(self, unsafe_url_encode: bool = False) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
        }

        if unsafe_url_encode and self.client_secret is not None:
            data["client_secret"] = self.client_secret
        if unsafe_url_encode or not self.uses_basic_auth():
            data["client_id"] = self.client_id

        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """refresh_token grant parameters."""

    token_endpoint: str
    refresh_token: str
    client_id: str | None = None
    client_secret: str | None = field(default=None, repr=False)
    scope: str | None = None
    grant_type: str = "refresh_token"

    def uses_basic_auth(self) -> bool:
        return bool(self.client_secret)

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "scope": self.scope or DEFAULT_SCOPE,
        }

        # Public clients identify themselves in the body instead
        if not self.uses_basic_auth() and self.client_id:
            data["client_id"] = self.client_id

        return data


class TokenResponse(BaseModel):
    """Token endpoint response, including SMART launch context fields."""

    model_config = ConfigDict(extra="allow")

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None
    patient: str | None = None
    id_token: str | None = None

    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def calculate_expires_at(self) -> float:
        """Calculate absolute expiry timestamp from expires_in.

        A response without ``expires_in`` yields a token that never expires
        locally; the server still decides when it stops accepting it.
        """
        if self.expires_in is None:
            return float("inf")
        return time.time() + self.expires_in

"""SMART on FHIR token endpoint service.

Implements the authorization_code and refresh_token grants against the token
endpoint advertised in a server's security extensions.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from smart_fhir.auth.models.errors import (
    TokenError,
    TokenExchangeError,
    TokenRefreshError,
)
from smart_fhir.auth.models.tokens import (
    AuthorizationCodeRequest,
    RefreshTokenRequest,
    TokenResponse,
)
from smart_fhir.auth.services.security import encode_basic_credential

logger = logging.getLogger(__name__)


class OAuth2TokenManager:
    """Manages token exchange and refresh operations.

    Both grants are sent as application/x-www-form-urlencoded. Confidential
    clients authenticate with an HTTP Basic header. Any non-2xx answer is a
    hard failure: there is no retry at this layer.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize the token manager.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional client to use instead of creating one; the
                caller keeps ownership and closes it
        """
        self.timeout = timeout
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, token_request: AuthorizationCodeRequest, unsafe_url_encode: bool = False
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            token_request: Token exchange request parameters
            unsafe_url_encode: Also send client credentials in the form body

        Returns:
            TokenResponse: Successful token response

        Raises:
            TokenExchangeError: If the exchange fails
        """
        logger.debug(
            f"Exchanging authorization code at {token_request.token_endpoint}"
        )

        headers = self._form_headers()
        if token_request.uses_basic_auth():
            headers["Authorization"] = encode_basic_credential(
                token_request.client_id, token_request.client_secret
            )

        form_data = token_request.to_form_data(unsafe_url_encode)
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={token_request.client_id}, "
            f"basic_auth={token_request.uses_basic_auth()}, "
            f"body_credentials={unsafe_url_encode}"
        )

        try:
            response = await self._http_client.post(
                token_request.token_endpoint,
                data=form_data,
                headers=headers,
            )
            return self._parse_token_response(response)

        except TokenError as e:
            raise TokenExchangeError(f"Token exchange failed: {e}") from e
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"HTTP error during token exchange: {e}") from e

    async def refresh_access_token(
        self, refresh_request: RefreshTokenRequest
    ) -> TokenResponse:
        """Obtain a new access token with a refresh token.

        Args:
            refresh_request: Refresh token request parameters

        Returns:
            TokenResponse: Response carrying the new access token

        Raises:
            TokenRefreshError: If the refresh fails or returns no access token
        """
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        headers = self._form_headers()
        if refresh_request.uses_basic_auth():
            headers["Authorization"] = encode_basic_credential(
                refresh_request.client_id or "", refresh_request.client_secret
            )

        try:
            response = await self._http_client.post(
                refresh_request.token_endpoint,
                data=refresh_request.to_form_data(),
                headers=headers,
            )
            token_response = self._parse_token_response(response)

        except TokenError as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"HTTP error during token refresh: {e}") from e

        if not token_response.is_success():
            raise TokenRefreshError("Refresh response missing required access_token")

        return token_response

    def _form_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse a token endpoint response.

        Raises:
            TokenError: If the status is not 2xx or the body is not a token response
        """
        if not 200 <= response.status_code < 300:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            error_code = body.get("error", "unknown_error")
            error_description = body.get(
                "error_description", "No description provided"
            )

            logger.warning(
                f"Token endpoint returned {response.status_code}: "
                f"{error_code} - {error_description}"
            )
            raise TokenError(
                f"{response.status_code} {error_code}: {error_description}"
            )

        try:
            token_response = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenError(f"Invalid token response format: {e}") from e

        logger.info("Token endpoint request successful")
        return token_response

    async def close(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

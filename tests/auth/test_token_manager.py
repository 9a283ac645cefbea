"""Tests for SMART token endpoint interactions.

High-impact tests covering both grants:
- Authorization code exchange with Basic and form-body client credentials
- Refresh token grant form encoding and headers
- Error responses and malformed token responses
"""

import base64
import time
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from smart_fhir.auth.models.errors import TokenExchangeError, TokenRefreshError
from smart_fhir.auth.models.tokens import (
    AuthorizationCodeRequest,
    RefreshTokenRequest,
    TokenResponse,
    TokenState,
)
from smart_fhir.auth.services.tokens import OAuth2TokenManager

TOKEN_ENDPOINT = "https://auth.example/token"


def token_http_response(status_code: int, body) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


def decode_basic(header: str) -> str:
    scheme, _, encoded = header.partition(" ")
    assert scheme == "Basic"
    return base64.b64decode(encoded).decode()


class TestAuthorizationCodeFormData:
    """Test the client credential placement rules."""

    def test_confidential_client_uses_header_only(self):
        request = AuthorizationCodeRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="code-123",
            redirect_uri="https://app/cb",
            client_id="abc",
            client_secret="s3cret",
        )

        form_data = request.to_form_data()

        assert request.uses_basic_auth()
        assert form_data == {
            "grant_type": "authorization_code",
            "code": "code-123",
            "redirect_uri": "https://app/cb",
        }

    def test_public_client_sends_client_id_in_body(self):
        request = AuthorizationCodeRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="code-123",
            redirect_uri="https://app/cb",
            client_id="abc",
        )

        form_data = request.to_form_data()

        assert not request.uses_basic_auth()
        assert form_data["client_id"] == "abc"
        assert "client_secret" not in form_data

    def test_unsafe_url_encode_puts_credentials_in_body(self):
        request = AuthorizationCodeRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="code-123",
            redirect_uri="https://app/cb",
            client_id="abc",
            client_secret="s3cret",
        )

        form_data = request.to_form_data(unsafe_url_encode=True)

        assert form_data["client_id"] == "abc"
        assert form_data["client_secret"] == "s3cret"


class TestTokenExchange:
    """Test authorization code to token exchange."""

    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()
        self.token_request = AuthorizationCodeRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="code-123",
            redirect_uri="https://app/cb",
            client_id="abc",
            client_secret="s3cret",
        )

    async def test_successful_exchange_with_basic_auth(self):
        # Arrange
        self.token_manager._http_client.post.return_value = token_http_response(
            200,
            {
                "access_token": "access-xyz",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "refresh-abc",
                "scope": "patient/*.read offline_access",
                "patient": "pat-1",
            },
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(
            self.token_request
        )

        # Assert
        assert token_response.refresh_token == "refresh-abc"
        assert token_response.scope == "patient/*.read offline_access"
        assert token_response.patient == "pat-1"

        call_args = self.token_manager._http_client.post.call_args
        assert call_args[0][0] == TOKEN_ENDPOINT
        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert decode_basic(headers["Authorization"]) == "abc:s3cret"
        form_data = call_args[1]["data"]
        assert "client_id" not in form_data
        assert "client_secret" not in form_data

    async def test_unsafe_url_encode_keeps_basic_header(self):
        # Arrange
        self.token_manager._http_client.post.return_value = token_http_response(
            200, {"access_token": "access-xyz", "refresh_token": "refresh-abc"}
        )

        # Act
        await self.token_manager.exchange_code_for_token(
            self.token_request, unsafe_url_encode=True
        )

        # Assert
        call_args = self.token_manager._http_client.post.call_args
        assert "Authorization" in call_args[1]["headers"]
        assert call_args[1]["data"]["client_id"] == "abc"
        assert call_args[1]["data"]["client_secret"] == "s3cret"

    async def test_public_client_has_no_basic_header(self):
        # Arrange
        token_request = AuthorizationCodeRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="code-123",
            redirect_uri="https://app/cb",
            client_id="abc",
        )
        self.token_manager._http_client.post.return_value = token_http_response(
            200, {"access_token": "access-xyz"}
        )

        # Act
        await self.token_manager.exchange_code_for_token(token_request)

        # Assert
        call_args = self.token_manager._http_client.post.call_args
        assert "Authorization" not in call_args[1]["headers"]
        assert call_args[1]["data"]["client_id"] == "abc"

    async def test_error_response_raises_token_exchange_error(self):
        self.token_manager._http_client.post.return_value = token_http_response(
            400,
            {"error": "invalid_grant", "error_description": "Code has expired"},
        )

        with pytest.raises(TokenExchangeError, match="invalid_grant"):
            await self.token_manager.exchange_code_for_token(self.token_request)

    async def test_error_response_without_json_body(self):
        response = token_http_response(502, None)
        response.json.side_effect = ValueError("no json")
        self.token_manager._http_client.post.return_value = response

        with pytest.raises(TokenExchangeError, match="502"):
            await self.token_manager.exchange_code_for_token(self.token_request)

    async def test_transport_error_raises_token_exchange_error(self):
        self.token_manager._http_client.post.side_effect = httpx.ConnectError("down")

        with pytest.raises(TokenExchangeError, match="HTTP error"):
            await self.token_manager.exchange_code_for_token(self.token_request)


class TestTokenRefresh:
    """Test the refresh_token grant."""

    def setup_method(self):
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()

    async def test_refresh_form_data_and_basic_header(self):
        # Arrange
        refresh_request = RefreshTokenRequest(
            token_endpoint=TOKEN_ENDPOINT,
            refresh_token="refresh-abc",
            client_id="abc",
            client_secret="s3cret",
            scope="patient/*.read",
        )
        self.token_manager._http_client.post.return_value = token_http_response(
            200, {"access_token": "T", "expires_in": 3600}
        )

        # Act
        token_response = await self.token_manager.refresh_access_token(
            refresh_request
        )

        # Assert
        assert token_response.access_token == "T"
        call_args = self.token_manager._http_client.post.call_args
        assert call_args[1]["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-abc",
            "scope": "patient/*.read",
        }
        assert decode_basic(call_args[1]["headers"]["Authorization"]) == "abc:s3cret"

    async def test_scope_defaults_to_offline_access(self):
        refresh_request = RefreshTokenRequest(
            token_endpoint=TOKEN_ENDPOINT,
            refresh_token="refresh-abc",
            client_id="abc",
            client_secret="s3cret",
        )

        assert refresh_request.to_form_data()["scope"] == "offline_access"

    async def test_public_client_refresh_sends_client_id(self):
        refresh_request = RefreshTokenRequest(
            token_endpoint=TOKEN_ENDPOINT,
            refresh_token="refresh-abc",
            client_id="abc",
        )
        self.token_manager._http_client.post.return_value = token_http_response(
            200, {"access_token": "T", "expires_in": 60}
        )

        await self.token_manager.refresh_access_token(refresh_request)

        call_args = self.token_manager._http_client.post.call_args
        assert "Authorization" not in call_args[1]["headers"]
        assert call_args[1]["data"]["client_id"] == "abc"

    async def test_missing_access_token_raises(self):
        refresh_request = RefreshTokenRequest(
            token_endpoint=TOKEN_ENDPOINT, refresh_token="refresh-abc"
        )
        self.token_manager._http_client.post.return_value = token_http_response(
            200, {"token_type": "Bearer"}
        )

        with pytest.raises(TokenRefreshError, match="access_token"):
            await self.token_manager.refresh_access_token(refresh_request)

    async def test_error_response_raises_token_refresh_error(self):
        refresh_request = RefreshTokenRequest(
            token_endpoint=TOKEN_ENDPOINT, refresh_token="revoked"
        )
        self.token_manager._http_client.post.return_value = token_http_response(
            401, {"error": "invalid_client"}
        )

        with pytest.raises(TokenRefreshError, match="invalid_client"):
            await self.token_manager.refresh_access_token(refresh_request)


class TestTokenState:
    def test_refresh_response_sets_token_and_expiry(self):
        # Arrange
        state = TokenState(refresh_token="refresh-abc", patient="pat-1")
        before = time.time()

        # Act
        state.apply_refresh(TokenResponse(access_token="T", expires_in=3600))

        # Assert
        assert state.access_token == "T"
        assert before + 3600 <= state.expires_at <= time.time() + 3600
        assert state.patient == "pat-1"
        assert state.refresh_token == "refresh-abc"

    def test_refresh_response_updates_patient_and_rotated_refresh_token(self):
        state = TokenState(refresh_token="old", patient="pat-1")

        state.apply_refresh(
            TokenResponse(
                access_token="T", expires_in=60, patient="pat-2", refresh_token="new"
            )
        )

        assert state.patient == "pat-2"
        assert state.refresh_token == "new"

    def test_missing_expires_in_never_expires_locally(self):
        state = TokenState(refresh_token="r")

        state.apply_refresh(TokenResponse(access_token="T"))

        assert not state.needs_refresh()

    def test_needs_refresh_within_margin(self):
        state = TokenState(access_token="T", expires_at=time.time() + 0.5)

        assert state.needs_refresh(margin=1.0)

    def test_fresh_token_does_not_need_refresh(self):
        state = TokenState(access_token="T", expires_at=time.time() + 3600)

        assert not state.needs_refresh(margin=1.0)

    def test_never_authenticated_needs_refresh(self):
        assert TokenState(refresh_token="r").needs_refresh()

    def test_tokens_not_in_repr(self):
        state = TokenState(access_token="secret-access", refresh_token="secret-refresh")

        assert "secret" not in repr(state)

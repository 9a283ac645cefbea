"""Authenticated session with a SMART on FHIR server.

Holds the client credentials and token state for one connection and keeps the
access token fresh.
"""

from __future__ import annotations

import asyncio
import logging

from smart_fhir.auth.models.errors import TokenRefreshError
from smart_fhir.auth.models.tokens import DEFAULT_SCOPE, RefreshTokenRequest, TokenState
from smart_fhir.auth.services.discovery import MetadataResolver
from smart_fhir.auth.services.tokens import OAuth2TokenManager

logger = logging.getLogger(__name__)


class Session:
    """One authenticated connection to a FHIR server.

    Created directly from a known refresh token, or returned (inside a
    ``FHIRClient``) by completing an authorization flow. In the latter case the
    session holds no access token yet and the first request refreshes.

    Refreshes are single-flight: concurrent callers that find the token expired
    wait for one refresh and share its outcome.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        scope: str | None = None,
        patient_id: str | None = None,
        resolver: MetadataResolver | None = None,
        token_manager: OAuth2TokenManager | None = None,
        refresh_margin: float = 1.0,
        timeout: float = 30.0,
    ):
        """Initialize a session.

        Args:
            base_url: FHIR server base URL (the SMART ``iss``)
            client_id: OAuth client identifier
            client_secret: Client secret, confidential clients only
            refresh_token: Refresh token used to obtain access tokens
            scope: OAuth scope string (default ``offline_access``)
            patient_id: Current patient context
            resolver: Metadata resolver used to find the token endpoint
            token_manager: Token endpoint service
            refresh_margin: Seconds before expiry a token is treated as expired
            timeout: HTTP timeout for services created here
        """
        self.base_url = base_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope or DEFAULT_SCOPE
        self.refresh_margin = refresh_margin
        self.token_state = TokenState(refresh_token=refresh_token, patient=patient_id)

        self._resolver = resolver or MetadataResolver(timeout=timeout)
        self._token_manager = token_manager or OAuth2TokenManager(timeout=timeout)
        self._refresh_task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return (
            f"Session(base_url={self.base_url!r}, client_id={self.client_id!r}, "
            f"patient_id={self.patient_id!r}, expires_at={self.expires_at!r})"
        )

    @property
    def access_token(self) -> str | None:
        return self.token_state.access_token

    @property
    def refresh_token(self) -> str | None:
        return self.token_state.refresh_token

    @property
    def expires_at(self) -> float | None:
        return self.token_state.expires_at

    @property
    def patient_id(self) -> str | None:
        return self.token_state.patient

    @property
    def resolver(self) -> MetadataResolver:
        return self._resolver

    def needs_refresh(self) -> bool:
        return self.token_state.needs_refresh(self.refresh_margin)

    def authorization_header(self) -> str:
        return f"Bearer {self.token_state.access_token}"

    async def refresh(self) -> None:
        """Use the refresh token to obtain a new access token.

        Mutates the token state in place: access token, expiry, and the patient
        context when the response carries one.

        Raises:
            TokenRefreshError: If no refresh token is held or the refresh fails
            DiscoveryError: If the token endpoint cannot be resolved
        """
        if not self.token_state.can_refresh():
            raise TokenRefreshError(f"No refresh token held for {self.base_url}")

        endpoints = await self._resolver.get_security_endpoints(self.base_url)
        refresh_request = RefreshTokenRequest(
            token_endpoint=endpoints.token_uri,
            refresh_token=self.token_state.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=self.scope,
        )

        token_response = await self._token_manager.refresh_access_token(
            refresh_request
        )
        self.token_state.apply_refresh(token_response)

        logger.info(f"Refreshed access token for {self.base_url}")

    async def ensure_fresh(self) -> bool:
        """Refresh the access token if it is missing or about to expire.

        Returns:
            True if this call started the refresh it waited for
        """
        if not self.needs_refresh():
            return False
        return await self._join_refresh()

    async def force_refresh(self) -> None:
        """Refresh now, joining a refresh that is already in flight."""
        await self._join_refresh()

    async def _join_refresh(self) -> bool:
        """Await the in-flight refresh, starting one if there is none.

        Every waiter sees the same outcome, including its exception. The task
        is dropped once done so a later call can try again.

        Returns:
            True if this call started the refresh
        """
        task = self._refresh_task
        started = task is None
        if task is None:
            task = asyncio.create_task(self.refresh())
            task.add_done_callback(self._refresh_done)
            self._refresh_task = task

        await asyncio.shield(task)
        return started

    def _refresh_done(self, task: asyncio.Task[None]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def close(self) -> None:
        await self._resolver.close()
        await self._token_manager.close()

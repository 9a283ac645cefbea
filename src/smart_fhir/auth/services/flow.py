"""SMART on FHIR authorization code flow.

Builds the authorization redirect, remembers each in-flight request by its
state nonce, and completes the flow by exchanging the returned code for a
refresh-capable client.
"""

from __future__ import annotations

import logging

from smart_fhir.auth.models.errors import (
    AuthorizationDeniedError,
    MissingCodeError,
    MissingStateError,
    UnknownStateError,
)
from smart_fhir.auth.models.flow import (
    AuthorizationRequest,
    AuthorizationResponse,
    PendingAuthorization,
)
from smart_fhir.auth.models.tokens import AuthorizationCodeRequest
from smart_fhir.auth.services.discovery import MetadataResolver
from smart_fhir.auth.services.pending import (
    PendingAuthorizationStore,
    default_pending_store,
)
from smart_fhir.auth.services.security import STATE_LENGTH, generate_state
from smart_fhir.auth.services.tokens import OAuth2TokenManager
from smart_fhir.client.fhir_client import FHIRClient

logger = logging.getLogger(__name__)


class SmartAuthorizationFlow:
    """Orchestrates SMART on FHIR authorization code flows.

    Handles the flow from the authorization redirect through the callback:
    - Endpoint discovery from the server's capability statement
    - State nonce generation and pending-request bookkeeping
    - Callback parsing and error reporting
    - Code exchange with Basic or form-body client authentication

    Pending requests live in a process-wide store unless one is injected.
    Setup and completion failures are raised to the caller.
    """

    def __init__(
        self,
        resolver: MetadataResolver | None = None,
        token_manager: OAuth2TokenManager | None = None,
        pending_store: PendingAuthorizationStore | None = None,
        timeout: float = 30.0,
        state_length: int = STATE_LENGTH,
    ):
        """Initialize the flow manager.

        Args:
            resolver: Metadata resolver for endpoint discovery
            token_manager: Token endpoint service for the code exchange
            pending_store: Store for in-flight authorizations
            timeout: HTTP timeout for services and the clients produced
            state_length: Length of generated state nonces
        """
        self.timeout = timeout
        self.state_length = state_length
        self.resolver = resolver or MetadataResolver(timeout=timeout)
        self.token_manager = token_manager or OAuth2TokenManager(timeout=timeout)
        self.pending_store = (
            pending_store if pending_store is not None else default_pending_store
        )

    async def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str,
        iss: str,
        client_secret: str | None = None,
    ) -> str:
        """Start an authorization flow and return the EHR login URL.

        Args:
            client_id: OAuth client identifier
            redirect_uri: URI the authorization server redirects back to
            scope: Requested scope string
            iss: FHIR server base URL, sent as ``aud``
            client_secret: Client secret, kept for the token exchange only

        Returns:
            Authorization URL for the user to visit

        Raises:
            DiscoveryError: If the authorize endpoint cannot be resolved
        """
        endpoints = await self.resolver.get_security_endpoints(iss)
        authorization_endpoint = endpoints.authorize_uri

        state = generate_state(self.state_length)
        while state in self.pending_store:
            state = generate_state(self.state_length)

        auth_request = AuthorizationRequest(
            authorization_endpoint=authorization_endpoint,
            client_id=client_id,
            scope=scope,
            redirect_uri=redirect_uri,
            aud=iss,
            state=state,
        )
        self.pending_store.put(
            PendingAuthorization(
                state=state,
                client_id=client_id,
                redirect_uri=redirect_uri,
                scope=scope,
                iss=iss,
                client_secret=client_secret,
            )
        )

        logger.info(f"Generated authorization URL for client {client_id} at {iss}")
        return auth_request.build_authorization_url()

    async def complete_auth(
        self, redirected_path: str, unsafe_url_encode: bool = False
    ) -> FHIRClient:
        """Complete the flow when redirected to the ``redirect_uri``.

        The returned client holds the refresh token, scope and patient from the
        token response but no access token: its first request refreshes.

        Args:
            redirected_path: Redirect URL, or its path and query string
            unsafe_url_encode: Send client credentials in the form body too,
                for servers that reject Basic authentication

        Returns:
            FHIRClient for the server that issued the authorization

        Raises:
            AuthorizationDeniedError: If the redirect carries an error
            MissingCodeError: If the redirect has no code
            MissingStateError: If the redirect has no state
            UnknownStateError: If the state is unknown, expired or consumed
            TokenExchangeError: If the code exchange fails
        """
        auth_response = AuthorizationResponse.from_redirect(redirected_path)

        if auth_response.is_error():
            logger.warning(
                f"Authorization callback contained error: {auth_response.error} - "
                f"{auth_response.error_description}"
            )
            raise AuthorizationDeniedError(
                auth_response.error, auth_response.error_description
            )
        if auth_response.code is None:
            raise MissingCodeError("Authorization callback missing code parameter")
        if auth_response.state is None:
            raise MissingStateError("Authorization callback missing state parameter")

        # Claimed before any await so a concurrent callback sees it as consumed
        pending = self.pending_store.pop(auth_response.state)
        if pending is None:
            raise UnknownStateError(
                "No pending authorization for this state; it is unknown, "
                "expired or already completed"
            )

        try:
            endpoints = await self.resolver.get_security_endpoints(pending.iss)

            # redirect_uri comes from the pending record, never from the callback
            token_request = AuthorizationCodeRequest(
                token_endpoint=endpoints.token_uri,
                code=auth_response.code,
                redirect_uri=pending.redirect_uri,
                client_id=pending.client_id,
                client_secret=pending.client_secret,
            )
            token_response = await self.token_manager.exchange_code_for_token(
                token_request, unsafe_url_encode
            )
        except Exception:
            # Released so the same redirect can be retried
            self.pending_store.put(pending)
            raise

        logger.info(f"Completed authorization for client {pending.client_id}")

        return FHIRClient(
            pending.iss,
            client_id=pending.client_id,
            client_secret=pending.client_secret,
            refresh_token=token_response.refresh_token,
            scope=token_response.scope,
            patient_id=token_response.patient,
            timeout=self.timeout,
        )

    async def close(self) -> None:
        """Close all service connections."""
        await self.resolver.close()
        await self.token_manager.close()


async def authorize(
    client_id: str,
    redirect_uri: str,
    scope: str,
    iss: str,
    client_secret: str | None = None,
) -> str:
    """Start an authorization flow using the process-wide pending store."""
    flow = SmartAuthorizationFlow()
    try:
        return await flow.authorize(
            client_id, redirect_uri, scope, iss, client_secret=client_secret
        )
    finally:
        await flow.close()


async def complete_auth(
    redirected_path: str, unsafe_url_encode: bool = False
) -> FHIRClient:
    """Complete an authorization flow started with ``authorize``."""
    flow = SmartAuthorizationFlow()
    try:
        return await flow.complete_auth(redirected_path, unsafe_url_encode)
    finally:
        await flow.close()

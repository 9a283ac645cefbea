"""Exception hierarchy for SMART on FHIR authorization and resource access.

Authorization, discovery and token failures are raised to the caller and stop
the flow. Resource request failures are reported through ``RequestOutcome``
and only become ``ResourceRequestError`` when the caller asks for it.
"""

from __future__ import annotations


class FHIRClientError(Exception):
    """Base exception for all SMART on FHIR client errors."""

    pass


class DiscoveryError(FHIRClientError):
    """Raised when server capability metadata cannot be used."""

    pass


class MetadataFetchError(DiscoveryError):
    """Raised when the metadata endpoint answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MissingEndpointError(DiscoveryError):
    """Raised when a required OAuth endpoint is absent from the security extensions."""

    pass


class AuthorizationError(FHIRClientError):
    """Raised when user authorization fails."""

    pass


class AuthorizationDeniedError(AuthorizationError):
    """Raised when the authorization server redirects back with an error.

    Carries the ``error`` and ``error_description`` values verbatim.
    """

    def __init__(self, error: str, error_description: str | None = None):
        super().__init__(f"{error}: {error_description}")
        self.error = error
        self.error_description = error_description


class AuthorizationCallbackError(FHIRClientError):
    """Raised when the redirect back from the authorization server is malformed.

    This indicates the authorization server (or whoever forwarded the redirect)
    sent an unusable callback, not that our callback handling code failed.
    """

    pass


class MissingCodeError(AuthorizationCallbackError):
    """Raised when the callback carries no authorization code."""

    pass


class MissingStateError(AuthorizationCallbackError):
    """Raised when the callback carries no state parameter."""

    pass


class UnknownStateError(AuthorizationCallbackError):
    """Raised when the state parameter matches no pending authorization.

    The nonce was never issued, has expired, or was already consumed.
    """

    pass


class TokenError(FHIRClientError):
    """Raised when token operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class ResourceRequestError(FHIRClientError):
    """Raised for a failed resource operation when fail-soft handling is off."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

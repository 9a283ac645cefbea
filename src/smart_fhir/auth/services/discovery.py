"""SMART on FHIR endpoint discovery.

Reads the server's CapabilityStatement from ``<base>/metadata`` and extracts
the OAuth authorize and token endpoints from its security extension.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from smart_fhir.auth.models.discovery import CapabilityStatement, SecurityEndpoints
from smart_fhir.auth.models.errors import MetadataFetchError

logger = logging.getLogger(__name__)


def metadata_url(server_url: str) -> str:
    """Build the capability statement URL for a FHIR base URL."""
    return f"{server_url.rstrip('/')}/metadata"


class MetadataResolver:
    """Resolves SMART OAuth endpoints for FHIR servers.

    The metadata request is unauthenticated. Nothing is cached: every call
    fetches the capability statement again.

    Transport errors (``httpx.RequestError``) propagate unchanged.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize the resolver.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional client to use instead of creating one; the
                caller keeps ownership and closes it
        """
        self.timeout = timeout
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def fetch_metadata(self, server_url: str) -> CapabilityStatement:
        """Fetch the capability statement of a FHIR server.

        Args:
            server_url: FHIR base URL, with or without a trailing slash

        Returns:
            Parsed capability statement

        Raises:
            MetadataFetchError: If the server answers with a non-2xx status
                or a body that is not a JSON object
        """
        url = metadata_url(server_url)
        logger.debug(f"Fetching capability statement from {url}")

        response = await self._http_client.get(
            url, headers={"Accept": "application/fhir+json"}
        )
        if not 200 <= response.status_code < 300:
            raise MetadataFetchError(
                f"Metadata request to {url} failed with {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return CapabilityStatement.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MetadataFetchError(
                f"Invalid capability statement from {url}: {e}"
            ) from e

    async def get_security_endpoints(self, server_url: str) -> SecurityEndpoints:
        """Resolve the OAuth endpoints advertised by a FHIR server.

        A capability statement without a security extension resolves to
        empty endpoints; the missing URI is reported when it is first used.
        """
        metadata = await self.fetch_metadata(server_url)
        extensions = metadata.security_extensions()

        if not extensions:
            logger.warning(f"No SMART security extensions advertised by {server_url}")
        else:
            logger.debug(
                f"Resolved security extensions for {server_url}: {sorted(extensions)}"
            )

        return SecurityEndpoints(server_url=server_url, extensions=extensions)

    async def close(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

"""Authenticated execution of FHIR resource requests.

Every request refreshes the session's access token first when needed, carries
the FHIR JSON and bearer headers, and is reported as a ``RequestOutcome``
instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from smart_fhir.auth.models.errors import FHIRClientError, ResourceRequestError
from smart_fhir.client.session import Session

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"

_ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
# A \u0000 escape, unless its backslash is itself escaped
_NUL_ESCAPE = re.compile(r"(?<!\\)((?:\\\\)*)\\u0000")


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one resource request: a JSON document or the failure."""

    data: Any = None
    error: Exception | None = None
    status_code: int | None = None

    def is_success(self) -> bool:
        return self.error is None

    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> Any:
        """Return the document, raising ``ResourceRequestError`` on failure."""
        if self.error is None:
            return self.data
        if isinstance(self.error, ResourceRequestError):
            raise self.error
        raise ResourceRequestError(
            str(self.error), status_code=self.status_code
        ) from self.error

    def unwrap_or_empty(self) -> Any:
        """Return the document, or an empty document on failure."""
        return self.data if self.error is None else {}


def build_url(base_url: str, path: str) -> str:
    """Join a resource path onto the base URL.

    Absolute URLs (for example Bundle paging links) are used verbatim.
    """
    if _ABSOLUTE_URL.match(path):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def strip_nul_escapes(data: Any) -> Any:
    """Remove every ``\\u0000`` escape from a JSON document.

    The document is serialized, cleaned and parsed again, so NUL characters
    anywhere in keys or string values are dropped.
    """
    return json.loads(_NUL_ESCAPE.sub(r"\1", json.dumps(data)))


class RequestExecutor:
    """Runs resource requests on behalf of a ``Session``."""

    def __init__(
        self,
        session: Session,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the executor.

        Args:
            session: Session supplying the base URL and access token
            timeout: HTTP request timeout in seconds
            http_client: Optional client to use instead of creating one; the
                caller keeps ownership and closes it
        """
        self.session = session
        self.timeout = timeout
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def execute(
        self,
        path: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        body: Any = None,
    ) -> RequestOutcome:
        """Issue one authenticated request.

        Args:
            path: Resource path relative to the base URL, or an absolute URL
            method: HTTP method
            params: Query parameters
            headers: Extra headers; these override the defaults on collision
            body: Request body document

        Returns:
            RequestOutcome: The sanitized response document or the failure
        """
        url = build_url(self.session.base_url, path)

        try:
            await self.session.ensure_fresh()

            request_headers = {
                "Accept": FHIR_JSON,
                "Authorization": self.session.authorization_header(),
            }
            if body is not None:
                request_headers["Content-Type"] = FHIR_JSON
            request_headers.update(headers or {})

            logger.debug(f"{method} {url}")
            response = await self._http_client.request(
                method,
                url,
                params=params or None,
                headers=request_headers,
                json=body,
            )

            if not 200 <= response.status_code < 300:
                return self._failure(
                    method,
                    url,
                    ResourceRequestError(
                        f"{method} {url} failed with {response.status_code}: "
                        f"{response.text}",
                        status_code=response.status_code,
                    ),
                    response.status_code,
                )

            # 204 No Content and friends
            if not response.content:
                return RequestOutcome(data={}, status_code=response.status_code)

            data = strip_nul_escapes(response.json())
            return RequestOutcome(data=data, status_code=response.status_code)

        except (FHIRClientError, httpx.HTTPError, ValueError) as e:
            return self._failure(method, url, e)

    def _failure(
        self, method: str, url: str, error: Exception, status_code: int | None = None
    ) -> RequestOutcome:
        logger.error(f"FHIR request {method} {url} failed: {error}")
        return RequestOutcome(error=error, status_code=status_code)

    async def close(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

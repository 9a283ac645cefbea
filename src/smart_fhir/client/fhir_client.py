"""FHIR REST client with SMART on FHIR token handling.

Resource documents are plain JSON dictionaries keyed by ``resourceType``; the
client neither validates nor interprets their content.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from smart_fhir.auth.services.discovery import MetadataResolver
from smart_fhir.auth.services.tokens import OAuth2TokenManager
from smart_fhir.client.executor import RequestExecutor, RequestOutcome
from smart_fhir.client.session import Session
from smart_fhir.versions import fhir_release

logger = logging.getLogger(__name__)

Resource = dict[str, Any]


class ResourceOperations:
    """The five resource verbs, dispatched through ``_dispatch``.

    ``search`` issues the same GET as ``read``; the distinction is the caller's.
    """

    async def _dispatch(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        json: Any,
    ) -> Resource:
        raise NotImplementedError

    async def read(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Resource:
        """Read a resource, e.g. ``Patient/123``."""
        return await self._dispatch("GET", path, params, headers, None)

    async def search(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Resource:
        """Search a resource type and return the Bundle document.

        Example: ``search("Patient", params={"family": "Smith"})``.
        """
        return await self._dispatch("GET", path, params, headers, None)

    async def create(
        self,
        path: str,
        json: Resource | None = None,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Resource:
        return await self._dispatch("POST", path, params, headers, json)

    async def update(
        self,
        path: str,
        json: Resource | None = None,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Resource:
        return await self._dispatch("PUT", path, params, headers, json)

    async def delete(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Resource:
        return await self._dispatch("DELETE", path, params, headers, None)


class PatientScope(ResourceOperations):
    """Resource verbs bound to the current patient context.

    Every request carries a ``patient`` query parameter; caller-supplied
    params win on collision.
    """

    def __init__(self, client: FHIRClient, patient_id: str | None):
        self._client = client
        self.id = patient_id

    async def _dispatch(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        json: Any,
    ) -> Resource:
        scoped = {"patient": self.id} if self.id is not None else {}
        return await self._client.request(
            path,
            method,
            params={**scoped, **(params or {})},
            headers=headers,
            json=json,
        )


class FHIRClient(ResourceOperations):
    """Client for one FHIR server, authenticated through a ``Session``.

    Build it directly with a known refresh token, or get one from
    ``SmartAuthorizationFlow.complete_auth``.

    With ``fail_soft`` (the default) a failed request is logged and returns an
    empty document. Use ``send`` to inspect the ``RequestOutcome`` instead, or
    pass ``fail_soft=False`` to have failures raise ``ResourceRequestError``.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        scope: str | None = None,
        patient_id: str | None = None,
        *,
        session: Session | None = None,
        fail_soft: bool = True,
        refresh_margin: float = 1.0,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.session = session or Session(
            base_url,
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            scope=scope,
            patient_id=patient_id,
            resolver=MetadataResolver(timeout=timeout, http_client=http_client),
            token_manager=OAuth2TokenManager(timeout=timeout, http_client=http_client),
            refresh_margin=refresh_margin,
        )
        self.fail_soft = fail_soft
        self.executor = RequestExecutor(
            self.session, timeout=timeout, http_client=http_client
        )

    @property
    def base_url(self) -> str:
        return self.session.base_url

    @property
    def patient(self) -> PatientScope:
        """Resource verbs scoped to the session's current patient."""
        return PatientScope(self, self.session.patient_id)

    async def refresh(self) -> None:
        """Force a refresh of the access token."""
        await self.session.force_refresh()

    async def send(
        self,
        path: str,
        method: str = "GET",
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> RequestOutcome:
        """Issue a request and return its outcome without applying fail-soft."""
        return await self.executor.execute(
            path, method, params=params, headers=headers, body=json
        )

    async def request(
        self,
        path: str,
        method: str = "GET",
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> Resource:
        """Issue a request and return the response document.

        Raises:
            ResourceRequestError: On failure, only when ``fail_soft`` is off
        """
        outcome = await self.send(
            path, method, params=params, headers=headers, json=json
        )
        if self.fail_soft:
            return outcome.unwrap_or_empty()
        return outcome.unwrap()

    async def _dispatch(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        json: Any,
    ) -> Resource:
        return await self.request(
            path, method, params=params, headers=headers, json=json
        )

    async def get_fhir_version(self) -> str | None:
        """Get the FHIR version declared in the server's capability statement."""
        metadata = await self.session.resolver.fetch_metadata(self.base_url)
        return metadata.fhir_version

    async def get_fhir_release(self) -> int:
        """Get the numeric FHIR release: 2, 3, 4, 5, or 0 if unknown."""
        return fhir_release(await self.get_fhir_version())

    async def close(self) -> None:
        """Close the HTTP clients this client created."""
        await self.session.close()
        await self.executor.close()

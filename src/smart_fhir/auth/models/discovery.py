"""Discovery-related models for SMART on FHIR server metadata.

Contains the capability statement as served from ``<base>/metadata`` and the
OAuth endpoints extracted from its SMART security extension.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from smart_fhir.auth.models.errors import MissingEndpointError


class CapabilityStatement(BaseModel):
    """FHIR CapabilityStatement, validated only as far as discovery needs.

    Every other element of the document is kept as an extra field and left
    uninterpreted.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resource_type: str | None = Field(default=None, alias="resourceType")
    fhir_version: str | None = Field(default=None, alias="fhirVersion")
    rest: list[Any] = Field(default_factory=list)

    def security_extensions(self) -> dict[str, str]:
        """Map each nested SMART security extension to ``{"<url>Uri": valueUri}``.

        Reads ``rest[0].security.extension[0].extension[]``. Any missing step
        yields an empty mapping.
        """
        rest = self.rest[0] if self.rest else None
        security = rest.get("security") if isinstance(rest, dict) else None
        outer = security.get("extension") if isinstance(security, dict) else None
        first = outer[0] if isinstance(outer, list) and outer else None
        nested = first.get("extension") if isinstance(first, dict) else None

        extensions: dict[str, str] = {}
        for item in nested or []:
            if isinstance(item, dict) and "url" in item:
                extensions[f"{item['url']}Uri"] = item.get("valueUri")
        return extensions


@dataclass(frozen=True)
class SecurityEndpoints:
    """OAuth endpoints resolved for one FHIR server.

    Recomputed on every use rather than cached, so a server that rotates its
    endpoints is picked up on the next flow step.
    """

    server_url: str
    extensions: dict[str, str] = field(default_factory=dict)

    @property
    def authorize_uri(self) -> str:
        return self._require("authorizeUri")

    @property
    def token_uri(self) -> str:
        return self._require("tokenUri")

    def _require(self, key: str) -> str:
        uri = self.extensions.get(key)
        if not uri:
            raise MissingEndpointError(
                f"Server {self.server_url} does not advertise {key} "
                f"in its security extensions"
            )
        return uri

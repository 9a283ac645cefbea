"""FHIR version strings and the release each belongs to."""

from __future__ import annotations

# fhirVersion as published in a CapabilityStatement -> numeric release
FHIR_VERSIONS: dict[str, int] = {
    "0.4.0": 2,
    "0.5.0": 2,
    "1.0.0": 2,
    "1.0.1": 2,
    "1.0.2": 2,
    "1.1.0": 3,
    "1.4.0": 3,
    "1.6.0": 3,
    "1.8.0": 3,
    "3.0.0": 3,
    "3.0.1": 3,
    "3.0.2": 3,
    "3.3.0": 4,
    "3.5.0": 4,
    "4.0.0": 4,
    "4.0.1": 4,
    "4.3.0": 5,
    "5.0.0": 5,
    "5.0.1": 5,
    "5.1.0": 5,
    "5.2.0": 5,
    "5.3.0": 5,
    "5.4.0": 5,
}


def fhir_release(version: str | None) -> int:
    """Map a FHIR version string to its release number.

    2 for DSTU2, 3 for STU3, 4 for R4, 5 for R4B and R5, 0 if unknown.
    """
    if version is None:
        return 0
    return FHIR_VERSIONS.get(version, 0)

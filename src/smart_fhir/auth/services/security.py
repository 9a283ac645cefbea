"""Security utilities for SMART on FHIR flows.

Provides state nonce generation and HTTP Basic client credentials.
"""

from __future__ import annotations

import base64
import secrets
import string

STATE_LENGTH = 16
_STATE_ALPHABET = string.ascii_letters + string.digits + "-._~"


def generate_state(length: int = STATE_LENGTH) -> str:
    """Generate the state nonce that keys a pending authorization.

    Uses URL-safe unreserved characters so the nonce survives the redirect
    round trip without escaping.

    Args:
        length: Number of characters, at least 16

    Returns:
        Random state string
    """
    if length < STATE_LENGTH:
        raise ValueError(f"state must be at least {STATE_LENGTH} characters")
    return "".join(secrets.choice(_STATE_ALPHABET) for _ in range(length))


def encode_basic_credential(client_id: str, client_secret: str) -> str:
    """Build the ``Authorization`` header value for client authentication."""
    raw = f"{client_id}:{client_secret}".encode()
    return f"Basic {base64.b64encode(raw).decode('ascii')}"

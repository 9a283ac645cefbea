"""Storage for authorizations waiting on their redirect.

Records are keyed by state nonce and expire after a fixed lifetime, roughly
the lifetime of an authorization code. Expired records are evicted lazily
on every write and lookup.
"""

from __future__ import annotations

import logging
import time

from smart_fhir.auth.models.flow import PendingAuthorization

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL = 600.0


class PendingAuthorizationStore:
    """In-memory, time-indexed store of pending authorizations.

    Not persisted: pending flows do not survive a process restart.
    """

    def __init__(self, ttl: float = DEFAULT_PENDING_TTL) -> None:
        self.ttl = ttl
        self._pending: dict[str, PendingAuthorization] = {}  # state -> record

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, state: object) -> bool:
        return isinstance(state, str) and self.get(state) is not None

    def put(self, pending: PendingAuthorization) -> None:
        """Store a pending authorization under its state nonce.

        Raises:
            ValueError: If the nonce is already pending
        """
        self.purge_expired()
        if pending.state in self._pending:
            raise ValueError("State nonce is already in use by a pending authorization")
        self._pending[pending.state] = pending

    def get(self, state: str) -> PendingAuthorization | None:
        """Look up a pending authorization without consuming it."""
        pending = self._pending.get(state)
        if pending is not None and pending.is_expired(self.ttl):
            return None
        return pending

    def pop(self, state: str) -> PendingAuthorization | None:
        """Remove and return a pending authorization.

        Returns None if the nonce is unknown, expired or already consumed.
        """
        self.purge_expired()
        return self._pending.pop(state, None)

    def purge_expired(self) -> int:
        """Evict expired records. Returns the number evicted."""
        now = time.time()
        expired = [
            state
            for state, pending in self._pending.items()
            if pending.is_expired(self.ttl, now)
        ]
        for state in expired:
            del self._pending[state]

        if expired:
            logger.debug(f"Evicted {len(expired)} expired pending authorizations")
        return len(expired)

    def clear(self) -> None:
        self._pending.clear()


# Shared by every flow manager that is not given its own store
default_pending_store = PendingAuthorizationStore()

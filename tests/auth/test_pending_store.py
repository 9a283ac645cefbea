"""Tests for the time-indexed pending authorization store."""

import time

import pytest

from smart_fhir.auth.models.flow import PendingAuthorization
from smart_fhir.auth.services.pending import PendingAuthorizationStore


def make_pending(state: str, created_at: float | None = None) -> PendingAuthorization:
    return PendingAuthorization(
        state=state,
        client_id="abc",
        redirect_uri="https://app/cb",
        scope="patient/*.read",
        iss="https://fhir.example/r4",
        client_secret="s3cret",
        created_at=created_at if created_at is not None else time.time(),
    )


class TestPendingAuthorizationStore:
    def setup_method(self):
        self.store = PendingAuthorizationStore(ttl=60.0)

    def test_put_then_get_by_state(self):
        pending = make_pending("state-aaaaaaaaaaa")

        self.store.put(pending)

        assert self.store.get("state-aaaaaaaaaaa") is pending
        assert "state-aaaaaaaaaaa" in self.store
        assert len(self.store) == 1

    def test_get_does_not_consume(self):
        self.store.put(make_pending("state-aaaaaaaaaaa"))

        self.store.get("state-aaaaaaaaaaa")

        assert self.store.get("state-aaaaaaaaaaa") is not None

    def test_pop_consumes_exactly_once(self):
        pending = make_pending("state-aaaaaaaaaaa")
        self.store.put(pending)

        assert self.store.pop("state-aaaaaaaaaaa") is pending
        assert self.store.pop("state-aaaaaaaaaaa") is None
        assert self.store.get("state-aaaaaaaaaaa") is None

    def test_unknown_state_returns_none(self):
        assert self.store.get("never-issued-state") is None
        assert self.store.pop("never-issued-state") is None

    def test_duplicate_state_rejected(self):
        self.store.put(make_pending("state-aaaaaaaaaaa"))

        with pytest.raises(ValueError, match="already in use"):
            self.store.put(make_pending("state-aaaaaaaaaaa"))

    def test_expired_record_behaves_as_unknown(self):
        self.store.put(make_pending("state-aaaaaaaaaaa", created_at=time.time() - 61))

        assert self.store.get("state-aaaaaaaaaaa") is None
        assert self.store.pop("state-aaaaaaaaaaa") is None

    def test_purge_evicts_only_expired_records(self):
        # Arrange
        self.store._pending["old-state-aaaaaaa"] = make_pending(
            "old-state-aaaaaaa", created_at=time.time() - 120
        )
        self.store._pending["new-state-aaaaaaa"] = make_pending("new-state-aaaaaaa")

        # Act
        evicted = self.store.purge_expired()

        # Assert
        assert evicted == 1
        assert "old-state-aaaaaaa" not in self.store
        assert "new-state-aaaaaaa" in self.store

    def test_expired_record_not_contained_before_purge(self):
        self.store._pending["old-state-aaaaaaa"] = make_pending(
            "old-state-aaaaaaa", created_at=time.time() - 120
        )

        assert "old-state-aaaaaaa" not in self.store
        assert len(self.store._pending) == 1

    def test_put_evicts_abandoned_flows(self):
        self.store._pending["old-state-aaaaaaa"] = make_pending(
            "old-state-aaaaaaa", created_at=time.time() - 120
        )

        self.store.put(make_pending("new-state-aaaaaaa"))

        assert len(self.store) == 1

    def test_clear_drops_everything(self):
        self.store.put(make_pending("state-aaaaaaaaaaa"))
        self.store.put(make_pending("state-bbbbbbbbbbb"))

        self.store.clear()

        assert len(self.store) == 0

    def test_secret_not_in_repr(self):
        assert "s3cret" not in repr(make_pending("state-aaaaaaaaaaa"))

"""Tests for identity find-or-create."""

import pytest

from personacore.errors import IdentityExistsError, IdentityProvisioningError
from personacore.identity import resolve_identity
from personacore.memory_store import InMemoryStore

from tests.conftest import FlakyStore


class RacingStore(InMemoryStore):
    """Another delivery creates the identity between our lookup and our create."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    def find_identity_by_email(self, email):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return super().find_identity_by_email(email)

    def create_identity(self, email, password, email_confirm, metadata):
        super().create_identity(email, "other", True, {})
        raise IdentityExistsError("A user with this email address has already been registered")


class GhostStore(InMemoryStore):
    """Claims the email exists but never returns it."""

    def find_identity_by_email(self, email):
        return None

    def create_identity(self, email, password, email_confirm, metadata):
        raise IdentityExistsError("already registered")


class TestResolveIdentity:
    def test_creates_when_missing(self):
        store = InMemoryStore()
        identity_id, created = resolve_identity(store, "fan@x.com", {"subscribed_to": "Jane"})
        assert created is True
        identity = store.identities[identity_id]
        assert identity["email"] == "fan@x.com"
        assert identity["email_confirm"] is True
        assert identity["metadata"] == {"subscribed_to": "Jane"}
        assert len(identity["password"]) >= 32

    def test_reuses_existing(self):
        store = InMemoryStore()
        first, _ = resolve_identity(store, "fan@x.com")
        second, created = resolve_identity(store, "fan@x.com")
        assert second == first
        assert created is False
        assert len(store.identities) == 1

    def test_case_differences_do_not_duplicate(self):
        store = InMemoryStore()
        first, _ = resolve_identity(store, "Fan@X.com")
        second, _ = resolve_identity(store, "fan@x.COM")
        assert first == second
        assert len(store.identities) == 1

    def test_placeholder_passwords_differ(self):
        store = InMemoryStore()
        a, _ = resolve_identity(store, "a@x.com")
        b, _ = resolve_identity(store, "b@x.com")
        assert store.identities[a]["password"] != store.identities[b]["password"]

    def test_already_exists_race_resolves_again(self):
        store = RacingStore()
        identity_id, created = resolve_identity(store, "fan@x.com")
        assert created is False
        assert identity_id in store.identities
        assert len(store.identities) == 1

    def test_already_exists_but_not_found(self):
        with pytest.raises(IdentityProvisioningError, match="could not be found"):
            resolve_identity(GhostStore(), "fan@x.com")

    def test_create_failure_is_fatal(self):
        store = FlakyStore(failures={"create_identity": -1})
        with pytest.raises(IdentityProvisioningError, match="Failed to create user"):
            resolve_identity(store, "fan@x.com")

    def test_lookup_failure_is_fatal(self):
        store = FlakyStore(failures={"find_identity_by_email": -1})
        with pytest.raises(IdentityProvisioningError, match="lookup failed"):
            resolve_identity(store, "fan@x.com")

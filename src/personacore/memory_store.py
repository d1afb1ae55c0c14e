"""In-process store for tests and ``personacore replay`` dry runs.

Implements the same ``DataStore`` and ``LinkIssuer`` protocols as
``SupabaseStore`` and enforces the same uniqueness rules (email for
identities, username for fan profiles).
"""

from __future__ import annotations

import itertools
from typing import Any
from urllib.parse import urlencode

from personacore.errors import DuplicateKeyError, IdentityExistsError
from personacore.schema import (
    ConversationRecord,
    Creator,
    FanProfile,
    PayoutRecord,
    SubscriptionRecord,
    normalize_email,
)


class InMemoryStore:
    def __init__(self, creators: list[Creator] | None = None):
        self.creators: dict[str, Creator] = {c.slug: c for c in creators or [] if c.slug}
        self.identities: dict[str, dict[str, Any]] = {}
        self.profiles: dict[str, FanProfile] = {}
        self.subscriptions: dict[str, SubscriptionRecord] = {}
        self.conversations: dict[str, ConversationRecord] = {}
        self.payouts: dict[str, PayoutRecord] = {}
        self.magic_links: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def add_creator(self, creator: Creator) -> None:
        self.creators[creator.slug or creator.id] = creator

    # -- identities ------------------------------------------------------------------

    def find_identity_by_email(self, email: str) -> str | None:
        wanted = normalize_email(email)
        for identity_id, identity in self.identities.items():
            if identity["email"] == wanted:
                return identity_id
        return None

    def create_identity(
        self, email: str, password: str, email_confirm: bool, metadata: dict[str, Any]
    ) -> str:
        email = normalize_email(email)
        if self.find_identity_by_email(email):
            raise IdentityExistsError(f"A user with email {email} has already been registered")
        identity_id = self._next_id("user")
        self.identities[identity_id] = {
            "email": email,
            "password": password,
            "email_confirm": email_confirm,
            "metadata": dict(metadata),
        }
        return identity_id

    def generate_magic_link(self, email: str, redirect_url: str) -> str:
        self.magic_links.append((email, redirect_url))
        query = urlencode({"email": email, "redirect_to": redirect_url})
        return f"https://auth.invalid/verify?{query}"

    # -- tables ----------------------------------------------------------------------

    def get_profile(self, identity_id: str) -> FanProfile | None:
        return self.profiles.get(identity_id)

    def upsert_profile(self, profile: FanProfile) -> None:
        for other in self.profiles.values():
            if other.username == profile.username and other.id != profile.id:
                raise DuplicateKeyError("username")
        self.profiles[profile.id] = profile

    def find_creator_by_slug(self, slug: str) -> Creator | None:
        return self.creators.get(slug)

    def username_exists(self, username: str) -> bool:
        return any(p.username == username for p in self.profiles.values())

    def find_subscription_by_reference(self, reference: str) -> str | None:
        for sub_id, sub in self.subscriptions.items():
            if sub.stripe_subscription_id == reference:
                return sub_id
        return None

    def insert_subscription(self, record: SubscriptionRecord) -> str:
        sub_id = self._next_id("sub")
        self.subscriptions[sub_id] = record
        return sub_id

    def insert_conversation(self, record: ConversationRecord) -> str:
        conv_id = self._next_id("conv")
        self.conversations[conv_id] = record
        return conv_id

    def insert_payout(self, record: PayoutRecord) -> str:
        payout_id = self._next_id("payout")
        self.payouts[payout_id] = record
        return payout_id

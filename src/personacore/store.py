"""Identity & Data Store interfaces and the Supabase-backed implementation.

The workflow only talks to the ``DataStore``, ``LinkIssuer`` and ``Mailer``
protocols; ``SupabaseStore`` satisfies the first two against a hosted
Supabase project (auth admin API + PostgREST tables) using the service
role key.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import ValidationError

from personacore.config import (
    CONVERSATIONS_TABLE,
    CREATORS_TABLE,
    FANS_TABLE,
    PAYOUTS_TABLE,
    SUBSCRIPTIONS_TABLE,
    Settings,
)
from personacore.errors import (
    ConfigurationError,
    DuplicateKeyError,
    IdentityExistsError,
    StoreError,
)
from personacore.schema import (
    ConversationRecord,
    Creator,
    FanProfile,
    PayoutRecord,
    SubscriptionRecord,
    normalize_email,
)

logger = logging.getLogger("personacore.store")

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# Page size for auth admin user listing
USERS_PER_PAGE = 1000


class DataStore(Protocol):
    def find_identity_by_email(self, email: str) -> str | None: ...

    def create_identity(
        self, email: str, password: str, email_confirm: bool, metadata: dict[str, Any]
    ) -> str: ...

    def get_profile(self, identity_id: str) -> FanProfile | None: ...

    def upsert_profile(self, profile: FanProfile) -> None: ...

    def find_creator_by_slug(self, slug: str) -> Creator | None: ...

    def username_exists(self, username: str) -> bool: ...

    def find_subscription_by_reference(self, reference: str) -> str | None: ...

    def insert_subscription(self, record: SubscriptionRecord) -> str: ...

    def insert_conversation(self, record: ConversationRecord) -> str: ...

    def insert_payout(self, record: PayoutRecord) -> str: ...


class LinkIssuer(Protocol):
    def generate_magic_link(self, email: str, redirect_url: str) -> str: ...


class Mailer(Protocol):
    def send(self, to: str, subject: str, html: str) -> None: ...


def _is_already_registered(exc: Exception) -> bool:
    code = str(getattr(exc, "code", "") or "").lower()
    if code in ("email_exists", "user_already_exists"):
        return True
    text = str(exc).lower()
    return "already" in text and ("registered" in text or "exists" in text)


class SupabaseStore:
    """``DataStore`` + ``LinkIssuer`` over a supabase-py client."""

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> SupabaseStore:
        if not settings.store_configured:
            msg = "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
            raise ConfigurationError(msg)
        from supabase import create_client

        return cls(create_client(settings.supabase_url, settings.supabase_service_key))

    # -- identities ------------------------------------------------------------------

    def find_identity_by_email(self, email: str) -> str | None:
        wanted = normalize_email(email)
        page = 1
        while True:
            try:
                users = self._client.auth.admin.list_users(page=page, per_page=USERS_PER_PAGE)
            except Exception as e:
                raise StoreError(f"Failed to list users: {e}") from e
            for user in users:
                if user.email and normalize_email(user.email) == wanted:
                    return user.id
            if len(users) < USERS_PER_PAGE:
                return None
            page += 1

    def create_identity(
        self, email: str, password: str, email_confirm: bool, metadata: dict[str, Any]
    ) -> str:
        try:
            response = self._client.auth.admin.create_user(
                {
                    "email": email,
                    "password": password,
                    "email_confirm": email_confirm,
                    "user_metadata": metadata,
                }
            )
        except Exception as e:
            if _is_already_registered(e):
                raise IdentityExistsError(str(e)) from e
            raise StoreError(f"Failed to create user: {e}") from e

        user = getattr(response, "user", None)
        if user is None:
            raise StoreError("User creation failed: no user data returned")
        return user.id

    def generate_magic_link(self, email: str, redirect_url: str) -> str:
        try:
            response = self._client.auth.admin.generate_link(
                {"type": "magiclink", "email": email, "options": {"redirect_to": redirect_url}}
            )
        except Exception as e:
            raise StoreError(f"Failed to generate magic link: {e}") from e
        link = getattr(getattr(response, "properties", None), "action_link", None)
        if not link:
            raise StoreError("Magic link response had no action_link")
        return link

    # -- tables ----------------------------------------------------------------------

    def _execute(self, query, what: str):
        from postgrest.exceptions import APIError

        try:
            return query.execute()
        except APIError as e:
            if str(e.code) == UNIQUE_VIOLATION:
                field = "username" if "username" in (e.message or "") else "unknown"
                raise DuplicateKeyError(field, e.message or str(e)) from e
            raise StoreError(f"{what} failed: {e.message or e}") from e
        except Exception as e:
            raise StoreError(f"{what} failed: {e}") from e

    def get_profile(self, identity_id: str) -> FanProfile | None:
        query = (
            self._client.table(FANS_TABLE)
            .select("id, email, username, name, status")
            .eq("id", identity_id)
            .limit(1)
        )
        rows = self._execute(query, "Fan lookup").data
        if not rows or not rows[0].get("username"):
            return None
        row = rows[0]
        return FanProfile(
            id=row["id"],
            email=row["email"],
            username=row["username"],
            name=row.get("name") or row["username"],
        )

    def upsert_profile(self, profile: FanProfile) -> None:
        self._execute(self._client.table(FANS_TABLE).upsert(profile.to_row()), "Fan upsert")

    def find_creator_by_slug(self, slug: str) -> Creator | None:
        query = (
            self._client.table(CREATORS_TABLE)
            .select("id, name, slug, status")
            .eq("slug", slug)
            .limit(1)
        )
        rows = self._execute(query, "Creator lookup").data
        if not rows:
            return None
        try:
            return Creator(**rows[0])
        except ValidationError as e:
            raise StoreError(f"Creator row for {slug} is invalid: {e}") from e

    def username_exists(self, username: str) -> bool:
        query = self._client.table(FANS_TABLE).select("id").eq("username", username).limit(1)
        return bool(self._execute(query, "Username lookup").data)

    def find_subscription_by_reference(self, reference: str) -> str | None:
        query = (
            self._client.table(SUBSCRIPTIONS_TABLE)
            .select("id")
            .eq("stripe_subscription_id", reference)
            .limit(1)
        )
        rows = self._execute(query, "Subscription lookup").data
        return rows[0]["id"] if rows else None

    def _insert(self, table: str, row: dict, what: str) -> str:
        rows = self._execute(self._client.table(table).insert(row), what).data
        if not rows:
            raise StoreError(f"{what} returned no row")
        return rows[0]["id"]

    def insert_subscription(self, record: SubscriptionRecord) -> str:
        return self._insert(SUBSCRIPTIONS_TABLE, record.to_row(), "Subscription insert")

    def insert_conversation(self, record: ConversationRecord) -> str:
        return self._insert(CONVERSATIONS_TABLE, record.to_row(), "Conversation insert")

    def insert_payout(self, record: PayoutRecord) -> str:
        return self._insert(PAYOUTS_TABLE, record.to_row(), "Payout insert")

"""Find-or-create of the auth identity backing a fan."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from personacore.errors import IdentityExistsError, IdentityProvisioningError, StoreError
from personacore.schema import mask_email, normalize_email
from personacore.store import DataStore

logger = logging.getLogger("personacore.identity")


def placeholder_password() -> str:
    """Random credential for new identities; sign-in always goes through a one-time link."""
    return secrets.token_urlsafe(48)


def resolve_identity(
    store: DataStore, email: str, metadata: dict[str, Any] | None = None
) -> tuple[str, bool]:
    """Return ``(identity_id, created)`` for ``email``, creating the identity if needed.

    The email is trusted as confirmed: the processor's checkout collected it.
    If creation loses a race with a concurrent delivery ("already registered"),
    the identity is resolved again by email.
    """
    email = normalize_email(email)
    try:
        existing = store.find_identity_by_email(email)
    except StoreError as e:
        raise IdentityProvisioningError(f"Identity lookup failed: {e}") from e
    if existing:
        return existing, False

    try:
        identity_id = store.create_identity(
            email,
            placeholder_password(),
            email_confirm=True,
            metadata=metadata or {},
        )
        return identity_id, True
    except IdentityExistsError:
        logger.info("Identity for %s created concurrently, resolving again", mask_email(email))
    except StoreError as e:
        raise IdentityProvisioningError(f"Failed to create user: {e}") from e

    try:
        existing = store.find_identity_by_email(email)
    except StoreError as e:
        raise IdentityProvisioningError(f"Identity lookup failed: {e}") from e
    if not existing:
        msg = f"Identity for {mask_email(email)} reported as existing but could not be found"
        raise IdentityProvisioningError(msg)
    return existing, False

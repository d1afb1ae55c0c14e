"""Hosted checkout session creation for a creator subscription."""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

import stripe

from personacore.config import Settings

logger = logging.getLogger("personacore.checkout")

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
PRICE_PATTERN = re.compile(r"^price_[A-Za-z0-9]+$")


def validate_checkout_params(body: dict) -> tuple[dict | None, str | None]:
    """Validate a checkout request body.

    Returns (params_dict, None) on success or (None, error_message) on failure.
    The params_dict contains keys: price_id, creator_slug.
    """
    if not isinstance(body, dict):
        return None, "Body must be a JSON object"

    price_id = body.get("price_id")
    creator_slug = body.get("creator_slug")
    if not price_id or not creator_slug:
        return None, "Missing price_id or creator_slug"
    if not isinstance(price_id, str) or not PRICE_PATTERN.match(price_id):
        return None, "Invalid price_id"
    if not isinstance(creator_slug, str) or not SLUG_PATTERN.match(creator_slug):
        return None, "Invalid creator_slug"

    return {"price_id": price_id, "creator_slug": creator_slug}, None


def checkout_urls(app_base_url: str, creator_slug: str) -> tuple[str, str]:
    """Success and cancel URLs for a creator's checkout."""
    base = app_base_url.rstrip("/")
    success_url = f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = f"{base}/join/{quote(creator_slug, safe='')}"
    return success_url, cancel_url


def create_checkout_session(settings: Settings, price_id: str, creator_slug: str) -> str:
    """Create a subscription-mode checkout session and return its URL.

    The creator slug travels in the session metadata; the payment webhook
    reads it back to provision the subscription.
    """
    success_url, cancel_url = checkout_urls(settings.app_base_url, creator_slug)
    session = stripe.checkout.Session.create(
        api_key=settings.stripe_secret_key,
        mode="subscription",
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"creator_slug": creator_slug},
    )
    logger.info("Checkout session %s created for creator %s", session.id, creator_slug)
    return session.url

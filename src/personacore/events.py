"""Payment notification verification and parsing."""

from __future__ import annotations

import json
import logging

import stripe
from pydantic import ValidationError

from personacore.config import CHECKOUT_COMPLETED
from personacore.errors import AuthenticationError, MalformedPayloadError
from personacore.schema import CheckoutCompletedEvent, IgnoredEvent, PaymentEvent

logger = logging.getLogger("personacore.events")


def verify_signature(raw_body: bytes, sig_header: str, secret: str) -> None:
    """Check the processor's signature header against the raw body."""
    if not sig_header:
        raise AuthenticationError("Missing signature header")
    try:
        stripe.Webhook.construct_event(raw_body, sig_header, secret)
    except stripe.SignatureVerificationError as e:
        raise AuthenticationError("Invalid signature") from e
    except ValueError as e:
        # construct_event parses the JSON after the signature checks out
        raise MalformedPayloadError(f"Invalid JSON: {e}") from e


def parse_event(
    raw_body: bytes,
    sig_header: str = "",
    *,
    secret: str = "",
    allow_unsigned: bool = False,
) -> PaymentEvent:
    """Authenticate and parse a raw notification body into a typed event.

    With a secret the signature must verify. Without one, the body is only
    accepted when ``allow_unsigned`` is set (local testing).
    """
    if secret:
        verify_signature(raw_body, sig_header, secret)
    elif allow_unsigned:
        logger.warning("Accepting unsigned payment notification (signature checks disabled)")
    else:
        raise AuthenticationError("Webhook signing secret is not configured")

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayloadError(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedPayloadError("Event must be a JSON object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedPayloadError("Event is missing a type")

    try:
        if event_type == CHECKOUT_COMPLETED:
            return CheckoutCompletedEvent.model_validate(payload)
        return IgnoredEvent.model_validate({"id": payload.get("id"), "type": event_type})
    except ValidationError as e:
        reason = e.errors()[0].get("msg", str(e)) if e.errors() else str(e)
        raise MalformedPayloadError(f"Invalid {event_type} event: {reason}") from e

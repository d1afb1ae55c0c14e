"""HTTP translation for the payment notification endpoint.

Kept free of any server framework so the Vercel function, the local dev
server and the tests all go through ``handle_webhook``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from personacore.config import MAX_WEBHOOK_BODY, Settings
from personacore.errors import (
    AuthenticationError,
    ConfigurationError,
    FatalStepError,
    MalformedPayloadError,
)
from personacore.events import parse_event
from personacore.schema import CheckoutCompletedEvent
from personacore.workflow import WorkflowContext, run_provisioning

logger = logging.getLogger("personacore.webhook")

ContextFactory = Callable[[Settings], WorkflowContext]


def handle_webhook(
    raw_body: bytes,
    sig_header: str,
    settings: Settings,
    context_factory: ContextFactory = WorkflowContext.from_settings,
) -> tuple[int, dict]:
    """Verify, parse and process one notification. Returns ``(status, json_body)``.

    200 ``{"received": true}`` for ignored events and acknowledged runs,
    400 for unauthenticated or malformed input, 413 for oversized bodies,
    500 for fatal workflow failures and unexpected errors.
    """
    if len(raw_body) > MAX_WEBHOOK_BODY:
        return 413, {"error": "Payload too large"}

    try:
        event = parse_event(
            raw_body,
            sig_header,
            secret=settings.stripe_webhook_secret,
            allow_unsigned=settings.allow_unsigned_webhooks,
        )
    except (AuthenticationError, MalformedPayloadError) as e:
        logger.warning("Rejected payment notification: %s", e)
        return 400, {"error": str(e)}

    logger.info("Payment notification received: %s", event.type)

    if not isinstance(event, CheckoutCompletedEvent):
        return 200, {"received": True}

    try:
        ctx = context_factory(settings)
    except ConfigurationError as e:
        logger.error("Webhook cannot run: %s", e)
        return 500, {"error": "Service configuration error"}

    try:
        run_provisioning(event, ctx, run_id=event.id)
    except FatalStepError as e:
        return 500, {"error": str(e)}
    except Exception:
        logger.exception("Unexpected error while provisioning %s", event.id)
        return 500, {"error": "Internal error"}

    return 200, {"received": True}

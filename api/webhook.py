"""Vercel Serverless Function: POST /api/webhook

Consumes Stripe payment notifications and provisions the fan after checkout.
Events handled:
  - checkout.session.completed → identity, fan profile, subscription,
    conversation, creator payout, sign-in email
Every other event type is acknowledged without action.
"""

import logging
import sys
from http.server import BaseHTTPRequestHandler
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

from personacore.config import MAX_WEBHOOK_BODY, Settings  # noqa: E402
from personacore.errors import ConfigurationError  # noqa: E402
from personacore.webhook import handle_webhook  # noqa: E402
from server_utils import json_error, json_response, read_raw_body  # noqa: E402

logger = logging.getLogger("personacore.webhook")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Read once per cold start
try:
    SETTINGS = Settings.from_env()
except ConfigurationError:
    logger.exception("Invalid webhook configuration")
    SETTINGS = None

if SETTINGS is not None and not SETTINGS.stripe_webhook_secret:
    logger.warning("STRIPE_WEBHOOK_SECRET is not set; signed notifications cannot be verified")


class handler(BaseHTTPRequestHandler):
    def do_POST(self):
        if SETTINGS is None:
            json_error(self, "Service configuration error", 500)
            return

        # Raw body is needed verbatim for signature verification
        raw_body = read_raw_body(self, MAX_WEBHOOK_BODY)
        if raw_body is None:
            return

        sig_header = self.headers.get("Stripe-Signature", "")
        status, payload = handle_webhook(raw_body, sig_header, SETTINGS)
        json_response(self, payload, status)

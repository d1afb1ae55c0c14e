"""Vercel Serverless Function: POST /api/checkout

Creates a Stripe Checkout session for a creator subscription. The creator
slug rides along in the session metadata so the webhook can provision the
subscription once payment completes.
"""

import logging
import sys
from http.server import BaseHTTPRequestHandler
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

import stripe  # noqa: E402
from personacore.checkout import create_checkout_session, validate_checkout_params  # noqa: E402
from personacore.config import Settings  # noqa: E402
from personacore.errors import ConfigurationError  # noqa: E402
from server_utils import cors_headers, json_error, json_response, read_json_body  # noqa: E402

logger = logging.getLogger("personacore.checkout")

# Read once per cold start
try:
    SETTINGS = Settings.from_env()
except ConfigurationError:
    logger.exception("Invalid checkout configuration")
    SETTINGS = None


class handler(BaseHTTPRequestHandler):
    def do_OPTIONS(self):
        origin = self.headers.get("Origin", "")
        self.send_response(204)
        for k, v in cors_headers(origin).items():
            self.send_header(k, v)
        self.end_headers()

    def do_POST(self):
        headers = cors_headers(self.headers.get("Origin", ""))

        if SETTINGS is None or not SETTINGS.stripe_secret_key:
            json_error(self, "Service configuration error", 500, headers)
            return

        body = read_json_body(self, headers=headers)
        if body is None:
            return

        params, error = validate_checkout_params(body)
        if error:
            json_error(self, error, 400, headers)
            return

        try:
            url = create_checkout_session(SETTINGS, params["price_id"], params["creator_slug"])
        except stripe.StripeError:
            logger.exception("Stripe checkout session creation failed")
            json_error(self, "Payment service temporarily unavailable", 502, headers)
            return

        json_response(self, {"url": url}, 200, headers)

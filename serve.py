"""Local development server for the PersonaCore functions.

Serves the same endpoints as the Vercel deployment:
- POST /api/webhook:  Stripe payment notifications (provisioning workflow)
- POST /api/checkout: Create a Stripe Checkout session for a creator

Forward test notifications with the Stripe CLI:
    stripe listen --forward-to http://127.0.0.1:8788/api/webhook
"""

import logging
import sys
from http.server import BaseHTTPRequestHandler, HTTPServer

import stripe

from server_utils import (
    client_ip,
    cors_headers,
    json_error,
    json_response,
    read_json_body,
    read_raw_body,
)

from personacore.checkout import create_checkout_session, validate_checkout_params
from personacore.config import MAX_WEBHOOK_BODY, Settings
from personacore.errors import ConfigurationError
from personacore.webhook import handle_webhook

logger = logging.getLogger(__name__)

try:
    SETTINGS = Settings.from_env()
except ConfigurationError:
    logger.exception("Invalid configuration, /api/* will answer 500")
    SETTINGS = None


class FunctionsHandler(BaseHTTPRequestHandler):
    """Routes /api/* requests to the serverless function logic."""

    def end_headers(self):
        self.send_header("X-Content-Type-Options", "nosniff")
        super().end_headers()

    def do_POST(self):
        if self.path == "/api/webhook":
            self._handle_webhook()
        elif self.path == "/api/checkout":
            self._handle_checkout()
        else:
            json_error(self, "Not Found", 404)

    def do_OPTIONS(self):
        """Handle CORS preflight requests."""
        self.send_response(204)
        for k, v in cors_headers(self.headers.get("Origin", "")).items():
            self.send_header(k, v)
        self.end_headers()

    def _handle_webhook(self):
        if SETTINGS is None:
            json_error(self, "Service configuration error", 500)
            return
        raw_body = read_raw_body(self, MAX_WEBHOOK_BODY)
        if raw_body is None:
            return
        status, payload = handle_webhook(
            raw_body, self.headers.get("Stripe-Signature", ""), SETTINGS
        )
        json_response(self, payload, status)
        self.log_message("Webhook -> %d %s", status, payload)

    def _handle_checkout(self):
        headers = cors_headers(self.headers.get("Origin", ""))
        if SETTINGS is None or not SETTINGS.stripe_secret_key:
            json_error(self, "Service configuration error", 500, headers)
            return

        body = read_json_body(self, headers=headers)
        if body is None:
            return

        params, error = validate_checkout_params(body)
        if error:
            logger.warning("Rejected checkout request from %s: %s", client_ip(self), error)
            json_error(self, error, 400, headers)
            return

        try:
            url = create_checkout_session(SETTINGS, params["price_id"], params["creator_slug"])
        except stripe.StripeError:
            logger.exception("Stripe checkout session creation failed")
            json_error(self, "Payment service temporarily unavailable", 502, headers)
            return
        json_response(self, {"url": url}, 200, headers)

    def log_message(self, fmt, *args):
        sys.stderr.write(f"[serve] {fmt % args}\n")


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8788
    server = HTTPServer(("127.0.0.1", port), FunctionsHandler)
    print(f"PersonaCore functions on http://127.0.0.1:{port}")
    print(f"Webhook:  http://127.0.0.1:{port}/api/webhook")
    print(f"Checkout: http://127.0.0.1:{port}/api/checkout")
    if SETTINGS is None:
        print("Configuration: INVALID, every /api/* request will answer 500")
    elif SETTINGS.stripe_webhook_secret:
        print("Signatures: verified with STRIPE_WEBHOOK_SECRET")
    elif SETTINGS.allow_unsigned_webhooks:
        print("Signatures: NOT verified (PERSONACORE_ALLOW_UNSIGNED_WEBHOOKS is on)")
    else:
        print("Signatures: no secret set, all notifications will be rejected")
    if SETTINGS is not None:
        print(f"Store:      {SETTINGS.supabase_url or '(not configured)'}")
    print("Press Ctrl+C to stop\n")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
        server.server_close()


if __name__ == "__main__":
    main()

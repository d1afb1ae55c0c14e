"""Shared utilities for serve.py and Vercel serverless API handlers.

HTTP helpers (JSON responses, body reading, CORS) plus the glue that turns
a request handler into calls on the personacore package.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from http.server import BaseHTTPRequestHandler
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).parent
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from personacore.config import MAX_CHECKOUT_BODY  # noqa: E402

logger = logging.getLogger("personacore.server")

ALLOWED_ORIGINS = {"https://personacore.io", "https://www.personacore.io"}
if os.environ.get("VERCEL_ENV") != "production":
    ALLOWED_ORIGINS.update({"http://localhost:8788", "http://127.0.0.1:8788"})


def cors_headers(origin: str, methods: str = "POST, OPTIONS") -> dict[str, str]:
    """Return CORS headers if origin is allowed, empty dict otherwise."""
    if origin in ALLOWED_ORIGINS:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": methods,
            "Access-Control-Allow-Headers": "Content-Type",
            "Vary": "Origin",
        }
    return {}


def client_ip(handler: BaseHTTPRequestHandler) -> str:
    forwarded = handler.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip() if forwarded else handler.client_address[0]


# ---------------------------------------------------------------------------
# HTTP helpers (work with any BaseHTTPRequestHandler subclass)
# ---------------------------------------------------------------------------


def json_response(
    handler: BaseHTTPRequestHandler,
    data: Any,
    status: int = 200,
    headers: dict[str, str] | None = None,
) -> None:
    """Send a JSON response with optional extra headers."""
    body = json.dumps(data).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(body)))
    if headers:
        for k, v in headers.items():
            handler.send_header(k, v)
    handler.end_headers()
    handler.wfile.write(body)


def json_error(
    handler: BaseHTTPRequestHandler,
    message: str,
    status: int = 400,
    headers: dict[str, str] | None = None,
) -> None:
    """Send a JSON error response."""
    json_response(handler, {"error": message}, status, headers)


def read_raw_body(handler: BaseHTTPRequestHandler, max_size: int) -> bytes | None:
    """Read the raw request body (needed verbatim for signature checks).

    Returns None if an error response was already sent to the client.
    """
    try:
        length = int(handler.headers.get("Content-Length", 0))
    except ValueError:
        json_error(handler, "Invalid Content-Length", 400)
        return None
    if length > max_size or length < 0:
        logger.warning(
            "Rejected request from %s: payload too large (%d bytes)", client_ip(handler), length
        )
        json_error(handler, "Payload too large", 413)
        return None
    return handler.rfile.read(length) if length else b""


def read_json_body(
    handler: BaseHTTPRequestHandler,
    max_size: int = MAX_CHECKOUT_BODY,
    headers: dict[str, str] | None = None,
) -> dict | None:
    """Read and parse a JSON object body.

    Returns the parsed dict on success, or None if an error response was
    already sent to the client.
    """
    raw = read_raw_body(handler, max_size)
    if raw is None:
        return None
    if not raw:
        json_error(handler, "Empty body", 400, headers)
        return None
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rejected request from %s: invalid JSON body", client_ip(handler))
        json_error(handler, "Invalid JSON", 400, headers)
        return None
    if not isinstance(body, dict):
        json_error(handler, "Body must be a JSON object", 400, headers)
        return None
    return body

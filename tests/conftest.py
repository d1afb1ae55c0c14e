"""Shared fixtures for personacore tests."""

import hashlib
import hmac
import io
import json
import random
import time
from datetime import datetime, timezone
from email.message import Message

import pytest

from personacore.config import Settings
from personacore.errors import NotificationError, StoreError
from personacore.memory_store import InMemoryStore
from personacore.schema import Creator
from personacore.workflow import WorkflowContext

# -- Constants --------------------------------------------------------------------------

WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
USERNAME_RE = r"^[a-z0-9_]+_\d{4}$"


# -- Helpers ----------------------------------------------------------------------------


def make_event(
    email="a.b+1@x.com",
    creator_slug="jane",
    subscription="sub_1",
    event_type="checkout.session.completed",
    **session_fields,
):
    """A checkout notification dict shaped like the processor sends it."""
    session = {
        "id": "cs_test_1",
        "customer_details": {"email": email},
        "metadata": {"creator_slug": creator_slug},
        "subscription": subscription,
        "customer": "cus_1",
        "payment_intent": "pi_1",
    }
    session.update(session_fields)
    return {"id": "evt_1", "type": event_type, "data": {"object": session}}


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a Stripe-Signature header value for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    sig = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def encode(event: dict) -> bytes:
    return json.dumps(event).encode()


class FakeMailer:
    """Records sent mail; ``fail`` makes every send raise."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to, subject, html):
        if self.fail:
            raise NotificationError("Email API returned 500: boom", stage="email")
        self.sent.append({"to": to, "subject": subject, "html": html})


class FakeHandler:
    """Just enough of BaseHTTPRequestHandler for the helpers."""

    def __init__(self, body=b"", headers=None):
        self.headers = Message()
        for k, v in (headers or {"Content-Length": str(len(body))}).items():
            self.headers[k] = v
        self.rfile = io.BytesIO(body)
        self.wfile = io.BytesIO()
        self.client_address = ("127.0.0.1", 5000)
        self.status = None
        self.sent_headers = {}

    def send_response(self, status):
        self.status = status

    def send_header(self, key, value):
        self.sent_headers[key] = value

    def end_headers(self):
        pass

    def json(self):
        return json.loads(self.wfile.getvalue())


class FlakyStore(InMemoryStore):
    """In-memory store whose methods fail a set number of times.

    ``failures`` maps method name -> how many calls fail (-1 = always).
    Methods named in ``lost_responses`` apply the write before failing,
    like a request that commits but times out on the way back.
    """

    def __init__(self, creators=None, failures=None, lost_responses=()):
        super().__init__(creators)
        self.failures = dict(failures or {})
        self.lost_responses = set(lost_responses)
        self.calls = {}

    def _maybe_fail(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1
        remaining = self.failures.get(name, 0)
        if remaining == 0:
            return
        if remaining > 0:
            self.failures[name] = remaining - 1
        raise StoreError(f"{name} unavailable")

    def find_creator_by_slug(self, slug):
        self._maybe_fail("find_creator_by_slug")
        return super().find_creator_by_slug(slug)

    def find_identity_by_email(self, email):
        self._maybe_fail("find_identity_by_email")
        return super().find_identity_by_email(email)

    def create_identity(self, email, password, email_confirm, metadata):
        self._maybe_fail("create_identity")
        return super().create_identity(email, password, email_confirm, metadata)

    def upsert_profile(self, profile):
        self._maybe_fail("upsert_profile")
        return super().upsert_profile(profile)

    def insert_subscription(self, record):
        if "insert_subscription" in self.lost_responses and self.failures.get("insert_subscription"):
            super().insert_subscription(record)
        self._maybe_fail("insert_subscription")
        return super().insert_subscription(record)

    def insert_conversation(self, record):
        self._maybe_fail("insert_conversation")
        return super().insert_conversation(record)

    def insert_payout(self, record):
        self._maybe_fail("insert_payout")
        return super().insert_payout(record)

    def generate_magic_link(self, email, redirect_url):
        self._maybe_fail("generate_magic_link")
        return super().generate_magic_link(email, redirect_url)


# -- Fixtures ---------------------------------------------------------------------------


@pytest.fixture()
def jane():
    return Creator(id="c1", name="Jane", slug="jane")


@pytest.fixture()
def settings():
    return Settings(
        stripe_webhook_secret=WEBHOOK_SECRET,
        resend_api_key="re_test",
        retry_backoff_seconds=0,
    )


@pytest.fixture()
def store(jane):
    return FlakyStore([jane])


@pytest.fixture()
def mailer():
    return FakeMailer()


@pytest.fixture()
def ctx(settings, store, mailer):
    return WorkflowContext(
        settings=settings,
        store=store,
        link_issuer=store,
        mailer=mailer,
        rng=random.Random(1234),
        sleep=lambda _s: None,
        now=lambda: FIXED_NOW,
    )


@pytest.fixture()
def checkout_event():
    return make_event()

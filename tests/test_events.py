"""Tests for notification signature verification and parsing."""

import json

import pytest

from personacore.errors import AuthenticationError, MalformedPayloadError
from personacore.events import parse_event
from personacore.schema import CheckoutCompletedEvent, IgnoredEvent

from tests.conftest import WEBHOOK_SECRET, encode, make_event, sign_payload


class TestSignature:
    def test_valid_signature_parses(self):
        body = encode(make_event())
        event = parse_event(body, sign_payload(body), secret=WEBHOOK_SECRET)
        assert isinstance(event, CheckoutCompletedEvent)
        assert event.session.email == "a.b+1@x.com"
        assert event.session.creator_slug == "jane"

    def test_missing_header_rejected(self):
        body = encode(make_event())
        with pytest.raises(AuthenticationError, match="Missing signature"):
            parse_event(body, "", secret=WEBHOOK_SECRET)

    def test_wrong_secret_rejected(self):
        body = encode(make_event())
        with pytest.raises(AuthenticationError, match="Invalid signature"):
            parse_event(body, sign_payload(body, secret="whsec_other"), secret=WEBHOOK_SECRET)

    def test_tampered_body_rejected(self):
        body = encode(make_event())
        header = sign_payload(body)
        tampered = encode(make_event(email="attacker@x.com"))
        with pytest.raises(AuthenticationError):
            parse_event(tampered, header, secret=WEBHOOK_SECRET)

    def test_stale_timestamp_rejected(self):
        body = encode(make_event())
        with pytest.raises(AuthenticationError):
            parse_event(body, sign_payload(body, timestamp=1), secret=WEBHOOK_SECRET)

    def test_garbage_header_rejected(self):
        body = encode(make_event())
        with pytest.raises(AuthenticationError):
            parse_event(body, "not-a-signature", secret=WEBHOOK_SECRET)

    def test_unsigned_rejected_by_default(self):
        with pytest.raises(AuthenticationError, match="not configured"):
            parse_event(encode(make_event()))

    def test_unsigned_allowed_when_enabled(self):
        event = parse_event(encode(make_event()), allow_unsigned=True)
        assert isinstance(event, CheckoutCompletedEvent)


class TestPayload:
    def test_invalid_json(self):
        with pytest.raises(MalformedPayloadError, match="Invalid JSON"):
            parse_event(b"{not json", allow_unsigned=True)

    def test_signed_invalid_json(self):
        body = b"{not json"
        with pytest.raises(MalformedPayloadError):
            parse_event(body, sign_payload(body), secret=WEBHOOK_SECRET)

    def test_non_object(self):
        with pytest.raises(MalformedPayloadError, match="JSON object"):
            parse_event(b"[1, 2]", allow_unsigned=True)

    def test_missing_type(self):
        with pytest.raises(MalformedPayloadError, match="missing a type"):
            parse_event(json.dumps({"data": {}}).encode(), allow_unsigned=True)

    def test_missing_email(self):
        event = make_event()
        event["data"]["object"]["customer_details"] = {"email": None}
        with pytest.raises(MalformedPayloadError, match="customer email"):
            parse_event(encode(event), allow_unsigned=True)

    def test_invalid_email(self):
        with pytest.raises(MalformedPayloadError, match="Invalid customer email"):
            parse_event(encode(make_event(email="not-an-email")), allow_unsigned=True)

    def test_missing_creator_slug(self):
        with pytest.raises(MalformedPayloadError, match="creator_slug"):
            parse_event(encode(make_event(creator_slug="")), allow_unsigned=True)

    def test_missing_data_object(self):
        body = json.dumps({"type": "checkout.session.completed"}).encode()
        with pytest.raises(MalformedPayloadError):
            parse_event(body, allow_unsigned=True)

    def test_customer_email_fallback(self):
        event = make_event()
        event["data"]["object"]["customer_details"] = None
        event["data"]["object"]["customer_email"] = "Fan@X.com"
        parsed = parse_event(encode(event), allow_unsigned=True)
        assert parsed.session.email == "fan@x.com"

    def test_email_normalized(self):
        parsed = parse_event(encode(make_event(email="  A.B@X.COM ")), allow_unsigned=True)
        assert parsed.session.email == "a.b@x.com"

    def test_unknown_fields_ignored(self):
        event = make_event(mode="subscription", livemode=False)
        event["api_version"] = "2024-06-20"
        assert isinstance(parse_event(encode(event), allow_unsigned=True), CheckoutCompletedEvent)


class TestIgnoredEvents:
    def test_other_type_is_ignored_event(self):
        body = json.dumps({"id": "evt_9", "type": "invoice.paid", "data": {"object": {}}}).encode()
        event = parse_event(body, sign_payload(body), secret=WEBHOOK_SECRET)
        assert isinstance(event, IgnoredEvent)
        assert event.type == "invoice.paid"

    def test_ignored_event_needs_no_session_fields(self):
        body = json.dumps({"type": "customer.subscription.deleted"}).encode()
        assert isinstance(parse_event(body, allow_unsigned=True), IgnoredEvent)

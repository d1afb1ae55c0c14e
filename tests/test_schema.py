"""Tests for the event and record models."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from personacore.schema import (
    FanProfile,
    PayoutRecord,
    SubscriptionRecord,
    mask_email,
    normalize_email,
)


class TestEmailHelpers:
    def test_normalize(self):
        assert normalize_email("  Fan@Example.COM ") == "fan@example.com"

    @pytest.mark.parametrize(
        "email,masked",
        [
            ("john@example.com", "j***@example.com"),
            ("a@x.com", "***@x.com"),
            ("", ""),
            (None, ""),
            ("no-at-sign", ""),
        ],
    )
    def test_mask(self, email, masked):
        assert mask_email(email) == masked


class TestRecords:
    def test_subscription_row_is_json_safe(self):
        record = SubscriptionRecord(
            fan_id="user_1",
            creator_id="c1",
            stripe_subscription_id="sub_1",
            amount=Decimal("5.00"),
            currency="GBP",
            current_period_start=datetime(2026, 3, 1, tzinfo=timezone.utc),
            current_period_end=datetime(2026, 3, 31, tzinfo=timezone.utc),
        )
        row = record.to_row()
        assert row["amount"] == "5.00"
        assert row["status"] == "active"
        assert row["current_period_start"].startswith("2026-03-01T00:00:00")
        assert row["stripe_customer_id"] is None

    def test_payout_row(self):
        row = PayoutRecord(
            creator_id="c1",
            payout_amount=Decimal("3.50"),
            commission_amount=Decimal("1.50"),
            total_revenue=Decimal("5.00"),
            period_start=date(2026, 3, 1),
            period_end=date(2026, 3, 31),
        ).to_row()
        assert row["status"] == "pending"
        assert row["period_start"] == "2026-03-01"
        assert row["payout_amount"] == "3.50"

    def test_records_are_frozen(self):
        profile = FanProfile(id="u1", email="f@x.com", username="f_1234", name="f_1234")
        with pytest.raises(ValidationError):
            profile.username = "other"

    def test_profile_status_fixed(self):
        with pytest.raises(ValidationError):
            FanProfile(id="u1", email="f@x.com", username="f", name="f", status="banned")

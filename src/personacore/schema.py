"""Pydantic v2 models for payment notifications and the rows the workflow writes."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from personacore.config import CHECKOUT_COMPLETED

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: str) -> str:
    """Lower-case and strip an email; identities are keyed on this form."""
    return value.strip().lower()


def mask_email(email: str | None) -> str:
    """Mask email for logs: 'john@example.com' -> 'j***@example.com'."""
    if not email or "@" not in email:
        return ""
    local, domain = email.rsplit("@", 1)
    masked = local[0] + "***" if len(local) > 1 else "***"
    return f"{masked}@{domain}"


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------


class CustomerDetails(BaseModel):
    email: str | None = None
    name: str | None = None


class CheckoutSession(BaseModel):
    """The ``data.object`` of a checkout completed notification."""

    id: str | None = None
    customer_details: CustomerDetails | None = None
    customer_email: str | None = None
    metadata: dict[str, str | None] = Field(default_factory=dict)
    subscription: str | None = None
    customer: str | None = None
    payment_intent: str | None = None
    amount_total: int | None = None
    currency: str | None = None

    @property
    def email(self) -> str | None:
        raw = (self.customer_details and self.customer_details.email) or self.customer_email
        return normalize_email(raw) if raw else None

    @property
    def creator_slug(self) -> str | None:
        slug = (self.metadata.get("creator_slug") or "").strip()
        return slug or None


class CheckoutData(BaseModel):
    object: CheckoutSession


class CheckoutCompletedEvent(BaseModel):
    """A ``checkout.session.completed`` notification with the fields provisioning needs."""

    kind: Literal["checkout"] = "checkout"
    id: str | None = None
    type: Literal["checkout.session.completed"]
    data: CheckoutData

    @model_validator(mode="after")
    def required_session_fields(self) -> CheckoutCompletedEvent:
        session = self.data.object
        email = session.email
        if not email:
            msg = "Missing customer email in checkout session"
            raise ValueError(msg)
        if not EMAIL_PATTERN.match(email):
            msg = f"Invalid customer email in checkout session: {email!r}"
            raise ValueError(msg)
        if not session.creator_slug:
            msg = "Missing metadata.creator_slug in checkout session"
            raise ValueError(msg)
        return self

    @property
    def session(self) -> CheckoutSession:
        return self.data.object


class IgnoredEvent(BaseModel):
    """Any notification type the workflow does not act upon."""

    kind: Literal["ignored"] = "ignored"
    id: str | None = None
    type: str

    @field_validator("type")
    @classmethod
    def not_handled_type(cls, v: str) -> str:
        if v == CHECKOUT_COMPLETED:
            msg = f"{CHECKOUT_COMPLETED} must be parsed as CheckoutCompletedEvent"
            raise ValueError(msg)
        return v


PaymentEvent = CheckoutCompletedEvent | IgnoredEvent


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------


class Creator(BaseModel):
    id: str
    name: str
    slug: str | None = None
    status: str = "active"


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_row(self) -> dict:
        """Dump to a JSON-safe dict (Decimal -> str, dates -> ISO strings)."""
        return self.model_dump(mode="json")


class FanProfile(Record):
    id: str
    email: str
    username: str
    name: str
    status: Literal["active"] = "active"


class SubscriptionRecord(Record):
    fan_id: str
    creator_id: str
    stripe_subscription_id: str | None = None
    stripe_customer_id: str | None = None
    amount: Decimal
    currency: str
    status: Literal["active"] = "active"
    current_period_start: datetime
    current_period_end: datetime

    @model_validator(mode="after")
    def period_ordered(self) -> SubscriptionRecord:
        if self.current_period_end < self.current_period_start:
            msg = "current_period_end is before current_period_start"
            raise ValueError(msg)
        return self


class ConversationRecord(Record):
    fan_id: str
    creator_id: str
    subscription_id: str | None = None
    status: Literal["active"] = "active"


class PayoutRecord(Record):
    creator_id: str
    payout_amount: Decimal
    commission_amount: Decimal
    total_revenue: Decimal
    stripe_payment_intent_id: str | None = None
    status: Literal["pending", "paid"] = "pending"
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def split_adds_up(self) -> PayoutRecord:
        if self.payout_amount + self.commission_amount != self.total_revenue:
            msg = (
                f"payout {self.payout_amount} + commission {self.commission_amount} "
                f"!= total {self.total_revenue}"
            )
            raise ValueError(msg)
        return self

"""Payment processor lookups used while provisioning.

Amount, currency and billing period for the subscription row come from the
checkout session and the processor's subscription object, falling back to
configured defaults.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import stripe

from personacore.config import Settings
from personacore.schema import CheckoutSession

logger = logging.getLogger("personacore.payments")

Period = tuple[datetime, datetime]
PeriodLookup = Callable[[str], Period | None]

# Currencies Stripe bills without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    "bif clp djf gnf jpy kmf krw mga pyg rwf ugx vnd vuv xaf xof xpf".split()
)


def session_amount(session: CheckoutSession, settings: Settings) -> tuple[Decimal, str]:
    """Gross amount and upper-case currency of a checkout session."""
    if session.amount_total is None or not session.currency:
        return settings.default_amount, settings.default_currency.upper()
    currency = session.currency.lower()
    if currency in ZERO_DECIMAL_CURRENCIES:
        amount = Decimal(session.amount_total)
    else:
        amount = (Decimal(session.amount_total) / 100).quantize(Decimal("0.01"))
    return amount, currency.upper()


def _ts(value) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def stripe_period_lookup(api_key: str) -> PeriodLookup:
    """Build a lookup returning the current billing period of a processor subscription."""

    def lookup(subscription_id: str) -> Period | None:
        if not api_key:
            return None
        subscription = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
        start = subscription.get("current_period_start")
        end = subscription.get("current_period_end")
        if start is None or end is None:
            # newer API versions carry the period on the subscription item
            items = (subscription.get("items") or {}).get("data") or []
            if items:
                start = items[0].get("current_period_start")
                end = items[0].get("current_period_end")
        if start is None or end is None:
            return None
        return _ts(start), _ts(end)

    return lookup


def billing_period(
    subscription_id: str | None,
    lookup: PeriodLookup | None,
    *,
    period_days: int,
    now: datetime | None = None,
) -> Period:
    """Current period from the processor, or ``now`` .. ``now + period_days``.

    Lookup failures are logged and fall back to the default period.
    """
    if subscription_id and lookup is not None:
        try:
            period = lookup(subscription_id)
        except Exception:
            logger.warning(
                "Failed to retrieve subscription %s, using default period",
                subscription_id,
                exc_info=True,
            )
            period = None
        if period is not None:
            return period

    start = now or datetime.now(timezone.utc)
    return start, start + timedelta(days=period_days)

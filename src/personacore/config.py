"""Constants and configuration for personacore."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from personacore.errors import ConfigurationError

# Payment notification types
CHECKOUT_COMPLETED = "checkout.session.completed"

# Username allocation: "<local part>_<4 digits>"
USERNAME_SUFFIX_MIN = 1000
USERNAME_SUFFIX_MAX = 9999
USERNAME_SEPARATOR = "_"

# Request limits
MAX_WEBHOOK_BODY = 1_000_000  # 1MB
MAX_CHECKOUT_BODY = 4096

# Outbound HTTP timeout (seconds) for processor, store and mail APIs
HTTP_TIMEOUT = 10

RESEND_API_URL = "https://api.resend.com/emails"

# Table names in the hosted data store
CREATORS_TABLE = "creators"
FANS_TABLE = "fans"
SUBSCRIPTIONS_TABLE = "subscriptions"
CONVERSATIONS_TABLE = "conversations"
PAYOUTS_TABLE = "creator_payouts"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the serverless functions and the CLI.

    Built from environment variables with ``Settings.from_env()``; tests
    construct it directly.
    """

    supabase_url: str = ""
    supabase_service_key: str = ""
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    allow_unsigned_webhooks: bool = False
    resend_api_key: str = ""
    email_from: str = "PersonaCore <noreply@personacore.io>"
    app_base_url: str = "https://personacore.io"
    creator_share: Decimal = Decimal("0.70")
    default_amount: Decimal = Decimal("5.00")
    default_currency: str = "GBP"
    default_period_days: int = 30
    username_attempts: int = 10
    retry_attempts: int = 2
    retry_backoff_seconds: float = 0.5

    def __post_init__(self):
        if not Decimal("0") < self.creator_share < Decimal("1"):
            msg = f"creator_share must be between 0 and 1, got {self.creator_share}"
            raise ConfigurationError(msg)
        if self.default_amount < 0:
            msg = f"default_amount must be >= 0, got {self.default_amount}"
            raise ConfigurationError(msg)
        if self.username_attempts < 1:
            msg = f"username_attempts must be >= 1, got {self.username_attempts}"
            raise ConfigurationError(msg)
        if self.retry_attempts < 0:
            msg = f"retry_attempts must be >= 0, got {self.retry_attempts}"
            raise ConfigurationError(msg)

    @property
    def store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            supabase_url=env.get("SUPABASE_URL", "").strip(),
            supabase_service_key=env.get("SUPABASE_SERVICE_ROLE_KEY", "").strip(),
            stripe_secret_key=env.get("STRIPE_SECRET_KEY", "").strip(),
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET", "").strip(),
            allow_unsigned_webhooks=(
                env.get("PERSONACORE_ALLOW_UNSIGNED_WEBHOOKS", "").strip().lower() in _TRUE_VALUES
            ),
            resend_api_key=env.get("RESEND_API_KEY", "").strip(),
            email_from=env.get("PERSONACORE_EMAIL_FROM") or defaults.email_from,
            app_base_url=(env.get("PERSONACORE_APP_URL") or defaults.app_base_url).rstrip("/"),
            creator_share=_env_decimal(env, "PERSONACORE_CREATOR_SHARE", defaults.creator_share),
            default_amount=_env_decimal(env, "PERSONACORE_DEFAULT_AMOUNT", defaults.default_amount),
            default_currency=env.get("PERSONACORE_DEFAULT_CURRENCY") or defaults.default_currency,
            default_period_days=_env_int(
                env, "PERSONACORE_PERIOD_DAYS", defaults.default_period_days
            ),
            username_attempts=_env_int(
                env, "PERSONACORE_USERNAME_ATTEMPTS", defaults.username_attempts
            ),
            retry_attempts=_env_int(env, "PERSONACORE_RETRY_ATTEMPTS", defaults.retry_attempts),
            retry_backoff_seconds=_env_float(
                env, "PERSONACORE_RETRY_BACKOFF", defaults.retry_backoff_seconds
            ),
        )


def _env_int(env, name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from None


def _env_float(env, name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ConfigurationError(msg) from None


def _env_decimal(env, name: str, default: Decimal) -> Decimal:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        msg = f"{name} must be a decimal number, got {raw!r}"
        raise ConfigurationError(msg) from None

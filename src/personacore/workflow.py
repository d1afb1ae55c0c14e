"""Post-payment provisioning workflow.

One run per checkout completed notification:

    creator lookup -> username -> identity -> fan profile -> subscription
        -> conversation, payout, sign-in email (best effort)

Any failure up to and including the subscription write aborts the run with a
``FatalStepError``. Once the subscription exists the run is acknowledged,
whatever happens to the three trailing steps; their failures are logged and
returned in ``WorkflowResult.failures``.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from personacore.config import Settings
from personacore.errors import (
    CreatorNotFound,
    FatalStepError,
    NameAllocationError,
    NonFatalStepError,
    ProfileWriteError,
    StoreError,
)
from personacore.identity import resolve_identity
from personacore.ledger import (
    revenue_split,
    write_conversation,
    write_payout,
    write_profile,
    write_subscription,
)
from personacore.notifier import ResendMailer, build_redirect_url, notify
from personacore.payments import PeriodLookup, billing_period, session_amount, stripe_period_lookup
from personacore.schema import (
    CheckoutCompletedEvent,
    ConversationRecord,
    Creator,
    PaymentEvent,
    PayoutRecord,
    SubscriptionRecord,
    mask_email,
)
from personacore.store import DataStore, LinkIssuer, Mailer, SupabaseStore
from personacore.usernames import allocate_username

logger = logging.getLogger("personacore.workflow")


class State(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    IDENTITY_READY = "identity_ready"
    PROFILE_WRITTEN = "profile_written"
    SUBSCRIPTION_WRITTEN = "subscription_written"
    CONVERSATION_ATTEMPTED = "conversation_attempted"
    PAYOUT_ATTEMPTED = "payout_attempted"
    NOTIFICATION_ATTEMPTED = "notification_attempted"
    ACKNOWLEDGED = "acknowledged"
    ERRORED = "errored"


@dataclass
class StepFailure:
    step: str
    error: str
    message: str


@dataclass
class WorkflowResult:
    run_id: str
    event_type: str
    state: State = State.RECEIVED
    action: str = "provisioned"  # provisioned | duplicate | ignored
    creator_id: str | None = None
    identity_id: str | None = None
    identity_created: bool = False
    username: str | None = None
    subscription_id: str | None = None
    conversation_id: str | None = None
    payout_id: str | None = None
    failures: list[StepFailure] = field(default_factory=list)

    @property
    def duplicate(self) -> bool:
        return self.action == "duplicate"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "event_type": self.event_type,
            "state": self.state.value,
            "action": self.action,
            "creator_id": self.creator_id,
            "identity_id": self.identity_id,
            "identity_created": self.identity_created,
            "username": self.username,
            "subscription_id": self.subscription_id,
            "conversation_id": self.conversation_id,
            "payout_id": self.payout_id,
            "failures": [asdict(f) for f in self.failures],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowContext:
    """Collaborators and settings for one or more workflow runs.

    Passed in at call time so tests can swap in doubles for the store,
    link issuer, mailer and processor lookups.
    """

    settings: Settings
    store: DataStore
    link_issuer: LinkIssuer
    mailer: Mailer
    period_lookup: PeriodLookup | None = None
    rng: random.Random = field(default_factory=random.SystemRandom)
    sleep: Callable[[float], None] = time.sleep
    now: Callable[[], datetime] = _utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkflowContext:
        store = SupabaseStore.from_settings(settings)
        return cls(
            settings=settings,
            store=store,
            link_issuer=store,
            mailer=ResendMailer(settings.resend_api_key, settings.email_from),
            period_lookup=stripe_period_lookup(settings.stripe_secret_key),
        )


class RunLogger(logging.LoggerAdapter):
    """Prefixes every line with the run id: ``run=<id> step=... outcome=...``."""

    def process(self, msg, kwargs):
        return f"run={self.extra['run_id']} {msg}", kwargs


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def run_provisioning(
    event: PaymentEvent, ctx: WorkflowContext, *, run_id: str | None = None
) -> WorkflowResult:
    """Run the provisioning workflow for one parsed notification.

    Raises ``FatalStepError`` when a step before the subscription write
    fails; otherwise returns an acknowledged ``WorkflowResult``.
    """
    result = WorkflowResult(run_id=run_id or new_run_id(), event_type=event.type)
    log = RunLogger(logger, {"run_id": result.run_id})

    if not isinstance(event, CheckoutCompletedEvent):
        result.action = "ignored"
        result.state = State.ACKNOWLEDGED
        log.info("step=validate outcome=skipped type=%s", event.type)
        return result

    result.state = State.VALIDATED
    try:
        _provision(event, ctx, result, log)
    except FatalStepError as e:
        result.state = State.ERRORED
        log.error(
            "step=%s outcome=failed fatal=true error=%s cause=%s",
            e.step,
            type(e).__name__,
            e,
        )
        raise

    result.state = State.ACKNOWLEDGED
    log.info(
        "step=done outcome=%s subscription=%s failures=%d",
        result.action,
        result.subscription_id,
        len(result.failures),
    )
    return result


def _provision(
    event: CheckoutCompletedEvent,
    ctx: WorkflowContext,
    result: WorkflowResult,
    log: RunLogger,
) -> None:
    settings = ctx.settings
    store = ctx.store
    session = event.session
    email = session.email
    slug = session.creator_slug

    # -- creator ----------------------------------------------------------------------
    try:
        creator = store.find_creator_by_slug(slug)
    except StoreError as e:
        raise CreatorNotFound(f"Creator lookup failed for {slug}: {e}") from e
    if creator is None:
        raise CreatorNotFound(f"Creator not found: {slug}")
    result.creator_id = creator.id
    log.info("step=creator_lookup outcome=ok creator=%s slug=%s", creator.id, slug)

    # -- identity ---------------------------------------------------------------------
    # a new identity records its username in metadata, so one is drawn up front
    fresh_username = _allocate_username(ctx, email)
    identity_id, created = resolve_identity(
        store, email, {"username": fresh_username, "subscribed_to": creator.name}
    )
    result.identity_id = identity_id
    result.identity_created = created
    result.state = State.IDENTITY_READY
    log.info(
        "step=identity outcome=ok identity=%s created=%s email=%s",
        identity_id,
        created,
        mask_email(email),
    )

    # -- username + profile -----------------------------------------------------------
    username = _existing_username(ctx, identity_id) or fresh_username

    def reallocate(rejected: set[str]) -> str:
        return allocate_username(
            email,
            store.username_exists,
            rng=ctx.rng,
            max_attempts=settings.username_attempts,
            exclude=rejected,
        )

    profile = write_profile(
        store,
        identity_id,
        email,
        username,
        reallocate,
        retries=settings.retry_attempts,
        backoff=settings.retry_backoff_seconds,
        sleep=ctx.sleep,
    )
    result.username = profile.username
    result.state = State.PROFILE_WRITTEN
    log.info("step=profile outcome=ok identity=%s username=%s", identity_id, profile.username)

    # -- subscription -----------------------------------------------------------------
    amount, currency = session_amount(session, settings)
    period_start, period_end = billing_period(
        session.subscription,
        ctx.period_lookup,
        period_days=settings.default_period_days,
        now=ctx.now(),
    )
    record = SubscriptionRecord(
        fan_id=identity_id,
        creator_id=creator.id,
        stripe_subscription_id=session.subscription,
        stripe_customer_id=session.customer,
        amount=amount,
        currency=currency,
        current_period_start=period_start,
        current_period_end=period_end,
    )
    subscription_id, inserted = write_subscription(
        store,
        record,
        retries=settings.retry_attempts,
        backoff=settings.retry_backoff_seconds,
        sleep=ctx.sleep,
    )
    result.subscription_id = subscription_id
    result.state = State.SUBSCRIPTION_WRITTEN

    if not inserted:
        result.action = "duplicate"
        log.info(
            "step=subscription outcome=skipped reason=duplicate subscription=%s reference=%s",
            subscription_id,
            session.subscription,
        )
        return
    log.info(
        "step=subscription outcome=ok subscription=%s reference=%s amount=%s %s",
        subscription_id,
        session.subscription,
        amount,
        currency,
    )

    # -- best-effort trailing steps ---------------------------------------------------
    def conversation() -> str:
        return write_conversation(
            store,
            ConversationRecord(
                fan_id=identity_id, creator_id=creator.id, subscription_id=subscription_id
            ),
        )

    def payout() -> str:
        split = _payout_record(
            creator, amount, session.payment_intent, period_start, period_end, settings
        )
        return write_payout(store, split)

    def notification() -> str:
        return notify(
            ctx.link_issuer,
            ctx.mailer,
            email=email,
            username=profile.username,
            creator_name=creator.name,
            redirect_url=build_redirect_url(settings.app_base_url, slug),
        )

    _attempt(result, log, State.CONVERSATION_ATTEMPTED, "conversation_id", conversation)
    _attempt(result, log, State.PAYOUT_ATTEMPTED, "payout_id", payout)
    _attempt(result, log, State.NOTIFICATION_ATTEMPTED, None, notification)


def _allocate_username(ctx: WorkflowContext, email: str) -> str:
    try:
        return allocate_username(
            email,
            ctx.store.username_exists,
            rng=ctx.rng,
            max_attempts=ctx.settings.username_attempts,
        )
    except (NameAllocationError, StoreError) as e:
        raise ProfileWriteError(f"Username allocation failed: {e}") from e


def _existing_username(ctx: WorkflowContext, identity_id: str) -> str | None:
    """Username of the fan's existing profile; redeliveries and repeat fans keep it."""
    try:
        existing = ctx.store.get_profile(identity_id)
    except StoreError as e:
        raise ProfileWriteError(f"Fan lookup failed: {e}") from e
    return existing.username if existing is not None else None


def _payout_record(
    creator: Creator,
    gross: Decimal,
    payment_intent: str | None,
    period_start: datetime,
    period_end: datetime,
    settings: Settings,
) -> PayoutRecord:
    payout, commission = revenue_split(gross, settings.creator_share)
    return PayoutRecord(
        creator_id=creator.id,
        payout_amount=payout,
        commission_amount=commission,
        total_revenue=payout + commission,
        stripe_payment_intent_id=payment_intent,
        period_start=period_start.date(),
        period_end=period_end.date(),
    )


def _attempt(
    result: WorkflowResult,
    log: RunLogger,
    state: State,
    id_attr: str | None,
    step: Callable[[], str],
) -> None:
    """Run a non-fatal step, recording its failure instead of raising."""
    try:
        value = step()
    except NonFatalStepError as e:
        stage = getattr(e, "stage", None)
        result.failures.append(StepFailure(step=e.step, error=type(e).__name__, message=str(e)))
        log.warning(
            "step=%s outcome=failed fatal=false%s creator=%s identity=%s subscription=%s cause=%s",
            e.step,
            f" stage={stage}" if stage else "",
            result.creator_id,
            result.identity_id,
            result.subscription_id,
            e,
        )
    else:
        if id_attr:
            setattr(result, id_attr, value)
        log.info("step=%s outcome=ok", state.value.removesuffix("_attempted"))
    result.state = state

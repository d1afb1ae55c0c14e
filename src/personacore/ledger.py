"""Writes of the fan profile, subscription, conversation and payout rows.

Profile upserts and guarded subscription inserts are idempotent and are
retried with backoff. Conversation and payout inserts get one attempt; the
orchestrator logs their failures and carries on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal
from typing import TypeVar

from personacore.errors import (
    ConversationWriteError,
    DuplicateKeyError,
    NameAllocationError,
    PayoutWriteError,
    ProfileWriteError,
    StoreError,
    SubscriptionWriteError,
)
from personacore.schema import ConversationRecord, FanProfile, PayoutRecord, SubscriptionRecord
from personacore.store import DataStore

logger = logging.getLogger("personacore.ledger")

CENTS = Decimal("0.01")

T = TypeVar("T")


def revenue_split(gross: Decimal, creator_share: Decimal) -> tuple[Decimal, Decimal]:
    """Split ``gross`` into ``(payout, commission)``; the two always sum to ``gross``.

    >>> revenue_split(Decimal("5.00"), Decimal("0.70"))
    (Decimal('3.50'), Decimal('1.50'))
    """
    gross = gross.quantize(CENTS, rounding=ROUND_HALF_UP)
    payout = (gross * creator_share).quantize(CENTS, rounding=ROUND_HALF_UP)
    return payout, gross - payout


def with_retries(
    fn: Callable[[], T],
    *,
    retries: int,
    backoff: float,
    sleep: Callable[[float], None] = time.sleep,
    what: str = "store call",
) -> T:
    """Call ``fn``, retrying ``StoreError`` up to ``retries`` times with exponential backoff.

    Only for idempotent writes. ``DuplicateKeyError`` is not retried here;
    callers decide what a uniqueness failure means.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except DuplicateKeyError:
            raise
        except StoreError as e:
            if attempt >= retries:
                raise
            delay = backoff * (2**attempt)
            attempt += 1
            logger.warning(
                "%s failed (%s), retry %d/%d in %.2fs", what, e, attempt, retries, delay
            )
            sleep(delay)


def write_profile(
    store: DataStore,
    identity_id: str,
    email: str,
    username: str,
    reallocate: Callable[[set[str]], str],
    *,
    retries: int = 2,
    backoff: float = 0.5,
    max_collisions: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> FanProfile:
    """Upsert the fan profile, re-allocating the username on a write-time collision.

    ``reallocate`` receives the names already rejected and returns a new one.
    Returns the profile as written.
    """
    rejected: set[str] = set()
    while True:
        profile = FanProfile(id=identity_id, email=email, username=username, name=username)
        try:
            with_retries(
                lambda: store.upsert_profile(profile),
                retries=retries,
                backoff=backoff,
                sleep=sleep,
                what="Fan upsert",
            )
            return profile
        except DuplicateKeyError as e:
            if e.field != "username" or len(rejected) >= max_collisions:
                raise ProfileWriteError(f"Failed to create fan record: {e}") from e
            rejected.add(username)
            logger.info("Username %s claimed concurrently, allocating another", username)
            try:
                username = reallocate(rejected)
            except NameAllocationError as alloc_error:
                raise ProfileWriteError(str(alloc_error)) from alloc_error
        except StoreError as e:
            raise ProfileWriteError(f"Failed to create fan record: {e}") from e


def write_subscription(
    store: DataStore,
    record: SubscriptionRecord,
    *,
    retries: int = 2,
    backoff: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[str, bool]:
    """Insert the subscription unless one exists for its processor reference.

    Returns ``(subscription_id, created)``. A row found after this call has
    already sent an insert may be its own (the insert committed but the
    response was lost), so it counts as created; only a row present before
    the first insert marks a duplicate delivery. Without a processor
    reference there is no natural key, so the insert is attempted once.
    """
    reference = record.stripe_subscription_id

    if not reference:
        try:
            return store.insert_subscription(record), True
        except StoreError as e:
            raise SubscriptionWriteError(f"Failed to create subscription: {e}") from e

    inserts = 0

    def guarded_insert() -> tuple[str, bool]:
        nonlocal inserts
        existing = store.find_subscription_by_reference(reference)
        if existing:
            return existing, inserts > 0
        inserts += 1
        return store.insert_subscription(record), True

    try:
        return with_retries(
            guarded_insert, retries=retries, backoff=backoff, sleep=sleep, what="Subscription insert"
        )
    except DuplicateKeyError as e:
        # lost the race to a concurrent delivery, or an earlier insert of ours committed
        try:
            existing = store.find_subscription_by_reference(reference)
        except StoreError:
            existing = None
        if existing:
            return existing, inserts > 1
        raise SubscriptionWriteError(f"Failed to create subscription: {e}") from e
    except StoreError as e:
        raise SubscriptionWriteError(f"Failed to create subscription: {e}") from e


def write_conversation(store: DataStore, record: ConversationRecord) -> str:
    try:
        return store.insert_conversation(record)
    except StoreError as e:
        raise ConversationWriteError(f"Failed to create conversation: {e}") from e


def write_payout(store: DataStore, record: PayoutRecord) -> str:
    try:
        return store.insert_payout(record)
    except StoreError as e:
        raise PayoutWriteError(f"Failed to create payout: {e}") from e

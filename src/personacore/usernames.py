"""Username allocation from email addresses.

"A.B+1@x.com" -> "a_b_1_4821"
"""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Callable

from personacore.config import USERNAME_SEPARATOR, USERNAME_SUFFIX_MAX, USERNAME_SUFFIX_MIN
from personacore.errors import NameAllocationError

logger = logging.getLogger("personacore.usernames")

_DISALLOWED = re.compile(r"[^a-z0-9_]")


def username_base(email: str) -> str:
    """Local part of the email, lower-cased, with anything outside [a-z0-9_] turned into '_'."""
    local = email.split("@", 1)[0].lower()
    return _DISALLOWED.sub("_", local)


def candidate_username(base: str, rng: random.Random) -> str:
    suffix = rng.randint(USERNAME_SUFFIX_MIN, USERNAME_SUFFIX_MAX)
    return f"{base}{USERNAME_SEPARATOR}{suffix}"


def allocate_username(
    email: str,
    exists: Callable[[str], bool],
    *,
    rng: random.Random | None = None,
    max_attempts: int = 10,
    exclude: set[str] | None = None,
) -> str:
    """Return a username for ``email`` that ``exists`` reports as free.

    ``exclude`` holds names already rejected in this run (e.g. after a
    unique-constraint failure at write time) so they are not offered again.
    Uniqueness holds at the moment of the check only; writers must still
    handle a collision on write.
    """
    rng = rng or random.SystemRandom()
    base = username_base(email)
    tried = set(exclude or ())

    for attempt in range(1, max_attempts + 1):
        candidate = candidate_username(base, rng)
        if candidate in tried:
            continue
        tried.add(candidate)
        if not exists(candidate):
            return candidate
        logger.info("Username %s taken (attempt %d/%d)", candidate, attempt, max_attempts)

    msg = f"No free username for base '{base}' after {max_attempts} attempts"
    raise NameAllocationError(msg)

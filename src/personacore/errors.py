"""Exception taxonomy for the provisioning workflow and its collaborators."""

from __future__ import annotations


class PersonaCoreError(Exception):
    """Base class for all personacore errors."""


class ConfigurationError(PersonaCoreError):
    """A required setting is missing or invalid."""


# -- Inbound request errors (HTTP 400) ---------------------------------------------------


class AuthenticationError(PersonaCoreError):
    """Signature header is missing or does not verify."""


class MalformedPayloadError(PersonaCoreError):
    """Body is not parseable as the expected event schema."""


# -- Store errors ---------------------------------------------------------------------


class StoreError(PersonaCoreError):
    """A call to the Identity & Data Store failed."""


class DuplicateKeyError(StoreError):
    """A write violated a uniqueness constraint on ``field``."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(message or f"duplicate value for unique field '{field}'")


class IdentityExistsError(StoreError):
    """Identity creation was rejected because the email is already registered."""


# -- Workflow step errors -------------------------------------------------------------


class StepError(PersonaCoreError):
    """A workflow step failed. ``step`` names the step for logs and responses."""

    step = "unknown"


class FatalStepError(StepError):
    """Aborts the run and is surfaced to the caller (HTTP 500)."""


class NonFatalStepError(StepError):
    """Recorded in the run result and logged; the run still succeeds."""


class CreatorNotFound(FatalStepError):
    step = "creator_lookup"


class IdentityProvisioningError(FatalStepError):
    step = "identity"


class ProfileWriteError(FatalStepError):
    step = "profile"


class SubscriptionWriteError(FatalStepError):
    step = "subscription"


class NameAllocationError(PersonaCoreError):
    """No unique username found within the attempt budget."""


class ConversationWriteError(NonFatalStepError):
    step = "conversation"


class PayoutWriteError(NonFatalStepError):
    step = "payout"


class NotificationError(NonFatalStepError):
    step = "notification"

    def __init__(self, message: str, stage: str = "email"):
        self.stage = stage
        super().__init__(message)

"""Exceptions raised by the callscribe core."""


class CallscribeError(Exception):
    """Base class for callscribe errors."""


class InvalidEventPayload(CallscribeError, ValueError):
    """The webhook body is not valid JSON or carries no recognizable event."""


class SummaryProviderError(CallscribeError, RuntimeError):
    """The summarization provider failed or returned unusable output."""


class IdentityProvisioningError(CallscribeError, RuntimeError):
    """Identity or token issuance failed while starting a call or adding participants."""

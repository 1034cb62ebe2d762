"""Custom exceptions for the softphone."""
from typing import Optional


class SoftphoneError(Exception):
    """Base class for every error raised by the softphone."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidArgument(SoftphoneError):
    """Bad or missing input; raised before any side effect is attempted."""


class ProviderRequestFailed(SoftphoneError):
    """A request to the telephony provider (or to our own server) failed."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)

    def __str__(self):
        if self.code is not None:
            return f"{self.message} (code {self.code})"
        return self.message


class CallInitiationFailed(ProviderRequestFailed):
    """The provider rejected an outbound dial request."""


class ProviderNotConfigured(SoftphoneError):
    """Server-side secrets needed for the operation are missing."""


class LocalMediaError(SoftphoneError):
    """Microphone or local SDK failure.

    Surfaced as a warning only: the remote leg may still be viable, so this
    never ends a call by itself.
    """


class StaleEventDiscarded(SoftphoneError):
    """An event lost the non-regression check.

    Never shown to users; kept so discards can be told apart from failures
    in logs and diagnostics.
    """

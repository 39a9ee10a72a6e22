"""Exception hierarchy for the sentinel agent."""
from __future__ import annotations


class SentinelError(Exception):
    """Base class for every error raised by sentryguard."""


class AcquisitionError(SentinelError):
    """The audio source could not be opened. Fatal to starting a session."""


class CaptureError(SentinelError):
    """A single image or audio capture failed mid-session."""


class ClassifierRateLimited(SentinelError):
    """The external classifier refused the request because of quota."""


class ClassifierError(SentinelError):
    """Any other classifier failure: transport, parse, unknown category."""


class DeliveryFailed(SentinelError):
    """A report could not be delivered after all retries, or its session was cancelled."""

    def __init__(self, message: str, attempts: int, cancelled: bool = False) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.cancelled = cancelled


class IdentityMismatch(SentinelError):
    """A remote response was addressed to a different device."""

    def __init__(self, remote: str, local: str) -> None:
        super().__init__(f"response addressed to {remote!r}, this device is {local!r}")
        self.remote = remote
        self.local = local

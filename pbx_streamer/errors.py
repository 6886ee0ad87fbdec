"""
Error taxonomy for the call-control streamer.

Only startup failures (missing media, failed initial token) are fatal;
everything else is raised to the nearest loop, logged and dropped there.
"""

from typing import Optional


class CallControlError(Exception):
    """Base class for every error raised by this package."""


class AuthError(CallControlError):
    """Credential acquisition or re-acquisition failed."""


class RequestError(CallControlError):
    """Non-auth HTTP or network failure on a single call."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class ParticipantLookupError(CallControlError, LookupError):
    """Participant state could not be resolved; the triggering event is dropped."""


class StreamError(CallControlError):
    """Audio upload failed at the transport level."""


class EventParseError(CallControlError, ValueError):
    """Inbound event message is malformed."""


class MediaUnavailableError(CallControlError, FileNotFoundError):
    """The configured audio asset is missing or unreadable."""


class SubscriptionFailedError(CallControlError):
    """The event feed exceeded its configured number of consecutive failures."""

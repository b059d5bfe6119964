"""Exception types shared across the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay failures."""


class BrokerConnectionError(RelayError, ConnectionError):
    """Raised when the broker is unreachable or rejects the credentials.

    The relay never retries on its own; the caller (usually a hosting
    supervisor) decides whether to retry or exit.
    """


class ChannelNotOpenError(RelayError):
    """Raised when publish/subscribe is attempted without an open channel."""


class NotConnectedError(ChannelNotOpenError):
    """Raised by the publish activity when the message channel is not connected."""


class DecodeError(RelayError, ValueError):
    """Raised when a message payload cannot be turned into a condition string."""


class ResumeAttemptError(RelayError):
    """Raised when the workflow engine fails to resume a single bookmark."""

    def __init__(self, bookmark_id: str, reason: str | None = None):
        self.bookmark_id = bookmark_id
        self.reason = reason or "resume_failed"
        super().__init__(f"Resume failed for bookmark {bookmark_id!r}: {self.reason}")


class RegistryInconsistency(RelayError):
    """Raised (in strict mode) when a bookmark id is registered twice."""

    def __init__(self, bookmark_id: str, previous_condition: str, condition: str):
        self.bookmark_id = bookmark_id
        self.previous_condition = previous_condition
        self.condition = condition
        super().__init__(
            f"Bookmark {bookmark_id!r} already registered for {previous_condition!r}; "
            f"overwritten with {condition!r}"
        )

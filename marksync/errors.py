"""Error types for the bookmark sync engine."""

from typing import Any


class MarksyncError(Exception):
    """Base class for all marksync errors."""


class RemoteStoreError(MarksyncError):
    """A call to the remote store failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteWriteFailure(MarksyncError):
    """A create or delete was rejected and has been rolled back locally."""

    def __init__(self, operation: str, identifier: Any, cause: BaseException | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"{operation} of {identifier} failed{detail}")
        self.operation = operation
        self.identifier = identifier
        self.cause = cause


class PollFetchError(MarksyncError):
    """The full-state fetch for a poll tick failed."""


class MalformedRecordError(MarksyncError):
    """A record payload is missing required fields."""


class MalformedPushEvent(MarksyncError):
    """A push payload could not be decoded into an event."""


class NoActiveSession(MarksyncError):
    """A user operation was attempted while signed out."""


class InvalidTransition(MarksyncError):
    """A pending mutation was moved out of a terminal state."""

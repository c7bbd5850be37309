"""Error kinds and exceptions raised by the sync engine."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of everything that can go wrong during a sync run."""

    FEED_UNREACHABLE = "FEED_UNREACHABLE"
    PARSE_ERROR = "PARSE_ERROR"
    REAUTH_REQUIRED = "REAUTH_REQUIRED"
    TRANSIENT_API_ERROR = "TRANSIENT_API_ERROR"
    EVENT_WRITE_FAILED = "EVENT_WRITE_FAILED"
    DESTINATION_UNAVAILABLE = "DESTINATION_UNAVAILABLE"


class ApiErrorKind(str, Enum):
    """Structured failure kinds reported by a destination calendar client."""

    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    OTHER = "other"


class SyncError(Exception):
    """Base class for sync engine errors."""

    kind: ErrorKind = ErrorKind.EVENT_WRITE_FAILED

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class SyncConfigNotFoundError(LookupError):
    """Raised when a sync configuration id does not exist."""


class FeedUnreachableError(SyncError):
    """The source feed could not be fetched. Fails the whole run."""

    kind = ErrorKind.FEED_UNREACHABLE


class FeedParseError(SyncError):
    """The source feed is not a calendar document at all."""

    kind = ErrorKind.PARSE_ERROR


class ReauthRequiredError(SyncError):
    """Destination credentials are invalid; the user has to re-authenticate.

    ``result`` carries the partial SyncResult when raised mid-run.
    """

    kind = ErrorKind.REAUTH_REQUIRED

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class EventWriteError(SyncError):
    """A single create/update/delete failed for a non-auth reason."""

    kind = ErrorKind.EVENT_WRITE_FAILED


class DestinationUnavailableError(SyncError):
    """Listing the destination calendar failed, so no snapshot exists to reconcile against."""

    kind = ErrorKind.DESTINATION_UNAVAILABLE


class DestinationApiError(Exception):
    """Failure raised by a destination calendar client, tagged with an ApiErrorKind."""

    def __init__(self, kind: ApiErrorKind, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"HTTP {self.status}: {base}"
        return base

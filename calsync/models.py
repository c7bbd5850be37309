"""Core data types shared by the sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from calsync.errors import ErrorKind


class SyncMode(str, Enum):
    FULL = "full"
    BUSY_FREE = "busy_free"


class PrivacyLevel(str, Enum):
    BUSY_ONLY = "busy_only"
    FULL_DETAILS = "full_details"


class EventStatus(str, Enum):
    BUSY = "busy"
    FREE = "free"


class Transparency(str, Enum):
    OPAQUE = "opaque"
    TRANSPARENT = "transparent"


@dataclass(frozen=True)
class SyncConfig:
    """One feed-to-calendar sync definition, read-only for the duration of a run."""

    id: int
    feed_url: str
    destination_calendar_id: str
    destination_timezone: str
    user_id: Optional[int] = None
    name: str = ""
    is_active: bool = True
    sync_mode: SyncMode = SyncMode.FULL
    privacy_level: PrivacyLevel = PrivacyLevel.FULL_DETAILS


@dataclass(frozen=True)
class SyncWindow:
    """Half-open time window ``[start, end)``."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class SourceEventInstance:
    """One concrete occurrence read from the source feed."""

    uid: str
    start: datetime
    end: datetime
    source_timezone: str
    summary: str = ""
    description: str = ""
    status: EventStatus = EventStatus.BUSY
    transparency: Transparency = Transparency.OPAQUE


@dataclass(frozen=True)
class NormalizedInstance:
    """An occurrence whose start/end are expressed in the destination zone.

    Produced once per occurrence by ``timezones.normalize_instance``; everything
    downstream (fingerprints, write payloads) consumes this type only.
    """

    uid: str
    start: datetime
    end: datetime
    source_timezone: str
    destination_timezone: str
    summary: str = ""
    description: str = ""
    status: EventStatus = EventStatus.BUSY
    transparency: Transparency = Transparency.OPAQUE
    visibility: str = "default"


@dataclass(frozen=True)
class EventPayload:
    """Body of a create/update call against the destination calendar."""

    key: str
    uid: str
    start: datetime
    end: datetime
    time_zone: str
    summary: str
    description: str
    transparency: Transparency = Transparency.OPAQUE
    visibility: str = "default"

    @property
    def status(self) -> EventStatus:
        if self.transparency == Transparency.TRANSPARENT:
            return EventStatus.FREE
        return EventStatus.BUSY


@dataclass(frozen=True)
class DestinationEventRecord:
    """An event as stored on the destination calendar."""

    id: str
    start: Optional[datetime]
    end: Optional[datetime]
    summary: str = ""
    description: str = ""
    transparency: Transparency = Transparency.OPAQUE
    managed: bool = False

    @property
    def status(self) -> EventStatus:
        if self.transparency == Transparency.TRANSPARENT:
            return EventStatus.FREE
        return EventStatus.BUSY


@dataclass(frozen=True)
class EventError:
    """A per-event failure recorded in a SyncResult."""

    kind: ErrorKind
    message: str
    key: Optional[str] = None
    operation: Optional[str] = None

    def __str__(self) -> str:
        target = f" {self.key}" if self.key else ""
        op = f"{self.operation}" if self.operation else "event"
        return f"[{self.kind.value}] {op}{target}: {self.message}"


@dataclass
class SyncResult:
    """Outcome of one sync run. Never persisted by the engine itself."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    parse_errors: int = 0
    duplicates_removed: int = 0
    events_processed: int = 0
    duration_ms: int = 0
    errors: list[EventError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def record_error(
        self,
        kind: ErrorKind,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        self.errors.append(EventError(kind=kind, message=message, key=key, operation=operation))

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "parse_errors": self.parse_errors,
            "duplicates_removed": self.duplicates_removed,
            "events_processed": self.events_processed,
            "duration_ms": self.duration_ms,
            "errors": [str(error) for error in self.errors],
            "warnings": list(self.warnings),
        }

"""Pytest configuration and fixtures."""

import os
import threading
from datetime import datetime
from typing import Optional

import pytest
import pytest_asyncio

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["TRANSIENT_BACKOFF_SECONDS"] = "0"

from calsync.errors import DestinationApiError  # noqa: E402
from calsync.models import DestinationEventRecord, EventPayload, SyncWindow  # noqa: E402
from calsync.sync.google_calendar import event_to_record, payload_to_body  # noqa: E402
from calsync.sync.timezones import UTC  # noqa: E402

SYNC_TAG = "calsyncManaged"


@pytest_asyncio.fixture
async def test_db():
    """Create a test database."""
    from calsync.database import get_database, close_database, init_schema
    import calsync.database as db_module

    # Reset the global connection
    db_module._db_connection = None

    # Create in-memory database
    db = await get_database()
    await init_schema(db)

    yield db

    await close_database()
    db_module._db_connection = None


@pytest.fixture
def march_window() -> SyncWindow:
    """March 2024 in UTC, 31 days."""
    return SyncWindow(
        start=datetime(2024, 3, 1, tzinfo=UTC),
        end=datetime(2024, 4, 1, tzinfo=UTC),
    )


def make_ics(*events: str, extra: str = "") -> str:
    """Wrap VEVENT bodies in a VCALENDAR document."""
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Test//Feed//EN",
    ]
    if extra:
        lines.extend(extra.strip().splitlines())
    for event in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(line.strip() for line in event.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


class FakeCalendarClient:
    """In-memory stand-in for GoogleCalendarClient.

    Events go through the same body rendering and parsing as the real
    client, so markers and timestamps round-trip exactly as they would
    against Google. ``failures`` maps an operation name to a callable
    ``(key_or_id) -> Optional[Exception]`` deciding whether a call fails.
    """

    def __init__(self):
        self.events: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, object] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def _maybe_fail(self, operation: str, target: str) -> None:
        decide = self.failures.get(operation)
        if decide is None:
            return
        error = decide(target)
        if error is not None:
            raise error

    def add_raw_event(self, body: dict) -> str:
        with self._lock:
            event_id = f"evt-{self._next_id}"
            self._next_id += 1
            self.events[event_id] = dict(body, id=event_id)
        return event_id

    def list_events(self, calendar_id: str, window: SyncWindow) -> list[DestinationEventRecord]:
        self.calls.append(("list", calendar_id))
        self._maybe_fail("list", calendar_id)
        records = [event_to_record(event, SYNC_TAG) for event in self.events.values()]
        return [
            record for record in records
            if record.start is not None and record.start < window.end and record.end > window.start
        ]

    def create_event(self, calendar_id: str, payload: EventPayload) -> DestinationEventRecord:
        self.calls.append(("create", payload.key))
        self._maybe_fail("create", payload.key)
        event_id = self.add_raw_event(payload_to_body(payload, SYNC_TAG))
        return event_to_record(self.events[event_id], SYNC_TAG)

    def update_event(self, calendar_id: str, event_id: str, payload: EventPayload) -> DestinationEventRecord:
        self.calls.append(("update", payload.key))
        self._maybe_fail("update", payload.key)
        self.events[event_id] = dict(payload_to_body(payload, SYNC_TAG), id=event_id)
        return event_to_record(self.events[event_id], SYNC_TAG)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self.calls.append(("delete", event_id))
        self._maybe_fail("delete", event_id)
        self.events.pop(event_id, None)

    def records(self) -> list[DestinationEventRecord]:
        return [event_to_record(event, SYNC_TAG) for event in self.events.values()]

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


@pytest.fixture
def fake_client() -> FakeCalendarClient:
    return FakeCalendarClient()


def fail_when(predicate, error: Exception):
    """Build a failure rule for FakeCalendarClient.failures."""
    def _decide(target: str) -> Optional[Exception]:
        return error if predicate(target) else None
    return _decide


def api_error(kind, status: Optional[int] = None, message: str = "boom") -> DestinationApiError:
    return DestinationApiError(kind, message, status=status)

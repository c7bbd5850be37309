"""Tests for the Google Calendar wrapper."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from dateutil import tz

from calsync.errors import ApiErrorKind, DestinationApiError
from calsync.models import EventPayload, SyncWindow, Transparency
from calsync.sync.google_calendar import (
    GoogleCalendarClient,
    classify_http_error,
    event_to_record,
    payload_to_body,
)
from calsync.sync.timezones import UTC


class FakeHttpError(Exception):
    def __init__(self, status: int, reason: str | None = None):
        self.resp = SimpleNamespace(status=status)
        body = {"error": {"code": status, "errors": [{"reason": reason}] if reason else []}}
        self.content = json.dumps(body).encode("utf-8")


class FakeEvents:
    def __init__(self, pages=None, error: Exception | None = None):
        self.pages = pages or {}
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def _request(self, name: str, kwargs: dict, value):
        self.calls.append((name, dict(kwargs)))

        def _execute():
            if self.error is not None:
                raise self.error
            return value

        return SimpleNamespace(execute=_execute)

    def list(self, **kwargs):
        return self._request("list", kwargs, self.pages.get(kwargs.get("pageToken")))

    def insert(self, **kwargs):
        return self._request("insert", kwargs, dict(kwargs["body"], id="evt-new"))

    def update(self, **kwargs):
        return self._request("update", kwargs, dict(kwargs["body"], id=kwargs["eventId"]))

    def delete(self, **kwargs):
        return self._request("delete", kwargs, "")


class FakeService:
    def __init__(self, events_api: FakeEvents):
        self.events_api = events_api

    def events(self):
        return self.events_api


def _client(events_api: FakeEvents) -> GoogleCalendarClient:
    client = object.__new__(GoogleCalendarClient)
    client.settings = SimpleNamespace(calendar_sync_tag="calsyncManaged")
    client._local = threading.local()
    client._local.service = FakeService(events_api)
    return client


def _payload() -> EventPayload:
    berlin = tz.gettz("Europe/Berlin")
    start = datetime(2024, 3, 15, 14, 0, tzinfo=berlin)
    return EventPayload(
        key="uid-1:2024-03-15T13:00:00Z",
        uid="uid-1",
        start=start,
        end=start + timedelta(hours=1),
        time_zone="Europe/Berlin",
        summary="Planning",
        description="Agenda",
        transparency=Transparency.OPAQUE,
        visibility="private",
    )


@pytest.mark.parametrize(
    "status, reason, expected",
    [
        (401, None, ApiErrorKind.AUTH),
        (403, "insufficientPermissions", ApiErrorKind.AUTH),
        (400, "invalid_grant", ApiErrorKind.AUTH),
        (429, None, ApiErrorKind.RATE_LIMITED),
        (403, "rateLimitExceeded", ApiErrorKind.RATE_LIMITED),
        (403, "userRateLimitExceeded", ApiErrorKind.RATE_LIMITED),
        (503, None, ApiErrorKind.TRANSIENT),
        (502, None, ApiErrorKind.TRANSIENT),
        (404, None, ApiErrorKind.NOT_FOUND),
        (410, None, ApiErrorKind.NOT_FOUND),
        (500, "backendError", ApiErrorKind.OTHER),
        (403, "forbidden", ApiErrorKind.OTHER),
    ],
)
def test_classify_http_error(status, reason, expected):
    error = classify_http_error(FakeHttpError(status, reason))

    assert error.kind == expected
    assert error.status == status


def test_payload_body_carries_marker_times_and_tag():
    body = payload_to_body(_payload(), "calsyncManaged")

    assert body["summary"] == "Planning"
    assert body["description"] == "Agenda\n\nOriginal UID [v1]: uid-1"
    assert body["start"] == {"dateTime": "2024-03-15T14:00:00+01:00", "timeZone": "Europe/Berlin"}
    assert body["end"]["dateTime"] == "2024-03-15T15:00:00+01:00"
    assert body["transparency"] == "opaque"
    assert body["visibility"] == "private"
    assert body["extendedProperties"] == {"private": {"calsyncManaged": "true"}}


def test_event_to_record_handles_all_day_and_transparency():
    record = event_to_record(
        {
            "id": "evt-1",
            "start": {"date": "2024-03-15"},
            "end": {"date": "2024-03-16"},
            "transparency": "transparent",
        },
        "calsyncManaged",
    )

    assert record.start is None and record.end is None
    assert record.transparency == Transparency.TRANSPARENT
    assert record.summary == ""
    assert record.managed is False


def test_list_events_paginates_and_drops_cancelled():
    events_api = FakeEvents(pages={
        None: {
            "items": [
                {"id": "evt-1", "start": {"dateTime": "2024-03-01T09:00:00Z"}, "end": {"dateTime": "2024-03-01T10:00:00Z"}},
                {"id": "evt-x", "status": "cancelled"},
            ],
            "nextPageToken": "page-2",
        },
        "page-2": {
            "items": [
                {"id": "evt-2", "start": {"dateTime": "2024-03-02T09:00:00Z"}, "end": {"dateTime": "2024-03-02T10:00:00Z"}},
            ],
        },
    })
    client = _client(events_api)
    window = SyncWindow(datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 4, 1, tzinfo=UTC))

    records = client.list_events("cal-1", window)

    assert [record.id for record in records] == ["evt-1", "evt-2"]
    first_call = events_api.calls[0][1]
    assert first_call["singleEvents"] is True
    assert first_call["timeMin"] == "2024-03-01T00:00:00+00:00"
    assert events_api.calls[1][1]["pageToken"] == "page-2"


def test_create_and_update_use_rendered_body():
    events_api = FakeEvents()
    client = _client(events_api)

    created = client.create_event("cal-1", _payload())
    updated = client.update_event("cal-1", "evt-9", _payload())

    assert created.id == "evt-new"
    assert updated.id == "evt-9"
    name, kwargs = events_api.calls[0]
    assert name == "insert"
    assert kwargs["sendNotifications"] is False
    assert kwargs["body"]["description"].endswith("Original UID [v1]: uid-1")


def test_http_errors_are_classified(monkeypatch):
    from calsync.sync import google_calendar as module

    monkeypatch.setattr(module, "HttpError", FakeHttpError)
    client = _client(FakeEvents(error=FakeHttpError(401)))

    with pytest.raises(DestinationApiError) as exc:
        client.create_event("cal-1", _payload())

    assert exc.value.kind == ApiErrorKind.AUTH


def test_delete_of_missing_event_counts_as_deleted(monkeypatch):
    from calsync.sync import google_calendar as module

    monkeypatch.setattr(module, "HttpError", FakeHttpError)
    client = _client(FakeEvents(error=FakeHttpError(410)))

    client.delete_event("cal-1", "evt-gone")


def test_network_error_is_transient():
    client = _client(FakeEvents(error=ConnectionResetError("reset")))

    with pytest.raises(DestinationApiError) as exc:
        client.delete_event("cal-1", "evt-1")

    assert exc.value.kind == ApiErrorKind.TRANSIENT

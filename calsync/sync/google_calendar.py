"""Google Calendar API wrapper."""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as date_parser
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.config import get_settings
from calsync.errors import ApiErrorKind, DestinationApiError
from calsync.models import DestinationEventRecord, EventPayload, SyncWindow, Transparency
from calsync.sync.fingerprint import embed_marker
from calsync.sync.timezones import resolve_zone

logger = logging.getLogger(__name__)

# Error reasons Google reports for revoked, expired or under-scoped credentials.
AUTH_REASONS = {
    "authError",
    "invalid_grant",
    "invalid_token",
    "insufficientPermissions",
    "ACCESS_TOKEN_SCOPE_INSUFFICIENT",
    "UNAUTHENTICATED",
}

RATE_LIMIT_REASONS = {
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "quotaExceeded",
    "RESOURCE_EXHAUSTED",
}

TRANSIENT_STATUSES = {502, 503, 504}


def _error_reasons(error: HttpError) -> set[str]:
    """Collect machine-readable reasons from a Google API error response."""
    reasons: set[str] = set()

    details = getattr(error, "error_details", None)
    if isinstance(details, list):
        for item in details:
            if isinstance(item, dict) and item.get("reason"):
                reasons.add(item["reason"])

    content = getattr(error, "content", None) or b""
    try:
        if isinstance(content, bytes):
            content = content.decode("utf-8")
        data = json.loads(content) if content else {}
    except (UnicodeDecodeError, ValueError):
        data = {}

    payload = data.get("error") if isinstance(data, dict) else None
    if isinstance(payload, dict):
        for item in payload.get("errors") or []:
            if isinstance(item, dict) and item.get("reason"):
                reasons.add(item["reason"])
        if payload.get("status"):
            reasons.add(payload["status"])
    elif isinstance(payload, str):
        reasons.add(payload)

    return reasons


def classify_http_error(error: HttpError) -> DestinationApiError:
    """Map a Google API HttpError to a structured DestinationApiError."""
    status = error.resp.status
    reasons = _error_reasons(error)
    message = ", ".join(sorted(reasons)) or "request failed"

    if status == 401 or reasons & AUTH_REASONS:
        kind = ApiErrorKind.AUTH
    elif status == 429 or reasons & RATE_LIMIT_REASONS:
        kind = ApiErrorKind.RATE_LIMITED
    elif status in TRANSIENT_STATUSES:
        kind = ApiErrorKind.TRANSIENT
    elif status in (404, 410):
        kind = ApiErrorKind.NOT_FOUND
    else:
        kind = ApiErrorKind.OTHER

    return DestinationApiError(kind, message, status=status)


def _rfc3339(instant: datetime) -> str:
    return instant.isoformat(timespec="seconds")


def payload_to_body(payload: EventPayload, sync_tag: str) -> dict:
    """Render an EventPayload as a Google Calendar event resource."""
    return {
        "summary": payload.summary,
        "description": embed_marker(payload.description, payload.uid),
        "start": {"dateTime": _rfc3339(payload.start), "timeZone": payload.time_zone},
        "end": {"dateTime": _rfc3339(payload.end), "timeZone": payload.time_zone},
        "transparency": payload.transparency.value,
        "visibility": payload.visibility,
        "extendedProperties": {"private": {sync_tag: "true"}},
    }


def _parse_event_time(value: dict) -> Optional[datetime]:
    """Parse a Google start/end object. All-day values yield None."""
    raw = value.get("dateTime")
    if not raw:
        return None
    instant = date_parser.isoparse(raw)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=resolve_zone(value.get("timeZone")) or timezone.utc)
    return instant


def event_to_record(event: dict, sync_tag: str) -> DestinationEventRecord:
    """Map a Google Calendar event resource to a DestinationEventRecord."""
    transparency = Transparency.OPAQUE
    if event.get("transparency") == Transparency.TRANSPARENT.value:
        transparency = Transparency.TRANSPARENT

    private_props = event.get("extendedProperties", {}).get("private", {})

    return DestinationEventRecord(
        id=event["id"],
        start=_parse_event_time(event.get("start", {})),
        end=_parse_event_time(event.get("end", {})),
        summary=event.get("summary", ""),
        description=event.get("description", "") or "",
        transparency=transparency,
        managed=private_props.get(sync_tag) == "true",
    )


class GoogleCalendarClient:
    """Wrapper around Google Calendar API.

    Every failure leaves this class as a DestinationApiError carrying an
    ApiErrorKind, so callers never inspect provider-specific error wording.
    """

    def __init__(self, access_token: str):
        """Initialize with access token."""
        self.credentials = Credentials(token=access_token)
        self.settings = get_settings()
        self._local = threading.local()

    @property
    def service(self):
        """Calendar service bound to the calling thread (httplib2 is not thread-safe)."""
        service = getattr(self._local, "service", None)
        if service is None:
            service = build("calendar", "v3", credentials=self.credentials, cache_discovery=False)
            self._local.service = service
        return service

    def _execute(self, request):
        try:
            return request.execute()
        except HttpError as e:
            raise classify_http_error(e) from e
        except RefreshError as e:
            raise DestinationApiError(ApiErrorKind.AUTH, f"Token refresh failed: {e}") from e
        except (TransportError, OSError) as e:
            raise DestinationApiError(ApiErrorKind.TRANSIENT, f"Network error: {e}") from e

    def list_events(
        self,
        calendar_id: str,
        window: SyncWindow,
        max_results: int = 2500,
    ) -> list[DestinationEventRecord]:
        """List single (expanded) events overlapping the window, following pagination."""
        request_params = {
            "calendarId": calendar_id,
            "timeMin": window.start.astimezone(timezone.utc).isoformat(),
            "timeMax": window.end.astimezone(timezone.utc).isoformat(),
            "maxResults": max_results,
            "singleEvents": True,
            "showDeleted": False,
        }

        all_events = []
        page_token = None

        while True:
            if page_token:
                request_params["pageToken"] = page_token

            result = self._execute(self.service.events().list(**request_params))
            all_events.extend(result.get("items", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(all_events)} events from calendar {calendar_id}")
        sync_tag = self.settings.calendar_sync_tag
        return [
            event_to_record(event, sync_tag)
            for event in all_events
            if event.get("status") != "cancelled" and event.get("id")
        ]

    def create_event(self, calendar_id: str, payload: EventPayload) -> DestinationEventRecord:
        """Create an event on a calendar."""
        body = payload_to_body(payload, self.settings.calendar_sync_tag)
        created = self._execute(
            self.service.events().insert(
                calendarId=calendar_id,
                body=body,
                sendNotifications=False,
            )
        )
        return event_to_record(created, self.settings.calendar_sync_tag)

    def update_event(
        self,
        calendar_id: str,
        event_id: str,
        payload: EventPayload,
    ) -> DestinationEventRecord:
        """Replace an event with the payload's content."""
        body = payload_to_body(payload, self.settings.calendar_sync_tag)
        updated = self._execute(
            self.service.events().update(
                calendarId=calendar_id,
                eventId=event_id,
                body=body,
                sendNotifications=False,
            )
        )
        return event_to_record(updated, self.settings.calendar_sync_tag)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event. Events that are already gone count as deleted."""
        try:
            self._execute(
                self.service.events().delete(
                    calendarId=calendar_id,
                    eventId=event_id,
                    sendNotifications=False,
                )
            )
        except DestinationApiError as e:
            if e.kind == ApiErrorKind.NOT_FOUND:
                logger.debug(f"Event {event_id} already deleted from {calendar_id}")
                return
            raise

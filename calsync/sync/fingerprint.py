"""Occurrence fingerprints and the description marker that carries them.

A destination event created by the engine stores the source UID on its own
line at the end of the description::

    Original UID [v1]: <uid>

The key of an occurrence is ``<uid>:<start>`` where start is rendered in UTC
at second precision, so the value computed from a source occurrence and the
value recovered from a stored event compare equal regardless of how the
destination formats or rounds its timestamps. Lines written by older versions
(``Original UID: <uid>``, no version tag) are still recognised.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from calsync.models import DestinationEventRecord, EventPayload, NormalizedInstance

MARKER_VERSION = 1
MARKER_LABEL = "Original UID"

_MARKER_RE = re.compile(r"^Original UID(?: \[v(?P<version>\d+)\])?: (?P<uid>.+?)\s*$")


def canonical_instant(instant: datetime) -> str:
    """UTC, whole seconds, ``YYYY-MM-DDTHH:MM:SSZ``."""
    if instant.tzinfo is None:
        raise ValueError("Fingerprints require timezone-aware datetimes")
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def make_key(uid: str, start: datetime) -> str:
    return f"{uid}:{canonical_instant(start)}"


def compute_key(instance: NormalizedInstance) -> str:
    """Fingerprint of a normalized source occurrence."""
    return make_key(instance.uid, instance.start)


def marker_line(uid: str) -> str:
    return f"{MARKER_LABEL} [v{MARKER_VERSION}]: {uid}"


def embed_marker(body: str, uid: str) -> str:
    """Append the marker line to a user-visible description body."""
    body = (body or "").rstrip()
    if body:
        return f"{body}\n\n{marker_line(uid)}"
    return marker_line(uid)


def split_marker(text: Optional[str]) -> tuple[str, Optional[str]]:
    """Split a stored description into ``(body, uid)``.

    The last marker line wins; ``uid`` is None when there is no marker.
    """
    if not text:
        return "", None

    lines = text.splitlines()
    for index in range(len(lines) - 1, -1, -1):
        match = _MARKER_RE.match(lines[index].strip())
        if match:
            body = "\n".join(lines[:index] + lines[index + 1:]).strip()
            return body, match.group("uid")
    return text.strip(), None


def extract_key(record: DestinationEventRecord) -> Optional[str]:
    """Recover the fingerprint of a destination event, or None if it is not ours."""
    _, uid = split_marker(record.description)
    if uid is None or record.start is None:
        return None
    return make_key(uid, record.start)


def build_payload(instance: NormalizedInstance) -> EventPayload:
    """Write payload for a normalized occurrence. Times are used as-is."""
    return EventPayload(
        key=compute_key(instance),
        uid=instance.uid,
        start=instance.start,
        end=instance.end,
        time_zone=instance.destination_timezone,
        summary=instance.summary,
        description=instance.description,
        transparency=instance.transparency,
        visibility=instance.visibility,
    )

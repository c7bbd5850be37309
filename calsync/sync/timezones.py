"""Timezone resolution and the single normalization step of the pipeline."""

import logging
from datetime import datetime, tzinfo
from typing import Optional

from dateutil import tz

from calsync.models import NormalizedInstance, SourceEventInstance, SyncWindow

logger = logging.getLogger(__name__)

UTC = tz.UTC

# Windows zone names seen in Outlook/Exchange feeds.
WINDOWS_ZONE_NAMES = {
    "US Mountain Standard Time": "America/Phoenix",
    "Mountain Standard Time": "America/Denver",
    "Eastern Standard Time": "America/New_York",
    "US Eastern Standard Time": "America/Indiana/Indianapolis",
    "Central Standard Time": "America/Chicago",
    "Pacific Standard Time": "America/Los_Angeles",
    "Alaskan Standard Time": "America/Anchorage",
    "Hawaiian Standard Time": "Pacific/Honolulu",
    "GMT Standard Time": "Europe/London",
    "Greenwich Standard Time": "Atlantic/Reykjavik",
    "W. Europe Standard Time": "Europe/Berlin",
    "Central Europe Standard Time": "Europe/Budapest",
    "Central European Standard Time": "Europe/Warsaw",
    "Romance Standard Time": "Europe/Paris",
    "E. Europe Standard Time": "Europe/Chisinau",
    "India Standard Time": "Asia/Kolkata",
    "China Standard Time": "Asia/Shanghai",
    "Tokyo Standard Time": "Asia/Tokyo",
    "AUS Eastern Standard Time": "Australia/Sydney",
    "UTC": "UTC",
    "Coordinated Universal Time": "UTC",
}


def canonical_zone_name(name: Optional[str]) -> Optional[str]:
    """Map a Windows zone name to its IANA equivalent; other names pass through."""
    if not name:
        return None
    cleaned = name.strip().strip('"')
    return WINDOWS_ZONE_NAMES.get(cleaned, cleaned)


def resolve_zone(name: Optional[str]) -> Optional[tzinfo]:
    """Resolve an IANA or Windows zone name. Returns None for unknown names."""
    canonical = canonical_zone_name(name)
    if not canonical:
        return None
    if canonical.upper() in ("UTC", "Z", "GMT", "ETC/UTC"):
        return UTC
    return tz.gettz(canonical)


def resolve_destination_zone(
    configured: Optional[str],
    hint: Optional[str] = None,
    default: str = "UTC",
) -> tuple[str, tzinfo]:
    """Pick the effective destination zone for one run.

    A caller-supplied hint wins over the configured zone; unknown names fall
    back to the next candidate.
    """
    for label, candidate in (("hint", hint), ("configured", configured), ("default", default)):
        if not candidate:
            continue
        zone = resolve_zone(candidate)
        if zone is not None:
            return canonical_zone_name(candidate), zone
        logger.warning(f"Unknown {label} timezone '{candidate}', falling back")
    return "UTC", UTC


def normalize_instant(instant: datetime, source_zone: tzinfo, dest_zone: tzinfo) -> datetime:
    """Convert an instant from its source zone into the destination zone.

    Naive instants are wall-clock times in ``source_zone``. Aware instants
    already identify an absolute point in time and are only re-expressed.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=source_zone)
    return instant.astimezone(dest_zone)


def normalize_instance(
    instance: SourceEventInstance,
    dest_zone: tzinfo,
    dest_zone_name: str,
) -> NormalizedInstance:
    """Normalize one occurrence. Call exactly once per occurrence per run."""
    source_zone = resolve_zone(instance.source_timezone) or UTC
    return NormalizedInstance(
        uid=instance.uid,
        start=normalize_instant(instance.start, source_zone, dest_zone),
        end=normalize_instant(instance.end, source_zone, dest_zone),
        source_timezone=instance.source_timezone,
        destination_timezone=dest_zone_name,
        summary=instance.summary,
        description=instance.description,
        status=instance.status,
        transparency=instance.transparency,
    )


def month_window(now: datetime, zone: tzinfo) -> SyncWindow:
    """Return the calendar month containing ``now`` as seen from ``zone``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    local = now.astimezone(zone)
    start = datetime(local.year, local.month, 1, tzinfo=zone)
    if local.month == 12:
        end = datetime(local.year + 1, 1, 1, tzinfo=zone)
    else:
        end = datetime(local.year, local.month + 1, 1, tzinfo=zone)
    return SyncWindow(start=start, end=end)

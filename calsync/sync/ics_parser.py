"""ICS feed parsing and recurrence expansion."""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar
from icalendar.error import BrokenCalendarProperty

from calsync.errors import FeedParseError
from calsync.models import EventStatus, SourceEventInstance, SyncWindow, Transparency
from calsync.sync.timezones import UTC, canonical_zone_name, resolve_zone

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "No Title"

_UNTIL_RE = re.compile(r"UNTIL=([0-9]{8}(?:T[0-9]{6})?Z?)")


class BlockParseError(ValueError):
    """A single VEVENT block is malformed and has to be skipped."""


class UnsupportedConstructError(ValueError):
    """A VEVENT uses a construct this parser does not expand."""


@dataclass
class ParseOutcome:
    """Result of parsing one feed document."""

    instances: list[SourceEventInstance] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    calendar_name: Optional[str] = None
    calendar_timezone: Optional[str] = None


def parse_feed(text: str, window: SyncWindow) -> ParseOutcome:
    """
    Parse raw ICS text into concrete occurrences starting inside ``window``.

    Malformed VEVENT blocks are reported in ``errors`` and skipped; blocks
    using unsupported constructs are reported in ``warnings`` and skipped.
    Raises FeedParseError only when the document is not a calendar at all.
    """
    try:
        calendar = Calendar.from_ical(text)
    except (ValueError, IndexError, KeyError) as e:
        raise FeedParseError(f"Feed is not a valid calendar document: {e}") from e

    if getattr(calendar, "name", None) != "VCALENDAR":
        raise FeedParseError("Feed does not contain a VCALENDAR")

    outcome = ParseOutcome(
        calendar_name=_text(calendar.get("X-WR-CALNAME")) or None,
        calendar_timezone=_calendar_timezone(calendar),
    )
    default_zone_name = outcome.calendar_timezone or "UTC"

    components = list(enumerate(calendar.walk("VEVENT"), start=1))
    overrides: dict[str, list] = {}

    # Overrides first: only blocks that parse may cancel an occurrence of their series.
    for index, component in components:
        if component.get("RECURRENCE-ID") is None:
            continue
        if _parse_block(component, index, window, default_zone_name, overrides, outcome):
            _register_override(component, default_zone_name, overrides)

    for index, component in components:
        if component.get("RECURRENCE-ID") is None:
            _parse_block(component, index, window, default_zone_name, overrides, outcome)

    outcome.instances.sort(key=lambda instance: (instance.start, instance.uid))
    logger.debug(
        f"Parsed {len(components)} VEVENT blocks into {len(outcome.instances)} instances "
        f"({len(outcome.errors)} errors, {len(outcome.warnings)} warnings)"
    )
    return outcome


def _parse_block(component, index, window, default_zone_name, overrides, outcome) -> bool:
    """Expand one VEVENT into ``outcome``. Returns False when the block was skipped."""
    label = _block_label(component, index)
    try:
        outcome.instances.extend(
            _expand_event(component, window, default_zone_name, overrides)
        )
        return True
    except UnsupportedConstructError as e:
        message = f"{label}: skipped, {e}"
        logger.warning(message)
        outcome.warnings.append(message)
    except BlockParseError as e:
        message = f"{label}: {e}"
        logger.warning(f"Skipping malformed event {message}")
        outcome.errors.append(message)
    return False


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _block_label(component, index: int) -> str:
    uid = _text(component.get("UID"))
    if uid:
        return f"VEVENT #{index} ({uid})"
    summary = _text(component.get("SUMMARY"))
    if summary:
        return f'VEVENT #{index} ("{summary}")'
    return f"VEVENT #{index}"


def _calendar_timezone(calendar) -> Optional[str]:
    """Default zone of the calendar: X-WR-TIMEZONE, then the first VTIMEZONE."""
    candidates = [_text(calendar.get("X-WR-TIMEZONE"))]
    candidates.extend(_text(vtz.get("TZID")) for vtz in calendar.walk("VTIMEZONE"))

    for candidate in candidates:
        if candidate and resolve_zone(candidate) is not None:
            return canonical_zone_name(candidate)
        if candidate:
            logger.warning(f"Ignoring unknown calendar timezone '{candidate}'")
    return None


def _zone_for(params, default_zone_name: str):
    """Resolve the zone named by a TZID parameter, falling back to the default.

    Returns ``(zone_name, zone, explicit)`` where ``explicit`` is True when the
    TZID itself resolved; wall-clock values are then pinned to that zone.
    """
    tzid = params.get("TZID") if params else None
    if tzid:
        zone = resolve_zone(tzid)
        if zone is not None:
            return canonical_zone_name(tzid), zone, True
        logger.warning(f"Unknown TZID '{tzid}', using {default_zone_name}")
    return default_zone_name, resolve_zone(default_zone_name) or UTC, False


def _value_of(prop, name: str, attr: str = "dt"):
    """Parsed value of a property; a property icalendar could not parse is a block error."""
    try:
        return getattr(prop, attr, None)
    except BrokenCalendarProperty as e:
        raise BlockParseError(f"{name} has an unparseable value: {e}") from e


def _read_instant(component, name: str, default_zone_name: str):
    """Read a DATE/DATE-TIME property as an aware datetime.

    Returns ``(instant, zone_name, is_date)``; ``instant`` is None when absent.
    """
    prop = component.get(name)
    if prop is None or isinstance(prop, list):
        return None, default_zone_name, False

    zone_name, zone, explicit = _zone_for(getattr(prop, "params", None), default_zone_name)
    value = _value_of(prop, name)

    if isinstance(value, datetime):
        if value.tzinfo is None or explicit:
            value = value.replace(tzinfo=zone)
        return value, zone_name, False
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=zone), zone_name, True
    raise BlockParseError(f"{name} has an unreadable value")


def _read_end(component, start: datetime, is_date: bool, default_zone_name: str) -> datetime:
    end, _, _ = _read_instant(component, "DTEND", default_zone_name)
    if end is not None:
        return end

    duration = component.get("DURATION")
    if duration is not None:
        value = _value_of(duration, "DURATION")
        if not isinstance(value, timedelta):
            raise BlockParseError("DURATION has an unreadable value")
        return start + value

    if is_date:
        return start + timedelta(days=1)
    return start


def _busy_status(component, raw_status: str) -> tuple[EventStatus, Transparency]:
    transparency = Transparency.OPAQUE
    if _text(component.get("TRANSP")).lower() == "transparent":
        transparency = Transparency.TRANSPARENT
    status = EventStatus.FREE if transparency == Transparency.TRANSPARENT else EventStatus.BUSY

    busy_status = _text(component.get("X-MICROSOFT-CDO-BUSYSTATUS")).lower()
    if "free" in raw_status or busy_status == "free":
        status = EventStatus.FREE
        transparency = Transparency.TRANSPARENT
    return status, transparency


def _register_override(component, default_zone_name: str, overrides: dict[str, list]) -> None:
    """Record the RECURRENCE-ID of a parsed override block against its series uid."""
    uid = _text(component.get("UID"))
    instant, _, is_date = _read_instant(component, "RECURRENCE-ID", default_zone_name)
    if instant is not None:
        overrides.setdefault(uid, []).append((instant, is_date))


def _read_date_list(component, name: str, default_zone_name: str) -> list:
    """Read EXDATE/RDATE values as ``(instant, is_date)`` pairs."""
    props = component.get(name)
    if props is None:
        return []
    if not isinstance(props, list):
        props = [props]

    values = []
    for prop in props:
        _, zone, explicit = _zone_for(getattr(prop, "params", None), default_zone_name)
        for item in _value_of(prop, name, "dts") or []:
            value = _value_of(item, name)
            if isinstance(value, datetime):
                if value.tzinfo is None or explicit:
                    value = value.replace(tzinfo=zone)
                values.append((value, False))
            elif isinstance(value, date):
                values.append((value, True))
            else:
                logger.warning(f"Ignoring unsupported {name} value {value!r}")
    return values


def _align(value, is_date: bool, start: datetime) -> datetime:
    """Place a DATE exclusion at the series' start time so it matches occurrences."""
    if is_date:
        day = value.date() if isinstance(value, datetime) else value
        return datetime.combine(day, start.timetz())
    return value


def _rule_string(rrule_prop, start: datetime) -> str:
    """Serialize an RRULE, converting a floating UNTIL to UTC as dateutil requires."""
    text = rrule_prop.to_ical().decode("utf-8")
    match = _UNTIL_RE.search(text)
    if match and not match.group(1).endswith("Z"):
        raw = match.group(1)
        if "T" in raw:
            until = datetime.strptime(raw, "%Y%m%dT%H%M%S")
        else:
            until = datetime.strptime(raw, "%Y%m%d").replace(hour=23, minute=59, second=59)
        until = until.replace(tzinfo=start.tzinfo).astimezone(UTC)
        text = text.replace(match.group(0), f"UNTIL={until.strftime('%Y%m%dT%H%M%SZ')}")
    return text


def _build_ruleset(component, rrule_prop, start, default_zone_name, exclusions) -> rruleset:
    rules = rruleset()
    try:
        rules.rrule(rrulestr(_rule_string(rrule_prop, start), dtstart=start))
    except (ValueError, TypeError) as e:
        raise BlockParseError(f"unparseable RRULE: {e}") from e

    for value, is_date in _read_date_list(component, "EXDATE", default_zone_name):
        rules.exdate(_align(value, is_date, start))
    for value, is_date in exclusions:
        rules.exdate(_align(value, is_date, start))
    for value, is_date in _read_date_list(component, "RDATE", default_zone_name):
        rules.rdate(_align(value, is_date, start))
    return rules


def _expand_event(
    component,
    window: SyncWindow,
    default_zone_name: str,
    overrides: dict[str, list],
) -> list[SourceEventInstance]:
    uid = _text(component.get("UID"))
    if not uid:
        raise BlockParseError("missing UID")
    if component.get("RECURRENCE-ID") is not None:
        _read_instant(component, "RECURRENCE-ID", default_zone_name)

    start, zone_name, is_date = _read_instant(component, "DTSTART", default_zone_name)
    if start is None:
        errors = getattr(component, "errors", None)
        detail = f" ({errors})" if errors else ""
        raise BlockParseError(f"missing or unparseable DTSTART{detail}")

    end = _read_end(component, start, is_date, default_zone_name)
    if end < start:
        raise BlockParseError("DTEND is before DTSTART")

    raw_status = _text(component.get("STATUS")).lower()
    if raw_status == "cancelled":
        logger.debug(f"Dropping cancelled event {uid}")
        return []

    if component.get("EXRULE") is not None:
        raise UnsupportedConstructError("EXRULE is not supported")

    status, transparency = _busy_status(component, raw_status)
    base = SourceEventInstance(
        uid=uid,
        start=start,
        end=end,
        source_timezone=zone_name,
        summary=_text(component.get("SUMMARY")) or DEFAULT_SUMMARY,
        description=_text(component.get("DESCRIPTION")),
        status=status,
        transparency=transparency,
    )

    rrule_prop = component.get("RRULE")
    if rrule_prop is None or component.get("RECURRENCE-ID") is not None:
        return [base] if window.contains(start) else []

    if isinstance(rrule_prop, list):
        raise UnsupportedConstructError("multiple RRULE properties are not supported")

    duration = end - start
    rules = _build_ruleset(component, rrule_prop, start, default_zone_name, overrides.get(uid, []))
    return [
        replace(base, start=occurrence, end=occurrence + duration)
        for occurrence in rules.between(window.start, window.end, inc=True)
        if window.contains(occurrence)
    ]

"""Destination snapshot reading and source/destination reconciliation."""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from calsync.models import DestinationEventRecord, EventPayload, SyncWindow
from calsync.sync.fingerprint import canonical_instant, extract_key, split_marker

logger = logging.getLogger(__name__)


@dataclass
class DestinationSnapshot:
    """Managed destination events inside the window, keyed by fingerprint."""

    by_key: dict[str, DestinationEventRecord] = field(default_factory=dict)
    duplicates: list[tuple[str, DestinationEventRecord]] = field(default_factory=list)
    unmanaged: int = 0
    outside_window: int = 0


@dataclass
class SyncPlan:
    """Writes needed to bring the destination in line with the source."""

    creates: list[EventPayload] = field(default_factory=list)
    updates: list[tuple[EventPayload, DestinationEventRecord]] = field(default_factory=list)
    deletes: list[tuple[str, DestinationEventRecord]] = field(default_factory=list)
    duplicates: list[tuple[str, DestinationEventRecord]] = field(default_factory=list)
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes or self.duplicates)


def read_destination(
    records: Iterable[DestinationEventRecord],
    window: SyncWindow,
) -> DestinationSnapshot:
    """
    Key destination events by their embedded fingerprint.

    Events without a marker were not created by this engine and are left out.
    When several events carry the same fingerprint the first one is kept and
    the others are reported as duplicates.
    """
    snapshot = DestinationSnapshot()

    for record in records:
        key = extract_key(record)
        if key is None:
            snapshot.unmanaged += 1
            continue
        if not window.contains(record.start):
            snapshot.outside_window += 1
            continue
        if key in snapshot.by_key:
            logger.warning(f"Duplicate destination event {record.id} for {key}")
            snapshot.duplicates.append((key, record))
            continue
        snapshot.by_key[key] = record

    return snapshot


def needs_update(payload: EventPayload, record: DestinationEventRecord) -> bool:
    """True when any observable field of the stored event differs from the payload."""
    if record.start is None or record.end is None:
        return True
    if canonical_instant(payload.start) != canonical_instant(record.start):
        return True
    if canonical_instant(payload.end) != canonical_instant(record.end):
        return True
    if payload.summary != record.summary:
        return True
    body, _ = split_marker(record.description)
    if payload.description.strip() != body:
        return True
    return payload.status != record.status


def reconcile(
    payloads: dict[str, EventPayload],
    snapshot: DestinationSnapshot,
    window: SyncWindow,
) -> SyncPlan:
    """
    Diff source payloads against the destination snapshot.

    Only occurrences starting inside ``window`` are compared; anything
    outside it is neither created nor deleted.
    """
    plan = SyncPlan(duplicates=list(snapshot.duplicates))

    for key, payload in payloads.items():
        if not window.contains(payload.start):
            continue
        record = snapshot.by_key.get(key)
        if record is None:
            plan.creates.append(payload)
        elif needs_update(payload, record):
            plan.updates.append((payload, record))
        else:
            plan.skipped += 1

    for key, record in snapshot.by_key.items():
        if key not in payloads and window.contains(record.start):
            plan.deletes.append((key, record))

    logger.info(
        f"Reconciled {len(payloads)} source and {len(snapshot.by_key)} destination events: "
        f"{len(plan.creates)} to create, {len(plan.updates)} to update, "
        f"{len(plan.deletes)} to delete, {len(plan.duplicates)} duplicates, "
        f"{plan.skipped} unchanged"
    )
    return plan

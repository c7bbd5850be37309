"""Busy/free redaction of normalized occurrences."""

from dataclasses import replace
from typing import Optional

from calsync.models import (
    EventStatus,
    NormalizedInstance,
    PrivacyLevel,
    SyncMode,
    Transparency,
)


def effective_privacy(mode: SyncMode, level: PrivacyLevel) -> PrivacyLevel:
    """Privacy only applies to busy/free syncs; full syncs copy everything."""
    if mode == SyncMode.BUSY_FREE:
        return level
    return PrivacyLevel.FULL_DETAILS


def apply_privacy(
    instance: NormalizedInstance,
    mode: SyncMode,
    level: PrivacyLevel,
    busy_label: str = "Busy",
) -> Optional[NormalizedInstance]:
    """
    Redact an occurrence according to the sync mode and privacy level.

    Returns None when the occurrence must not reach the destination at all
    (free time in busy-only mode). Identity and timing fields are never
    touched, so the fingerprint is the same at every privacy level.
    """
    if effective_privacy(mode, level) == PrivacyLevel.FULL_DETAILS:
        return instance

    if instance.status != EventStatus.BUSY or instance.transparency == Transparency.TRANSPARENT:
        return None

    return replace(
        instance,
        summary=busy_label,
        description="",
        visibility="private",
    )

"""Core sync engine."""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from calsync.config import get_settings
from calsync.database import get_access_token, get_sync_config, record_sync_run
from calsync.errors import (
    DestinationUnavailableError,
    ErrorKind,
    EventWriteError,
    ReauthRequiredError,
    SyncError,
)
from calsync.models import EventPayload, SyncConfig, SyncResult, SyncWindow
from calsync.sync.executor import execute_plan
from calsync.sync.feed import fetch_feed
from calsync.sync.fingerprint import build_payload
from calsync.sync.gatekeeper import AuthGatekeeper
from calsync.sync.google_calendar import GoogleCalendarClient
from calsync.sync.ics_parser import parse_feed
from calsync.sync.privacy import apply_privacy
from calsync.sync.reconciler import read_destination, reconcile
from calsync.sync.timezones import month_window, normalize_instance, resolve_destination_zone

logger = logging.getLogger(__name__)


async def create_destination_client(config: SyncConfig) -> GoogleCalendarClient:
    """Build a Google Calendar client with the config owner's access token."""
    access_token = await get_access_token(config.user_id)
    return GoogleCalendarClient(access_token)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def run_sync(
    config_id: int,
    timezone_hint: Optional[str] = None,
    *,
    client=None,
    window: Optional[SyncWindow] = None,
    now: Optional[datetime] = None,
) -> SyncResult:
    """
    Mirror one configuration's feed into its destination calendar.

    Returns a SyncResult, possibly with per-event errors. Raises
    SyncConfigNotFoundError for unknown ids, and FeedUnreachableError,
    FeedParseError, DestinationUnavailableError or ReauthRequiredError
    when the run cannot proceed. Every attempted run is written to sync_log.
    """
    config = await get_sync_config(config_id)

    if not config.is_active:
        logger.info(f"Sync config {config_id} is inactive, skipping")
        return SyncResult()

    started = time.monotonic()
    result = SyncResult()

    try:
        await _sync_config(config, result, timezone_hint, client, window, now)
    except ReauthRequiredError as e:
        partial = e.result or result
        partial.duration_ms = _elapsed_ms(started)
        e.result = partial
        logger.error(f"Sync config {config_id} needs re-authentication: {e}")
        await record_sync_run(
            config_id, "reauth_required", partial, error_kind=e.kind.value, error=str(e)
        )
        raise
    except SyncError as e:
        result.duration_ms = _elapsed_ms(started)
        logger.error(f"Sync config {config_id} failed ({e.kind.value}): {e}")
        await record_sync_run(config_id, "failed", result, error_kind=e.kind.value, error=str(e))
        raise
    except Exception as e:
        result.duration_ms = _elapsed_ms(started)
        logger.exception(f"Unexpected error syncing config {config_id}: {e}")
        await record_sync_run(config_id, "failed", result, error=f"{type(e).__name__}: {e}")
        raise

    result.duration_ms = _elapsed_ms(started)
    status = "success" if result.success else "partial"
    await record_sync_run(config_id, status, result)

    logger.info(
        f"Sync config {config_id} finished ({status}): {result.created} created, "
        f"{result.updated} updated, {result.deleted} deleted, {result.skipped} unchanged, "
        f"{result.parse_errors} parse errors, {len(result.errors)} write errors "
        f"in {result.duration_ms}ms"
    )
    return result


async def _sync_config(
    config: SyncConfig,
    result: SyncResult,
    timezone_hint: Optional[str],
    client,
    window: Optional[SyncWindow],
    now: Optional[datetime],
) -> None:
    """Internal: the pipeline for one run, filling ``result`` in place."""
    settings = get_settings()

    zone_name, zone = resolve_destination_zone(
        config.destination_timezone,
        hint=timezone_hint,
        default=settings.default_timezone,
    )
    if window is None:
        window = month_window(now or datetime.now(timezone.utc), zone)

    logger.info(
        f"Syncing config {config.id} into {config.destination_calendar_id} "
        f"({config.sync_mode.value}, {zone_name}) for {window.start.isoformat()} - {window.end.isoformat()}"
    )

    if client is None:
        client = await create_destination_client(config)

    text = await fetch_feed(config.feed_url)
    outcome = parse_feed(text, window)

    result.parse_errors = len(outcome.errors)
    result.warnings.extend(outcome.warnings)
    for message in outcome.errors:
        result.record_error(ErrorKind.PARSE_ERROR, message, operation="parse")

    payloads: dict[str, EventPayload] = {}
    for instance in outcome.instances:
        normalized = normalize_instance(instance, zone, zone_name)
        visible = apply_privacy(
            normalized, config.sync_mode, config.privacy_level, settings.busy_label
        )
        if visible is None:
            continue
        payload = build_payload(visible)
        if payload.key in payloads:
            message = f"Duplicate occurrence {payload.key} in feed, keeping the first"
            logger.warning(message)
            result.warnings.append(message)
            continue
        payloads[payload.key] = payload

    result.events_processed = len(outcome.instances)

    gatekeeper = AuthGatekeeper(
        max_retries=settings.transient_retry_attempts,
        backoff_seconds=settings.transient_backoff_seconds,
    )

    try:
        records = await gatekeeper.call(
            client.list_events, config.destination_calendar_id, window, operation="list"
        )
    except EventWriteError as e:
        raise DestinationUnavailableError(
            f"Could not list destination calendar {config.destination_calendar_id}: {e}"
        ) from e

    snapshot = read_destination(records, window)
    plan = reconcile(payloads, snapshot, window)

    await execute_plan(
        client,
        config.destination_calendar_id,
        plan,
        gatekeeper,
        max_concurrency=settings.max_concurrent_writes,
        result=result,
    )

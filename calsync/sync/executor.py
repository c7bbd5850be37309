"""Bounded-concurrency execution of a sync plan against the destination."""

import asyncio
import logging
from typing import Optional

from calsync.errors import EventWriteError, ReauthRequiredError
from calsync.models import DestinationEventRecord, EventPayload, SyncResult
from calsync.sync.gatekeeper import AuthGatekeeper
from calsync.sync.reconciler import SyncPlan

logger = logging.getLogger(__name__)


async def execute_plan(
    client,
    calendar_id: str,
    plan: SyncPlan,
    gatekeeper: AuthGatekeeper,
    max_concurrency: int = 5,
    result: Optional[SyncResult] = None,
) -> SyncResult:
    """
    Apply creates, updates and deletes with at most ``max_concurrency`` in flight.

    A failed write is recorded in the result and the remaining writes carry
    on. An authentication failure stops the run: writes not yet started are
    abandoned and ReauthRequiredError is raised with the partial result.
    """
    result = result or SyncResult()
    result.skipped += plan.skipped

    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    abort = asyncio.Event()
    reauth_errors: list[ReauthRequiredError] = []

    async def run(operation: str, key: str, func, *args) -> bool:
        async with semaphore:
            if abort.is_set():
                return False
            try:
                await gatekeeper.call(func, *args, operation=operation, key=key)
                return True
            except ReauthRequiredError as e:
                abort.set()
                reauth_errors.append(e)
                return False
            except EventWriteError as e:
                logger.warning(f"Failed to {operation} {key}: {e}")
                result.record_error(e.kind, str(e), key=key, operation=operation)
                return False

    async def create(payload: EventPayload) -> None:
        if await run("create", payload.key, client.create_event, calendar_id, payload):
            result.created += 1

    async def update(payload: EventPayload, record: DestinationEventRecord) -> None:
        if await run("update", payload.key, client.update_event, calendar_id, record.id, payload):
            result.updated += 1

    async def delete(key: str, record: DestinationEventRecord) -> None:
        if await run("delete", key, client.delete_event, calendar_id, record.id):
            result.deleted += 1

    async def remove_duplicate(key: str, record: DestinationEventRecord) -> None:
        if await run("delete", key, client.delete_event, calendar_id, record.id):
            result.duplicates_removed += 1

    tasks = [create(payload) for payload in plan.creates]
    tasks += [update(payload, record) for payload, record in plan.updates]
    tasks += [delete(key, record) for key, record in plan.deletes]
    tasks += [remove_duplicate(key, record) for key, record in plan.duplicates]

    await asyncio.gather(*tasks)

    if reauth_errors:
        first = reauth_errors[0]
        logger.error(
            f"Stopped writing to {calendar_id} after authentication failure "
            f"({result.created} created, {result.updated} updated, {result.deleted} deleted)"
        )
        raise ReauthRequiredError(str(first), result=result) from first

    return result

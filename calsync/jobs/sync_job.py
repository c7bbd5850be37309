"""Periodic sync job."""

import asyncio
import logging
from typing import Optional

from calsync.database import list_active_sync_config_ids
from calsync.errors import ReauthRequiredError, SyncError
from calsync.models import SyncResult

logger = logging.getLogger(__name__)

# Per-config locks so a scheduled run never overlaps a manual one.
_config_locks: dict[int, asyncio.Lock] = {}
_config_locks_guard = asyncio.Lock()


async def _get_config_lock(config_id: int) -> asyncio.Lock:
    """Get or create an asyncio lock for a specific sync config."""
    async with _config_locks_guard:
        if config_id not in _config_locks:
            _config_locks[config_id] = asyncio.Lock()
        return _config_locks[config_id]


async def trigger_sync_for_config(
    config_id: int,
    timezone_hint: Optional[str] = None,
) -> Optional[SyncResult]:
    """Run a sync for one config unless one is already in progress.

    Returns None when the run was skipped.
    """
    lock = await _get_config_lock(config_id)
    if lock.locked():
        logger.info(f"Sync already in progress for config {config_id}, skipping")
        return None

    async with lock:
        from calsync.sync.engine import run_sync
        return await run_sync(config_id, timezone_hint)


async def run_periodic_sync() -> None:
    """Run periodic sync for all active sync configs."""
    config_ids = await list_active_sync_config_ids()
    logger.info(f"Running periodic sync for {len(config_ids)} configs")

    for config_id in config_ids:
        try:
            await trigger_sync_for_config(config_id)
        except ReauthRequiredError as e:
            logger.warning(f"Config {config_id} needs re-authentication, skipping: {e}")
        except SyncError as e:
            logger.error(f"Error syncing config {config_id} ({e.kind.value}): {e}")
        except Exception as e:
            logger.exception(f"Unexpected error syncing config {config_id}: {e}")

    logger.info("Periodic sync completed")

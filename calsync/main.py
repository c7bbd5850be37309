"""Service entry point: runs the periodic sync scheduler."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from calsync.config import get_settings
from calsync.database import close_database, get_database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


async def serve() -> None:
    """Open the database, start the scheduler and block until signalled."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Starting Calendar Sync Engine...")
    logger.info(f"Database: {settings.database_path}")

    await get_database()

    from calsync.jobs.scheduler import setup_scheduler, shutdown_scheduler
    setup_scheduler()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows event loops

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        shutdown_scheduler()
        await close_database()


async def sync_once(config_id: int, timezone_hint: Optional[str] = None) -> dict:
    """Run a single sync and return its result as a dict."""
    from calsync.jobs.sync_job import trigger_sync_for_config

    await get_database()
    try:
        result = await trigger_sync_for_config(config_id, timezone_hint)
        return result.as_dict() if result else {}
    finally:
        await close_database()


def run(argv: Optional[list[str]] = None) -> None:
    """Console script entry point."""
    parser = argparse.ArgumentParser(prog="calsync", description="Mirror ICS feeds into Google calendars")
    parser.add_argument("--once", type=int, metavar="CONFIG_ID", help="run one sync and exit")
    parser.add_argument("--timezone", help="destination timezone override for --once")
    args = parser.parse_args(argv)

    if args.once is not None:
        result = asyncio.run(sync_once(args.once, args.timezone))
        print(json.dumps(result, indent=2))
        return

    asyncio.run(serve())


if __name__ == "__main__":
    run()

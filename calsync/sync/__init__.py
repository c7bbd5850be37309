"""Sync engine module."""

from calsync.sync.engine import run_sync, create_destination_client

__all__ = [
    "run_sync",
    "create_destination_client",
]

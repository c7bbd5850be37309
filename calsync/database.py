"""Database connection and schema management."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

import aiosqlite

from calsync.config import get_settings
from calsync.errors import ReauthRequiredError, SyncConfigNotFoundError
from calsync.models import PrivacyLevel, SyncConfig, SyncMode, SyncResult

logger = logging.getLogger(__name__)

# Global database connection pool
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()


SCHEMA = """
-- Feed-to-calendar sync definitions
CREATE TABLE IF NOT EXISTS sync_configs (
    id INTEGER PRIMARY KEY,
    user_id INTEGER,
    name TEXT NOT NULL DEFAULT '',
    feed_url TEXT NOT NULL,
    destination_calendar_id TEXT NOT NULL,
    destination_timezone TEXT NOT NULL DEFAULT 'UTC',
    sync_mode TEXT NOT NULL DEFAULT 'full',
    privacy_level TEXT NOT NULL DEFAULT 'full_details',
    is_active BOOLEAN DEFAULT TRUE,
    last_sync_at TIMESTAMP,
    last_error TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- Destination calendar access tokens, one per user
CREATE TABLE IF NOT EXISTS oauth_tokens (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL UNIQUE,
    google_account_email TEXT,
    access_token TEXT NOT NULL,
    token_expiry TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- Audit log, one row per sync run
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    sync_config_id INTEGER REFERENCES sync_configs(id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    events_created INTEGER DEFAULT 0,
    events_updated INTEGER DEFAULT 0,
    events_deleted INTEGER DEFAULT 0,
    error_kind TEXT,
    details TEXT,
    duration_ms INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_log_config ON sync_log(sync_config_id, created_at);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA foreign_keys = ON")
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")


def _row_to_config(row: aiosqlite.Row) -> SyncConfig:
    return SyncConfig(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"] or "",
        feed_url=row["feed_url"],
        destination_calendar_id=row["destination_calendar_id"],
        destination_timezone=row["destination_timezone"] or "",
        is_active=bool(row["is_active"]),
        sync_mode=SyncMode(row["sync_mode"] or SyncMode.FULL.value),
        privacy_level=PrivacyLevel(row["privacy_level"] or PrivacyLevel.FULL_DETAILS.value),
    )


async def get_sync_config(config_id: int) -> SyncConfig:
    """Load a sync configuration. Raises SyncConfigNotFoundError for unknown ids."""
    db = await get_database()
    cursor = await db.execute("SELECT * FROM sync_configs WHERE id = ?", (config_id,))
    row = await cursor.fetchone()
    if not row:
        raise SyncConfigNotFoundError(f"Sync configuration {config_id} not found")
    return _row_to_config(row)


async def list_active_sync_config_ids() -> list[int]:
    """IDs of every active sync configuration."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT id FROM sync_configs WHERE is_active = TRUE ORDER BY id"
    )
    rows = await cursor.fetchall()
    return [row["id"] for row in rows]


async def create_sync_config(
    feed_url: str,
    destination_calendar_id: str,
    destination_timezone: str = "UTC",
    user_id: Optional[int] = None,
    name: str = "",
    sync_mode: SyncMode = SyncMode.FULL,
    privacy_level: PrivacyLevel = PrivacyLevel.FULL_DETAILS,
    is_active: bool = True,
) -> int:
    """Insert a sync configuration and return its id."""
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO sync_configs
           (user_id, name, feed_url, destination_calendar_id, destination_timezone,
            sync_mode, privacy_level, is_active)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            user_id,
            name,
            feed_url,
            destination_calendar_id,
            destination_timezone,
            SyncMode(sync_mode).value,
            PrivacyLevel(privacy_level).value,
            is_active,
        ),
    )
    await db.commit()
    return cursor.lastrowid


async def store_access_token(
    user_id: int,
    access_token: str,
    email: Optional[str] = None,
    token_expiry: Optional[datetime] = None,
) -> None:
    """Insert or replace the destination access token for a user."""
    db = await get_database()
    now = datetime.utcnow().isoformat()
    expiry = token_expiry.isoformat() if token_expiry else None
    await db.execute(
        """INSERT INTO oauth_tokens (user_id, google_account_email, access_token, token_expiry, updated_at)
           VALUES (?, ?, ?, ?, ?)
           ON CONFLICT(user_id) DO UPDATE SET
           google_account_email = excluded.google_account_email,
           access_token = excluded.access_token,
           token_expiry = excluded.token_expiry,
           updated_at = excluded.updated_at""",
        (user_id, email, access_token, expiry, now),
    )
    await db.commit()


async def get_access_token(user_id: Optional[int]) -> str:
    """Destination access token for a user. Raises ReauthRequiredError when none is stored."""
    if user_id is None:
        raise ReauthRequiredError("No destination account linked to this sync")

    db = await get_database()
    cursor = await db.execute(
        "SELECT access_token FROM oauth_tokens WHERE user_id = ?", (user_id,)
    )
    row = await cursor.fetchone()
    if not row or not row["access_token"]:
        raise ReauthRequiredError(f"No destination token stored for user {user_id}")
    return row["access_token"]


async def record_sync_run(
    config_id: int,
    status: str,
    result: Optional[SyncResult] = None,
    error_kind: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Append a sync_log row and update the config's last-sync bookkeeping."""
    db = await get_database()
    now = datetime.utcnow().isoformat()
    result = result or SyncResult()

    details = result.as_dict()
    if error:
        details["error"] = error

    await db.execute(
        """INSERT INTO sync_log
           (sync_config_id, status, events_created, events_updated, events_deleted,
            error_kind, details, duration_ms, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            config_id,
            status,
            result.created,
            result.updated,
            result.deleted,
            error_kind,
            json.dumps(details),
            result.duration_ms,
            now,
        ),
    )

    last_error = error
    if last_error is None and result.errors:
        last_error = str(result.errors[0])

    await db.execute(
        """UPDATE sync_configs
           SET last_sync_at = ?, last_error = ?, updated_at = ?
           WHERE id = ?""",
        (now, last_error, now, config_id),
    )
    await db.commit()


async def get_recent_sync_runs(config_id: int, limit: int = 20) -> list[dict]:
    """Most recent sync_log rows for a config, newest first."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM sync_log WHERE sync_config_id = ?
           ORDER BY id DESC LIMIT ?""",
        (config_id, limit),
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]

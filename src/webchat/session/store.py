"""
Session Store — SQLite-backed per-channel session identifiers.

The webchat backend identifies a visitor by the ``from`` field of every
frame. That id must survive reconnects and restarts, so it is created once
per channel and persisted. Same aiosqlite pattern as the rest of the
client: one connection, opened on start(), closed on stop().

Usage:
    store = SessionStore(db_path=Path("webchat_sessions.db"))
    session_id = await store.get_session_id("channel-uuid")
    await store.stop()
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from pathlib import Path

import aiosqlite

import webchat.core.config as config_module

logger = logging.getLogger(__name__)

STORAGE_KEY_PREFIX = "weni_session_"


def storage_key(channel_id: str) -> str:
    return f"{STORAGE_KEY_PREFIX}{channel_id}"


class SessionStore:
    """
    Durable channel → session id mapping.

    Rows are only ever inserted, never updated: an existing id always wins.
    Storage failures degrade to a fresh, unpersisted id for this run.
    """

    def __init__(self, db_path: Path | str | None = None):
        if db_path is None:
            db_path = config_module.config.session_db_path
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Open the database and create the table."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS channel_sessions (
                storage_key TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                created_at REAL NOT NULL
            )
        """)
        await self._db.commit()
        logger.info("SessionStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def get_session_id(
        self, channel_id: str, explicit_id: str | None = None
    ) -> str:
        """Return the session id for a channel, creating it if absent.

        An explicit id is returned as-is and never written to storage.
        """
        if explicit_id:
            return explicit_id

        try:
            await self.start()
            stored = await self._read(channel_id)
            if stored:
                return stored
            return await self._create(channel_id)
        except (sqlite3.Error, OSError) as e:
            session_id = str(uuid.uuid4())
            logger.warning(
                "Session storage unavailable (%s); using unpersisted id",
                e,
                extra={"channel": channel_id, "session_id": session_id},
            )
            return session_id

    async def _read(self, channel_id: str) -> str | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT session_id FROM channel_sessions WHERE storage_key = ?",
            (storage_key(channel_id),),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def _create(self, channel_id: str) -> str:
        assert self._db is not None
        candidate = str(uuid.uuid4())
        await self._db.execute(
            "INSERT OR IGNORE INTO channel_sessions (storage_key, session_id, created_at) "
            "VALUES (?, ?, ?)",
            (storage_key(channel_id), candidate, time.time()),
        )
        await self._db.commit()

        # Re-read: another writer may have won the insert
        session_id = await self._read(channel_id) or candidate
        logger.info(
            "Created session for channel",
            extra={"channel": channel_id, "session_id": session_id},
        )
        return session_id

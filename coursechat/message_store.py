"""Message store gateway: append-only chat messages and user display names.

Backed by SQLite through ``aiosqlite``. Every operation opens its own short
connection, so the store can be shared by any number of concurrent sessions.
Failures surface as ``PersistenceError``; callers decide whether to drop the
operation.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from .schemas import ChatMessage, RoomKey

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A read or write against the message store failed."""


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class MessageStore:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            try:
                conn = await self._connect()
                try:
                    await conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS messages (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            course_id TEXT NOT NULL,
                            video_id TEXT,
                            sender_id TEXT NOT NULL,
                            content TEXT NOT NULL,
                            created_at TEXT NOT NULL
                        )
                        """
                    )
                    await conn.execute(
                        """
                        CREATE INDEX IF NOT EXISTS idx_messages_room
                        ON messages (course_id, video_id, created_at)
                        """
                    )
                    await conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS users (
                            id TEXT PRIMARY KEY,
                            full_name TEXT
                        )
                        """
                    )
                    await conn.commit()
                finally:
                    await conn.close()
            except (aiosqlite.Error, OSError) as e:
                raise PersistenceError(f"Could not initialize store at {self.db_path}") from e

            self._initialized = True
            logger.info("Message store ready at %s", self.db_path)

    async def append(
        self, *, course_id: str, video_id: str | None, sender_id: str, content: str
    ) -> ChatMessage:
        """Insert one message and return the stored row."""
        created_at = _utcnow_iso()
        try:
            conn = await self._connect()
            try:
                cursor = await conn.execute(
                    """
                    INSERT INTO messages (course_id, video_id, sender_id, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (course_id, video_id, sender_id, content, created_at),
                )
                await conn.commit()
                message_id = cursor.lastrowid
                await cursor.close()
            finally:
                await conn.close()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Could not store message for course {course_id}") from e

        return ChatMessage(
            id=message_id,
            course_id=course_id,
            video_id=video_id,
            sender_id=sender_id,
            content=content,
            created_at=created_at,
        )

    async def history(self, room_key: RoomKey, *, with_sender_names: bool = False) -> list[ChatMessage]:
        """All messages of one room, oldest first. An empty room gives ``[]``."""
        try:
            conn = await self._connect()
            try:
                cursor = await conn.execute(
                    """
                    SELECT m.id, m.course_id, m.video_id, m.sender_id, m.content,
                           m.created_at, u.full_name
                    FROM messages AS m
                    LEFT JOIN users AS u ON u.id = m.sender_id
                    WHERE m.course_id = ? AND m.video_id IS ?
                    ORDER BY m.created_at ASC, m.id ASC
                    """,
                    (room_key.course_id, room_key.video_id),
                )
                rows = await cursor.fetchall()
                await cursor.close()
            finally:
                await conn.close()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Could not read history for room {room_key}") from e

        return [self._row_to_message(row, with_sender_names) for row in rows]

    async def get_user_name(self, user_id: str) -> str | None:
        try:
            conn = await self._connect()
            try:
                cursor = await conn.execute(
                    "SELECT full_name FROM users WHERE id = ?", (user_id,)
                )
                row = await cursor.fetchone()
                await cursor.close()
            finally:
                await conn.close()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Could not look up user {user_id}") from e

        return row[0] if row else None

    async def save_user(self, user_id: str, full_name: str) -> None:
        """Insert or update a user's display name."""
        try:
            conn = await self._connect()
            try:
                await conn.execute(
                    """
                    INSERT INTO users (id, full_name) VALUES (?, ?)
                    ON CONFLICT(id) DO UPDATE SET full_name = excluded.full_name
                    """,
                    (user_id, full_name),
                )
                await conn.commit()
            finally:
                await conn.close()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Could not save user {user_id}") from e

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path.as_posix())
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA journal_mode = WAL;")
        except BaseException:
            await conn.close()
            raise
        return conn

    @staticmethod
    def _row_to_message(row: aiosqlite.Row, with_sender_names: bool) -> ChatMessage:
        return ChatMessage(
            id=row[0],
            course_id=row[1],
            video_id=row[2],
            sender_id=row[3],
            content=row[4],
            created_at=row[5],
            sender_name=row[6] if with_sender_names else None,
        )

"""SQLite persistence for servers, threads, keep-alive subscriptions and the runner cursor.

Every call opens its own ``aiosqlite`` connection, so repositories hold no
connection state and can be shared between the event loop tasks freely.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiosqlite

from models import CursorState, Subscription, ThreadRecord, ThreadRef

logger = logging.getLogger(__name__)

CURSOR_ID = "keepAliveCursor"

_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS servers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id TEXT NOT NULL UNIQUE,
    name TEXT,
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);

CREATE TABLE IF NOT EXISTS threads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id TEXT NOT NULL UNIQUE,
    server_id INTEGER NOT NULL REFERENCES servers(id),
    name TEXT,
    parent_id TEXT,
    locked INTEGER NOT NULL DEFAULT 0,
    archived INTEGER NOT NULL DEFAULT 0,
    auto_archive_duration INTEGER,
    archive_timestamp TEXT,
    message_count INTEGER,
    member_count INTEGER,
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);

CREATE TABLE IF NOT EXISTS keep_alive_subscriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id INTEGER NOT NULL REFERENCES threads(id),
    user_id TEXT NOT NULL,
    user_name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW}),
    UNIQUE (thread_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_keep_alive_active_order
    ON keep_alive_subscriptions (is_active, created_at, id);

CREATE TABLE IF NOT EXISTS keep_alive_cursor (
    id TEXT PRIMARY KEY,
    last_subscription_id INTEGER,
    exhausted INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);
"""

THREAD_COLUMNS = (
    "name",
    "parent_id",
    "locked",
    "archived",
    "auto_archive_duration",
    "archive_timestamp",
    "message_count",
    "member_count",
)

_SUBSCRIPTION_SELECT = """
    SELECT s.id, s.user_id, s.user_name, s.is_active, s.created_at, s.updated_at,
           t.thread_id AS discord_thread_id, t.name AS thread_name
    FROM keep_alive_subscriptions s
    JOIN threads t ON t.id = s.thread_id
"""


def _subscription_from_row(row: aiosqlite.Row) -> Subscription:
    return Subscription(
        id=row["id"],
        thread=ThreadRef(thread_id=row["discord_thread_id"], name=row["thread_name"]),
        user_id=row["user_id"],
        user_name=row["user_name"],
        active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _thread_from_row(row: aiosqlite.Row) -> ThreadRecord:
    return ThreadRecord(
        id=row["id"],
        thread_id=row["thread_id"],
        server_id=row["server_id"],
        name=row["name"],
        parent_id=row["parent_id"],
        locked=bool(row["locked"]),
        archived=bool(row["archived"]),
        auto_archive_duration=row["auto_archive_duration"],
        archive_timestamp=row["archive_timestamp"],
        message_count=row["message_count"],
        member_count=row["member_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class Database:
    """Owns the schema and hands out the repositories."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.servers = ServerRepository(db_path)
        self.threads = ThreadRepository(db_path)
        self.subscriptions = SubscriptionRepository(db_path)
        self.cursor = CursorRepository(db_path)

    async def init(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(SCHEMA)
            await db.commit()
        logger.info("Database ready at %s", self.db_path)

    async def ping(self) -> None:
        """Raises if the database cannot answer a trivial query."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT 1")
            await cursor.fetchone()


class ServerRepository:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def upsert(self, guild_id: str, name: Optional[str]) -> int:
        """Insert or rename a guild; returns its row id."""
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                f"""
                INSERT INTO servers (guild_id, name) VALUES (?, ?)
                ON CONFLICT (guild_id) DO UPDATE SET name = excluded.name, updated_at = {_NOW}
                """,
                (guild_id, name),
            )
            await db.commit()
            cursor = await db.execute("SELECT id FROM servers WHERE guild_id = ?", (guild_id,))
            row = await cursor.fetchone()
        return int(row[0])


class ThreadRepository:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @staticmethod
    async def _upsert(db: aiosqlite.Connection, server_id: int, thread_id: str, fields: Dict[str, Any]) -> None:
        values = [
            int(bool(fields.get(column))) if column in ("locked", "archived") else fields.get(column)
            for column in THREAD_COLUMNS
        ]
        assignments = ", ".join(f"{column} = excluded.{column}" for column in THREAD_COLUMNS)
        await db.execute(
            f"""
            INSERT INTO threads (thread_id, server_id, {", ".join(THREAD_COLUMNS)})
            VALUES (?, ?, {", ".join("?" for _ in THREAD_COLUMNS)})
            ON CONFLICT (thread_id) DO UPDATE SET {assignments}, updated_at = {_NOW}
            """,
            (thread_id, server_id, *values),
        )

    async def upsert(self, server_id: int, thread_id: str, **fields: Any) -> int:
        """Insert or refresh one thread; returns its row id."""
        async with aiosqlite.connect(self._db_path) as db:
            await self._upsert(db, server_id, thread_id, fields)
            await db.commit()
            cursor = await db.execute("SELECT id FROM threads WHERE thread_id = ?", (thread_id,))
            row = await cursor.fetchone()
        return int(row[0])

    async def upsert_many(self, server_id: int, threads: Iterable[Tuple[str, Dict[str, Any]]]) -> int:
        """Bulk variant used by the guild scan; one transaction for all rows."""
        count = 0
        async with aiosqlite.connect(self._db_path) as db:
            for thread_id, fields in threads:
                await self._upsert(db, server_id, thread_id, fields)
                count += 1
            await db.commit()
        return count

    async def get_by_thread_id(self, thread_id: str) -> Optional[ThreadRecord]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM threads WHERE thread_id = ?", (thread_id,))
            row = await cursor.fetchone()
        return _thread_from_row(row) if row else None

    async def list_for_guild(self, guild_id: str, *, archived_only: bool = False) -> List[ThreadRecord]:
        """Saved threads of a guild, newest first (archived: most recently archived first)."""
        where = "s.guild_id = ?"
        order = "t.created_at DESC, t.id DESC"
        if archived_only:
            where += " AND t.archived = 1"
            order = "t.archive_timestamp IS NULL, t.archive_timestamp DESC, t.id DESC"
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"""
                SELECT t.* FROM threads t
                JOIN servers s ON s.id = t.server_id
                WHERE {where}
                ORDER BY {order}
                """,
                (guild_id,),
            )
            rows = await cursor.fetchall()
        return [_thread_from_row(row) for row in rows]


class SubscriptionRepository:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def subscribe(self, thread_pk: int, user_id: str, user_name: Optional[str]) -> Tuple[int, bool]:
        """Activate keep-alive for (thread, user).

        Returns ``(subscription_id, already_active)``. A previously removed
        subscription is reactivated in place and keeps its original position.
        """
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT id, is_active FROM keep_alive_subscriptions WHERE thread_id = ? AND user_id = ?",
                (thread_pk, user_id),
            )
            row = await cursor.fetchone()
            if row is not None:
                subscription_id, already_active = int(row[0]), bool(row[1])
                await db.execute(
                    f"""
                    UPDATE keep_alive_subscriptions
                    SET is_active = 1, user_name = ?, updated_at = {_NOW}
                    WHERE id = ?
                    """,
                    (user_name, subscription_id),
                )
            else:
                cursor = await db.execute(
                    "INSERT INTO keep_alive_subscriptions (thread_id, user_id, user_name) VALUES (?, ?, ?)",
                    (thread_pk, user_id, user_name),
                )
                subscription_id, already_active = int(cursor.lastrowid), False
            await db.commit()
        logger.info("Keep-alive subscription %d active for user %s", subscription_id, user_id)
        return subscription_id, already_active

    async def deactivate(self, thread_pk: int, user_id: str) -> bool:
        """Logical delete; returns False when there was nothing active to remove."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"""
                UPDATE keep_alive_subscriptions
                SET is_active = 0, updated_at = {_NOW}
                WHERE thread_id = ? AND user_id = ? AND is_active = 1
                """,
                (thread_pk, user_id),
            )
            await db.commit()
            changed = cursor.rowcount > 0
        return changed

    async def list_active_after(self, cursor: Optional[int], limit: int) -> List[Subscription]:
        """Active subscriptions ordered by (created_at, id), strictly after ``cursor``.

        The cursor row may since have been deactivated; its (created_at, id)
        still marks the position. If it was deleted outright the id alone is
        used, ids being handed out in creation order.
        """
        params: List[Any] = []
        after = ""
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            if cursor is not None:
                found = await db.execute(
                    "SELECT created_at FROM keep_alive_subscriptions WHERE id = ?", (cursor,)
                )
                anchor = await found.fetchone()
                if anchor is not None:
                    after = "AND (s.created_at > ? OR (s.created_at = ? AND s.id > ?))"
                    params.extend([anchor["created_at"], anchor["created_at"], cursor])
                else:
                    after = "AND s.id > ?"
                    params.append(cursor)
            params.append(limit)
            rows = await db.execute_fetchall(
                f"""
                {_SUBSCRIPTION_SELECT}
                WHERE s.is_active = 1 {after}
                ORDER BY s.created_at ASC, s.id ASC
                LIMIT ?
                """,
                params,
            )
        return [_subscription_from_row(row) for row in rows]

    async def list_active_for_user(self, user_id: str, guild_id: str) -> List[Subscription]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            rows = await db.execute_fetchall(
                f"""
                {_SUBSCRIPTION_SELECT}
                JOIN servers sv ON sv.id = t.server_id
                WHERE s.is_active = 1 AND s.user_id = ? AND sv.guild_id = ?
                ORDER BY s.created_at DESC, s.id DESC
                """,
                (user_id, guild_id),
            )
        return [_subscription_from_row(row) for row in rows]

    async def count_active(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM keep_alive_subscriptions WHERE is_active = 1")
            row = await cursor.fetchone()
        return int(row[0])


class CursorRepository:
    """The runner's singleton progress record."""

    def __init__(self, db_path: str, key: str = CURSOR_ID) -> None:
        self._db_path = db_path
        self._key = key

    async def read_state(self) -> CursorState:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT last_subscription_id, exhausted FROM keep_alive_cursor WHERE id = ?", (self._key,)
            )
            row = await cursor.fetchone()
        if row is None:
            return CursorState()
        return CursorState(last_subscription_id=row[0], exhausted=bool(row[1]))

    async def read(self) -> Optional[int]:
        return (await self.read_state()).last_subscription_id

    async def write(self, subscription_id: int) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                f"""
                INSERT INTO keep_alive_cursor (id, last_subscription_id, exhausted) VALUES (?, ?, 0)
                ON CONFLICT (id) DO UPDATE SET
                    last_subscription_id = excluded.last_subscription_id,
                    exhausted = 0,
                    updated_at = {_NOW}
                """,
                (self._key, subscription_id),
            )
            await db.commit()

    async def mark_exhausted(self) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                f"""
                INSERT INTO keep_alive_cursor (id, last_subscription_id, exhausted) VALUES (?, NULL, 1)
                ON CONFLICT (id) DO UPDATE SET exhausted = 1, updated_at = {_NOW}
                """,
                (self._key,),
            )
            await db.commit()

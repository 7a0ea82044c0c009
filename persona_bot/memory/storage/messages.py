from __future__ import annotations

import aiosqlite

from ...models import ContextEntry
from .utils import _sqlite_connection


class MemoryMessagesMixin:
    async def append_message(
        self,
        guild_id: str,
        channel_id: str,
        author_id: str,
        author_name: str,
        content: str,
    ) -> int:
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO messages (guild_id, channel_id, author_id, author_name, content)
                VALUES (?, ?, ?, ?, ?)
                """,
                (guild_id, channel_id, author_id, author_name, content),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def load_recent_messages(self, guild_id: str, channel_id: str, limit: int) -> list[ContextEntry]:
        """Most recent ``limit`` messages of a channel, oldest first."""
        safe_limit = max(0, int(limit))
        if safe_limit == 0:
            return []
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT author_id, author_name, content
                FROM messages
                WHERE guild_id = ? AND channel_id = ?
                ORDER BY message_id DESC
                LIMIT ?
                """,
                (guild_id, channel_id, safe_limit),
            ) as cursor:
                rows = await cursor.fetchall()

        rows = list(reversed(rows))
        return [
            ContextEntry(
                author_id=str(row["author_id"]),
                author=str(row["author_name"]),
                content=str(row["content"]),
            )
            for row in rows
        ]

    async def prune_old_messages(self, max_age_days: int) -> int:
        if max_age_days <= 0:
            return 0
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM messages WHERE created_at < datetime('now', ?)",
                (f"-{int(max_age_days)} days",),
            )
            await db.commit()
            return int(cursor.rowcount or 0)

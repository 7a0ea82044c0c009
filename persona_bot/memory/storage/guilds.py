from __future__ import annotations

from .utils import _sqlite_connection


class MemoryGuildsMixin:
    async def save_guild(self, guild_id: str, guild_name: str) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO guilds (guild_id, guild_name, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(guild_id) DO UPDATE SET
                    guild_name = excluded.guild_name,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (guild_id, guild_name),
            )
            await db.commit()

    async def get_guild_name(self, guild_id: str) -> str | None:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute("SELECT guild_name FROM guilds WHERE guild_id = ?", (guild_id,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return str(row[0])

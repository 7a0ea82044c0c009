from __future__ import annotations

from typing import Any

import aiosqlite

from .utils import _sqlite_connection


class MemoryRepliesMixin:
    async def log_bot_reply(
        self,
        *,
        guild_id: str,
        channel_id: str,
        user_id: str,
        username: str,
        display_name: str,
        avatar_url: str | None,
        user_message: str,
        bot_reply: str,
        provider: str,
        model: str,
        processing_time_ms: int,
        prompt_tokens: int | None = None,
        response_tokens: int | None = None,
    ) -> int:
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO bot_replies (
                    guild_id, channel_id, user_id, username, display_name, avatar_url,
                    user_message, bot_reply, provider, model,
                    processing_time_ms, prompt_tokens, response_tokens
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    guild_id,
                    channel_id,
                    user_id,
                    username,
                    display_name,
                    avatar_url,
                    user_message,
                    bot_reply,
                    provider,
                    model,
                    max(0, int(processing_time_ms)),
                    prompt_tokens,
                    response_tokens,
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def get_latest_replies(self, limit: int = 10) -> list[dict[str, Any]]:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT reply_id, guild_id, channel_id, user_id, username, display_name,
                       user_message, bot_reply, provider, model,
                       processing_time_ms, prompt_tokens, response_tokens, created_at
                FROM bot_replies
                ORDER BY reply_id DESC
                LIMIT ?
                """,
                (max(1, int(limit)),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]

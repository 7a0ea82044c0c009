from __future__ import annotations

from typing import Mapping

import aiosqlite

from ...models import Relationship
from .utils import _sqlite_connection


class MemoryRelationshipsMixin:
    async def load_relationships(self, guild_id: str) -> dict[str, Relationship]:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, attitude, username, display_name, avatar_url, ignored
                FROM relationships
                WHERE guild_id = ?
                ORDER BY user_id
                """,
                (guild_id,),
            ) as cursor:
                rows = await cursor.fetchall()

            result: dict[str, Relationship] = {}
            for row in rows:
                result[str(row["user_id"])] = Relationship(
                    attitude=str(row["attitude"] or "neutral"),
                    username=str(row["username"] or ""),
                    display_name=str(row["display_name"] or ""),
                    avatar_url=row["avatar_url"],
                    ignored=bool(row["ignored"]),
                )

            async with db.execute(
                """
                SELECT user_id, behavior
                FROM relationship_behaviors
                WHERE guild_id = ?
                ORDER BY user_id, position
                """,
                (guild_id,),
            ) as cursor:
                for row in await cursor.fetchall():
                    entry = result.get(str(row["user_id"]))
                    if entry is not None:
                        entry.behavior.append(str(row["behavior"]))

            async with db.execute(
                """
                SELECT user_id, boundary
                FROM relationship_boundaries
                WHERE guild_id = ?
                ORDER BY user_id, position
                """,
                (guild_id,),
            ) as cursor:
                for row in await cursor.fetchall():
                    entry = result.get(str(row["user_id"]))
                    if entry is not None:
                        entry.boundaries.append(str(row["boundary"]))

        return result

    async def save_relationships(self, guild_id: str, relationships: Mapping[str, Relationship]) -> None:
        """Replace every stored relationship of a guild in one transaction."""
        async with _sqlite_connection(self.db_path) as db:
            try:
                await db.execute("DELETE FROM relationships WHERE guild_id = ?", (guild_id,))
                for user_id, rel in relationships.items():
                    await db.execute(
                        """
                        INSERT INTO relationships (
                            guild_id, user_id, attitude, username, display_name, avatar_url, ignored, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                        """,
                        (
                            guild_id,
                            str(user_id),
                            rel.attitude,
                            rel.username,
                            rel.display_name,
                            rel.avatar_url,
                            1 if rel.ignored else 0,
                        ),
                    )
                    await db.executemany(
                        """
                        INSERT INTO relationship_behaviors (guild_id, user_id, position, behavior)
                        VALUES (?, ?, ?, ?)
                        """,
                        [(guild_id, str(user_id), idx, text) for idx, text in enumerate(rel.behavior)],
                    )
                    await db.executemany(
                        """
                        INSERT INTO relationship_boundaries (guild_id, user_id, position, boundary)
                        VALUES (?, ?, ?, ?)
                        """,
                        [(guild_id, str(user_id), idx, text) for idx, text in enumerate(rel.boundaries)],
                    )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

from __future__ import annotations

from .storage.utils import _sqlite_connection
from .storage.guilds import MemoryGuildsMixin
from .storage.messages import MemoryMessagesMixin
from .storage.relationships import MemoryRelationshipsMixin
from .storage.replies import MemoryRepliesMixin
from .storage.schema import MemorySchemaMixin


class MemoryStore(
    MemorySchemaMixin,
    MemoryGuildsMixin,
    MemoryRelationshipsMixin,
    MemoryMessagesMixin,
    MemoryRepliesMixin,
):
    """Durable guild, relationship, message and reply-log storage."""

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("SELECT 1")

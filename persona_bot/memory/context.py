from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable, Protocol

from ..models import ContextEntry

logger = logging.getLogger("persona_bot.context")

ChannelKey = tuple[str, str]


class _MessageBackend(Protocol):
    async def append_message(
        self,
        guild_id: str,
        channel_id: str,
        author_id: str,
        author_name: str,
        content: str,
    ) -> int: ...

    async def load_recent_messages(self, guild_id: str, channel_id: str, limit: int) -> list[ContextEntry]: ...


class ContextStore:
    """Bounded per-channel message window with write-through persistence.

    Appends for one channel are serialized by that channel's lock so the
    transcript keeps arrival order; different channels never wait on each other.
    """

    def __init__(self, store: _MessageBackend, max_messages_for: Callable[[str], int]) -> None:
        self.store = store
        self.max_messages_for = max_messages_for
        self._windows: dict[ChannelKey, deque[ContextEntry]] = {}
        self._locks: dict[ChannelKey, asyncio.Lock] = {}

    def _lock(self, key: ChannelKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _max_messages(self, guild_id: str) -> int:
        return max(1, int(self.max_messages_for(guild_id)))

    def _window(self, key: ChannelKey) -> deque[ContextEntry]:
        limit = self._max_messages(key[0])
        window = self._windows.get(key)
        if window is None or window.maxlen != limit:
            # maxlen changes when the memory policy is edited at runtime
            window = deque(window or (), maxlen=limit)
            self._windows[key] = window
        return window

    async def _append_locked(self, key: ChannelKey, entry: ContextEntry) -> bool:
        """Push to the window and persist. Returns whether the durable write succeeded."""
        self._window(key).append(entry)
        try:
            await self.store.append_message(key[0], key[1], entry.author_id, entry.author, entry.content)
        except Exception as exc:
            logger.warning("Failed to persist message for guild %s channel %s: %s", key[0], key[1], exc)
            return False
        return True

    async def _read_locked(self, key: ChannelKey, limit: int) -> tuple[list[ContextEntry], bool]:
        """Last ``limit`` entries and whether they came from the durable store."""
        try:
            return await self.store.load_recent_messages(key[0], key[1], limit), True
        except Exception as exc:
            logger.warning(
                "Failed to read history for guild %s channel %s, using in-memory window: %s",
                key[0],
                key[1],
                exc,
            )
            return list(self._windows.get(key, ()))[-limit:], False

    async def _durable_locked(self, key: ChannelKey, limit: int) -> list[ContextEntry]:
        history, _ = await self._read_locked(key, limit)
        return history

    async def append(self, guild_id: str, channel_id: str, author_id: str, author_name: str, content: str) -> None:
        key = (guild_id, channel_id)
        async with self._lock(key):
            await self._append_locked(key, ContextEntry(author_id=author_id, author=author_name, content=content))

    def get(self, guild_id: str, channel_id: str) -> list[ContextEntry]:
        return list(self._windows.get((guild_id, channel_id), ()))

    async def get_durable(self, guild_id: str, channel_id: str, limit: int | None = None) -> list[ContextEntry]:
        key = (guild_id, channel_id)
        safe_limit = self._max_messages(guild_id) if limit is None else max(0, int(limit))
        if safe_limit == 0:
            return []
        async with self._lock(key):
            return await self._durable_locked(key, safe_limit)

    async def append_and_snapshot(
        self,
        guild_id: str,
        channel_id: str,
        author_id: str,
        author_name: str,
        content: str,
    ) -> list[ContextEntry]:
        """Append the triggering message and return the window that precedes it."""
        key = (guild_id, channel_id)
        entry = ContextEntry(author_id=author_id, author=author_name, content=content)
        async with self._lock(key):
            persisted = await self._append_locked(key, entry)
            history, from_store = await self._read_locked(key, self._max_messages(guild_id))

        if not from_store:
            # the in-memory window always ends with the entry just appended
            return history[:-1]
        if persisted and history and history[-1] == entry:
            return history[:-1]
        return history

    async def load_guild(self, guild_id: str, channel_ids: list[str]) -> None:
        """Warm the in-memory windows of a guild from durable history."""
        limit = self._max_messages(guild_id)
        for channel_id in channel_ids:
            key = (guild_id, channel_id)
            async with self._lock(key):
                history = await self._durable_locked(key, limit)
                window = self._window(key)
                window.clear()
                window.extend(history)

    def forget_guild(self, guild_id: str) -> None:
        for key in [key for key in self._windows if key[0] == guild_id]:
            self._windows.pop(key, None)
        for key in [key for key in self._locks if key[0] == guild_id]:
            if not self._locks[key].locked():
                self._locks.pop(key, None)

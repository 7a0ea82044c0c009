from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Mapping, Protocol

from ..models import MemberInfo, Relationship

logger = logging.getLogger("persona_bot.relationships")


class _RelationshipBackend(Protocol):
    async def load_relationships(self, guild_id: str) -> dict[str, Relationship]: ...

    async def save_relationships(self, guild_id: str, relationships: Mapping[str, Relationship]) -> None: ...


class RelationshipStore:
    """Process-wide per-guild relationship cache backed by the durable store.

    Every guild-scoped mutation runs under that guild's lock, so a roster
    reconciliation cannot interleave with a single-user edit. A guild whose
    last write failed is marked dirty: its cache is then authoritative and is
    never replaced by a reload until a later write succeeds.
    """

    def __init__(self, store: _RelationshipBackend, default_factory: Callable[[str], Relationship]) -> None:
        self.store = store
        self.default_factory = default_factory
        self._guilds: dict[str, dict[str, Relationship]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._dirty: set[str] = set()

    def _lock(self, guild_id: str) -> asyncio.Lock:
        lock = self._locks.get(guild_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[guild_id] = lock
        return lock

    def _default(self, guild_id: str) -> Relationship:
        return self.default_factory(guild_id).copy()

    def is_loaded(self, guild_id: str) -> bool:
        return guild_id in self._guilds

    def is_dirty(self, guild_id: str) -> bool:
        return guild_id in self._dirty

    def get(self, guild_id: str, user_id: str) -> Relationship:
        cached = self._guilds.get(guild_id, {}).get(user_id)
        if cached is None:
            return self._default(guild_id)
        return cached.copy()

    def guild_snapshot(self, guild_id: str) -> dict[str, Relationship]:
        return {user_id: rel.copy() for user_id, rel in self._guilds.get(guild_id, {}).items()}

    async def _load_locked(self, guild_id: str) -> dict[str, Relationship]:
        if guild_id in self._dirty:
            return self._guilds.setdefault(guild_id, {})
        try:
            loaded = await self.store.load_relationships(guild_id)
        except Exception as exc:
            logger.warning("Failed to load relationships for guild %s: %s", guild_id, exc)
            return self._guilds.setdefault(guild_id, {})
        self._guilds[guild_id] = dict(loaded)
        return self._guilds[guild_id]

    async def _ensure_loaded_locked(self, guild_id: str) -> dict[str, Relationship]:
        cached = self._guilds.get(guild_id)
        if cached is not None:
            return cached
        return await self._load_locked(guild_id)

    async def _persist_locked(self, guild_id: str) -> bool:
        snapshot = {user_id: rel.copy() for user_id, rel in self._guilds.get(guild_id, {}).items()}
        try:
            await self.store.save_relationships(guild_id, snapshot)
        except Exception as exc:
            self._dirty.add(guild_id)
            logger.warning(
                "Failed to persist relationships for guild %s (%s entries kept in memory): %s",
                guild_id,
                len(snapshot),
                exc,
            )
            return False
        self._dirty.discard(guild_id)
        return True

    @staticmethod
    def _patch_identity(existing: Relationship, member: MemberInfo) -> bool:
        changed = False
        username = member.username or member.user_id
        display_name = member.display_name or username
        if existing.username != username:
            existing.username = username
            changed = True
        if existing.display_name != display_name:
            existing.display_name = display_name
            changed = True
        if member.avatar_url and existing.avatar_url != member.avatar_url:
            existing.avatar_url = member.avatar_url
            changed = True
        return changed

    def _new_entry(self, guild_id: str, member: MemberInfo) -> Relationship:
        entry = self._default(guild_id)
        entry.ignored = False
        self._patch_identity(entry, member)
        return entry

    async def load_guild(self, guild_id: str) -> dict[str, Relationship]:
        async with self._lock(guild_id):
            await self._load_locked(guild_id)
            return self.guild_snapshot(guild_id)

    def forget_guild(self, guild_id: str) -> None:
        self._guilds.pop(guild_id, None)
        self._dirty.discard(guild_id)
        lock = self._locks.get(guild_id)
        if lock is not None and not lock.locked():
            self._locks.pop(guild_id, None)

    async def set(self, guild_id: str, user_id: str, relationship: Relationship) -> bool:
        async with self._lock(guild_id):
            cache = await self._ensure_loaded_locked(guild_id)
            cache[user_id] = relationship.copy()
            return await self._persist_locked(guild_id)

    async def observe(self, guild_id: str, member: MemberInfo) -> Relationship:
        """Register a member on first sighting or patch identity drift."""
        if member.is_bot:
            return self.get(guild_id, member.user_id)
        async with self._lock(guild_id):
            cache = await self._ensure_loaded_locked(guild_id)
            existing = cache.get(member.user_id)
            if existing is None:
                existing = self._new_entry(guild_id, member)
                cache[member.user_id] = existing
                changed = True
                logger.info("New relationship for user %s in guild %s", member.user_id, guild_id)
            else:
                changed = self._patch_identity(existing, member)
            if changed or guild_id in self._dirty:
                await self._persist_locked(guild_id)
            return existing.copy()

    async def reconcile(self, guild_id: str, members: Iterable[MemberInfo]) -> bool:
        """Align the guild cache with the live roster and persist once if anything changed."""
        async with self._lock(guild_id):
            cache = await self._load_locked(guild_id)
            stale = set(cache)
            added = patched = 0

            for member in members:
                if member.is_bot:
                    continue
                stale.discard(member.user_id)
                existing = cache.get(member.user_id)
                if existing is None:
                    cache[member.user_id] = self._new_entry(guild_id, member)
                    added += 1
                elif self._patch_identity(existing, member):
                    patched += 1

            for user_id in stale:
                cache.pop(user_id, None)

            changed = bool(added or patched or stale)
            if changed:
                logger.info(
                    "Reconciled guild %s relationships: added=%s patched=%s removed=%s",
                    guild_id,
                    added,
                    patched,
                    len(stale),
                )
            if changed or guild_id in self._dirty:
                await self._persist_locked(guild_id)
            return changed

    async def flush_pending(self) -> int:
        """Retry persistence for every dirty guild. Returns how many were saved."""
        flushed = 0
        for guild_id in sorted(self._dirty):
            async with self._lock(guild_id):
                if guild_id in self._dirty and await self._persist_locked(guild_id):
                    flushed += 1
        return flushed

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

import aiohttp
import discord

logger = logging.getLogger("persona_bot")

_IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif", ".webp")


def is_image_url(url: str) -> bool:
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return False
    return parts.path.lower().endswith(_IMAGE_SUFFIXES)


def _strip_query(url: str | None) -> str:
    return (url or "").split("?", 1)[0]


class ProfileMixin:
    async def _download_avatar(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=20)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.read()

    async def _sync_username(self, user: discord.ClientUser, username: str) -> bool:
        if not username or username == user.name:
            return False
        current = user.name
        try:
            await user.edit(username=username)
        except discord.HTTPException as exc:
            logger.warning("Cannot update username to %r (current %r): %s", username, current, exc)
            return False
        logger.info("Discord username changed from %r to %r", current, username)
        return True

    async def _sync_avatar(self, user: discord.ClientUser, avatar_url: str) -> bool:
        if not avatar_url:
            return False
        if not is_image_url(avatar_url):
            logger.warning("Invalid avatar URL in bot config: %s", avatar_url)
            return False
        current = user.avatar.url if user.avatar is not None else None
        if _strip_query(current) == _strip_query(avatar_url):
            return False
        # an uploaded avatar is served from the CDN under a URL that never matches the configured one
        if getattr(self, "_applied_avatar_url", None) == avatar_url:
            return False
        try:
            image = await self._download_avatar(avatar_url)
            await user.edit(avatar=image)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Failed to download avatar %s: %s", avatar_url, exc)
            return False
        except discord.HTTPException as exc:
            logger.warning("Cannot update avatar: %s", exc)
            return False
        self._applied_avatar_url = avatar_url
        logger.info("Discord avatar updated from %s", avatar_url[:100])
        return True

    async def sync_profile(self) -> list[str]:
        """Apply the configured username and avatar when they differ from the live account."""
        user = self.user
        if user is None:
            return []
        profile = self.bot_config.get_bot_profile()
        updated: list[str] = []
        if await self._sync_username(user, profile.username):
            updated.append("username")
        if await self._sync_avatar(user, profile.avatar_url):
            updated.append("avatar")
        if not updated:
            logger.info("Discord profile already matches config")
        return updated

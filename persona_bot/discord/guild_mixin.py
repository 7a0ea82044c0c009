from __future__ import annotations

import logging

import discord

from ..models import MemberInfo

logger = logging.getLogger("persona_bot")


def member_info(member: discord.abc.User) -> MemberInfo:
    avatar = getattr(member, "display_avatar", None)
    return MemberInfo(
        user_id=str(member.id),
        username=member.name,
        display_name=getattr(member, "display_name", "") or member.name,
        avatar_url=str(avatar.url) if avatar is not None else None,
        is_bot=bool(member.bot),
    )


class GuildMixin:
    async def _fetch_roster(self, guild: discord.Guild) -> list[MemberInfo]:
        try:
            members = [member async for member in guild.fetch_members(limit=None)]
        except (discord.HTTPException, discord.ClientException) as exc:
            logger.warning(
                "Member fetch failed for guild %s (%s); using %s cached members",
                guild.id,
                exc,
                len(guild.members),
            )
            members = list(guild.members)
        return [member_info(member) for member in members]

    async def refresh_guild(self, guild: discord.Guild) -> bool:
        """Re-sync one guild: name, relationship roster and channel windows."""
        guild_id = str(guild.id)
        try:
            await self.memory.save_guild(guild_id, guild.name)
        except Exception as exc:
            logger.warning("Failed to save guild %s: %s", guild_id, exc)

        roster = await self._fetch_roster(guild)
        changed = await self.relationships.reconcile(guild_id, roster)
        await self.contexts.load_guild(guild_id, [str(channel.id) for channel in guild.text_channels])
        return changed

    async def on_ready(self) -> None:
        if self.user:
            self.pipeline.bot_user_id = str(self.user.id)
            logger.info("Connected as %s (%s)", self.user, self.user.id)
            try:
                await self.sync_profile()
            except Exception as exc:
                logger.exception("Profile sync failed: %s", exc)

        for guild in list(self.guilds):
            try:
                await self.refresh_guild(guild)
            except Exception as exc:
                logger.exception("Failed to initialize guild %s: %s", guild.id, exc)
        logger.info("Ready in %s guild(s)", len(self.guilds))

    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info("Joined guild %s (%s)", guild.name, guild.id)
        try:
            await self.refresh_guild(guild)
        except Exception as exc:
            logger.exception("Failed to initialize guild %s: %s", guild.id, exc)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        guild_id = str(guild.id)
        self.relationships.forget_guild(guild_id)
        self.contexts.forget_guild(guild_id)
        logger.info("Left guild %s (%s); caches dropped", guild.name, guild_id)

    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self.relationships.observe(str(member.guild.id), member_info(member))

    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if after.bot:
            return
        if before.display_name == after.display_name and before.display_avatar == after.display_avatar:
            return
        await self.relationships.observe(str(after.guild.id), member_info(after))

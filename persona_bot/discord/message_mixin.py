from __future__ import annotations

import logging

import discord

from ..models import InboundMessage

logger = logging.getLogger("persona_bot")


class DiscordReplyTransport:
    def __init__(self, message: discord.Message) -> None:
        self.message = message

    async def send_typing(self) -> None:
        await self.message.channel.typing()

    async def reply(self, text: str) -> None:
        await self.message.reply(text, mention_author=False)


class MessageMixin:
    def _mentions_bot(self, message: discord.Message) -> bool:
        if self.user is None:
            return False
        return any(user.id == self.user.id for user in message.mentions)

    def _to_inbound(self, message: discord.Message) -> InboundMessage:
        author = message.author
        avatar = getattr(author, "display_avatar", None)
        return InboundMessage(
            message_id=str(message.id),
            guild_id=str(message.guild.id) if message.guild else None,
            guild_name=message.guild.name if message.guild else "",
            channel_id=str(message.channel.id),
            channel_name=str(getattr(message.channel, "name", "") or ""),
            author_id=str(author.id),
            author_name=author.name,
            content=message.content or "",
            mentions_bot=self._mentions_bot(message),
            author_display_name=getattr(author, "display_name", "") or author.name,
            author_avatar_url=str(avatar.url) if avatar is not None else None,
            author_is_bot=bool(author.bot),
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        if not (message.content or "").strip():
            return

        outcome = await self.pipeline.handle(self._to_inbound(message), DiscordReplyTransport(message))
        if outcome.error is not None:
            logger.debug("Message %s ended with error state %s", message.id, outcome.state.value)

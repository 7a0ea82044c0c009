from __future__ import annotations

import asyncio
import logging

import discord

from ..bot_config import BotConfigProvider
from ..config import Settings
from ..memory.context import ContextStore
from ..memory.relationships import RelationshipStore
from ..memory.store import MemoryStore
from ..pipeline import ReplyPipeline
from ..services.errors import ProviderConfigError
from ..services.llm import LLMRouter
from .guild_mixin import GuildMixin
from .message_mixin import MessageMixin
from .profile_mixin import ProfileMixin

logger = logging.getLogger("persona_bot")


class PersonaDiscordBot(
    MessageMixin,
    GuildMixin,
    ProfileMixin,
    discord.Client,
):
    def __init__(
        self,
        settings: Settings,
        config: BotConfigProvider,
        memory: MemoryStore,
        llm: LLMRouter,
        relationships: RelationshipStore,
        contexts: ContextStore,
        pipeline: ReplyPipeline,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = settings.discord_message_content_intent
        intents.members = settings.discord_members_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.bot_config = config
        self.memory = memory
        self.llm = llm
        self.relationships = relationships
        self.contexts = contexts
        self.pipeline = pipeline

    async def setup_hook(self) -> None:
        await self.memory.init()
        await self.llm.start()
        try:
            self.llm.validate()
        except ProviderConfigError as exc:
            logger.error("LLM provider configuration is invalid: %s", exc)

        if self.settings.message_retention_days > 0:
            try:
                pruned = await self.memory.prune_old_messages(self.settings.message_retention_days)
                if pruned:
                    logger.info("Pruned %s messages older than %s days", pruned, self.settings.message_retention_days)
            except Exception as exc:
                logger.warning("Message retention prune failed: %s", exc)

    async def close(self) -> None:
        await self._run_shutdown_step("relationships.flush_pending", self.relationships.flush_pending(), timeout=6.0)
        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

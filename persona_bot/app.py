from __future__ import annotations

import asyncio
import contextlib
import logging

from .bot_config import BotConfigProvider
from .config import Settings
from .discord.client import PersonaDiscordBot
from .memory.context import ContextStore
from .memory.relationships import RelationshipStore
from .memory.store import MemoryStore
from .pipeline import ReplyPipeline
from .services.gemini_client import GeminiClient
from .services.llm import LLMRouter
from .services.ollama_client import OllamaClient

logger = logging.getLogger("persona_bot")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_bot(settings: Settings) -> PersonaDiscordBot:
    config = BotConfigProvider(settings.bot_config_path)
    memory = MemoryStore(settings.sqlite_path)
    llm = LLMRouter(
        config,
        {
            "gemini": GeminiClient(
                api_key=settings.gemini_api_key,
                timeout_seconds=settings.gemini_timeout_seconds,
                temperature=settings.gemini_temperature,
                base_url=settings.gemini_base_url,
            ),
            "ollama": OllamaClient(
                base_url=settings.ollama_base_url,
                timeout_seconds=settings.ollama_timeout_seconds,
                temperature=settings.ollama_temperature,
            ),
        },
    )
    relationships = RelationshipStore(memory, config.default_relationship)
    contexts = ContextStore(memory, lambda guild_id: config.get_memory_policy(guild_id).max_messages)
    pipeline = ReplyPipeline(
        config=config,
        relationships=relationships,
        contexts=contexts,
        store=memory,
        llm=llm,
        max_reply_chars=settings.max_reply_chars,
        failure_reply_text=settings.failure_reply_text,
    )
    return PersonaDiscordBot(
        settings=settings,
        config=config,
        memory=memory,
        llm=llm,
        relationships=relationships,
        contexts=contexts,
        pipeline=pipeline,
    )


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    settings.validate()
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Protocol

from .bot_config import BotConfigProvider
from .common import preview, truncate_reply
from .core import build_prompt, calculate_delay_ms, decide, strip_mentions
from .memory.context import ContextStore
from .memory.relationships import RelationshipStore
from .models import GenerationResult, InboundMessage, MemberInfo, ReplyDecision

logger = logging.getLogger("persona_bot")


class PipelineState(str, Enum):
    IDLE = "idle"
    CONTEXT_UPDATED = "context_updated"
    DECIDED = "decided"
    DELAYING = "delaying"
    GENERATING = "generating"
    REPLYING = "replying"
    RECORDED = "recorded"


@dataclass(slots=True)
class PipelineOutcome:
    state: PipelineState = PipelineState.IDLE
    trail: list[PipelineState] = field(default_factory=list)
    decision: ReplyDecision | None = None
    reply_text: str | None = None
    truncated: bool = False
    error: Exception | None = None

    @property
    def replied(self) -> bool:
        return self.reply_text is not None

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.trail.append(state)


class ReplyTransport(Protocol):
    async def send_typing(self) -> None: ...

    async def reply(self, text: str) -> None: ...


class _ReplyGenerator(Protocol):
    async def generate_reply(self, prompt: str) -> GenerationResult: ...


class _ReplyLog(Protocol):
    async def log_bot_reply(self, **kwargs: object) -> int: ...


class ReplyPipeline:
    """Turns one inbound guild message into at most one reply.

    Every failure is contained here: a message that errors out is logged and
    the pipeline returns to idle, so the gateway keeps delivering events.
    """

    def __init__(
        self,
        *,
        config: BotConfigProvider,
        relationships: RelationshipStore,
        contexts: ContextStore,
        store: _ReplyLog,
        llm: _ReplyGenerator,
        bot_user_id: str | None = None,
        max_reply_chars: int = 2000,
        failure_reply_text: str = "",
        sleep: Callable[[float], Awaitable[object]] | None = None,
        rng: Callable[[], float] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config
        self.relationships = relationships
        self.contexts = contexts
        self.store = store
        self.llm = llm
        self.bot_user_id = bot_user_id
        self.max_reply_chars = max_reply_chars
        self.failure_reply_text = failure_reply_text.strip()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.random
        self._clock = clock or time.monotonic

    async def handle(self, message: InboundMessage, transport: ReplyTransport) -> PipelineOutcome:
        outcome = PipelineOutcome()
        if message.author_is_bot or not message.guild_id:
            return outcome

        started = self._clock()
        try:
            await self._run(message, transport, outcome, started)
        except Exception as exc:
            logger.exception(
                "Reply pipeline failed for guild=%s channel=%s user=%s: %s",
                message.guild_id,
                message.channel_id,
                message.author_id,
                exc,
            )
            outcome.error = exc
            outcome.state = PipelineState.IDLE
            if outcome.decision is not None and outcome.decision.result and not outcome.replied:
                await self._send_failure_reply(message, transport)
        return outcome

    async def _send_failure_reply(self, message: InboundMessage, transport: ReplyTransport) -> None:
        if not self.failure_reply_text:
            return
        try:
            await transport.reply(self.failure_reply_text)
        except Exception as exc:
            logger.warning("Failed to send failure reply in channel %s: %s", message.channel_id, exc)

    def _log_decision(self, message: InboundMessage, decision: ReplyDecision) -> None:
        level = logging.INFO if self.config.log_decisions() else logging.DEBUG
        if not logger.isEnabledFor(level):
            return
        trail = ", ".join(
            f"{check.name}={'skip' if check.passed is None else check.passed}" for check in decision.checks
        )
        logger.log(
            level,
            "Reply decision guild=%s channel=%s user=%s result=%s reason=%s checks=[%s] text=%r",
            message.guild_id,
            message.channel_id,
            message.author_id,
            decision.result,
            decision.reason,
            trail,
            preview(message.content),
        )

    async def _run(
        self,
        message: InboundMessage,
        transport: ReplyTransport,
        outcome: PipelineOutcome,
        started: float,
    ) -> None:
        guild_id = str(message.guild_id)
        author_label = message.author_display_name or message.author_name

        relationship = await self.relationships.observe(
            guild_id,
            MemberInfo(
                user_id=message.author_id,
                username=message.author_name,
                display_name=message.author_display_name,
                avatar_url=message.author_avatar_url,
            ),
        )
        context = await self.contexts.append_and_snapshot(
            guild_id,
            message.channel_id,
            message.author_id,
            author_label,
            message.content,
        )
        outcome.advance(PipelineState.CONTEXT_UPDATED)

        policy = self.config.get_reply_policy(guild_id)
        persona = self.config.get_persona(guild_id)
        decision = decide(
            message,
            message.mentions_bot,
            policy,
            relationship,
            context,
            bot_name=persona.name,
            rng=self._rng,
        )
        outcome.decision = decision
        outcome.advance(PipelineState.DECIDED)
        self._log_decision(message, decision)
        if not decision.result:
            outcome.state = PipelineState.IDLE
            return

        prompt = build_prompt(
            persona,
            relationship,
            context,
            self.relationships.guild_snapshot(guild_id),
            message.guild_name,
            strip_mentions(message.content),
            author_label,
        )

        outcome.advance(PipelineState.DELAYING)
        await transport.send_typing()
        delay_ms = calculate_delay_ms(policy, self._rng)
        logger.debug("Delaying reply in channel %s by %sms", message.channel_id, delay_ms)
        await self._sleep(delay_ms / 1000)

        outcome.advance(PipelineState.GENERATING)
        result = await self.llm.generate_reply(prompt)
        text = (result.text or "").strip()
        if not text:
            logger.warning(
                "Empty reply from %s (%s) for guild=%s channel=%s; staying silent",
                result.provider,
                result.model,
                guild_id,
                message.channel_id,
            )
            outcome.state = PipelineState.IDLE
            return

        original_length = len(text)
        text, truncated = truncate_reply(text, self.max_reply_chars)
        if truncated:
            logger.warning(
                "Reply truncated from %s to %s characters for guild=%s channel=%s",
                original_length,
                len(text),
                guild_id,
                message.channel_id,
            )
        outcome.truncated = truncated

        outcome.advance(PipelineState.REPLYING)
        await transport.reply(text)
        outcome.reply_text = text

        await self.contexts.append(guild_id, message.channel_id, self.bot_user_id or "bot", persona.name, text)

        processing_ms = int((self._clock() - started) * 1000)
        try:
            await self.store.log_bot_reply(
                guild_id=guild_id,
                channel_id=message.channel_id,
                user_id=message.author_id,
                username=message.author_name,
                display_name=author_label,
                avatar_url=message.author_avatar_url,
                user_message=message.content,
                bot_reply=text,
                provider=result.provider,
                model=result.model,
                processing_time_ms=processing_ms,
                prompt_tokens=result.usage.prompt_tokens,
                response_tokens=result.usage.completion_tokens,
            )
        except Exception as exc:
            logger.warning("Failed to record bot reply for guild=%s channel=%s: %s", guild_id, message.channel_id, exc)

        outcome.advance(PipelineState.RECORDED)
        logger.info(
            "Replied in guild=%s channel=%s to user=%s via %s (%sms): %s",
            guild_id,
            message.channel_id,
            message.author_id,
            result.provider,
            processing_ms,
            preview(text),
        )

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.bot_config import BotConfigProvider  # noqa: E402
from persona_bot.memory.context import ContextStore  # noqa: E402
from persona_bot.memory.relationships import RelationshipStore  # noqa: E402
from persona_bot.memory.store import MemoryStore  # noqa: E402
from persona_bot.models import GenerationResult, InboundMessage, Usage  # noqa: E402
from persona_bot.pipeline import PipelineState, ReplyPipeline  # noqa: E402
from persona_bot.services.errors import ProviderError  # noqa: E402


class _FakeTransport:
    def __init__(self, *, fail_reply: bool = False) -> None:
        self.typing_calls = 0
        self.replies: list[str] = []
        self.fail_reply = fail_reply

    async def send_typing(self) -> None:
        self.typing_calls += 1

    async def reply(self, text: str) -> None:
        if self.fail_reply:
            raise RuntimeError("missing permissions")
        self.replies.append(text)


class _FakeLLM:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.prompts: list[str] = []

    async def generate_reply(self, prompt: str) -> GenerationResult:
        self.prompts.append(prompt)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _Sleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _message(content: str = "<@999> hey nova", *, mentioned: bool = True, **overrides: object) -> InboundMessage:
    payload: dict[str, object] = {
        "message_id": "m1",
        "guild_id": "g1",
        "guild_name": "Guild",
        "channel_id": "c1",
        "channel_name": "general",
        "author_id": "u1",
        "author_name": "alice",
        "author_display_name": "Alice",
        "content": content,
        "mentions_bot": mentioned,
    }
    payload.update(overrides)
    return InboundMessage(**payload)  # type: ignore[arg-type]


def _pipeline(tmp_path: Path, llm: _FakeLLM, **kwargs: Any) -> tuple[ReplyPipeline, MemoryStore, _Sleep]:
    store = MemoryStore(tmp_path / "bot.db")
    asyncio.run(store.init())
    config = BotConfigProvider(None, overrides=kwargs.pop("config", None))
    sleep = _Sleep()
    pipeline = ReplyPipeline(
        config=config,
        relationships=RelationshipStore(store, config.default_relationship),
        contexts=ContextStore(store, lambda guild_id: config.get_memory_policy(guild_id).max_messages),
        store=store,
        llm=llm,
        bot_user_id="999",
        sleep=sleep,
        rng=lambda: 0.5,
        **kwargs,
    )
    return pipeline, store, sleep


def test_approved_message_replies_and_records(tmp_path: Path) -> None:
    llm = _FakeLLM(GenerationResult(text="hi Alice!", usage=Usage(20, 4), provider="gemini", model="flash"))
    pipeline, store, sleep = _pipeline(tmp_path, llm)
    transport = _FakeTransport()

    outcome = asyncio.run(pipeline.handle(_message(), transport))

    assert outcome.state is PipelineState.RECORDED
    assert outcome.trail == [
        PipelineState.CONTEXT_UPDATED,
        PipelineState.DECIDED,
        PipelineState.DELAYING,
        PipelineState.GENERATING,
        PipelineState.REPLYING,
        PipelineState.RECORDED,
    ]
    assert transport.typing_calls == 1
    assert transport.replies == ["hi Alice!"]
    assert sleep.delays == [1.75]
    assert "Alice: hey nova" in llm.prompts[0]
    assert "<@999>" not in llm.prompts[0].split("Message you are replying to:")[1]

    history = pipeline.contexts.get("g1", "c1")
    assert [(entry.author_id, entry.content) for entry in history] == [
        ("u1", "<@999> hey nova"),
        ("999", "hi Alice!"),
    ]
    latest = asyncio.run(store.get_latest_replies(1))
    assert latest[0]["prompt_tokens"] == 20
    assert latest[0]["provider"] == "gemini"


def test_rejected_message_stays_silent(tmp_path: Path) -> None:
    llm = _FakeLLM(GenerationResult(text="unused"))
    pipeline, _, sleep = _pipeline(tmp_path, llm)
    transport = _FakeTransport()

    outcome = asyncio.run(pipeline.handle(_message("just chatting", mentioned=False), transport))

    assert outcome.state is PipelineState.IDLE
    assert outcome.decision is not None and outcome.decision.result is False
    assert transport.replies == []
    assert transport.typing_calls == 0
    assert llm.prompts == []
    assert sleep.delays == []
    assert [entry.content for entry in pipeline.contexts.get("g1", "c1")] == ["just chatting"]


def test_long_reply_is_truncated_with_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    llm = _FakeLLM(GenerationResult(text="a" * 2050, provider="gemini", model="flash"))
    pipeline, _, _ = _pipeline(tmp_path, llm)
    transport = _FakeTransport()

    with caplog.at_level(logging.WARNING, logger="persona_bot"):
        outcome = asyncio.run(pipeline.handle(_message(), transport))

    assert outcome.truncated is True
    assert len(transport.replies[0]) == 2000
    assert transport.replies[0].endswith("...")
    assert "Reply truncated from 2050 to 2000" in caplog.text


def test_provider_failure_is_contained(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    llm = _FakeLLM(ProviderError("gemini API error 503", provider="gemini", status=503, retryable=True))
    pipeline, _, _ = _pipeline(tmp_path, llm)
    transport = _FakeTransport()

    with caplog.at_level(logging.ERROR, logger="persona_bot"):
        outcome = asyncio.run(pipeline.handle(_message(), transport))

    assert outcome.state is PipelineState.IDLE
    assert isinstance(outcome.error, ProviderError)
    assert transport.replies == []
    assert "guild=g1 channel=c1 user=u1" in caplog.text


def test_failure_reply_text_is_sent_when_configured(tmp_path: Path) -> None:
    llm = _FakeLLM(ProviderError("down", provider="gemini", status=500, retryable=True))
    pipeline, _, _ = _pipeline(tmp_path, llm, failure_reply_text="brb, brain lag")
    transport = _FakeTransport()

    asyncio.run(pipeline.handle(_message(), transport))

    assert transport.replies == ["brb, brain lag"]


def test_transport_failure_does_not_escape(tmp_path: Path) -> None:
    llm = _FakeLLM(GenerationResult(text="hello"))
    pipeline, _, _ = _pipeline(tmp_path, llm)

    outcome = asyncio.run(pipeline.handle(_message(), _FakeTransport(fail_reply=True)))

    assert outcome.state is PipelineState.IDLE
    assert isinstance(outcome.error, RuntimeError)


def test_empty_generation_stays_silent(tmp_path: Path) -> None:
    pipeline, _, _ = _pipeline(tmp_path, _FakeLLM(GenerationResult(text=None, provider="gemini")))
    transport = _FakeTransport()

    outcome = asyncio.run(pipeline.handle(_message(), transport))

    assert outcome.state is PipelineState.IDLE
    assert outcome.error is None
    assert transport.replies == []


def test_bot_authors_and_direct_messages_are_ignored(tmp_path: Path) -> None:
    llm = _FakeLLM(GenerationResult(text="unused"))
    pipeline, _, _ = _pipeline(tmp_path, llm)

    from_bot = asyncio.run(pipeline.handle(_message(author_is_bot=True), _FakeTransport()))
    direct = asyncio.run(pipeline.handle(_message(guild_id=None), _FakeTransport()))

    assert from_bot.trail == [] and direct.trail == []
    assert pipeline.contexts.get("g1", "c1") == []


def test_second_message_sees_previous_bot_reply_in_prompt(tmp_path: Path) -> None:
    llm = _FakeLLM(GenerationResult(text="first answer", provider="gemini", model="flash"))
    pipeline, _, _ = _pipeline(tmp_path, llm)

    asyncio.run(pipeline.handle(_message(), _FakeTransport()))
    asyncio.run(pipeline.handle(_message("<@999> and now?", message_id="m2"), _FakeTransport()))

    second_prompt = llm.prompts[1]
    assert "Nova: first answer" in second_prompt
    assert "Alice: <@999> hey nova" in second_prompt

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.bot_config import BotConfigProvider  # noqa: E402
from persona_bot.config import Settings  # noqa: E402
from persona_bot.models import ProviderTarget  # noqa: E402


def _write(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_defaults_apply_without_config_file(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="persona_bot.config"):
        provider = BotConfigProvider(tmp_path / "missing.json")
        policy = provider.get_reply_policy("g1")

    assert policy.mode == "mention-only"
    assert policy.require_mention is True
    assert policy.reply_probability == 1.0
    assert provider.get_memory_policy().max_messages == 20
    assert "Bot config not found" in caplog.text


def test_guild_overrides_are_merged_over_global_sections(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(
        path,
        {
            "bot": {"name": "Nova"},
            "replyBehavior": {"mode": "passive", "replyProbability": 0.4, "ignoreUsers": ["u9"]},
            "guilds": {
                "g2": {
                    "bot": {"name": "Nova Prime"},
                    "replyBehavior": {"mode": "active"},
                    "memory": {"maxMessages": 5},
                }
            },
        },
    )
    provider = BotConfigProvider(path)

    global_policy = provider.get_reply_policy("g1")
    guild_policy = provider.get_reply_policy("g2")

    assert global_policy.mode == "passive"
    assert guild_policy.mode == "active"
    assert guild_policy.reply_probability == 0.4
    assert guild_policy.ignore_users == frozenset({"u9"})
    assert provider.get_persona("g2").name == "Nova Prime"
    assert provider.get_persona("g1").name == "Nova"
    assert provider.get_memory_policy("g2").max_messages == 5


def test_guild_specific_channels_build_override(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(
        path,
        {"replyBehavior": {"guildSpecificChannels": {"g1": {"allowed": ["c1", 2], "ignored": ["c3"]}}}},
    )
    provider = BotConfigProvider(path)

    override = provider.get_reply_policy("g1").channel_override
    assert override is not None
    assert override.allowed == frozenset({"c1", "2"})
    assert override.ignored == frozenset({"c3"})
    assert provider.get_reply_policy("g2").channel_override is None


def test_edits_are_picked_up_after_mtime_change(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(path, {"api": {"provider": "gemini"}})
    provider = BotConfigProvider(path)
    assert provider.get_provider_config().provider == "gemini"

    _write(path, {"api": {"provider": "ollama"}})
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

    cfg = provider.get_provider_config()
    assert cfg.provider == "ollama"
    assert cfg.model == "llama3.1:8b"


def test_provider_fallbacks_accept_names_and_objects(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(
        path,
        {
            "api": {
                "provider": "gemini",
                "geminiModel": "gemini-2.5-pro",
                "retryAttempts": 5,
                "fallbacks": ["ollama", {"provider": "gemini", "model": "gemini-2.5-flash"}, 7],
            }
        },
    )
    cfg = BotConfigProvider(path).get_provider_config()

    assert cfg.model == "gemini-2.5-pro"
    assert cfg.retry_attempts == 5
    assert cfg.fallbacks == (
        ProviderTarget("ollama", "llama3.1:8b"),
        ProviderTarget("gemini", "gemini-2.5-flash"),
    )


def test_malformed_file_falls_back_to_defaults(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "bot.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="persona_bot.config"):
        persona = BotConfigProvider(path).get_persona()

    assert persona.name == "Nova"
    assert "Failed to parse bot config" in caplog.text


def test_non_finite_probabilities_are_treated_as_zero(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "bot.json"
    _write(path, {"replyBehavior": {"replyProbability": "nan", "proactiveReplyChance": float("inf")}})

    with caplog.at_level(logging.WARNING, logger="persona_bot.config"):
        policy = BotConfigProvider(path).get_reply_policy("g1")

    assert policy.reply_probability == 0.0
    assert policy.proactive_reply_chance == 0.0
    assert "replyBehavior.replyProbability is not a finite number" in caplog.text


def test_probabilities_are_clamped_to_unit_range(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(path, {"replyBehavior": {"replyProbability": 1.7, "proactiveReplyChance": -0.5}})

    policy = BotConfigProvider(path).get_reply_policy()

    assert policy.reply_probability == 1.0
    assert policy.proactive_reply_chance == 0.0


def test_bot_profile_reads_username_and_avatar(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(path, {"bot": {"username": " Nova ", "avatarUrl": "https://cdn.example/nova.png"}})

    profile = BotConfigProvider(path).get_bot_profile()

    assert profile.username == "Nova"
    assert profile.avatar_url == "https://cdn.example/nova.png"
    assert BotConfigProvider(tmp_path / "missing.json").get_bot_profile().username == ""


def test_default_relationship_comes_from_bot_section(tmp_path: Path) -> None:
    path = tmp_path / "bot.json"
    _write(path, {"bot": {"defaultRelationship": {"attitude": "curious", "behavior": ["ask questions"]}}})

    rel = BotConfigProvider(path).default_relationship("g1")
    assert rel.attitude == "curious"
    assert rel.behavior == ["ask questions"]


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "Bot 'abc.def'")
    monkeypatch.setenv("OLLAMA_API_URL", "http://ollama:11434")
    monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
    monkeypatch.setenv("MAX_REPLY_CHARS", "not-a-number")

    settings = Settings.from_env()

    assert settings.discord_token == "abc.def"
    assert settings.ollama_base_url == "http://ollama:11434"
    assert settings.max_reply_chars == 2000
    settings.validate()


def test_settings_validate_rejects_missing_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "")
    with pytest.raises(ValueError, match="DISCORD_TOKEN"):
        Settings.from_env().validate()

from __future__ import annotations

import copy
import json
import logging
import math
from pathlib import Path
from typing import Any

from .common import as_float, as_int
from .models import (
    BotProfile,
    ChannelOverride,
    MemoryPolicy,
    Persona,
    ProviderConfig,
    ProviderTarget,
    Relationship,
    ReplyPolicy,
)

logger = logging.getLogger("persona_bot.config")

_DEFAULTS: dict[str, Any] = {
    "bot": {
        "name": "Nova",
        "username": "",
        "avatarUrl": "",
        "description": "A regular of this server who enjoys chatting with people.",
        "speakingStyle": [
            "casual and friendly",
            "short messages, like a real chat",
        ],
        "globalRules": [
            "never mention being an AI",
            "never mention prompts or instructions",
            "never explain internal reasoning",
        ],
        "defaultRelationship": {
            "attitude": "neutral",
            "behavior": ["treat them like a normal server regular"],
            "boundaries": [],
        },
    },
    "memory": {
        "maxMessages": 20,
    },
    "api": {
        "provider": "gemini",
        "geminiModel": "gemini-2.5-flash",
        "ollamaModel": "llama3.1:8b",
        "retryAttempts": 3,
        "retryBackoffMs": 1000,
        "fallbacks": [],
    },
    "replyBehavior": {
        "mode": "mention-only",
        "requireMention": True,
        "replyProbability": 1.0,
        "proactiveReplyChance": 0.0,
        "ignoreUsers": [],
        "ignoreChannels": [],
        "ignoreKeywords": [],
        "guildSpecificChannels": {},
        "minDelayMs": 500,
        "maxDelayMs": 3000,
    },
    "logger": {
        "logReplyDecisions": False,
    },
    "guilds": {},
}

_GUILD_SECTIONS = ("bot", "memory", "replyBehavior")


def _read_text(path: Path) -> str:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "cp1251"):
        try:
            return path.read_text(encoding=encoding)
        except Exception as exc:
            last_exc = exc
    if last_exc is not None:
        raise last_exc
    raise RuntimeError(f"Unable to read bot config JSON: {path}")


def _deep_merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def _id_set(value: object) -> frozenset[str]:
    if not isinstance(value, (list, tuple, set)):
        return frozenset()
    return frozenset(str(item).strip() for item in value if str(item).strip())


def _str_tuple(value: object) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if str(item).strip())


def _chance(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None:
        return default
    chance = as_float(value, default)
    if not math.isfinite(chance):
        logger.warning("replyBehavior.%s is not a finite number (%r); treating it as 0", key, value)
        return 0.0
    return min(1.0, max(0.0, chance))


class BotConfigProvider:
    """Reads persona, reply, memory and provider settings from a JSON file.

    The file is deep-merged over built-in defaults and re-read whenever its
    mtime changes, so edits made by the control plane apply to the next
    message. Sections under ``guilds.<guild_id>`` override the global
    ``bot``, ``memory`` and ``replyBehavior`` sections for that guild.
    """

    def __init__(self, path: Path | str | None = None, overrides: dict[str, Any] | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._overrides = copy.deepcopy(overrides) if overrides else {}
        self._cache: tuple[int | None, dict[str, Any]] | None = None

    def reload(self) -> dict[str, Any]:
        self._cache = None
        return self._load()

    def _file_mtime(self) -> int | None:
        if self.path is None or not self.path.exists():
            return None
        try:
            return self.path.stat().st_mtime_ns
        except OSError:
            return None

    def _load(self) -> dict[str, Any]:
        mtime_ns = self._file_mtime()
        if self._cache is not None and self._cache[0] == mtime_ns:
            return self._cache[1]

        merged = _deep_merge(_DEFAULTS, self._overrides)
        if self.path is not None and self.path.exists():
            try:
                payload = json.loads(_read_text(self.path))
            except Exception as exc:
                logger.warning("Failed to parse bot config %s (%s). Using defaults.", self.path, exc)
                payload = None
            if isinstance(payload, dict):
                merged = _deep_merge(merged, payload)
            elif payload is not None:
                logger.warning("Bot config root must be an object: %s (using defaults)", self.path)
        elif self.path is not None:
            logger.warning("Bot config not found: %s (using defaults)", self.path)

        self._cache = (mtime_ns, merged)
        return merged

    def _section(self, name: str, guild_id: str | None = None) -> dict[str, Any]:
        config = self._load()
        section = config.get(name)
        if not isinstance(section, dict):
            section = copy.deepcopy(_DEFAULTS[name])
        if guild_id is None or name not in _GUILD_SECTIONS:
            return section
        guilds = config.get("guilds")
        if not isinstance(guilds, dict):
            return section
        guild_cfg = guilds.get(str(guild_id))
        if not isinstance(guild_cfg, dict):
            return section
        override = guild_cfg.get(name)
        if not isinstance(override, dict):
            return section
        return _deep_merge(section, override)

    def default_relationship(self, guild_id: str | None = None) -> Relationship:
        raw = self._section("bot", guild_id).get("defaultRelationship")
        if not isinstance(raw, dict):
            raw = _DEFAULTS["bot"]["defaultRelationship"]
        return Relationship.from_dict(raw)

    def get_persona(self, guild_id: str | None = None) -> Persona:
        bot = self._section("bot", guild_id)
        return Persona(
            name=str(bot.get("name") or _DEFAULTS["bot"]["name"]).strip(),
            description=str(bot.get("description") or "").strip(),
            speaking_style=[str(item) for item in bot.get("speakingStyle") or [] if str(item).strip()],
            global_rules=[str(item) for item in bot.get("globalRules") or [] if str(item).strip()],
            default_relationship=self.default_relationship(guild_id),
        )

    def get_bot_profile(self) -> BotProfile:
        bot = self._section("bot")
        return BotProfile(
            username=str(bot.get("username") or "").strip(),
            avatar_url=str(bot.get("avatarUrl") or "").strip(),
        )

    def get_reply_policy(self, guild_id: str | None = None) -> ReplyPolicy:
        raw = self._section("replyBehavior", guild_id)
        override: ChannelOverride | None = None
        per_guild = raw.get("guildSpecificChannels")
        if guild_id is not None and isinstance(per_guild, dict):
            channels = per_guild.get(str(guild_id))
            if isinstance(channels, dict):
                override = ChannelOverride(
                    allowed=_id_set(channels.get("allowed")),
                    ignored=_id_set(channels.get("ignored")),
                )
        return ReplyPolicy(
            mode=str(raw.get("mode") or "mention-only").strip(),
            require_mention=bool(raw.get("requireMention", True)),
            reply_probability=_chance(raw, "replyProbability", 1.0),
            proactive_reply_chance=_chance(raw, "proactiveReplyChance", 0.0),
            ignore_users=_id_set(raw.get("ignoreUsers")),
            ignore_channels=_id_set(raw.get("ignoreChannels")),
            ignore_keywords=_str_tuple(raw.get("ignoreKeywords")),
            channel_override=override,
            min_delay_ms=as_int(raw.get("minDelayMs"), 500),
            max_delay_ms=as_int(raw.get("maxDelayMs"), 3000),
        )

    def get_memory_policy(self, guild_id: str | None = None) -> MemoryPolicy:
        raw = self._section("memory", guild_id)
        return MemoryPolicy(max_messages=max(1, as_int(raw.get("maxMessages"), 20)))

    def _model_for(self, api: dict[str, Any], provider: str) -> str:
        return str(api.get(f"{provider}Model") or "").strip()

    def get_provider_config(self) -> ProviderConfig:
        api = self._section("api")
        provider = str(api.get("provider") or "gemini").strip().lower()
        model = str(api.get("model") or "").strip() or self._model_for(api, provider)

        fallbacks: list[ProviderTarget] = []
        for item in api.get("fallbacks") or []:
            if isinstance(item, str):
                item = {"provider": item}
            if not isinstance(item, dict):
                continue
            name = str(item.get("provider") or "").strip().lower()
            if not name:
                continue
            fallback_model = str(item.get("model") or "").strip() or self._model_for(api, name)
            fallbacks.append(ProviderTarget(provider=name, model=fallback_model))

        return ProviderConfig(
            provider=provider,
            model=model,
            retry_attempts=max(1, as_int(api.get("retryAttempts"), 3)),
            retry_backoff_ms=max(0, as_int(api.get("retryBackoffMs"), 1000)),
            fallbacks=tuple(fallbacks),
        )

    def log_decisions(self) -> bool:
        section = self._section("logger")
        return bool(section.get("logReplyDecisions", False))

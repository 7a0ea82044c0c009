from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


@dataclass(slots=True)
class Settings:
    discord_token: str
    discord_message_content_intent: bool
    discord_members_intent: bool

    bot_config_path: Path
    sqlite_path: Path
    message_retention_days: int

    gemini_api_key: str
    gemini_base_url: str
    gemini_timeout_seconds: int
    gemini_temperature: float

    ollama_base_url: str
    ollama_timeout_seconds: int
    ollama_temperature: float

    max_reply_chars: int
    failure_reply_text: str
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            discord_members_intent=_env_bool("DISCORD_MEMBERS_INTENT", True),
            bot_config_path=Path(_env_str("BOT_CONFIG_PATH", "./data/bot.json")).expanduser(),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/persona_bot.db")).expanduser(),
            message_retention_days=_env_int("MESSAGE_RETENTION_DAYS", 0),
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_timeout_seconds=_env_int("GEMINI_TIMEOUT_SECONDS", 60),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", 0.7),
            ollama_base_url=_env_str("OLLAMA_BASE_URL", "http://127.0.0.1:11434", aliases=("OLLAMA_API_URL",)),
            ollama_timeout_seconds=_env_int("OLLAMA_TIMEOUT_SECONDS", 120),
            ollama_temperature=_env_float("OLLAMA_TEMPERATURE", 0.7),
            max_reply_chars=_env_int("MAX_REPLY_CHARS", 2000),
            failure_reply_text=_env_str("FAILURE_REPLY_TEXT", ""),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")

        if self.gemini_api_key == "put_your_gemini_api_key_here":
            raise ValueError("GEMINI_API_KEY is still placeholder")
        if self.gemini_timeout_seconds < 5:
            raise ValueError("GEMINI_TIMEOUT_SECONDS must be >= 5")
        if self.ollama_timeout_seconds < 5:
            raise ValueError("OLLAMA_TIMEOUT_SECONDS must be >= 5")

        if self.max_reply_chars < 10 or self.max_reply_chars > 2000:
            raise ValueError("MAX_REPLY_CHARS must be in [10, 2000]")
        if self.message_retention_days < 0:
            raise ValueError("MESSAGE_RETENTION_DAYS must be >= 0 (0 disables pruning)")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR")

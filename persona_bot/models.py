from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def _str_list(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


@dataclass(slots=True)
class Relationship:
    attitude: str = "neutral"
    behavior: list[str] = field(default_factory=list)
    boundaries: list[str] = field(default_factory=list)
    username: str = ""
    display_name: str = ""
    avatar_url: str | None = None
    ignored: bool = False

    def copy(self) -> "Relationship":
        return Relationship(
            attitude=self.attitude,
            behavior=list(self.behavior),
            boundaries=list(self.boundaries),
            username=self.username,
            display_name=self.display_name,
            avatar_url=self.avatar_url,
            ignored=self.ignored,
        )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Relationship":
        avatar = payload.get("avatar_url", payload.get("avatarUrl"))
        return cls(
            attitude=str(payload.get("attitude") or "neutral").strip() or "neutral",
            behavior=_str_list(payload.get("behavior")),
            boundaries=_str_list(payload.get("boundaries")),
            username=str(payload.get("username") or "").strip(),
            display_name=str(payload.get("display_name", payload.get("displayName")) or "").strip(),
            avatar_url=str(avatar) if avatar else None,
            ignored=bool(payload.get("ignored", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "attitude": self.attitude,
            "behavior": list(self.behavior),
            "boundaries": list(self.boundaries),
            "username": self.username,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
            "ignored": self.ignored,
        }


@dataclass(slots=True)
class ContextEntry:
    author_id: str
    author: str
    content: str


@dataclass(slots=True)
class Persona:
    name: str
    description: str
    speaking_style: list[str] = field(default_factory=list)
    global_rules: list[str] = field(default_factory=list)
    default_relationship: Relationship = field(default_factory=Relationship)


@dataclass(slots=True, frozen=True)
class BotProfile:
    username: str = ""
    avatar_url: str = ""


class ReplyMode(str, Enum):
    MENTION_ONLY = "mention-only"
    PASSIVE = "passive"
    ACTIVE = "active"
    DISABLED = "disabled"

    @classmethod
    def parse(cls, value: object) -> "ReplyMode | None":
        raw = str(value or "").strip().lower()
        for mode in cls:
            if mode.value == raw:
                return mode
        return None


@dataclass(slots=True, frozen=True)
class ChannelOverride:
    allowed: frozenset[str] = frozenset()
    ignored: frozenset[str] = frozenset()


@dataclass(slots=True)
class ReplyPolicy:
    mode: str = ReplyMode.MENTION_ONLY.value
    require_mention: bool = True
    reply_probability: float = 1.0
    proactive_reply_chance: float = 0.0
    ignore_users: frozenset[str] = frozenset()
    ignore_channels: frozenset[str] = frozenset()
    ignore_keywords: tuple[str, ...] = ()
    channel_override: ChannelOverride | None = None
    min_delay_ms: int = 500
    max_delay_ms: int = 3000


@dataclass(slots=True)
class MemoryPolicy:
    max_messages: int = 20


@dataclass(slots=True, frozen=True)
class ProviderTarget:
    provider: str
    model: str


@dataclass(slots=True)
class ProviderConfig:
    provider: str = "gemini"
    model: str = ""
    retry_attempts: int = 3
    retry_backoff_ms: int = 1000
    fallbacks: tuple[ProviderTarget, ...] = ()


@dataclass(slots=True)
class DecisionCheck:
    name: str
    passed: bool | None = None
    detail: str = ""


@dataclass(slots=True)
class ReplyDecision:
    result: bool
    reason: str
    checks: list[DecisionCheck] = field(default_factory=list)


@dataclass(slots=True)
class Usage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


@dataclass(slots=True)
class GenerationResult:
    text: str | None
    usage: Usage = field(default_factory=Usage)
    provider: str = ""
    model: str = ""


@dataclass(slots=True)
class InboundMessage:
    message_id: str
    guild_id: str | None
    guild_name: str
    channel_id: str
    channel_name: str
    author_id: str
    author_name: str
    content: str
    mentions_bot: bool = False
    author_display_name: str = ""
    author_avatar_url: str | None = None
    author_is_bot: bool = False


@dataclass(slots=True)
class MemberInfo:
    user_id: str
    username: str
    display_name: str = ""
    avatar_url: str | None = None
    is_bot: bool = False

from __future__ import annotations

import random
import re
from typing import Callable, Sequence

from ..models import ContextEntry, DecisionCheck, InboundMessage, Relationship, ReplyDecision, ReplyMode, ReplyPolicy

_MENTION_TAG = re.compile(r"<@!?(\d+)>")

Strategy = Callable[..., bool]


def mention_only_strategy(
    message: InboundMessage,
    is_mentioned: bool,
    policy: ReplyPolicy,
    context: Sequence[ContextEntry],
    bot_name: str,
    rng: Callable[[], float],
) -> bool:
    return is_mentioned


def passive_strategy(
    message: InboundMessage,
    is_mentioned: bool,
    policy: ReplyPolicy,
    context: Sequence[ContextEntry],
    bot_name: str,
    rng: Callable[[], float],
) -> bool:
    # Same trigger as mention-only; passive guilds usually pair it with a lower probability.
    return is_mentioned


def disabled_strategy(
    message: InboundMessage,
    is_mentioned: bool,
    policy: ReplyPolicy,
    context: Sequence[ContextEntry],
    bot_name: str,
    rng: Callable[[], float],
) -> bool:
    return False


def active_strategy(
    message: InboundMessage,
    is_mentioned: bool,
    policy: ReplyPolicy,
    context: Sequence[ContextEntry],
    bot_name: str,
    rng: Callable[[], float],
) -> bool:
    if is_mentioned:
        return True

    lower_bot = (bot_name or "").strip().lower()
    for entry in list(context)[-3:]:
        if not entry.content:
            continue
        if _MENTION_TAG.search(entry.content):
            return True
        if lower_bot and lower_bot in entry.content.lower():
            return True

    if (message.content or "").strip().endswith("?"):
        return True

    chance = policy.proactive_reply_chance
    if chance > 0 and rng() < chance:
        return True
    return False


STRATEGIES: dict[ReplyMode, Strategy] = {
    ReplyMode.MENTION_ONLY: mention_only_strategy,
    ReplyMode.PASSIVE: passive_strategy,
    ReplyMode.ACTIVE: active_strategy,
    ReplyMode.DISABLED: disabled_strategy,
}


def _channel_rejection(message: InboundMessage, policy: ReplyPolicy) -> str | None:
    label = f"#{message.channel_name} ({message.channel_id})"
    if message.channel_id in policy.ignore_channels:
        return f"Channel {label} is on the global ignore list."

    override = policy.channel_override
    if override is None:
        return None
    if override.allowed:
        if message.channel_id not in override.allowed:
            return f"Channel {label} is not in the allowed list for this guild."
    elif override.ignored and message.channel_id in override.ignored:
        return f"Channel {label} is on the ignore list for this guild."
    return None


def decide(
    message: InboundMessage,
    is_mentioned: bool,
    policy: ReplyPolicy,
    relationship: Relationship,
    context: Sequence[ContextEntry],
    *,
    bot_name: str = "",
    rng: Callable[[], float] = random.random,
) -> ReplyDecision:
    """Run the ordered reply checks; the first failing check ends the chain.

    The probability roll is the last step so that messages rejected by an
    earlier check never consume a random draw.
    """
    checks: list[DecisionCheck] = []

    def reject(name: str, reason: str) -> ReplyDecision:
        checks.append(DecisionCheck(name, False, reason))
        return ReplyDecision(False, reason, checks)

    raw_mode = (policy.mode or "").strip().lower()
    mode = ReplyMode.parse(raw_mode)
    prob = policy.reply_probability

    if mode is ReplyMode.DISABLED:
        return reject("global_mode", "Bot reply mode is disabled.")
    checks.append(DecisionCheck("global_mode", True, f"Mode is '{raw_mode}', not 'disabled'."))

    if message.author_id in policy.ignore_users:
        return reject(
            "user_ignored",
            f"User {message.author_name} ({message.author_id}) is on the ignore list.",
        )
    checks.append(DecisionCheck("user_ignored", True, "Author is not on the ignore list."))

    channel_reason = _channel_rejection(message, policy)
    if channel_reason is not None:
        return reject("channel_ignored", channel_reason)
    checks.append(DecisionCheck("channel_ignored", True, "Channel is not ignored."))

    content_lower = (message.content or "").lower()
    for keyword in policy.ignore_keywords:
        if not keyword:
            continue
        if keyword.lower() in content_lower:
            return reject("keyword_ignored", f'Message contains ignored keyword: "{keyword}".')
    checks.append(DecisionCheck("keyword_ignored", True, "Message does not contain ignored keywords."))

    if relationship.ignored:
        return reject(
            "relationship_ignored",
            f"User {message.author_name} is ignored in relationship settings.",
        )
    checks.append(DecisionCheck("relationship_ignored", True, "User is not ignored in relationship settings."))

    if mode is None:
        checks.append(
            DecisionCheck(
                "mode_fallback",
                None,
                f"Unknown mode '{raw_mode}', using '{ReplyMode.MENTION_ONLY.value}' strategy.",
            )
        )
        mode = ReplyMode.MENTION_ONLY
    strategy_result = STRATEGIES[mode](message, is_mentioned, policy, context, bot_name, rng)
    checks.append(DecisionCheck("strategy_result", strategy_result, f"Strategy '{mode.value}' evaluated."))

    if policy.require_mention and not is_mentioned and mode is not ReplyMode.ACTIVE:
        return reject(
            "mention_requirement",
            f"Replies require a mention, and the bot was not mentioned (mode: {mode.value}).",
        )
    checks.append(
        DecisionCheck(
            "mention_requirement",
            True,
            f"isMentioned={is_mentioned}, requireMention={policy.require_mention}, mode={mode.value}",
        )
    )

    if not strategy_result:
        return reject("strategy_passed", f"The '{mode.value}' strategy decided not to reply.")
    checks.append(DecisionCheck("strategy_passed", True, f"The '{mode.value}' strategy returned true."))

    if not prob > 0:
        return reject("probability", f"Reply probability is {prob}, which is not above 0.")
    if prob < 1:
        roll = rng()
        if roll > prob:
            return reject("probability", f"Random roll {roll:.2f} exceeded reply probability {prob}.")
        checks.append(DecisionCheck("probability", True, f"Roll {roll:.2f} was under threshold {prob}."))
    else:
        checks.append(DecisionCheck("probability", True, "Probability is 1.0, no roll needed."))

    return ReplyDecision(True, "All checks passed.", checks)

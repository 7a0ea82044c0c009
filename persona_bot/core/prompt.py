from __future__ import annotations

import re
from typing import Mapping, Sequence

from ..models import ContextEntry, Persona, Relationship

_MENTION_TAG = re.compile(r"<@!?\d+>")

UNKNOWN_ATTITUDE = "unknown"
CLOSING_INSTRUCTION = "Respond naturally. Stay in character."


def strip_mentions(text: str) -> str:
    return _MENTION_TAG.sub("", text or "").strip()


def _bullets(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _unknown_relationship() -> Relationship:
    return Relationship(attitude=UNKNOWN_ATTITUDE)


def build_participant_lines(
    context: Sequence[ContextEntry],
    guild_relationships: Mapping[str, Relationship],
) -> list[str]:
    """One summary line per distinct author in the window, first appearance first."""
    names_from_context: dict[str, str] = {}
    for entry in context:
        if entry.author_id and entry.author_id not in names_from_context:
            names_from_context[entry.author_id] = entry.author

    lines: list[str] = []
    for author_id, context_name in names_from_context.items():
        rel = guild_relationships.get(author_id) or _unknown_relationship()
        display = rel.display_name or rel.username or context_name or author_id
        username_note = f" ({rel.username})" if rel.username and rel.username != display else ""
        behavior = "; ".join(rel.behavior) or "none"
        lines.append(f"{display}{username_note}: Attitude={rel.attitude}; Behavior={behavior}")
    return lines


def build_prompt(
    persona: Persona,
    relationship: Relationship,
    context: Sequence[ContextEntry],
    guild_relationships: Mapping[str, Relationship],
    guild_name: str,
    user_message: str,
    username: str,
) -> str:
    transcript = "\n".join(f"{entry.author}: {entry.content}" for entry in context)
    sections = [
        f"You are a human Discord user named {persona.name}.",
        f"Who you are:\n{persona.description}",
        f"Speaking style:\n{_bullets(persona.speaking_style)}",
        f"Rules you always follow:\n{_bullets(persona.global_rules)}",
        f"Server: {guild_name or ''}",
        "\n".join(
            [
                f"Your relationship with {username}:",
                f"Attitude: {relationship.attitude}",
                f"Behavior rules:\n{_bullets(relationship.behavior)}",
                f"Boundaries:\n{_bullets(relationship.boundaries)}",
            ]
        ),
        "Server user relationships (recent participants):\n"
        + "\n".join(build_participant_lines(context, guild_relationships)),
        f"Recent conversation (context only):\n{transcript}",
        f"Message you are replying to:\n{username}: {user_message}",
        CLOSING_INSTRUCTION,
    ]
    return "\n\n".join(sections).strip()

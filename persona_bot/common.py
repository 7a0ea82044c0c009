from __future__ import annotations

import contextlib
import re

ELLIPSIS = "..."


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def preview(text: str, limit: int = 80) -> str:
    flat = collapse_spaces(text or "")
    if len(flat) <= limit:
        return flat
    return flat[: max(0, limit - len(ELLIPSIS))].rstrip() + ELLIPSIS


def truncate_reply(text: str, limit: int) -> tuple[str, bool]:
    """Hard-cut ``text`` to ``limit`` characters, ending with an ellipsis marker."""
    if len(text) <= limit:
        return text, False
    if limit <= len(ELLIPSIS):
        return text[:limit], True
    return text[: limit - len(ELLIPSIS)] + ELLIPSIS, True


def as_float(value: object, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return float(value.strip())
    return default


def as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return int(value.strip())
    return default

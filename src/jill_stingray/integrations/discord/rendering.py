from __future__ import annotations

import re
from typing import Final, Sequence, TypeVar

from .constants import DISCORD_MAX_MESSAGE_LENGTH

T = TypeVar("T")

_ELLIPSIS: Final[str] = "..."
_DISCORD_ESCAPE_RE = re.compile(r"([*_~`>|\\])")


def escape_discord_markdown(text: str) -> str:
    if not text:
        return ""
    return _DISCORD_ESCAPE_RE.sub(r"\\\1", text)


def truncate_for_discord(text: str, max_len: int = DISCORD_MAX_MESSAGE_LENGTH) -> str:
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    if max_len <= len(_ELLIPSIS):
        return text[:max_len]
    cut = text[: max_len - len(_ELLIPSIS)]
    # Do not leave an unterminated code fence behind.
    if cut.count("```") % 2 == 1 and max_len - len(_ELLIPSIS) - 4 > 0:
        cut = cut[: max_len - len(_ELLIPSIS) - 4] + "\n```"
    return cut + _ELLIPSIS


def paginate(items: Sequence[T], page: int, page_size: int) -> tuple[list[T], int, int]:
    """Return (slice, clamped page, total pages); total is at least 1."""

    total_pages = max((len(items) + page_size - 1) // page_size, 1)
    page = min(max(page, 0), total_pages - 1)
    start = page * page_size
    return list(items[start : start + page_size]), page, total_pages


def format_hex_color(color: int) -> str:
    return f"#{color:06X}"

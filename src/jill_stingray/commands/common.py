from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..core.exceptions import PermanentError, StoreUnavailableError
from ..gateway.context import InteractionContext
from ..gateway.policy import PolicyStore

GUILD_ONLY_MESSAGE = "❌ This command only works inside a server."
SETTINGS_FAILED_MESSAGE = "❌ Failed to access settings."

_HEX_RE = re.compile(r"^[0-9A-F]{6}$", re.IGNORECASE)


def parse_hex_color(value: Optional[str]) -> Optional[int]:
    """`FF0055` or `#ff0055` -> int; anything else -> None."""

    if not value:
        return None
    cleaned = value.strip().replace("#", "")
    if not _HEX_RE.match(cleaned):
        return None
    return int(cleaned, 16)


async def require_workspace(ctx: InteractionContext) -> Optional[str]:
    """The guild id, or None after telling the invoker this is guild-only."""

    if ctx.workspace_id is None:
        await ctx.respond_ephemeral(GUILD_ONLY_MESSAGE)
        return None
    return ctx.workspace_id


def require_policy_store(ctx: InteractionContext) -> PolicyStore:
    store = ctx.policy.store
    if store is None:
        raise PermanentError(
            "no policy store configured", user_message=SETTINGS_FAILED_MESSAGE
        )
    return store


@asynccontextmanager
async def settings_access() -> AsyncIterator[None]:
    """Attach the settings failure message to store outages."""

    try:
        yield
    except StoreUnavailableError as exc:
        if exc.user_message:
            raise
        raise StoreUnavailableError(
            str(exc), store=exc.store, user_message=SETTINGS_FAILED_MESSAGE
        ) from exc

from __future__ import annotations

import logging
from typing import Any

from ...core.logging_utils import log_event
from .rest import DiscordRestClient


def normalize_guild_ids(guild_ids: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(sorted({guild_id.strip() for guild_id in guild_ids if guild_id.strip()}))


async def sync_commands(
    rest: DiscordRestClient,
    *,
    application_id: str,
    commands: list[dict[str, Any]],
    scope: str,
    guild_ids: tuple[str, ...],
    logger: logging.Logger,
) -> int:
    """Overwrite the registered command set; returns how many scopes were written."""

    normalized_scope = scope.strip().lower()
    if normalized_scope == "global":
        targets: tuple[str | None, ...] = (None,)
    elif normalized_scope == "guild":
        targets = normalize_guild_ids(guild_ids)
        if not targets:
            raise ValueError("guild scope requires at least one guild_id")
    else:
        raise ValueError("scope must be 'global' or 'guild'")

    for guild_id in targets:
        updated = await rest.bulk_overwrite_application_commands(
            application_id=application_id,
            guild_id=guild_id,
            commands=commands,
        )
        log_event(
            logger,
            logging.INFO,
            "discord.commands.sync.overwrite",
            scope=normalized_scope,
            guild_id=guild_id,
            application_id=application_id,
            command_count=len(commands),
            command_names=[command.get("name") for command in commands],
            updated_count=len(updated),
        )
    return len(targets)

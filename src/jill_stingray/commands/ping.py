from __future__ import annotations

import time
from typing import Optional

from ..gateway.classifier import InteractionEvent
from ..gateway.context import InteractionContext
from ..gateway.registry import BaseCommand

DISCORD_EPOCH_MS = 1420070400000


def snowflake_timestamp_ms(snowflake: str) -> Optional[int]:
    try:
        return (int(snowflake) >> 22) + DISCORD_EPOCH_MS
    except (TypeError, ValueError):
        return None


class PingCommand(BaseCommand):
    name = "ping"
    description = "Check if Jill is awake behind the counter."

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        created_ms = snowflake_timestamp_ms(event.interaction_id)
        if created_ms is None:
            latency = "?"
        else:
            latency = str(max(int(time.time() * 1000) - created_ms, 0))
        await ctx.respond_ephemeral(
            f"I'm here. Don't worry. (Latency: **{latency}ms**)"
        )

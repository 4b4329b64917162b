"""`/custom role`: one personal, colored role per member.

The role id is remembered per guild and user. Asking for a new one while
the old role still exists goes through a role-overwrite confirmation; a
remembered role that was deleted by hand is forgotten silently.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.exceptions import PermanentError
from ..core.logging_utils import log_event
from ..gateway.classifier import InteractionEvent
from ..gateway.confirmation import BulkResult, build_confirmation_row
from ..gateway.context import InteractionContext
from ..gateway.registry import BaseCommand
from ..gateway.sessions import FlowKind, Session
from ..integrations.discord.errors import DiscordAPIError
from ..integrations.discord.rendering import format_hex_color
from ..integrations.discord.state import DiscordStateStore
from .common import parse_hex_color, require_workspace

INVALID_COLOR_MESSAGE = (
    "❌ **Invalid Color.** Please use a valid 6-digit Hex code (e.g., `00FF00`)."
)
CREATE_FAILED_MESSAGE = (
    "❌ **Error:** Could not create role. I might lack permissions "
    "(Manage Roles) or the role list is full."
)


def _require_state(ctx: InteractionContext) -> DiscordStateStore:
    if ctx.state is None:
        raise PermanentError("no state store configured", user_message=CREATE_FAILED_MESSAGE)
    return ctx.state


def identity_embed(role_id: str, color: int) -> dict[str, Any]:
    return {
        "title": "Identity Fabricated",
        "description": f"**Role:** <@&{role_id}>\n**Hex:** {format_hex_color(color)}\n\n"
        "This role has been assigned to you.",
        "color": color,
        "footer": {"text": "Use /custom role again to change it."},
    }


class CustomCommand(BaseCommand):
    name = "custom"
    description = "Manage your personal custom role."
    defer = True
    confirm_flows = frozenset({FlowKind.ROLE_OVERWRITE})
    options = (
        {
            "name": "role",
            "description": "Create or replace your personal custom role.",
            "type": 1,
            "options": [
                {
                    "name": "name",
                    "description": "The name of your role.",
                    "type": 3,
                    "required": True,
                },
                {
                    "name": "hex",
                    "description": "The color hex code (e.g. FF0055).",
                    "type": 3,
                    "required": True,
                },
            ],
        },
    )

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        guild_id = await require_workspace(ctx)
        if guild_id is None:
            return
        name = str(event.option("name") or "").strip()
        color = parse_hex_color(event.option("hex"))
        if color is None or not name:
            await ctx.respond(INVALID_COLOR_MESSAGE)
            return

        state = _require_state(ctx)
        existing_role_id = await state.get_custom_role(guild_id, event.user_id)
        if existing_role_id:
            roles = await ctx.rest.list_guild_roles(guild_id=guild_id)
            if any(str(role.get("id")) == existing_role_id for role in roles):
                await ctx.start_session(
                    Session(
                        owner_id=event.user_id,
                        flow_kind=FlowKind.ROLE_OVERWRITE,
                        payload={
                            "name": name,
                            "color": color,
                            "old_role_id": existing_role_id,
                        },
                    )
                )
                await ctx.respond(
                    embeds=[
                        {
                            "title": "Identity Conflict",
                            "description": "You already have a registered custom role.\n"
                            "Do you want to **delete** the old one and create this new one?",
                            "color": 0xFFA500,
                        }
                    ],
                    components=[
                        build_confirmation_row(
                            event.user_id,
                            FlowKind.ROLE_OVERWRITE,
                            confirm_label="Overwrite Identity",
                            destructive=True,
                        )
                    ],
                )
                return
            await state.delete_custom_role(guild_id, event.user_id)

        await ctx.respond("⏳ **Fabricating identity...**")
        role_id = await self._fabricate(ctx, guild_id, event.user_id, name, color)
        await ctx.respond("", embeds=[identity_embed(role_id, color)], components=[])

    async def _fabricate(
        self,
        ctx: InteractionContext,
        guild_id: str,
        user_id: str,
        name: str,
        color: int,
    ) -> str:
        state = _require_state(ctx)
        try:
            role = await ctx.rest.create_guild_role(
                guild_id=guild_id,
                name=name,
                color=color,
                reason=f"Custom Role for {user_id}",
            )
            role_id = str(role.get("id") or "")
            if not role_id:
                raise PermanentError(
                    "role create returned no id", user_message=CREATE_FAILED_MESSAGE
                )
            await ctx.rest.add_guild_member_role(
                guild_id=guild_id,
                user_id=user_id,
                role_id=role_id,
                reason="Custom Role Assignment",
            )
        except DiscordAPIError as exc:
            raise PermanentError(
                f"custom role creation failed: {exc}",
                user_message=CREATE_FAILED_MESSAGE,
            ) from exc
        await state.set_custom_role(guild_id, user_id, role_id)
        return role_id

    async def confirm(
        self, event: InteractionEvent, ctx: InteractionContext, session: Session
    ) -> Optional[BulkResult]:
        guild_id = ctx.workspace_id or ""
        old_role_id = str(session.payload.get("old_role_id") or "")
        if old_role_id:
            try:
                await ctx.rest.delete_guild_role(
                    guild_id=guild_id,
                    role_id=old_role_id,
                    reason="Custom Role Overwrite",
                )
            except DiscordAPIError as exc:
                log_event(
                    ctx.logger,
                    logging.WARNING,
                    "discord.custom_role.delete_failed",
                    guild_id=guild_id,
                    role_id=old_role_id,
                    exc=exc,
                )
        await ctx.update_message(
            "⏳ **Fabricating new identity...**", embeds=[], components=[]
        )
        color = int(session.payload.get("color") or 0)
        role_id = await self._fabricate(
            ctx,
            guild_id,
            session.owner_id,
            str(session.payload.get("name") or "custom"),
            color,
        )
        await ctx.update_message("", embeds=[identity_embed(role_id, color)], components=[])
        return None

from __future__ import annotations

from typing import Any, Optional

from ..gateway.classifier import InteractionEvent
from ..gateway.confirmation import BulkResult, build_confirmation_row, run_bulk
from ..gateway.context import InteractionContext
from ..gateway.registry import BaseCommand
from ..gateway.sessions import FlowKind, Session
from ..integrations.discord.rendering import format_hex_color
from .common import parse_hex_color, require_workspace

MAX_ASSIGN_TARGETS = 5
INVALID_HEX_MESSAGE = "❌ Invalid Hex Code. Use format like `FF0055`."


def _user_options() -> list[dict[str, Any]]:
    return [
        {
            "name": f"user{index}",
            "description": f"Patron {index}",
            "type": 6,
            "required": index == 1,
        }
        for index in range(1, MAX_ASSIGN_TARGETS + 1)
    ]


def _user_card(user: dict[str, Any]) -> dict[str, Any]:
    name = user.get("global_name") or user.get("username") or user.get("id")
    card: dict[str, Any] = {"author": {"name": str(name)}, "color": 0x2B2D31}
    avatar = user.get("avatar")
    if avatar:
        url = f"https://cdn.discordapp.com/avatars/{user.get('id')}/{avatar}.png"
        card["author"]["icon_url"] = url
        card["thumbnail"] = {"url": url}
    return card


class RoleCommand(BaseCommand):
    name = "role"
    description = "Role management suite: create and bulk-assign roles."
    default_member_permissions = "268435456"
    confirm_flows = frozenset({FlowKind.ROLE_CREATE, FlowKind.BULK_ASSIGN})
    options = (
        {
            "name": "create",
            "description": "Design a new role with a custom color.",
            "type": 1,
            "options": [
                {
                    "name": "name",
                    "description": "Name of the role.",
                    "type": 3,
                    "required": True,
                },
                {
                    "name": "hex",
                    "description": "Hex color (e.g. FF0055).",
                    "type": 3,
                    "required": True,
                },
            ],
        },
        {
            "name": "assign",
            "description": "Grant a role to multiple patrons at once.",
            "type": 1,
            "options": [
                {
                    "name": "role",
                    "description": "The role to give.",
                    "type": 8,
                    "required": True,
                },
                *_user_options(),
            ],
        },
    )

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        if await require_workspace(ctx) is None:
            return
        if event.subcommand == "create":
            await self._create(event, ctx)
        elif event.subcommand == "assign":
            await self._assign(event, ctx)
        else:
            await ctx.respond_ephemeral("❌ Unknown subcommand.")

    async def _create(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        name = str(event.option("name") or "").strip()
        color = parse_hex_color(event.option("hex"))
        if color is None or not name:
            await ctx.respond_ephemeral(INVALID_HEX_MESSAGE)
            return
        hex_code = format_hex_color(color)
        await ctx.start_session(
            Session(
                owner_id=event.user_id,
                flow_kind=FlowKind.ROLE_CREATE,
                payload={"name": name, "color": color},
            )
        )
        await ctx.respond(
            "Please confirm this design.",
            ephemeral=True,
            embeds=[
                {
                    "title": "✨ Role Preview",
                    "description": f"**Name:** {name}\n**Color:** {hex_code}",
                    "color": color,
                    "image": {
                        "url": f"https://singlecolorimage.com/get/{hex_code[1:]}/400x100"
                    },
                    "footer": {"text": "Role will be hoisted (Prioritized)"},
                }
            ],
            components=[
                build_confirmation_row(
                    event.user_id, FlowKind.ROLE_CREATE, confirm_label="Create Role"
                )
            ],
        )

    async def _assign(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        role_id = str(event.option("role") or "")
        user_ids: list[str] = []
        for index in range(1, MAX_ASSIGN_TARGETS + 1):
            value = event.option(f"user{index}")
            if value and str(value) not in user_ids:
                user_ids.append(str(value))
        if not role_id or not user_ids:
            await ctx.respond_ephemeral("❌ Pick a role and at least one patron.")
            return

        await ctx.start_session(
            Session(
                owner_id=event.user_id,
                flow_kind=FlowKind.BULK_ASSIGN,
                payload={"role_id": role_id, "user_ids": user_ids},
            )
        )
        resolved_users = event.resolved.get("users") or {}
        embeds = [
            {
                "title": "📋 Assignment Manifest",
                "description": f"Preparing to assign role: <@&{role_id}>",
                "color": 0xA45EE5,
                "footer": {"text": "Review the recipients below."},
            }
        ]
        embeds.extend(
            _user_card(resolved_users[user_id])
            for user_id in user_ids
            if isinstance(resolved_users.get(user_id), dict)
        )
        await ctx.respond(
            "Please confirm the following targets:",
            ephemeral=True,
            embeds=embeds,
            components=[
                build_confirmation_row(
                    event.user_id,
                    FlowKind.BULK_ASSIGN,
                    confirm_label="Confirm Assignment",
                )
            ],
        )

    async def confirm(
        self, event: InteractionEvent, ctx: InteractionContext, session: Session
    ) -> Optional[BulkResult]:
        guild_id = ctx.workspace_id or ""
        if session.flow_kind is FlowKind.ROLE_CREATE:
            role = await ctx.rest.create_guild_role(
                guild_id=guild_id,
                name=str(session.payload.get("name") or "new role"),
                color=int(session.payload.get("color") or 0),
                hoist=True,
                reason=f"Role created by {event.user_id}",
            )
            await ctx.update_message(
                f"✅ Role **{role.get('name', session.payload.get('name'))}** "
                "created successfully!",
                embeds=[],
                components=[],
            )
            return None

        role_id = str(session.payload.get("role_id") or "")
        user_ids = [str(uid) for uid in session.payload.get("user_ids") or []]
        await ctx.update_message("Processing...", embeds=[], components=[])

        async def _assign(user_id: str) -> None:
            await ctx.rest.add_guild_member_role(
                guild_id=guild_id,
                user_id=user_id,
                role_id=role_id,
                reason="Bulk Assignment",
            )

        return await run_bulk(
            "✅ Manifest Processed",
            user_ids,
            _assign,
            label=lambda user_id: f"<@{user_id}>",
            logger=ctx.logger,
            header=f"**Role:** <@&{role_id}>",
        )

"""`/audit`: role forensics wizard.

The wizard lives in one audit-session per invoker. `scan_empty` proposes
up to 25 member-less roles for deletion; the selection is kept in the
session and the gateway's confirm button deletes whatever is still
checked.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any, Optional

from ..gateway.classifier import InteractionEvent
from ..gateway.confirmation import (
    SESSION_EXPIRED_MESSAGE,
    BulkResult,
    confirm_custom_id,
    run_bulk,
)
from ..gateway.context import InteractionContext
from ..gateway.registry import BaseCommand
from ..gateway.routing import ComponentRoute, encode_routing_key
from ..gateway.sessions import FlowKind, Session
from ..integrations.discord.components import (
    DISCORD_BUTTON_STYLE_DANGER,
    DISCORD_BUTTON_STYLE_PRIMARY,
    DISCORD_SELECT_OPTION_MAX_OPTIONS,
    build_action_row,
    build_button,
    build_select_menu,
    build_select_option,
)
from ..integrations.discord.rendering import format_hex_color
from .common import require_workspace

AUDIT_FAMILY = "audit"
STEP_MENU = "menu"
STEP_EMPTY_CHECK = "empty_check"
SCAN_ACTIONS = frozenset({"scan_empty", "scan_lone", "scan_map"})
DELETE_REASON = "Jill Stingray: Audit Protocol"
EMPTY_SELECTION_MESSAGE = "Selection void. No action taken."


def _audit_id(owner_id: str, action: str) -> str:
    return encode_routing_key(AUDIT_FAMILY, owner_id, action)


def _return_row(owner_id: str) -> dict[str, Any]:
    return build_action_row([build_button("Return", _audit_id(owner_id, "home"))])


def render_menu(owner_id: str) -> dict[str, Any]:
    embed = {
        "title": "Jill Stingray // Forensics Suite",
        "description": "Select a diagnostic module.",
        "color": 0x9900FF,
        "fields": [
            {
                "name": "Empty Node Scan",
                "value": "Identifies and purges roles with zero utilization.",
                "inline": True,
            },
            {
                "name": "Identity Isolation",
                "value": "Tracks single-user roles for identity verification.",
                "inline": True,
            },
            {
                "name": "Structure Analysis",
                "value": "Visualizes permission hierarchy and color redundancy.",
                "inline": True,
            },
        ],
        "footer": {"text": "BTC-74 Certified"},
    }
    row = build_action_row(
        [
            build_button(
                "Scan Empty Nodes",
                _audit_id(owner_id, "scan_empty"),
                style=DISCORD_BUTTON_STYLE_PRIMARY,
            ),
            build_button("Check Isolations", _audit_id(owner_id, "scan_lone")),
            build_button("Analyze Structure", _audit_id(owner_id, "scan_map")),
        ]
    )
    return {"embeds": [embed], "components": [row]}


def render_checklist(
    owner_id: str,
    candidates: dict[str, bool],
    roles_map: dict[str, str],
    total_found: int,
) -> dict[str, Any]:
    checked = sum(1 for selected in candidates.values() if selected)
    options = [
        build_select_option(
            roles_map.get(role_id, role_id),
            role_id,
            description=f"ID: {role_id}",
            default=selected,
        )
        for role_id, selected in candidates.items()
    ]
    embed = {
        "title": "Verification Required",
        "description": f"Found **{total_found}** empty nodes.\n\n"
        "Select the roles you wish to **DELETE**.\n"
        "Unchecked roles will be preserved (e.g., Achievement Roles).",
        "color": 0xFF0055,
        "fields": [{"name": "Pending Deletion", "value": f"{checked} roles selected."}],
    }
    return {
        "embeds": [embed],
        "components": [
            build_action_row(
                [
                    build_select_menu(
                        _audit_id(owner_id, "toggle"),
                        options,
                        placeholder="Select nodes to purge...",
                        min_values=0,
                        max_values=len(options),
                    )
                ]
            ),
            build_action_row(
                [
                    build_button(
                        f"DELETE SELECTED ({checked})",
                        confirm_custom_id(owner_id, FlowKind.AUDIT_SESSION),
                        style=DISCORD_BUTTON_STYLE_DANGER,
                        disabled=checked == 0,
                    ),
                    build_button("Cancel", _audit_id(owner_id, "home")),
                ]
            ),
        ],
    }


def _role_position(role: dict[str, Any]) -> int:
    try:
        return int(role.get("position") or 0)
    except (TypeError, ValueError):
        return 0


class AuditCommand(BaseCommand):
    name = "audit"
    description = "Access server diagnostics and forensic tools."
    component_routes = (
        ComponentRoute(
            family=AUDIT_FAMILY,
            flow_kinds=frozenset({FlowKind.AUDIT_SESSION}),
            min_permission="manageRoles",
        ),
    )
    confirm_flows = frozenset({FlowKind.AUDIT_SESSION})
    # Pause between role deletions.
    delete_interval = 0.25

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        if await require_workspace(ctx) is None:
            return
        await ctx.start_session(
            Session(
                owner_id=event.user_id,
                flow_kind=FlowKind.AUDIT_SESSION,
                step=STEP_MENU,
            )
        )
        view = render_menu(event.user_id)
        await ctx.respond(embeds=view["embeds"], components=view["components"])

    async def _roles_with_counts(
        self, ctx: InteractionContext, guild_id: str
    ) -> tuple[list[dict[str, Any]], Counter[str], dict[str, str]]:
        """Unmanaged roles (highest first), member counts and a sample holder."""

        roles = await ctx.rest.list_guild_roles(guild_id=guild_id)
        members = await ctx.rest.list_guild_members(guild_id=guild_id)
        counts: Counter[str] = Counter()
        holders: dict[str, str] = {}
        for member in members:
            user = member.get("user") if isinstance(member.get("user"), dict) else {}
            for role_id in member.get("roles") or []:
                counts[str(role_id)] += 1
                holders.setdefault(str(role_id), str(user.get("id") or "Unknown"))
        eligible = [
            role
            for role in roles
            if not role.get("managed") and str(role.get("id")) != guild_id
        ]
        eligible.sort(key=_role_position, reverse=True)
        return eligible, counts, holders

    async def handle_component(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        session: Optional[Session],
    ) -> None:
        guild_id = ctx.workspace_id
        key = event.routing_key
        action = key.arg(0) if key else None
        if guild_id is None or session is None:
            await ctx.respond_ephemeral(SESSION_EXPIRED_MESSAGE)
            return
        owner_id = event.user_id
        if action in SCAN_ACTIONS:
            # Member paging can outlast the acknowledgement window.
            await ctx.defer_update()

        if action == "home":
            await ctx.sessions.put(session.advance(STEP_MENU))
            view = render_menu(owner_id)
            await ctx.update_message("", embeds=view["embeds"], components=view["components"])
        elif action == "scan_empty":
            await self._scan_empty(ctx, guild_id, owner_id, session)
        elif action == "toggle":
            await self._toggle(event, ctx, owner_id, session)
        elif action == "scan_lone":
            await self._scan_lone(ctx, guild_id, owner_id)
        elif action == "scan_map":
            await self._scan_map(ctx, guild_id, owner_id)
        else:
            await ctx.respond_ephemeral(SESSION_EXPIRED_MESSAGE)

    async def _scan_empty(
        self,
        ctx: InteractionContext,
        guild_id: str,
        owner_id: str,
        session: Session,
    ) -> None:
        roles, counts, _holders = await self._roles_with_counts(ctx, guild_id)
        empty = [role for role in roles if counts[str(role.get("id"))] == 0]
        if not empty:
            await ctx.update_message(
                "",
                embeds=[
                    {
                        "title": "Diagnostic: Empty Roles",
                        "description": "Scan complete. No obsolete roles detected.\n"
                        "The database is clean.",
                        "color": 0x00FF00,
                    }
                ],
                components=[_return_row(owner_id)],
            )
            return
        batch = empty[:DISCORD_SELECT_OPTION_MAX_OPTIONS]
        candidates = {str(role["id"]): True for role in batch}
        roles_map = {str(role["id"]): str(role.get("name") or role["id"]) for role in batch}
        await ctx.sessions.put(
            session.advance(
                STEP_EMPTY_CHECK,
                candidates=candidates,
                roles_map=roles_map,
                total_found=len(empty),
            )
        )
        view = render_checklist(owner_id, candidates, roles_map, len(empty))
        await ctx.update_message("", embeds=view["embeds"], components=view["components"])

    async def _toggle(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        owner_id: str,
        session: Session,
    ) -> None:
        if session.step != STEP_EMPTY_CHECK:
            await ctx.respond_ephemeral(SESSION_EXPIRED_MESSAGE)
            return
        roles_map = dict(session.payload.get("roles_map") or {})
        selected = set(event.values)
        candidates = {role_id: role_id in selected for role_id in roles_map}
        await ctx.sessions.put(session.advance(STEP_EMPTY_CHECK, candidates=candidates))
        view = render_checklist(
            owner_id,
            candidates,
            roles_map,
            int(session.payload.get("total_found") or len(roles_map)),
        )
        await ctx.update_message("", embeds=view["embeds"], components=view["components"])

    async def _scan_lone(
        self, ctx: InteractionContext, guild_id: str, owner_id: str
    ) -> None:
        roles, counts, holders = await self._roles_with_counts(ctx, guild_id)
        lone = [role for role in roles if counts[str(role.get("id"))] == 1][:20]
        lines = [
            f"`{role.get('name')}` - <@{holders.get(str(role.get('id')), 'Unknown')}>"
            for role in lone
        ]
        await ctx.update_message(
            "",
            embeds=[
                {
                    "title": "Forensics: Identity Isolation",
                    "description": f"**Found {len(lone)} roles with single occupancy:**\n\n"
                    + ("\n".join(lines) or "No single-user roles detected."),
                    "color": 0x00FFFF,
                }
            ],
            components=[_return_row(owner_id)],
        )

    async def _scan_map(
        self, ctx: InteractionContext, guild_id: str, owner_id: str
    ) -> None:
        roles = await ctx.rest.list_guild_roles(guild_id=guild_id)
        roles = [
            role
            for role in roles
            if not role.get("managed") and str(role.get("id")) != guild_id
        ]
        roles.sort(key=_role_position, reverse=True)

        color_groups: dict[str, list[str]] = {}
        for role in roles:
            color = int(role.get("color") or 0)
            if color == 0:
                continue
            color_groups.setdefault(format_hex_color(color), []).append(
                str(role.get("name"))
            )
        clones = [
            f"`{hex_code}`: {', '.join(names)}"
            for hex_code, names in color_groups.items()
            if len(names) > 1
        ][:10]

        ladder = "\n".join(
            f"`{_role_position(role):02d}` **{role.get('name')}** "
            f"({format_hex_color(int(role['color'])) if role.get('color') else 'Default'})"
            for role in roles[:15]
        )
        fields = [
            {
                "name": "Hierarchy Ladder (Top 15)",
                "value": ladder or "No data available.",
                "inline": False,
            }
        ]
        if clones:
            fields.append(
                {
                    "name": "Visual Duplication Alert",
                    "value": "*Detected shared color values:*\n" + "\n".join(clones),
                    "inline": False,
                }
            )
        else:
            fields.append(
                {
                    "name": "Visual Analysis",
                    "value": "No color conflicts detected.",
                    "inline": False,
                }
            )
        hoisted = sum(1 for role in roles if role.get("hoist"))
        await ctx.update_message(
            "",
            embeds=[
                {
                    "title": "Forensics: Structure & Color",
                    "description": f"**Registry Size:** {len(roles)} roles\n"
                    f"**Sidebar Visibility:** {hoisted}",
                    "color": 0xFF00FF,
                    "fields": fields,
                }
            ],
            components=[_return_row(owner_id)],
        )

    async def confirm(
        self, event: InteractionEvent, ctx: InteractionContext, session: Session
    ) -> Optional[BulkResult]:
        candidates = session.payload.get("candidates") or {}
        roles_map = session.payload.get("roles_map") or {}
        to_delete = [role_id for role_id, selected in candidates.items() if selected]
        if session.step != STEP_EMPTY_CHECK or not to_delete:
            await ctx.respond_ephemeral(EMPTY_SELECTION_MESSAGE)
            return None

        await ctx.update_message(
            "",
            embeds=[
                {
                    "title": "Processing Deletion...",
                    "description": f"Purging {len(to_delete)} entries from the registry.\n"
                    "Please hold...",
                    "color": 0xFFFF00,
                }
            ],
            components=[],
        )
        guild_id = ctx.workspace_id or ""

        async def _delete(role_id: str) -> None:
            await ctx.rest.delete_guild_role(
                guild_id=guild_id, role_id=role_id, reason=DELETE_REASON
            )
            if self.delete_interval > 0:
                await asyncio.sleep(self.delete_interval)

        return await run_bulk(
            "Audit Log: Deletion",
            to_delete,
            _delete,
            label=lambda role_id: str(roles_map.get(role_id, role_id)),
            logger=ctx.logger,
            success_label="Removed",
        )

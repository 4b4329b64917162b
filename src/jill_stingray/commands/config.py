"""`/config`: the policy editor.

Every write goes through the workspace's `PolicyStore` as a partial
`CommandRule`, so fields the editor never touched keep following the
compiled-in defaults. `config` and `help` are never listed as targets.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from ..gateway.classifier import InteractionEvent
from ..gateway.context import InteractionContext
from ..gateway.permissions import EVERYONE, normalize_capability, readable_capability
from ..gateway.policy import CommandRule, EffectivePolicy, WorkspacePolicy
from ..gateway.registry import BaseCommand
from ..gateway.routing import ComponentRoute, encode_routing_key
from ..gateway.sessions import Session
from ..integrations.discord.components import build_pager_row
from ..integrations.discord.constants import DISCORD_MAX_AUTOCOMPLETE_CHOICES
from ..integrations.discord.rendering import paginate
from .common import require_policy_store, require_workspace, settings_access

CONFIG_FAMILY = "config"
PAGE_SIZE = 10
HIDDEN_TARGETS = frozenset({"config", "help"})
PERMISSION_DEFAULT = "DEFAULT"

_COMMAND_OPTION = {
    "name": "command",
    "description": "The command to configure.",
    "type": 3,
    "required": True,
    "autocomplete": True,
}

PERMISSION_CHOICES = (
    {"name": "Reset to Default", "value": PERMISSION_DEFAULT},
    {"name": "Administrator", "value": "administrator"},
    {"name": "Manage Server", "value": "manageGuild"},
    {"name": "Manage Roles", "value": "manageRoles"},
    {"name": "Manage Messages", "value": "manageMessages"},
    {"name": "Kick Members", "value": "kickMembers"},
    {"name": "Ban Members", "value": "banMembers"},
    {"name": "Everyone (None)", "value": EVERYONE},
)


def _status_icon(enabled: bool) -> str:
    return "🟢" if enabled else "🔴"


def _channel_mentions(channel_ids: frozenset[str]) -> str:
    return ", ".join(f"<#{channel_id}>" for channel_id in sorted(channel_ids))


def render_single_overview(
    command_name: str,
    policy: EffectivePolicy,
    *,
    bypass_role_id: Optional[str] = None,
) -> dict[str, Any]:
    fields = [
        {
            "name": "Status",
            "value": f"**{'Enabled' if policy.enabled else 'Disabled'}**",
            "inline": True,
        },
        {
            "name": "Permission",
            "value": f"🔒 {readable_capability(policy.min_permission)}",
            "inline": True,
        },
        {
            "name": "Channels",
            "value": _channel_mentions(policy.allow_channels) or "🌐 Global",
            "inline": False,
        },
    ]
    if policy.block_channels:
        fields.append(
            {
                "name": "Blocked",
                "value": _channel_mentions(policy.block_channels),
                "inline": False,
            }
        )
    if bypass_role_id:
        fields.append(
            {"name": "Manager Role", "value": f"<@&{bypass_role_id}>", "inline": False}
        )
    return {
        "title": f"{_status_icon(policy.enabled)} Settings: {command_name}",
        "color": 0x43B581 if policy.enabled else 0xF04747,
        "fields": fields,
    }


def _overview_line(command_name: str, policy: EffectivePolicy) -> str:
    if policy.min_permission is None:
        perm_short = "All"
    elif policy.min_permission == "administrator":
        perm_short = "Admin"
    else:
        perm_short = "Perms"
    chan_short = "#Limit" if policy.allow_channels else "Global"
    line = f"{_status_icon(policy.enabled)} **{command_name}**: {perm_short} | {chan_short}"
    if policy.block_channels:
        line += f" | 🚫{len(policy.block_channels)}"
    return line


def render_overview_page(
    rows: list[tuple[str, EffectivePolicy]], page: int, owner_id: str
) -> dict[str, Any]:
    batch, page, total_pages = paginate(rows, page, PAGE_SIZE)
    embed = {
        "title": "🎛️ Server Configuration",
        "description": "\n".join(_overview_line(name, policy) for name, policy in batch)
        or "No commands found.",
        "color": 0x2B2D31,
        "footer": {"text": f"Page {page + 1} of {total_pages} • Total: {len(rows)}"},
    }
    components = []
    if total_pages > 1:
        components.append(
            build_pager_row(
                page=page,
                total_pages=total_pages,
                custom_id_for_page=lambda target, direction: encode_routing_key(
                    CONFIG_FAMILY, owner_id, "page", target, direction
                ),
            )
        )
    return {"embeds": [embed], "components": components}


class ConfigCommand(BaseCommand):
    name = "config"
    description = "Manage bot settings for this server."
    default_member_permissions = "32"
    component_routes = (ComponentRoute(family=CONFIG_FAMILY),)
    options = (
        {
            "name": "toggle",
            "description": "Enable or disable a command.",
            "type": 1,
            "options": [
                _COMMAND_OPTION,
                {
                    "name": "status",
                    "description": "New status for the command.",
                    "type": 5,
                    "required": True,
                },
            ],
        },
        {
            "name": "channel",
            "description": "Allow a command in a channel (toggle; empty allows everywhere).",
            "type": 1,
            "options": [
                _COMMAND_OPTION,
                {
                    "name": "channel",
                    "description": "The channel to allow.",
                    "type": 7,
                    "required": False,
                },
            ],
        },
        {
            "name": "block",
            "description": "Block a command in a channel (toggle; empty clears).",
            "type": 1,
            "options": [
                _COMMAND_OPTION,
                {
                    "name": "channel",
                    "description": "The channel to block.",
                    "type": 7,
                    "required": False,
                },
            ],
        },
        {
            "name": "permission",
            "description": "Set the minimum permission required to use a command.",
            "type": 1,
            "options": [
                _COMMAND_OPTION,
                {
                    "name": "level",
                    "description": "The permission required.",
                    "type": 3,
                    "required": True,
                    "choices": list(PERMISSION_CHOICES),
                },
            ],
        },
        {
            "name": "bypass",
            "description": "Set the manager role that skips permission checks.",
            "type": 1,
            "options": [
                {
                    "name": "role",
                    "description": "Manager role (leave empty to clear).",
                    "type": 8,
                    "required": False,
                }
            ],
        },
        {
            "name": "overview",
            "description": 'View settings. Leave "command" empty to see ALL commands.',
            "type": 1,
            "options": [dict(_COMMAND_OPTION, required=False)],
        },
    )

    def _targets(self, ctx: InteractionContext) -> list[str]:
        names = ctx.registry.names() if ctx.registry is not None else []
        return [name for name in names if name not in HIDDEN_TARGETS]

    async def autocomplete(
        self, event: InteractionEvent, ctx: InteractionContext
    ) -> list[dict[str, Any]]:
        prefix = (event.focused_value or "").strip().lower()
        matches = [name for name in self._targets(ctx) if name.startswith(prefix)]
        return [
            {"name": name, "value": name}
            for name in matches[:DISCORD_MAX_AUTOCOMPLETE_CHOICES]
        ]

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        workspace_id = await require_workspace(ctx)
        if workspace_id is None:
            return
        sub = event.subcommand
        if sub == "overview":
            await self._overview(event, ctx, workspace_id)
            return
        if sub == "bypass":
            await self._bypass(event, ctx, workspace_id)
            return

        command_name = str(event.option("command") or "").strip().lower()
        if not command_name:
            await ctx.respond_ephemeral("❌ You must specify a command.")
            return
        if ctx.registry is None or command_name not in ctx.registry:
            await ctx.respond_ephemeral(f"❌ Command `{command_name}` not found.")
            return

        store = require_policy_store(ctx)
        async with settings_access():
            workspace = await ctx.policy.load_workspace(workspace_id)
            current = (workspace.rule_for(command_name) if workspace else None) or CommandRule()
            effective = ctx.policy.effective(command_name, workspace)
            if sub == "toggle":
                status = bool(event.option("status"))
                rule = replace(current, enabled=status)
                text = f"✅ **{command_name}** is now **{'ENABLED' if status else 'DISABLED'}**."
            elif sub == "channel":
                rule, text = self._toggle_allow(command_name, current, effective, event.option("channel"))
            elif sub == "block":
                rule, text = self._toggle_block(command_name, current, effective, event.option("channel"))
            elif sub == "permission":
                rule, text = self._permission(command_name, current, event.option("level"))
            else:
                await ctx.respond_ephemeral("❌ Unknown subcommand.")
                return
            if rule.is_empty:
                await store.clear_command_rule(workspace_id, command_name)
            else:
                await store.put_command_rule(workspace_id, command_name, rule)
        await ctx.respond(text)

    def _toggle_allow(
        self,
        command_name: str,
        current: CommandRule,
        effective: EffectivePolicy,
        channel_id: Any,
    ) -> tuple[CommandRule, str]:
        if not channel_id:
            return (
                replace(current, allow_channels=frozenset()),
                f"✅ **{command_name}** is now allowed in **ALL** channels.",
            )
        channel_id = str(channel_id)
        allowed = set(effective.allow_channels)
        if channel_id in allowed:
            allowed.discard(channel_id)
            text = f"✅ **{command_name}** is no longer restricted to <#{channel_id}>."
        else:
            allowed.add(channel_id)
            text = f"✅ **{command_name}** is now allowed in <#{channel_id}>."
        return replace(current, allow_channels=frozenset(allowed)), text

    def _toggle_block(
        self,
        command_name: str,
        current: CommandRule,
        effective: EffectivePolicy,
        channel_id: Any,
    ) -> tuple[CommandRule, str]:
        if not channel_id:
            return (
                replace(current, block_channels=frozenset()),
                f"✅ **{command_name}** is no longer blocked anywhere.",
            )
        channel_id = str(channel_id)
        blocked = set(effective.block_channels)
        if channel_id in blocked:
            blocked.discard(channel_id)
            text = f"✅ **{command_name}** is no longer blocked in <#{channel_id}>."
        else:
            blocked.add(channel_id)
            text = f"✅ **{command_name}** is now blocked in <#{channel_id}>."
        return replace(current, block_channels=frozenset(blocked)), text

    def _permission(
        self, command_name: str, current: CommandRule, level: Any
    ) -> tuple[CommandRule, str]:
        if level == PERMISSION_DEFAULT:
            return (
                replace(current, min_permission=None),
                f"✅ **{command_name}** permission reset to default.",
            )
        token = normalize_capability(level)
        if token is None or token == EVERYONE:
            return (
                replace(current, min_permission=EVERYONE),
                f"✅ **{command_name}** is now available to **everyone**.",
            )
        return (
            replace(current, min_permission=token),
            f"✅ **{command_name}** now requires **{readable_capability(token)}**.",
        )

    async def _bypass(
        self, event: InteractionEvent, ctx: InteractionContext, workspace_id: str
    ) -> None:
        store = require_policy_store(ctx)
        role_id = event.option("role")
        async with settings_access():
            await store.set_bypass_role(workspace_id, str(role_id) if role_id else None)
        if role_id:
            await ctx.respond(f"✅ <@&{role_id}> can now bypass permission checks.")
        else:
            await ctx.respond("✅ Manager role cleared.")

    async def _load_rows(
        self, ctx: InteractionContext, workspace_id: str
    ) -> tuple[Optional[WorkspacePolicy], list[tuple[str, EffectivePolicy]]]:
        async with settings_access():
            workspace = await ctx.policy.load_workspace(workspace_id)
        rows = [
            (name, ctx.policy.effective(name, workspace)) for name in self._targets(ctx)
        ]
        return workspace, rows

    async def _overview(
        self, event: InteractionEvent, ctx: InteractionContext, workspace_id: str
    ) -> None:
        command_name = str(event.option("command") or "").strip().lower()
        if command_name:
            if ctx.registry is None or command_name not in ctx.registry:
                await ctx.respond_ephemeral(f"❌ Command `{command_name}` not found.")
                return
            async with settings_access():
                workspace = await ctx.policy.load_workspace(workspace_id)
            embed = render_single_overview(
                command_name,
                ctx.policy.effective(command_name, workspace),
                bypass_role_id=workspace.bypass_role_id if workspace else None,
            )
            await ctx.respond(embeds=[embed])
            return
        _workspace, rows = await self._load_rows(ctx, workspace_id)
        view = render_overview_page(rows, 0, event.user_id)
        await ctx.respond(embeds=view["embeds"], components=view["components"])

    async def handle_component(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        session: Optional[Session],
    ) -> None:
        key = event.routing_key
        if ctx.workspace_id is None or key is None or key.arg(0) != "page":
            await ctx.respond_ephemeral("❌ Unknown configuration control.")
            return
        try:
            page = int(key.arg(1) or 0)
        except ValueError:
            page = 0
        _workspace, rows = await self._load_rows(ctx, ctx.workspace_id)
        view = render_overview_page(rows, page, event.user_id)
        await ctx.update_message("", embeds=view["embeds"], components=view["components"])

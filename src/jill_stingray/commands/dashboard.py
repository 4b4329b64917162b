from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from ..gateway.classifier import InteractionEvent
from ..gateway.context import InteractionContext
from ..gateway.policy import CommandRule
from ..gateway.registry import BaseCommand
from ..gateway.routing import ComponentRoute, encode_routing_key
from ..gateway.sessions import Session
from ..integrations.discord.components import (
    DISCORD_SELECT_OPTION_MAX_OPTIONS,
    build_action_row,
    build_select_menu,
    build_select_option,
)
from .common import require_policy_store, require_workspace, settings_access

DASHBOARD_FAMILY = "dashboard"
# Never listed, so the dashboard cannot switch itself off.
PROTECTED_COMMANDS = frozenset({"dashboard", "help"})


def render_dashboard(
    modules: list[tuple[str, str, bool]], owner_id: str, *, total: int
) -> dict[str, Any]:
    """`modules` is (name, description, enabled), already sorted and capped."""

    options = [
        build_select_option(
            name[:1].upper() + name[1:],
            name,
            description=description or "No description provided.",
            emoji="🟢" if enabled else "🔴",
            default=enabled,
        )
        for name, description, enabled in modules
    ]
    embed = {
        "title": "🎛️ Dynamic Server Dashboard",
        "description": "Select modules to enable/disable.\n"
        "Selected modules are enabled; everything else is switched off.",
        "color": 0x2B2D31,
        "footer": {"text": f"Total Modules: {total} | Showing: {len(modules)}"},
    }
    components = []
    if options:
        components.append(
            build_action_row(
                [
                    build_select_menu(
                        encode_routing_key(DASHBOARD_FAMILY, owner_id, "select"),
                        options,
                        placeholder="Select active modules...",
                        min_values=0,
                        max_values=len(options),
                    )
                ]
            )
        )
    return {"embeds": [embed], "components": components}


class DashboardCommand(BaseCommand):
    name = "dashboard"
    description = "Configure which bot modules are enabled in this server."
    default_member_permissions = "32"
    component_routes = (ComponentRoute(family=DASHBOARD_FAMILY),)

    def _toggleable(self, ctx: InteractionContext) -> list[tuple[str, str]]:
        if ctx.registry is None:
            return []
        return [
            (command.name, command.description)
            for command in ctx.registry.commands()
            if command.name not in PROTECTED_COMMANDS
        ]

    async def _view(self, ctx: InteractionContext, workspace_id: str) -> dict[str, Any]:
        toggleable = self._toggleable(ctx)
        async with settings_access():
            workspace = await ctx.policy.load_workspace(workspace_id)
        modules = [
            (name, description, ctx.policy.effective(name, workspace).enabled)
            for name, description in toggleable[:DISCORD_SELECT_OPTION_MAX_OPTIONS]
        ]
        return render_dashboard(modules, ctx.invoker_id, total=len(toggleable))

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        workspace_id = await require_workspace(ctx)
        if workspace_id is None:
            return
        view = await self._view(ctx, workspace_id)
        await ctx.respond(embeds=view["embeds"], components=view["components"])

    async def handle_component(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        session: Optional[Session],
    ) -> None:
        workspace_id = await require_workspace(ctx)
        if workspace_id is None:
            return
        store = require_policy_store(ctx)
        selected = set(event.values)
        visible = self._toggleable(ctx)[:DISCORD_SELECT_OPTION_MAX_OPTIONS]
        async with settings_access():
            workspace = await ctx.policy.load_workspace(workspace_id)
            for name, _description in visible:
                current = (workspace.rule_for(name) if workspace else None) or CommandRule()
                enabled = name in selected
                if current.enabled is enabled:
                    continue
                await store.put_command_rule(
                    workspace_id, name, replace(current, enabled=enabled)
                )
        view = await self._view(ctx, workspace_id)
        await ctx.update_message("", embeds=view["embeds"], components=view["components"])

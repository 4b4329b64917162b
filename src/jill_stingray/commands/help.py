from __future__ import annotations

from typing import Any, Optional

from ..gateway.classifier import InteractionEvent
from ..gateway.context import InteractionContext
from ..gateway.registry import BaseCommand, Command
from ..gateway.routing import ComponentRoute, encode_routing_key
from ..gateway.sessions import Session
from ..integrations.discord.components import (
    build_action_row,
    build_button,
    build_pager_row,
    build_select_menu,
    build_select_option,
)
from ..integrations.discord.rendering import paginate

HELP_FAMILY = "help"
PAGE_SIZE = 9

_OPTION_TYPE_NAMES = {
    1: "Subcommand",
    2: "Subcommand Group",
    3: "String",
    4: "Integer",
    5: "Boolean",
    6: "User",
    7: "Channel",
    8: "Role",
}


def _parse_page(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


def render_help_page(
    commands: list[Command], page: int, owner_id: str
) -> dict[str, Any]:
    batch, page, total_pages = paginate(commands, page, PAGE_SIZE)
    embed = {
        "title": "🍸 Jill Stingray | Command Menu",
        "description": "Select a command below for full details.",
        "color": 0xA45EE5,
        "fields": [
            {"name": f"/{command.name}", "value": command.description, "inline": True}
            for command in batch
        ],
        "footer": {"text": f"Page {page + 1} of {total_pages} • Augmented Eye Network"},
    }
    components: list[dict[str, Any]] = []
    if batch:
        components.append(
            build_action_row(
                [
                    build_select_menu(
                        encode_routing_key(HELP_FAMILY, owner_id, "select", page),
                        [
                            build_select_option(
                                f"/{command.name}",
                                command.name,
                                description=command.description[:50],
                            )
                            for command in batch
                        ],
                        placeholder="Select a command to view details...",
                    )
                ]
            )
        )
    if total_pages > 1:
        components.append(
            build_pager_row(
                page=page,
                total_pages=total_pages,
                custom_id_for_page=lambda target, direction: encode_routing_key(
                    HELP_FAMILY, owner_id, "page", target, direction
                ),
            )
        )
    return {"embeds": [embed], "components": components}


def render_help_detail(
    command: Command, return_page: int, owner_id: str
) -> dict[str, Any]:
    lines = []
    for option in command.options:
        type_name = _OPTION_TYPE_NAMES.get(option.get("type"), "Unknown")
        required = "(Required)" if option.get("required") else "(Optional)"
        lines.append(
            f"`{option.get('name')}` - {option.get('description', '')} "
            f"*{type_name} {required}*"
        )
    restricted = getattr(command, "default_member_permissions", None)
    embed = {
        "title": f"Start-up / {command.name}",
        "color": 0x00FF99,
        "fields": [
            {
                "name": "Description",
                "value": command.description or "No description provided.",
            },
            {"name": "Usage / Arguments", "value": "\n".join(lines) or "None"},
            {
                "name": "Permissions",
                "value": "⚠️ Restricted (Moderators/Admins)"
                if restricted
                else "None (Public)",
            },
        ],
        "footer": {"text": "Press Back to return to the menu."},
    }
    back = build_button(
        "Back to Menu",
        encode_routing_key(HELP_FAMILY, owner_id, "page", return_page, "back"),
        emoji="↩️",
    )
    return {"embeds": [embed], "components": [build_action_row([back])]}


class HelpCommand(BaseCommand):
    name = "help"
    description = "Browse the cocktail menu (Command List)."
    component_routes = (ComponentRoute(family=HELP_FAMILY),)

    def _commands(self, ctx: InteractionContext) -> list[Command]:
        return ctx.registry.commands() if ctx.registry is not None else []

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        view = render_help_page(self._commands(ctx), 0, event.user_id)
        await ctx.respond(embeds=view["embeds"], components=view["components"])

    async def handle_component(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        session: Optional[Session],
    ) -> None:
        key = event.routing_key
        action = key.arg(0) if key else None
        page = _parse_page(key.arg(1) if key else None)
        commands = self._commands(ctx)
        if action == "select" and event.values:
            selected = ctx.registry.get(event.values[0]) if ctx.registry else None
            if selected is not None:
                view = render_help_detail(selected, page, event.user_id)
                await ctx.update_message(
                    "", embeds=view["embeds"], components=view["components"]
                )
                return
        view = render_help_page(commands, page, event.user_id)
        await ctx.update_message("", embeds=view["embeds"], components=view["components"])

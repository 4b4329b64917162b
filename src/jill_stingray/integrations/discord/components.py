from __future__ import annotations

from typing import Any, Optional

DISCORD_BUTTON_STYLE_PRIMARY = 1
DISCORD_BUTTON_STYLE_SECONDARY = 2
DISCORD_BUTTON_STYLE_SUCCESS = 3
DISCORD_BUTTON_STYLE_DANGER = 4
DISCORD_SELECT_OPTION_MAX_OPTIONS = 25
DISCORD_TEXT_INPUT_SHORT = 1
DISCORD_TEXT_INPUT_PARAGRAPH = 2


def build_action_row(components: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "type": 1,
        "components": components,
    }


def build_button(
    label: str,
    custom_id: str,
    *,
    style: int = DISCORD_BUTTON_STYLE_SECONDARY,
    emoji: Optional[str] = None,
    disabled: bool = False,
) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": 2,
        "style": style,
        "label": label[:80],
        "custom_id": custom_id,
        "disabled": disabled,
    }
    if emoji:
        button["emoji"] = {"name": emoji}
    return button


def build_select_menu(
    custom_id: str,
    options: list[dict[str, Any]],
    *,
    placeholder: Optional[str] = None,
    min_values: int = 1,
    max_values: int = 1,
    disabled: bool = False,
) -> dict[str, Any]:
    capped = options[:DISCORD_SELECT_OPTION_MAX_OPTIONS]
    select: dict[str, Any] = {
        "type": 3,
        "custom_id": custom_id,
        "options": capped,
        "min_values": max(min(min_values, len(capped)), 0),
        "max_values": max(min(max_values, len(capped)), 1),
        "disabled": disabled,
    }
    if placeholder:
        select["placeholder"] = placeholder[:150]
    return select


def build_select_option(
    label: str,
    value: str,
    *,
    description: Optional[str] = None,
    emoji: Optional[str] = None,
    default: bool = False,
) -> dict[str, Any]:
    option: dict[str, Any] = {
        "label": label[:100],
        "value": value[:100],
        "default": default,
    }
    if description:
        option["description"] = (
            description if len(description) <= 100 else description[:97] + "..."
        )
    if emoji:
        option["emoji"] = {"name": emoji}
    return option


def build_text_input(
    custom_id: str,
    label: str,
    *,
    style: int = DISCORD_TEXT_INPUT_SHORT,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    placeholder: Optional[str] = None,
    required: bool = True,
) -> dict[str, Any]:
    text_input: dict[str, Any] = {
        "type": 4,
        "custom_id": custom_id,
        "label": label[:45],
        "style": style,
        "required": required,
    }
    if min_length is not None:
        text_input["min_length"] = min_length
    if max_length is not None:
        text_input["max_length"] = max_length
    if placeholder:
        text_input["placeholder"] = placeholder[:100]
    return text_input


def build_pager_row(
    *,
    page: int,
    total_pages: int,
    custom_id_for_page: Any,
    extra: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Previous/next buttons.

    `custom_id_for_page(target_page, direction)` builds each id; the direction
    keeps the two ids distinct when both point at the same page.
    """

    buttons = [
        build_button(
            "◀ Prev",
            custom_id_for_page(max(page - 1, 0), "prev"),
            disabled=page <= 0,
        ),
    ]
    buttons.extend(extra or [])
    buttons.append(
        build_button(
            "Next ▶",
            custom_id_for_page(min(page + 1, max(total_pages - 1, 0)), "next"),
            disabled=page >= total_pages - 1,
        )
    )
    return build_action_row(buttons)

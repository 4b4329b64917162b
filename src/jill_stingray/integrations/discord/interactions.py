from __future__ import annotations

from typing import Any, Optional

INTERACTION_TYPE_PING = 1
INTERACTION_TYPE_APPLICATION_COMMAND = 2
INTERACTION_TYPE_MESSAGE_COMPONENT = 3
INTERACTION_TYPE_AUTOCOMPLETE = 4
INTERACTION_TYPE_MODAL_SUBMIT = 5

_SUBCOMMAND_OPTION_TYPES = (1, 2)


def _as_id(value: object) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _data(interaction_payload: dict[str, Any]) -> dict[str, Any]:
    data = interaction_payload.get("data")
    return data if isinstance(data, dict) else {}


def extract_interaction_type(interaction_payload: dict[str, Any]) -> Optional[int]:
    value = interaction_payload.get("type")
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _leaf_options(data: dict[str, Any]) -> tuple[list[str], list[Any]]:
    path: list[str] = []
    options = data.get("options")
    current_options = options if isinstance(options, list) else []
    while current_options:
        first = current_options[0]
        if not isinstance(first, dict):
            break
        if first.get("type") not in _SUBCOMMAND_OPTION_TYPES:
            break
        name = first.get("name")
        if isinstance(name, str) and name:
            path.append(name)
        nested = first.get("options")
        current_options = nested if isinstance(nested, list) else []
    return path, current_options


def extract_command_path_and_options(
    interaction_payload: dict[str, Any],
) -> tuple[tuple[str, ...], dict[str, Any]]:
    data = _data(interaction_payload)
    root_name = data.get("name")
    if not isinstance(root_name, str) or not root_name:
        return (), {}

    subpath, leaf_options = _leaf_options(data)
    parsed_options: dict[str, Any] = {}
    for item in leaf_options:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name:
            continue
        parsed_options[name] = item.get("value")

    return (root_name, *subpath), parsed_options


def extract_focused_option(
    interaction_payload: dict[str, Any],
) -> tuple[Optional[str], str]:
    """Name and partial value of the option an autocomplete request is for."""

    _, leaf_options = _leaf_options(_data(interaction_payload))
    for item in leaf_options:
        if isinstance(item, dict) and item.get("focused"):
            name = item.get("name")
            value = item.get("value")
            return (
                name if isinstance(name, str) else None,
                "" if value is None else str(value),
            )
    return None, ""


def extract_interaction_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("id"))


def extract_interaction_token(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("token"))


def extract_application_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("application_id"))


def extract_channel_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    channel_id = _as_id(interaction_payload.get("channel_id"))
    if channel_id:
        return channel_id
    channel = interaction_payload.get("channel")
    if isinstance(channel, dict):
        return _as_id(channel.get("id"))
    return None


def extract_guild_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("guild_id"))


def extract_message_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    message = interaction_payload.get("message")
    if isinstance(message, dict):
        return _as_id(message.get("id"))
    return None


def extract_component_custom_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(_data(interaction_payload).get("custom_id"))


def extract_component_values(interaction_payload: dict[str, Any]) -> list[str]:
    values = _data(interaction_payload).get("values")
    if not isinstance(values, list):
        return []
    return [str(v) for v in values if isinstance(v, (str, int, float))]


def extract_modal_values(interaction_payload: dict[str, Any]) -> dict[str, str]:
    """Text inputs of a modal submission keyed by their `custom_id`."""

    values: dict[str, str] = {}
    rows = _data(interaction_payload).get("components")
    if not isinstance(rows, list):
        return values
    for row in rows:
        children = row.get("components") if isinstance(row, dict) else None
        if not isinstance(children, list):
            continue
        for child in children:
            if not isinstance(child, dict):
                continue
            custom_id = _as_id(child.get("custom_id"))
            value = child.get("value")
            if custom_id and value is not None:
                values[custom_id] = str(value)
    return values


def extract_resolved(interaction_payload: dict[str, Any]) -> dict[str, Any]:
    resolved = _data(interaction_payload).get("resolved")
    return resolved if isinstance(resolved, dict) else {}

"""Turns a raw `INTERACTION_CREATE` payload into a typed event."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..integrations.discord.interactions import (
    INTERACTION_TYPE_APPLICATION_COMMAND,
    INTERACTION_TYPE_AUTOCOMPLETE,
    INTERACTION_TYPE_MESSAGE_COMPONENT,
    INTERACTION_TYPE_MODAL_SUBMIT,
    extract_application_id,
    extract_channel_id,
    extract_command_path_and_options,
    extract_component_custom_id,
    extract_component_values,
    extract_focused_option,
    extract_guild_id,
    extract_interaction_id,
    extract_interaction_token,
    extract_interaction_type,
    extract_message_id,
    extract_modal_values,
    extract_resolved,
)
from .permissions import Invoker
from .routing import RoutingKey, decode_routing_key


class EventKind(str, Enum):
    COMMAND = "command"
    AUTOCOMPLETE = "autocomplete"
    COMPONENT = "component"


class ComponentSource(str, Enum):
    MESSAGE = "message"
    MODAL = "modal"


@dataclass(frozen=True)
class InteractionEvent:
    kind: EventKind
    interaction_id: str
    token: str
    invoker: Invoker
    workspace_id: Optional[str] = None
    channel_id: Optional[str] = None
    application_id: Optional[str] = None
    command_name: Optional[str] = None
    command_path: tuple[str, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)
    focused_option: Optional[str] = None
    focused_value: str = ""
    custom_id: Optional[str] = None
    routing_key: Optional[RoutingKey] = None
    component_source: Optional[ComponentSource] = None
    values: tuple[str, ...] = ()
    modal_values: dict[str, str] = field(default_factory=dict)
    message_id: Optional[str] = None
    resolved: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def user_id(self) -> str:
        return self.invoker.user_id

    @property
    def subcommand(self) -> Optional[str]:
        return self.command_path[1] if len(self.command_path) > 1 else None

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)


def classify(payload: dict[str, Any]) -> Optional[InteractionEvent]:
    """Classify one interaction; returns None for pings and malformed payloads."""

    interaction_type = extract_interaction_type(payload)
    interaction_id = extract_interaction_id(payload)
    token = extract_interaction_token(payload)
    invoker = Invoker.from_interaction(payload)
    if not interaction_id or not token or invoker is None:
        return None

    common: dict[str, Any] = {
        "interaction_id": interaction_id,
        "token": token,
        "invoker": invoker,
        "workspace_id": extract_guild_id(payload),
        "channel_id": extract_channel_id(payload),
        "application_id": extract_application_id(payload),
        "message_id": extract_message_id(payload),
        "resolved": extract_resolved(payload),
        "raw": payload,
    }

    if interaction_type in (
        INTERACTION_TYPE_APPLICATION_COMMAND,
        INTERACTION_TYPE_AUTOCOMPLETE,
    ):
        command_path, options = extract_command_path_and_options(payload)
        if not command_path:
            return None
        if interaction_type == INTERACTION_TYPE_AUTOCOMPLETE:
            focused_option, focused_value = extract_focused_option(payload)
            return InteractionEvent(
                kind=EventKind.AUTOCOMPLETE,
                command_name=command_path[0],
                command_path=command_path,
                options=options,
                focused_option=focused_option,
                focused_value=focused_value,
                **common,
            )
        return InteractionEvent(
            kind=EventKind.COMMAND,
            command_name=command_path[0],
            command_path=command_path,
            options=options,
            **common,
        )

    if interaction_type in (
        INTERACTION_TYPE_MESSAGE_COMPONENT,
        INTERACTION_TYPE_MODAL_SUBMIT,
    ):
        custom_id = extract_component_custom_id(payload)
        if not custom_id:
            return None
        is_modal = interaction_type == INTERACTION_TYPE_MODAL_SUBMIT
        return InteractionEvent(
            kind=EventKind.COMPONENT,
            custom_id=custom_id,
            routing_key=decode_routing_key(custom_id),
            component_source=ComponentSource.MODAL
            if is_modal
            else ComponentSource.MESSAGE,
            values=tuple(extract_component_values(payload)),
            modal_values=extract_modal_values(payload) if is_modal else {},
            **common,
        )

    return None

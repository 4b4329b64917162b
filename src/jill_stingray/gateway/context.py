"""Per-interaction responder and the collaborators handlers may use.

Discord accepts exactly one callback per interaction; everything after it
goes through the webhook endpoints. `InteractionContext` tracks which of
the two phases an interaction is in so handlers never have to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..integrations.discord.constants import (
    DISCORD_EPHEMERAL_FLAG,
    DISCORD_MAX_AUTOCOMPLETE_CHOICES,
    DISCORD_MAX_MESSAGE_LENGTH,
    RESPONSE_AUTOCOMPLETE_RESULT,
    RESPONSE_CHANNEL_MESSAGE,
    RESPONSE_DEFERRED_CHANNEL_MESSAGE,
    RESPONSE_DEFERRED_UPDATE_MESSAGE,
    RESPONSE_MODAL,
    RESPONSE_UPDATE_MESSAGE,
)
from ..integrations.discord.rendering import truncate_for_discord
from .classifier import InteractionEvent
from .policy import PolicyResolver
from .sessions import Session, SessionStore

if TYPE_CHECKING:
    from ..integrations.discord.state import DiscordStateStore
    from .registry import CommandRegistry


def build_message_data(
    content: Optional[str] = None,
    *,
    embeds: Optional[list[dict[str, Any]]] = None,
    components: Optional[list[dict[str, Any]]] = None,
    ephemeral: bool = False,
    max_len: int = DISCORD_MAX_MESSAGE_LENGTH,
) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if content is not None:
        data["content"] = truncate_for_discord(content, max_len=max_len)
    if embeds is not None:
        data["embeds"] = embeds
    if components is not None:
        data["components"] = components
    if ephemeral:
        data["flags"] = DISCORD_EPHEMERAL_FLAG
    return data


@dataclass
class InteractionContext:
    event: InteractionEvent
    rest: Any
    application_id: str
    sessions: SessionStore
    policy: PolicyResolver
    registry: Optional["CommandRegistry"] = None
    state: Optional["DiscordStateStore"] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    max_message_length: int = DISCORD_MAX_MESSAGE_LENGTH
    acknowledged: bool = False
    deferred: bool = False

    @property
    def invoker_id(self) -> str:
        return self.event.user_id

    @property
    def workspace_id(self) -> Optional[str]:
        return self.event.workspace_id

    def _data(
        self,
        content: Optional[str],
        embeds: Optional[list[dict[str, Any]]],
        components: Optional[list[dict[str, Any]]],
        ephemeral: bool = False,
    ) -> dict[str, Any]:
        return build_message_data(
            content,
            embeds=embeds,
            components=components,
            ephemeral=ephemeral,
            max_len=self.max_message_length,
        )

    async def _callback(self, payload: dict[str, Any]) -> None:
        await self.rest.create_interaction_response(
            interaction_id=self.event.interaction_id,
            interaction_token=self.event.token,
            payload=payload,
        )
        self.acknowledged = True

    async def respond(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
        ephemeral: bool = False,
    ) -> None:
        """Reply to the interaction, or fill in the deferred reply."""

        if self.acknowledged:
            await self.edit_original(content, embeds=embeds, components=components)
            return
        await self._callback(
            {
                "type": RESPONSE_CHANNEL_MESSAGE,
                "data": self._data(content, embeds, components, ephemeral),
            }
        )

    async def respond_ephemeral(self, content: str) -> None:
        await self.respond(content, ephemeral=True)

    async def defer(self, *, ephemeral: bool = False) -> None:
        if self.acknowledged:
            return
        await self._callback(
            {
                "type": RESPONSE_DEFERRED_CHANNEL_MESSAGE,
                "data": {"flags": DISCORD_EPHEMERAL_FLAG} if ephemeral else {},
            }
        )
        self.deferred = True

    async def defer_update(self) -> None:
        if self.acknowledged:
            return
        await self._callback({"type": RESPONSE_DEFERRED_UPDATE_MESSAGE})
        self.deferred = True

    async def update_message(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        """Edit the message that carried the activated component."""

        if self.acknowledged:
            await self.edit_original(content, embeds=embeds, components=components)
            return
        await self._callback(
            {
                "type": RESPONSE_UPDATE_MESSAGE,
                "data": self._data(content, embeds, components),
            }
        )

    async def edit_original(
        self,
        content: Optional[str] = None,
        *,
        embeds: Optional[list[dict[str, Any]]] = None,
        components: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        await self.rest.edit_original_interaction_response(
            application_id=self.application_id,
            interaction_token=self.event.token,
            payload=self._data(content, embeds, components),
        )

    async def open_modal(
        self, *, custom_id: str, title: str, components: list[dict[str, Any]]
    ) -> None:
        await self._callback(
            {
                "type": RESPONSE_MODAL,
                "data": {
                    "custom_id": custom_id,
                    "title": title[:45],
                    "components": components,
                },
            }
        )

    async def autocomplete_result(self, choices: list[dict[str, Any]]) -> None:
        await self._callback(
            {
                "type": RESPONSE_AUTOCOMPLETE_RESULT,
                "data": {"choices": choices[:DISCORD_MAX_AUTOCOMPLETE_CHOICES]},
            }
        )

    async def send_error(self, text: str) -> None:
        """Ephemeral reply before acknowledgement, an edit afterwards."""

        if self.acknowledged:
            await self.edit_original(text, embeds=[], components=[])
            return
        await self.respond(text, ephemeral=True)

    async def start_session(self, session: Session) -> Optional[Session]:
        return await self.sessions.put(session)

"""`/dangeru`: an anonymous textboard pinned to one channel per guild.

Posters are identified only by a daily tripcode derived from their user id.
The board message is re-posted after every write so it stays at the bottom
of the channel. Its buttons are public: anyone may page or write.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Optional

from ..core.exceptions import PermanentError, StoreUnavailableError
from ..core.logging_utils import log_event
from ..gateway.classifier import InteractionEvent
from ..gateway.context import InteractionContext
from ..gateway.registry import BaseCommand
from ..gateway.routing import ComponentRoute, Ownership, encode_routing_key
from ..gateway.sessions import Session
from ..integrations.discord.components import (
    DISCORD_BUTTON_STYLE_SUCCESS,
    DISCORD_TEXT_INPUT_PARAGRAPH,
    build_action_row,
    build_button,
    build_text_input,
)
from ..integrations.discord.errors import DiscordAPIError
from ..integrations.discord.rendering import paginate
from ..integrations.discord.state import DANGERU_MAX_POSTS, DangeruPost, DiscordStateStore
from .common import require_workspace

DANGERU_FAMILY = "dangeru"
POSTS_PER_PAGE = 5
MESSAGE_MIN_LENGTH = 2
MESSAGE_MAX_LENGTH = 500
TRIP_SALT = "SALT"
MODAL_INPUT_ID = "dangeru_msg"
POST_FAILED_MESSAGE = "❌ Failed."

WRITE_ID = encode_routing_key(DANGERU_FAMILY, None, "write")
SUBMIT_ID = encode_routing_key(DANGERU_FAMILY, None, "submit")


def tripcode_for(user_id: str, *, now: Optional[datetime] = None) -> str:
    """`!` plus six hex digits; stable for one user for one UTC day."""

    today = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    digest = hashlib.sha256(f"{user_id}-{today}-{TRIP_SALT}".encode("utf-8")).hexdigest()
    return "!" + digest[:6].upper()


def normalize_tripcode(value: str) -> str:
    cleaned = value.strip().upper()
    return cleaned if cleaned.startswith("!") else "!" + cleaned


def _page_id(page: int) -> str:
    return encode_routing_key(DANGERU_FAMILY, None, "page", page)


def _noop_id(direction: str) -> str:
    return encode_routing_key(DANGERU_FAMILY, None, "noop", direction)


def render_board(posts: list[DangeruPost], page: int, total_posts: int) -> dict[str, Any]:
    """`posts` is the page's slice, newest first."""

    _, page, total_pages = paginate(range(total_posts), page, POSTS_PER_PAGE)
    if posts:
        description = "\n\n".join(
            f"**Anonymous {post.trip}** [{post.time_label}]\n{post.content}"
            for post in reversed(posts)
        )
    else:
        description = "*[No transmissions found]*"
    embed = {
        "title": "🟢 Dangeru Feed",
        "description": description,
        "color": 0x00FF00,
        "footer": {"text": f"Page {page + 1}/{total_pages} • Augmented Eye Network"},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    has_older = (page + 1) * POSTS_PER_PAGE < total_posts
    buttons = [
        build_button(
            "< Newer",
            _page_id(page - 1) if page > 0 else _noop_id("prev"),
            disabled=page <= 0,
        ),
        build_button(
            "WRITE POST", WRITE_ID, style=DISCORD_BUTTON_STYLE_SUCCESS, emoji="📝"
        ),
        build_button(
            "Older >",
            _page_id(page + 1) if has_older else _noop_id("next"),
            disabled=not has_older,
        ),
    ]
    return {
        "embeds": [embed],
        "components": [build_action_row(buttons)],
        "allowed_mentions": {"parse": []},
    }


def _require_state(ctx: InteractionContext) -> DiscordStateStore:
    if ctx.state is None:
        raise PermanentError("no state store configured", user_message=POST_FAILED_MESSAGE)
    return ctx.state


class DangeruCommand(BaseCommand):
    name = "dangeru"
    description = "Manage the Dangeru textboard node."
    component_routes = (ComponentRoute(family=DANGERU_FAMILY, ownership=Ownership.PUBLIC),)
    subcommand_permissions = MappingProxyType(
        {
            "setup": "manageMessages",
            "wipe": "manageMessages",
            "logs": "administrator",
        }
    )
    options = (
        {
            "name": "setup",
            "description": "[Manager] Spawn the Dangeru Terminal Button here.",
            "type": 1,
        },
        {
            "name": "wipe",
            "description": "[Manager] Wipe all Dangeru archives.",
            "type": 1,
        },
        {
            "name": "logs",
            "description": "[Admin] Reveal the identity behind a tripcode.",
            "type": 1,
            "options": [
                {
                    "name": "tripcode",
                    "description": "The tripcode to investigate (e.g. !A1B2C3).",
                    "type": 3,
                    "required": True,
                }
            ],
        },
        {
            "name": "post",
            "description": "Manually post a message to the feed.",
            "type": 1,
            "options": [
                {
                    "name": "message",
                    "description": "Your anonymous message.",
                    "type": 3,
                    "required": True,
                    "min_length": MESSAGE_MIN_LENGTH,
                    "max_length": MESSAGE_MAX_LENGTH,
                }
            ],
        },
    )

    async def execute(self, event: InteractionEvent, ctx: InteractionContext) -> None:
        guild_id = await require_workspace(ctx)
        if guild_id is None:
            return
        sub = event.subcommand
        if sub == "setup":
            await self._setup(event, ctx, guild_id)
        elif sub == "wipe":
            await self._wipe(event, ctx, guild_id)
        elif sub == "logs":
            await self._logs(event, ctx, guild_id)
        elif sub == "post":
            await self.process_post(event, ctx, str(event.option("message") or ""))
        else:
            await ctx.respond_ephemeral("❌ Unknown subcommand.")

    async def _setup(
        self, event: InteractionEvent, ctx: InteractionContext, guild_id: str
    ) -> None:
        state = _require_state(ctx)
        channel_id = event.channel_id or ""
        await self._delete_board_message(ctx, guild_id)
        await state.set_board(
            guild_id, channel_id=channel_id, message_id=None, owner_id=event.user_id
        )
        await self.publish_board(ctx, guild_id, channel_id)
        await ctx.respond_ephemeral("✅ **Terminal Deployed.**")

    async def _wipe(
        self, event: InteractionEvent, ctx: InteractionContext, guild_id: str
    ) -> None:
        state = _require_state(ctx)
        removed = await state.wipe_posts(guild_id)
        board = await state.get_board(guild_id)
        channel_id = board.channel_id if board else (event.channel_id or "")
        await self.publish_board(ctx, guild_id, channel_id)
        log_event(
            ctx.logger,
            logging.INFO,
            "discord.dangeru.wiped",
            guild_id=guild_id,
            removed=removed,
            user_id=event.user_id,
        )
        await ctx.respond_ephemeral("✅ **Database Purged.** System Reset.")

    async def _logs(
        self, event: InteractionEvent, ctx: InteractionContext, guild_id: str
    ) -> None:
        state = _require_state(ctx)
        trip = normalize_tripcode(str(event.option("tripcode") or ""))
        matches = await state.posts_by_trip(guild_id, trip)
        if not matches:
            await ctx.respond_ephemeral(f"🔍 No records found for tripcode `{trip}`.")
            return
        lines = []
        for post in matches:
            user_tag = f"**{post.author_name}**" if post.author_name else "Unknown User"
            lines.append(
                f"• {post.created_at} | {user_tag} (`{post.author_id}`)\n"
                f'  > "{post.content}"'
            )
        await ctx.respond(
            embeds=[
                {
                    "title": f"📂 Security Log: {trip}",
                    "description": "\n\n".join(lines)[:4000],
                    "color": 0xFF0000,
                    "footer": {"text": "Confidential Administration Log"},
                }
            ],
            ephemeral=True,
        )

    async def handle_component(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        session: Optional[Session],
    ) -> None:
        key = event.routing_key
        action = key.arg(0) if key else None
        if action == "write":
            await ctx.open_modal(
                custom_id=SUBMIT_ID,
                title="Compose Dangeru Post",
                components=[
                    build_action_row(
                        [
                            build_text_input(
                                MODAL_INPUT_ID,
                                "Message",
                                style=DISCORD_TEXT_INPUT_PARAGRAPH,
                                min_length=MESSAGE_MIN_LENGTH,
                                max_length=MESSAGE_MAX_LENGTH,
                                placeholder="Type your message...",
                            )
                        ]
                    )
                ],
            )
        elif action == "submit":
            await self.process_post(event, ctx, event.modal_values.get(MODAL_INPUT_ID, ""))
        elif action == "page":
            await self._flip(event, ctx, key.arg(1) if key else None)
        else:
            await ctx.defer_update()

    async def _flip(
        self, event: InteractionEvent, ctx: InteractionContext, raw_page: Optional[str]
    ) -> None:
        guild_id = ctx.workspace_id
        if guild_id is None:
            await ctx.defer_update()
            return
        try:
            page = int(raw_page or 0)
        except ValueError:
            page = 0
        payload = await self._board_payload(ctx, guild_id, page)
        await ctx.defer_update()
        if event.channel_id and event.message_id:
            await ctx.rest.edit_channel_message(
                channel_id=event.channel_id,
                message_id=event.message_id,
                payload=payload,
            )

    async def process_post(
        self, event: InteractionEvent, ctx: InteractionContext, message: str
    ) -> None:
        guild_id = ctx.workspace_id
        content = message.strip()
        if guild_id is None:
            await ctx.respond_ephemeral(POST_FAILED_MESSAGE)
            return
        if not MESSAGE_MIN_LENGTH <= len(content) <= MESSAGE_MAX_LENGTH:
            await ctx.respond_ephemeral(
                f"❌ Posts must be {MESSAGE_MIN_LENGTH}-{MESSAGE_MAX_LENGTH} characters."
            )
            return
        await ctx.defer(ephemeral=True)
        state = _require_state(ctx)
        trip = tripcode_for(event.user_id)
        try:
            returning = await state.add_post(
                guild_id,
                trip=trip,
                content=content,
                time_label=datetime.now(timezone.utc).strftime("%H:%M"),
                author_id=event.user_id,
                author_name=event.invoker.display_name,
            )
            board = await state.get_board(guild_id)
            channel_id = board.channel_id if board else (event.channel_id or "")
            await self.publish_board(ctx, guild_id, channel_id)
        except (DiscordAPIError, StoreUnavailableError) as exc:
            raise PermanentError(
                f"dangeru post failed: {exc}", user_message=POST_FAILED_MESSAGE
            ) from exc

        if returning:
            await ctx.rest.delete_original_interaction_response(
                application_id=ctx.application_id,
                interaction_token=event.token,
            )
        else:
            await ctx.respond(f"✅ **Posted.** ID: `{trip}`")

    async def _board_payload(
        self, ctx: InteractionContext, guild_id: str, page: int
    ) -> dict[str, Any]:
        state = _require_state(ctx)
        total = min(await state.count_posts(guild_id), DANGERU_MAX_POSTS)
        _, page, _ = paginate(range(total), page, POSTS_PER_PAGE)
        posts = await state.list_posts(
            guild_id, offset=page * POSTS_PER_PAGE, limit=POSTS_PER_PAGE
        )
        return render_board(posts, page, total)

    async def _delete_board_message(self, ctx: InteractionContext, guild_id: str) -> None:
        board = await _require_state(ctx).get_board(guild_id)
        if board is None or not board.message_id:
            return
        try:
            await ctx.rest.delete_channel_message(
                channel_id=board.channel_id, message_id=board.message_id
            )
        except DiscordAPIError as exc:
            log_event(
                ctx.logger,
                logging.WARNING,
                "discord.dangeru.board_delete_failed",
                guild_id=guild_id,
                channel_id=board.channel_id,
                message_id=board.message_id,
                exc=exc,
            )

    async def publish_board(
        self, ctx: InteractionContext, guild_id: str, channel_id: str
    ) -> None:
        """Replace the board message with a fresh first page in `channel_id`."""

        if not channel_id:
            return
        state = _require_state(ctx)
        payload = await self._board_payload(ctx, guild_id, 0)
        board = await state.get_board(guild_id)
        if board is not None and board.channel_id == channel_id:
            await self._delete_board_message(ctx, guild_id)
        message = await ctx.rest.create_channel_message(
            channel_id=channel_id, payload=payload
        )
        await state.set_board(
            guild_id,
            channel_id=channel_id,
            message_id=str(message.get("id") or "") or None,
        )

"""Discord transport: gateway websocket, REST client and bot service."""

from .command_registry import sync_commands
from .constants import (
    DISCORD_API_BASE_URL,
    DISCORD_EPHEMERAL_FLAG,
    DISCORD_GATEWAY_URL,
    DISCORD_MAX_MESSAGE_LENGTH,
)
from .errors import (
    DiscordAPIError,
    DiscordError,
    DiscordPermanentError,
    DiscordTransientError,
)
from .gateway import DiscordGatewayClient
from .rest import DiscordRestClient
from .service import JillStingrayService, create_service
from .state import DiscordStateStore

__all__ = [
    "DISCORD_API_BASE_URL",
    "DISCORD_EPHEMERAL_FLAG",
    "DISCORD_GATEWAY_URL",
    "DISCORD_MAX_MESSAGE_LENGTH",
    "DiscordAPIError",
    "DiscordError",
    "DiscordGatewayClient",
    "DiscordPermanentError",
    "DiscordRestClient",
    "DiscordStateStore",
    "DiscordTransientError",
    "JillStingrayService",
    "create_service",
    "sync_commands",
]

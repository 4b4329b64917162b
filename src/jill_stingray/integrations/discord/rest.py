from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from ...core.logging_utils import log_event
from .constants import DISCORD_API_BASE_URL
from .errors import DiscordAPIError, DiscordPermanentError, DiscordTransientError

logger = logging.getLogger(__name__)

_RETRYABLE_NETWORK_ERRORS = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.RemoteProtocolError,
)


class DiscordRestClient:
    def __init__(
        self,
        *,
        bot_token: str,
        timeout_seconds: float = 10.0,
        base_url: str = DISCORD_API_BASE_URL,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds, transport=transport
        )
        self._authorization_header = f"Bot {bot_token}"
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._sleep = sleep

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DiscordRestClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        delay = self._retry_base_delay * (2**attempt) + random.uniform(0, 1)
        return float(min(delay, self._retry_max_delay))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | list[dict[str, Any]] | None = None,
        params: Optional[dict[str, Any]] = None,
        reason: Optional[str] = None,
        expect_json: bool = True,
    ) -> Any:
        headers = {"Authorization": self._authorization_header}
        if reason:
            headers["X-Audit-Log-Reason"] = quote(reason[:512], safe=" ")
        rate_limit_retries = 0
        retry_attempt = 0

        while True:
            try:
                response = await self._client.request(
                    method, path, json=payload, params=params, headers=headers
                )
            except _RETRYABLE_NETWORK_ERRORS as exc:
                if retry_attempt < self._max_retries:
                    retry_attempt += 1
                    delay = self._calculate_retry_delay(retry_attempt)
                    log_event(
                        logger,
                        logging.WARNING,
                        "discord.rest.network_retry",
                        method=method,
                        path=path,
                        attempt=retry_attempt,
                        delay_seconds=round(delay, 2),
                        exc=exc,
                    )
                    await self._sleep(delay)
                    continue
                raise DiscordTransientError(
                    f"Discord API network error for {method} {path}: {exc}"
                ) from exc
            except httpx.HTTPError as exc:
                raise DiscordAPIError(
                    f"Discord API request error for {method} {path}: {exc}"
                ) from exc

            status_code = response.status_code
            if 200 <= status_code < 300:
                if not expect_json or not response.content:
                    return None if not expect_json else {}
                try:
                    return response.json()
                except ValueError as exc:
                    raise DiscordAPIError(
                        f"Discord API returned non-JSON success response for {method} {path}"
                    ) from exc

            body_preview = (response.text or "").strip().replace("\n", " ")[:200]
            if status_code == 429:
                retry_after = _parse_retry_after(response)
                if rate_limit_retries < self._max_retries:
                    rate_limit_retries += 1
                    log_event(
                        logger,
                        logging.INFO,
                        "discord.rest.rate_limited",
                        method=method,
                        path=path,
                        retry_after=retry_after,
                        attempt=rate_limit_retries,
                    )
                    await self._sleep(retry_after)
                    continue
                raise DiscordTransientError(
                    f"Discord API rate limit exceeded for {method} {path}",
                    status_code=status_code,
                    retry_after=retry_after,
                    user_message="I'm being rate limited. Try again in a moment.",
                )
            if 500 <= status_code < 600:
                if retry_attempt < self._max_retries:
                    retry_attempt += 1
                    delay = self._calculate_retry_delay(retry_attempt)
                    log_event(
                        logger,
                        logging.WARNING,
                        "discord.rest.server_error_retry",
                        method=method,
                        path=path,
                        status_code=status_code,
                        attempt=retry_attempt,
                        delay_seconds=round(delay, 2),
                    )
                    await self._sleep(delay)
                    continue
                raise DiscordTransientError(
                    f"Discord API server error for {method} {path}: "
                    f"status={status_code} body={body_preview!r}",
                    status_code=status_code,
                )
            raise DiscordPermanentError(
                f"Discord API request failed for {method} {path}: "
                f"status={status_code} body={body_preview!r}",
                status_code=status_code,
            )

    async def get_gateway_bot(self) -> dict[str, Any]:
        payload = await self._request("GET", "/gateway/bot")
        return payload if isinstance(payload, dict) else {}

    async def bulk_overwrite_application_commands(
        self,
        *,
        application_id: str,
        commands: list[dict[str, Any]],
        guild_id: str | None = None,
    ) -> list[dict[str, Any]]:
        path = (
            f"/applications/{application_id}/commands"
            if guild_id is None
            else f"/applications/{application_id}/guilds/{guild_id}/commands"
        )
        payload = await self._request("PUT", path, payload=commands)
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    async def create_interaction_response(
        self,
        *,
        interaction_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> None:
        await self._request(
            "POST",
            f"/interactions/{interaction_id}/{interaction_token}/callback",
            payload=payload,
            expect_json=False,
        )

    async def edit_original_interaction_response(
        self,
        *,
        application_id: str,
        interaction_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"/webhooks/{application_id}/{interaction_token}/messages/@original",
            payload=payload,
        )
        return response if isinstance(response, dict) else {}

    async def delete_original_interaction_response(
        self,
        *,
        application_id: str,
        interaction_token: str,
    ) -> None:
        await self._request(
            "DELETE",
            f"/webhooks/{application_id}/{interaction_token}/messages/@original",
            expect_json=False,
        )

    async def create_channel_message(
        self,
        *,
        channel_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/channels/{channel_id}/messages",
            payload=payload,
        )
        return response if isinstance(response, dict) else {}

    async def edit_channel_message(
        self,
        *,
        channel_id: str,
        message_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"/channels/{channel_id}/messages/{message_id}",
            payload=payload,
        )
        return response if isinstance(response, dict) else {}

    async def delete_channel_message(
        self,
        *,
        channel_id: str,
        message_id: str,
    ) -> None:
        await self._request(
            "DELETE",
            f"/channels/{channel_id}/messages/{message_id}",
            expect_json=False,
        )

    async def get_guild(self, *, guild_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/guilds/{guild_id}")
        return response if isinstance(response, dict) else {}

    async def list_guild_roles(self, *, guild_id: str) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/guilds/{guild_id}/roles")
        if not isinstance(response, list):
            return []
        return [item for item in response if isinstance(item, dict)]

    async def list_guild_members(
        self, *, guild_id: str, page_size: int = 1000
    ) -> list[dict[str, Any]]:
        """All members, following the `after` cursor until a short page."""

        members: list[dict[str, Any]] = []
        after = "0"
        while True:
            response = await self._request(
                "GET",
                f"/guilds/{guild_id}/members",
                params={"limit": page_size, "after": after},
            )
            page = (
                [item for item in response if isinstance(item, dict)]
                if isinstance(response, list)
                else []
            )
            members.extend(page)
            if len(page) < page_size:
                return members
            last_user = page[-1].get("user")
            last_id = last_user.get("id") if isinstance(last_user, dict) else None
            if not last_id:
                return members
            after = str(last_id)

    async def create_guild_role(
        self,
        *,
        guild_id: str,
        name: str,
        color: int = 0,
        hoist: bool = False,
        mentionable: bool = False,
        permissions: str = "0",
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/guilds/{guild_id}/roles",
            payload={
                "name": name,
                "color": color,
                "hoist": hoist,
                "mentionable": mentionable,
                "permissions": permissions,
            },
            reason=reason,
        )
        return response if isinstance(response, dict) else {}

    async def delete_guild_role(
        self, *, guild_id: str, role_id: str, reason: Optional[str] = None
    ) -> None:
        await self._request(
            "DELETE",
            f"/guilds/{guild_id}/roles/{role_id}",
            reason=reason,
            expect_json=False,
        )

    async def add_guild_member_role(
        self,
        *,
        guild_id: str,
        user_id: str,
        role_id: str,
        reason: Optional[str] = None,
    ) -> None:
        await self._request(
            "PUT",
            f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}",
            reason=reason,
            expect_json=False,
        )


def _parse_retry_after(response: httpx.Response) -> float:
    raw = response.headers.get("Retry-After")
    if raw is None:
        try:
            body = response.json()
        except ValueError:
            body = None
        raw = body.get("retry_after") if isinstance(body, dict) else None
    try:
        return max(float(raw), 0.0) if raw is not None else 1.0
    except (TypeError, ValueError):
        return 1.0

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from jill_stingray.integrations.discord.errors import (
    DiscordPermanentError,
    DiscordTransientError,
)
from jill_stingray.integrations.discord.rest import DiscordRestClient

BASE_URL = "https://discord.test/api/v10"


def _client(handler: Any, sleeps: list[float] | None = None) -> DiscordRestClient:
    async def _sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return DiscordRestClient(
        bot_token="abc123",
        base_url=BASE_URL,
        transport=httpx.MockTransport(handler),
        retry_base_delay=0.0,
        sleep=_sleep,
    )


@pytest.mark.anyio
async def test_discord_rest_client_sets_authorization_header() -> None:
    observed: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        observed["authorization"] = request.headers.get("Authorization")
        observed["path"] = request.url.path
        return httpx.Response(200, json={"url": "wss://gateway.discord.gg"})

    async with _client(handler) as client:
        payload = await client.get_gateway_bot()

    assert payload["url"] == "wss://gateway.discord.gg"
    assert observed["authorization"] == "Bot abc123"
    assert observed["path"] == "/api/v10/gateway/bot"


@pytest.mark.anyio
async def test_command_routes_global_and_guild() -> None:
    observed: list[tuple[str, str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        observed.append(
            (request.method, request.url.path, json.loads(request.content))
        )
        return httpx.Response(200, json=[{"id": "cmd-1"}])

    async with _client(handler) as client:
        await client.bulk_overwrite_application_commands(
            application_id="app-1", commands=[{"name": "ping"}]
        )
        created = await client.bulk_overwrite_application_commands(
            application_id="app-1", guild_id="guild-2", commands=[{"name": "pong"}]
        )

    assert created == [{"id": "cmd-1"}]
    assert observed == [
        ("PUT", "/api/v10/applications/app-1/commands", [{"name": "ping"}]),
        (
            "PUT",
            "/api/v10/applications/app-1/guilds/guild-2/commands",
            [{"name": "pong"}],
        ),
    ]


@pytest.mark.anyio
async def test_interaction_callback_and_webhook_paths() -> None:
    observed: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        observed.append((request.method, request.url.path))
        if request.method in ("DELETE",) or request.url.path.endswith("/callback"):
            return httpx.Response(204)
        return httpx.Response(200, json={"id": "m1"})

    async with _client(handler) as client:
        await client.create_interaction_response(
            interaction_id="i1", interaction_token="tok", payload={"type": 4}
        )
        await client.edit_original_interaction_response(
            application_id="app", interaction_token="tok", payload={"content": "x"}
        )
        await client.delete_original_interaction_response(
            application_id="app", interaction_token="tok"
        )

    assert observed == [
        ("POST", "/api/v10/interactions/i1/tok/callback"),
        ("PATCH", "/api/v10/webhooks/app/tok/messages/@original"),
        ("DELETE", "/api/v10/webhooks/app/tok/messages/@original"),
    ]


@pytest.mark.anyio
async def test_rate_limit_waits_retry_after_then_succeeds() -> None:
    attempts = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            return httpx.Response(429, json={"retry_after": 0.25})
        return httpx.Response(200, json=[{"id": "r1", "name": "Bartender"}])

    async with _client(handler, sleeps) as client:
        roles = await client.list_guild_roles(guild_id="g1")

    assert roles == [{"id": "r1", "name": "Bartender"}]
    assert attempts == 2
    assert sleeps == [0.25]


@pytest.mark.anyio
async def test_rate_limit_exhaustion_raises_transient_error() -> None:
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "2"}, json={})

    async with _client(handler, sleeps) as client:
        with pytest.raises(DiscordTransientError) as excinfo:
            await client.get_guild(guild_id="g1")

    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == 2.0
    assert excinfo.value.user_message
    assert sleeps == [2.0, 2.0, 2.0]


@pytest.mark.anyio
async def test_server_errors_are_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json={"id": "g1"})

    async with _client(handler, []) as client:
        guild = await client.get_guild(guild_id="g1")

    assert guild == {"id": "g1"}
    assert attempts == 3


@pytest.mark.anyio
async def test_client_errors_are_permanent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "Missing Permissions"})

    async with _client(handler) as client:
        with pytest.raises(DiscordPermanentError) as excinfo:
            await client.delete_guild_role(guild_id="g1", role_id="r1")

    assert excinfo.value.status_code == 403
    assert "Missing Permissions" in str(excinfo.value)


@pytest.mark.anyio
async def test_network_errors_retry_then_raise_transient() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler, []) as client:
        with pytest.raises(DiscordTransientError):
            await client.get_gateway_bot()

    assert attempts == 4


@pytest.mark.anyio
async def test_role_endpoints_send_audit_log_reason() -> None:
    observed: list[tuple[str, str, dict[str, Any] | None, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        observed.append(
            (
                request.method,
                request.url.path,
                body,
                request.headers.get("X-Audit-Log-Reason"),
            )
        )
        if request.method == "POST":
            return httpx.Response(200, json={"id": "r9", "name": body["name"]})
        return httpx.Response(204)

    async with _client(handler) as client:
        role = await client.create_guild_role(
            guild_id="g1", name="Neon", color=0xFF0055, hoist=True, reason="Setup"
        )
        await client.add_guild_member_role(
            guild_id="g1", user_id="u1", role_id="r9", reason="Bulk Assignment"
        )

    assert role == {"id": "r9", "name": "Neon"}
    method, path, body, reason = observed[0]
    assert (method, path, reason) == ("POST", "/api/v10/guilds/g1/roles", "Setup")
    assert body == {
        "name": "Neon",
        "color": 0xFF0055,
        "hoist": True,
        "mentionable": False,
        "permissions": "0",
    }
    assert observed[1] == (
        "PUT",
        "/api/v10/guilds/g1/members/u1/roles/r9",
        None,
        "Bulk Assignment",
    )


@pytest.mark.anyio
async def test_list_guild_members_follows_after_cursor() -> None:
    cursors: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        after = request.url.params["after"]
        cursors.append(after)
        if after == "0":
            return httpx.Response(
                200, json=[{"user": {"id": "1"}}, {"user": {"id": "2"}}]
            )
        return httpx.Response(200, json=[{"user": {"id": "3"}}])

    async with _client(handler) as client:
        members = await client.list_guild_members(guild_id="g1", page_size=2)

    assert [m["user"]["id"] for m in members] == ["1", "2", "3"]
    assert cursors == ["0", "2"]

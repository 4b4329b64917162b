from __future__ import annotations

import pytest

from jill_stingray.commands import build_default_registry
from jill_stingray.commands.config import render_overview_page
from jill_stingray.gateway.dispatcher import DispatchStatus
from jill_stingray.gateway.permissions import EVERYONE
from jill_stingray.gateway.policy import CommandRule, EffectivePolicy
from tests.fixtures.discord_fakes import (
    GUILD_ID,
    PERM_MANAGE_GUILD,
    USER_ID,
    InMemoryPolicyStore,
    autocomplete_payload,
    build_dispatcher,
    command_payload,
    component_payload,
)

pytestmark = pytest.mark.anyio


def _config(subcommand: str, **options: object) -> dict:
    return command_payload(
        "config",
        subcommand=subcommand,
        options=options,
        permissions=PERM_MANAGE_GUILD,
    )


async def test_toggle_disables_command_and_policy_follows() -> None:
    store = InMemoryPolicyStore()
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    outcome = await dispatcher.dispatch(_config("toggle", command="ping", status=False))

    assert outcome.status is DispatchStatus.HANDLED
    assert rest.callbacks[0]["data"]["content"] == "✅ **ping** is now **DISABLED**."
    assert store.workspaces[GUILD_ID].rule_for("ping") == CommandRule(enabled=False)

    denied = await dispatcher.dispatch(command_payload("ping"))
    assert denied.status is DispatchStatus.DENIED
    assert denied.reason == "disabled"


async def test_toggle_keeps_other_rule_fields() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule(
        GUILD_ID, "role", CommandRule(min_permission="manageMessages")
    )
    dispatcher, _rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(_config("toggle", command="role", status=False))

    assert store.workspaces[GUILD_ID].rule_for("role") == CommandRule(
        enabled=False, min_permission="manageMessages"
    )


async def test_unknown_and_missing_targets() -> None:
    dispatcher, rest = build_dispatcher(build_default_registry())

    await dispatcher.dispatch(_config("toggle", command="nope", status=True))
    await dispatcher.dispatch(_config("toggle", status=True))

    unknown, missing = rest.callbacks
    assert unknown["data"]["content"] == "❌ Command `nope` not found."
    assert unknown["data"]["flags"] == 64
    assert missing["data"]["content"] == "❌ You must specify a command."


async def test_channel_allow_toggles_and_empty_clears() -> None:
    store = InMemoryPolicyStore()
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(_config("channel", command="ping", channel="c5"))
    assert store.workspaces[GUILD_ID].rule_for("ping") == CommandRule(
        allow_channels=frozenset({"c5"})
    )
    denied = await dispatcher.dispatch(command_payload("ping"))
    assert denied.reason == "channel_not_allowed"

    await dispatcher.dispatch(_config("channel", command="ping", channel="c5"))
    assert store.workspaces[GUILD_ID].rule_for("ping") == CommandRule(
        allow_channels=frozenset()
    )
    contents = [callback["data"].get("content") for callback in rest.callbacks]
    assert "✅ **ping** is now allowed in <#c5>." in contents
    assert "✅ **ping** is no longer restricted to <#c5>." in contents


async def test_block_channel_denies_there_only() -> None:
    store = InMemoryPolicyStore()
    dispatcher, _rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(_config("block", command="ping", channel="chan-1"))

    blocked = await dispatcher.dispatch(command_payload("ping"))
    assert blocked.reason == "channel_blocked"
    allowed = await dispatcher.dispatch(command_payload("ping", channel_id="chan-2"))
    assert allowed.status is DispatchStatus.HANDLED


async def test_permission_levels() -> None:
    store = InMemoryPolicyStore()
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(_config("permission", command="audit", level=EVERYONE))
    assert store.workspaces[GUILD_ID].rule_for("audit") == CommandRule(
        min_permission=EVERYONE
    )

    await dispatcher.dispatch(
        _config("permission", command="audit", level="manageMessages")
    )
    assert store.workspaces[GUILD_ID].rule_for("audit") == CommandRule(
        min_permission="manageMessages"
    )

    await dispatcher.dispatch(_config("permission", command="audit", level="DEFAULT"))
    assert store.workspaces[GUILD_ID].rule_for("audit") is None

    contents = [callback["data"]["content"] for callback in rest.callbacks]
    assert contents[0] == "✅ **audit** is now available to **everyone**."
    assert contents[2] == "✅ **audit** permission reset to default."


async def test_bypass_role_set_and_cleared() -> None:
    store = InMemoryPolicyStore()
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(_config("bypass", role="role-9"))
    assert store.workspaces[GUILD_ID].bypass_role_id == "role-9"

    # The manager role now passes the administrator gate on /audit.
    outcome = await dispatcher.dispatch(command_payload("audit", roles=["role-9"]))
    assert outcome.status is DispatchStatus.HANDLED

    await dispatcher.dispatch(_config("bypass"))
    assert store.workspaces[GUILD_ID].bypass_role_id is None
    contents = [callback["data"].get("content") for callback in rest.callbacks]
    assert "✅ <@&role-9> can now bypass permission checks." in contents
    assert contents[-1] == "✅ Manager role cleared."


async def test_overview_lists_every_target_except_hidden() -> None:
    dispatcher, rest = build_dispatcher(build_default_registry())

    await dispatcher.dispatch(_config("overview"))

    (callback,) = rest.callbacks
    embed = callback["data"]["embeds"][0]
    assert embed["title"] == "🎛️ Server Configuration"
    assert "🔴 **dangeru**: Admin | Global" in embed["description"]
    assert "🟢 **ping**: All | Global" in embed["description"]
    assert "**config**" not in embed["description"]
    assert "**help**" not in embed["description"]
    assert callback["data"]["components"] == []


async def test_single_overview_shows_rule_fields() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule(
        GUILD_ID, "role", CommandRule(block_channels=frozenset({"c2"}))
    )
    await store.set_bypass_role(GUILD_ID, "mgr")
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(_config("overview", command="role"))

    embed = rest.callbacks[0]["data"]["embeds"][0]
    assert embed["title"] == "🟢 Settings: role"
    values = {field["name"]: field["value"] for field in embed["fields"]}
    assert values["Permission"] == "🔒 Manage Roles"
    assert values["Channels"] == "🌐 Global"
    assert values["Blocked"] == "<#c2>"
    assert values["Manager Role"] == "<@&mgr>"


async def test_overview_pager_clamps_and_updates_message() -> None:
    rows = [(f"cmd{index:02d}", EffectivePolicy()) for index in range(15)]
    view = render_overview_page(rows, 5, USER_ID)
    assert view["embeds"][0]["footer"]["text"] == "Page 2 of 2 • Total: 15"
    prev, nxt = view["components"][0]["components"]
    assert prev["custom_id"] == f"config|{USER_ID}|page|0|prev"
    assert nxt["disabled"] is True

    dispatcher, rest = build_dispatcher(build_default_registry())
    await dispatcher.dispatch(component_payload(f"config|{USER_ID}|page|3|next"))
    (callback,) = rest.callbacks
    assert callback["type"] == 7
    assert callback["data"]["embeds"][0]["footer"]["text"].startswith("Page 1 of 1")


async def test_unknown_config_control() -> None:
    dispatcher, rest = build_dispatcher(build_default_registry())
    await dispatcher.dispatch(component_payload(f"config|{USER_ID}|explode"))
    assert rest.callbacks[0]["data"]["content"] == "❌ Unknown configuration control."


async def test_autocomplete_filters_by_prefix() -> None:
    dispatcher, rest = build_dispatcher(build_default_registry())

    await dispatcher.dispatch(
        autocomplete_payload("config", subcommand="toggle", option="command", value="d")
    )
    await dispatcher.dispatch(
        autocomplete_payload("config", subcommand="toggle", option="command", value="")
    )

    prefixed, everything = rest.callbacks
    assert prefixed["type"] == 8
    assert [choice["value"] for choice in prefixed["data"]["choices"]] == [
        "dangeru",
        "dashboard",
    ]
    names = {choice["value"] for choice in everything["data"]["choices"]}
    assert "config" not in names and "help" not in names
    assert "ping" in names


async def test_store_outage_reports_settings_failure() -> None:
    store = InMemoryPolicyStore()
    store.broken = True
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    outcome = await dispatcher.dispatch(_config("toggle", command="ping", status=True))

    assert outcome.status is DispatchStatus.FAILED
    (callback,) = rest.callbacks
    assert callback["data"]["content"] == "❌ Failed to access settings."
    assert callback["data"]["flags"] == 64

from __future__ import annotations

import pytest

from jill_stingray.commands import build_default_registry
from jill_stingray.gateway.dispatcher import DispatchStatus
from jill_stingray.gateway.policy import CommandRule
from tests.fixtures.discord_fakes import (
    GUILD_ID,
    OTHER_USER_ID,
    PERM_ADMINISTRATOR,
    USER_ID,
    InMemoryPolicyStore,
    build_dispatcher,
    command_payload,
    component_payload,
)

pytestmark = pytest.mark.anyio

SELECT_ID = f"dashboard|{USER_ID}|select"


def _select_options(callback: dict) -> dict[str, dict]:
    (row,) = callback["data"]["components"]
    (menu,) = row["components"]
    assert menu["custom_id"] == SELECT_ID
    assert menu["min_values"] == 0
    return {option["value"]: option for option in menu["options"]}


async def test_dashboard_lists_toggleable_commands() -> None:
    dispatcher, rest = build_dispatcher(build_default_registry())

    outcome = await dispatcher.dispatch(
        command_payload("dashboard", permissions=PERM_ADMINISTRATOR)
    )

    assert outcome.status is DispatchStatus.HANDLED
    options = _select_options(rest.callbacks[0])
    assert sorted(options) == ["audit", "config", "custom", "dangeru", "ping", "role"]
    assert options["dangeru"]["default"] is False
    assert options["dangeru"]["emoji"] == {"name": "🔴"}
    assert options["ping"]["default"] is True
    assert options["ping"]["label"] == "Ping"
    footer = rest.callbacks[0]["data"]["embeds"][0]["footer"]["text"]
    assert footer == "Total Modules: 6 | Showing: 6"


async def test_selection_becomes_the_enabled_set() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule(
        GUILD_ID, "role", CommandRule(min_permission="manageMessages")
    )
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    outcome = await dispatcher.dispatch(
        component_payload(SELECT_ID, values=["ping", "dangeru", "role"])
    )

    assert outcome.status is DispatchStatus.HANDLED
    workspace = store.workspaces[GUILD_ID]
    assert workspace.rule_for("dangeru") == CommandRule(enabled=True)
    assert workspace.rule_for("role") == CommandRule(
        enabled=True, min_permission="manageMessages"
    )
    for name in ("audit", "custom", "config"):
        rule = workspace.rule_for(name)
        assert rule is not None and rule.enabled is False
    assert workspace.rule_for("dashboard") is None
    assert workspace.rule_for("help") is None

    (callback,) = rest.callbacks
    assert callback["type"] == 7
    options = _select_options(callback)
    assert options["dangeru"]["default"] is True
    assert options["audit"]["emoji"] == {"name": "🔴"}


async def test_dashboard_cannot_disable_itself() -> None:
    store = InMemoryPolicyStore()
    dispatcher, _rest = build_dispatcher(build_default_registry(), policy_store=store)

    await dispatcher.dispatch(component_payload(SELECT_ID, values=[]))
    outcome = await dispatcher.dispatch(
        command_payload("dashboard", permissions=PERM_ADMINISTRATOR)
    )

    assert outcome.status is DispatchStatus.HANDLED
    assert store.workspaces[GUILD_ID].rule_for("dashboard") is None


async def test_other_members_cannot_use_the_select() -> None:
    store = InMemoryPolicyStore()
    dispatcher, rest = build_dispatcher(build_default_registry(), policy_store=store)

    outcome = await dispatcher.dispatch(
        component_payload(SELECT_ID, values=["ping"], user_id=OTHER_USER_ID)
    )

    assert outcome.reason == "not_owner"
    assert store.workspaces == {}
    assert rest.callbacks[0]["data"]["flags"] == 64


async def test_dashboard_requires_guild() -> None:
    dispatcher, rest = build_dispatcher(build_default_registry())

    outcome = await dispatcher.dispatch(
        component_payload(SELECT_ID, values=["ping"], guild_id=None)
    )

    assert outcome.status is DispatchStatus.HANDLED
    assert (
        rest.callbacks[0]["data"]["content"]
        == "❌ This command only works inside a server."
    )

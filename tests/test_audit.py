from __future__ import annotations

import pytest

from jill_stingray.commands.audit import EMPTY_SELECTION_MESSAGE, AuditCommand
from jill_stingray.gateway.confirmation import SESSION_EXPIRED_MESSAGE
from jill_stingray.gateway.dispatcher import DispatchStatus
from jill_stingray.gateway.registry import CommandRegistry
from jill_stingray.gateway.sessions import FlowKind, InMemorySessionStore
from tests.fixtures.discord_fakes import (
    GUILD_ID,
    PERM_ADMINISTRATOR,
    PERM_MANAGE_ROLES,
    USER_ID,
    FakeRest,
    build_dispatcher,
    command_payload,
    component_payload,
)

pytestmark = pytest.mark.anyio


def _rest() -> FakeRest:
    return FakeRest(
        roles=[
            {"id": GUILD_ID, "name": "@everyone", "position": 0},
            {"id": "r1", "name": "Regular", "position": 4},
            {"id": "r2", "name": "Lone", "position": 3, "color": 0xFF0000, "hoist": True},
            {"id": "r3", "name": "Bot", "position": 5, "managed": True},
            {"id": "r4", "name": "Dusty", "position": 1, "color": 0xFF0000},
        ],
        members=[
            {"user": {"id": "u1"}, "roles": ["r2"]},
            {"user": {"id": "u2"}, "roles": []},
        ],
    )


def _setup(rest: FakeRest):
    command = AuditCommand()
    command.delete_interval = 0
    sessions = InMemorySessionStore()
    dispatcher, _ = build_dispatcher(
        CommandRegistry([command]), rest=rest, sessions=sessions
    )
    return dispatcher, sessions


def _click(action: str, **kwargs: object) -> dict:
    return component_payload(
        f"audit|{USER_ID}|{action}", permissions=PERM_MANAGE_ROLES, **kwargs
    )


async def _open(dispatcher) -> None:
    outcome = await dispatcher.dispatch(
        command_payload("audit", permissions=PERM_ADMINISTRATOR)
    )
    assert outcome.status is DispatchStatus.HANDLED


async def test_menu_starts_an_audit_session() -> None:
    rest = _rest()
    dispatcher, sessions = _setup(rest)

    await _open(dispatcher)

    session = await sessions.get(USER_ID)
    assert session is not None
    assert session.flow_kind is FlowKind.AUDIT_SESSION
    assert session.step == "menu"
    buttons = rest.callbacks[0]["data"]["components"][0]["components"]
    assert [button["custom_id"] for button in buttons] == [
        f"audit|{USER_ID}|scan_empty",
        f"audit|{USER_ID}|scan_lone",
        f"audit|{USER_ID}|scan_map",
    ]


async def test_empty_scan_toggle_and_confirm_deletes_selection() -> None:
    rest = _rest()
    dispatcher, sessions = _setup(rest)
    await _open(dispatcher)

    await dispatcher.dispatch(_click("scan_empty"))

    session = await sessions.get(USER_ID)
    assert session is not None and session.step == "empty_check"
    assert session.payload["candidates"] == {"r1": True, "r4": True}
    assert rest.callbacks[-1]["type"] == 6
    checklist = rest.edits[-1]
    select = checklist["components"][0]["components"][0]
    assert [option["value"] for option in select["options"]] == ["r1", "r4"]
    delete_button = checklist["components"][1]["components"][0]
    assert delete_button["label"] == "DELETE SELECTED (2)"
    assert delete_button["custom_id"] == f"confirm|{USER_ID}|audit-session"

    await dispatcher.dispatch(_click("toggle", values=["r4"]))

    session = await sessions.get(USER_ID)
    assert session is not None
    assert session.payload["candidates"] == {"r1": False, "r4": True}
    assert "1 roles selected." in str(rest.callbacks[-1]["data"]["embeds"][0])

    outcome = await dispatcher.dispatch(
        component_payload(f"confirm|{USER_ID}|audit-session")
    )

    assert outcome.status is DispatchStatus.HANDLED
    assert [call["role_id"] for call in rest.called("delete_guild_role")] == ["r4"]
    assert rest.called("delete_guild_role")[0]["reason"] == "Jill Stingray: Audit Protocol"
    summary = rest.edits[-1]["embeds"][0]
    assert summary["title"] == "Audit Log: Deletion"
    assert "**Removed:** 1" in summary["description"]
    assert "Return" not in str(rest.edits[-1].get("components"))
    assert await sessions.get(USER_ID) is None


async def test_partial_purge_names_failed_roles() -> None:
    rest = _rest()
    rest.fail_items["delete_guild_role"] = {"r1"}
    dispatcher, sessions = _setup(rest)
    await _open(dispatcher)
    await dispatcher.dispatch(_click("scan_empty"))

    await dispatcher.dispatch(component_payload(f"confirm|{USER_ID}|audit-session"))

    summary = rest.edits[-1]["embeds"][0]
    assert "**Removed:** 1" in summary["description"]
    assert "**Failed:** 1 (Regular)" in summary["description"]
    assert await sessions.get(USER_ID) is None


async def test_confirm_with_nothing_selected_is_a_no_op() -> None:
    rest = _rest()
    dispatcher, sessions = _setup(rest)
    await _open(dispatcher)
    await dispatcher.dispatch(_click("scan_empty"))
    await dispatcher.dispatch(_click("toggle", values=[]))

    await dispatcher.dispatch(component_payload(f"confirm|{USER_ID}|audit-session"))

    assert rest.called("delete_guild_role") == []
    reply = rest.callbacks[-1]["data"]
    assert reply["content"] == EMPTY_SELECTION_MESSAGE
    assert reply["flags"] == 64
    assert await sessions.get(USER_ID) is None


async def test_clean_guild_reports_nothing_to_purge() -> None:
    rest = FakeRest(
        roles=[{"id": "r2", "name": "Lone"}],
        members=[{"user": {"id": "u1"}, "roles": ["r2"]}],
    )
    dispatcher, sessions = _setup(rest)
    await _open(dispatcher)

    await dispatcher.dispatch(_click("scan_empty"))

    embed = rest.edits[-1]["embeds"][0]
    assert embed["title"] == "Diagnostic: Empty Roles"
    session = await sessions.get(USER_ID)
    assert session is not None and session.step == "menu"


async def test_isolation_and_structure_reports() -> None:
    rest = _rest()
    dispatcher, _sessions = _setup(rest)
    await _open(dispatcher)

    await dispatcher.dispatch(_click("scan_lone"))
    lone = rest.edits[-1]["embeds"][0]
    assert "**Found 1 roles with single occupancy:**" in lone["description"]
    assert "`Lone` - <@u1>" in lone["description"]

    await dispatcher.dispatch(_click("scan_map"))
    structure = rest.edits[-1]["embeds"][0]
    assert "**Registry Size:** 3 roles" in structure["description"]
    assert "**Sidebar Visibility:** 1" in structure["description"]
    fields = {field["name"]: field["value"] for field in structure["fields"]}
    ladder = fields["Hierarchy Ladder (Top 15)"].splitlines()
    assert ladder[0] == "`04` **Regular** (Default)"
    assert "`#FF0000`: Lone, Dusty" in fields["Visual Duplication Alert"]


async def test_wizard_buttons_need_a_live_session() -> None:
    rest = _rest()
    dispatcher, _sessions = _setup(rest)

    outcome = await dispatcher.dispatch(_click("scan_empty"))

    assert outcome.status is DispatchStatus.EXPIRED
    assert rest.callbacks[-1]["data"]["content"] == SESSION_EXPIRED_MESSAGE
    assert rest.called("list_guild_roles") == []


async def test_wizard_buttons_need_manage_roles() -> None:
    rest = _rest()
    dispatcher, _sessions = _setup(rest)
    await _open(dispatcher)

    outcome = await dispatcher.dispatch(
        component_payload(f"audit|{USER_ID}|scan_empty", permissions=0)
    )

    assert outcome.reason == "missing_permission"


@pytest.mark.parametrize("action", ["scan_empty", "scan_lone", "scan_map"])
async def test_scans_acknowledge_before_fetching_guild_data(action: str) -> None:
    rest = _rest()
    dispatcher, _sessions = _setup(rest)
    await _open(dispatcher)
    rest.calls.clear()

    await dispatcher.dispatch(_click(action))

    first_method, first_call = rest.calls[0]
    assert first_method == "create_interaction_response"
    assert first_call["payload"]["type"] == 6
    methods = [method for method, _kwargs in rest.calls]
    assert methods.index("list_guild_roles") > 0
    assert methods[-1] == "edit_original_interaction_response"

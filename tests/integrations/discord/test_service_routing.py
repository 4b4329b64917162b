from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from jill_stingray.core.config import BotConfig
from jill_stingray.gateway.policy import CommandRule
from jill_stingray.gateway.policy_store import SqlitePolicyStore
from jill_stingray.integrations.discord.service import JillStingrayService
from jill_stingray.integrations.discord.state import DiscordStateStore
from tests.fixtures.discord_fakes import FakeRest, command_payload

pytestmark = [pytest.mark.integration, pytest.mark.anyio]


class _FakeGateway:
    def __init__(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        self._events = events
        self.stopped = False

    async def run(self, on_dispatch: Any) -> None:
        for event_type, payload in self._events:
            await on_dispatch(event_type, payload)

    async def stop(self) -> None:
        self.stopped = True


def _config(tmp_path: Path, **overrides: Any) -> BotConfig:
    raw: dict[str, Any] = {
        "state_file": "state.sqlite3",
        "command_registration": {"enabled": False},
        "log": {"path": ""},
    }
    raw.update(overrides)
    return BotConfig.from_raw(root=tmp_path, raw=raw)


def _service(
    config: BotConfig, rest: FakeRest, policy_store: SqlitePolicyStore, events: list
) -> JillStingrayService:
    return JillStingrayService(
        config,
        logger=logging.getLogger("test.service"),
        rest_client=rest,  # type: ignore[arg-type]
        gateway_client=_FakeGateway(events),  # type: ignore[arg-type]
        policy_store=policy_store,
        state_store=DiscordStateStore(config.state_file),
    )


async def test_guild_create_seeds_defaults_once(tmp_path: Path) -> None:
    config = _config(tmp_path)
    store = SqlitePolicyStore(config.state_file)
    service = _service(config, FakeRest(), store, [])
    try:
        await service._on_dispatch("GUILD_CREATE", {"id": "g1", "owner_id": "owner-1"})
        await service.supervisor.wait_idle()
        seeded = await store.get_workspace("g1")
        assert seeded is not None
        assert seeded.owner_id == "owner-1"
        assert seeded.rule_for("dangeru") == CommandRule(
            enabled=False,
            min_permission="administrator",
            allow_channels=frozenset(),
            block_channels=frozenset(),
        )

        await store.put_command_rule("g1", "ping", CommandRule(enabled=False))
        await service._on_dispatch("GUILD_CREATE", {"id": "g1", "owner_id": "owner-2"})
        await service.supervisor.wait_idle()
        reseeded = await store.get_workspace("g1")
        assert reseeded is not None
        assert reseeded.owner_id == "owner-2"
        ping_rule = reseeded.rule_for("ping")
        assert ping_rule is not None and ping_rule.enabled is False
    finally:
        await store.close()


async def test_interactions_are_dispatched_on_supervised_tasks(tmp_path: Path) -> None:
    config = _config(tmp_path)
    store = SqlitePolicyStore(config.state_file)
    rest = FakeRest()
    service = _service(config, rest, store, [])
    try:
        await service._on_dispatch("INTERACTION_CREATE", command_payload("ping"))
        await service._on_dispatch("MESSAGE_CREATE", {"id": "m1"})
        await service.supervisor.wait_idle()
    finally:
        await store.close()

    (reply,) = rest.callbacks
    assert reply["type"] == 4
    assert reply["data"]["flags"] == 64
    assert "I'm here" in reply["data"]["content"]


async def test_run_forever_initializes_and_closes_owned_stores(
    tmp_path: Path,
) -> None:
    config = _config(tmp_path)
    rest = FakeRest()
    gateway = _FakeGateway(
        [
            ("GUILD_CREATE", {"id": "g7", "owner_id": "o7"}),
            ("INTERACTION_CREATE", command_payload("ping")),
        ]
    )
    service = JillStingrayService(
        config,
        logger=logging.getLogger("test.service"),
        rest_client=rest,  # type: ignore[arg-type]
        gateway_client=gateway,  # type: ignore[arg-type]
    )

    await service.run_forever()

    assert len(rest.callbacks) == 1
    assert rest.called("bulk_overwrite_application_commands") == []
    assert gateway.stopped is False
    reopened = SqlitePolicyStore(config.state_file)
    try:
        workspace = await reopened.get_workspace("g7")
    finally:
        await reopened.close()
    assert workspace is not None
    assert workspace.owner_id == "o7"


async def test_startup_sync_uses_registry_payloads(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DISCORD_APP_ID", "app-9")
    config = _config(
        tmp_path,
        command_registration={"enabled": True, "scope": "guild", "guild_ids": ["g1"]},
    )
    rest = FakeRest()
    service = JillStingrayService(
        config,
        logger=logging.getLogger("test.service"),
        rest_client=rest,  # type: ignore[arg-type]
        gateway_client=_FakeGateway([]),  # type: ignore[arg-type]
    )

    await service.run_forever()

    (call,) = rest.called("bulk_overwrite_application_commands")
    assert call["application_id"] == "app-9"
    assert call["guild_id"] == "g1"
    assert {command["name"] for command in call["commands"]} >= {"ping", "config"}

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import anyio
import pytest
from typer.testing import CliRunner

from jill_stingray import __version__
from jill_stingray.cli import _sync_application_commands, app
from jill_stingray.core.config import BotConfig
from jill_stingray.gateway.policy import CommandRule
from jill_stingray.gateway.policy_store import SqlitePolicyStore

runner = CliRunner()


def _write_config(root: Path) -> Path:
    (root / "jill-stingray.yml").write_text(
        "bot:\n  state_file: state/bot.sqlite3\n", encoding="utf-8"
    )
    return root


def _seed_rule(root: Path, guild: str, command: str, rule: CommandRule) -> None:
    async def _seed() -> None:
        store = SqlitePolicyStore(root / "state" / "bot.sqlite3")
        try:
            await store.put_command_rule(guild, command, rule)
        finally:
            await store.close()

    anyio.run(_seed)


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == __version__


def test_policy_show_defaults_for_unknown_guild(tmp_path: Path) -> None:
    root = _write_config(tmp_path)

    result = runner.invoke(app, ["policy", "show", "--guild", "g1", "-c", str(root)])

    assert result.exit_code == 0, result.output
    assert "Guild g1 has no stored policy; showing defaults." in result.stdout
    assert "[off] dangeru" in result.stdout
    assert "[on ] ping" in result.stdout


def test_policy_set_bypass_role_then_show_json(tmp_path: Path) -> None:
    root = _write_config(tmp_path)

    set_result = runner.invoke(
        app,
        ["policy", "set-bypass-role", "--guild", "g1", "--role", "r5", "-c", str(root)],
    )
    show_result = runner.invoke(
        app, ["policy", "show", "--guild", "g1", "--json", "-c", str(root)]
    )

    assert set_result.exit_code == 0, set_result.output
    assert "Manager role for g1: r5" in set_result.stdout
    payload = json.loads(show_result.stdout)
    assert payload["seeded"] is True
    assert payload["bypass_role_id"] == "r5"
    commands = {row["command"]: row for row in payload["commands"]}
    assert commands["dangeru"]["min_permission"] == "administrator"

    cleared = runner.invoke(
        app, ["policy", "set-bypass-role", "--guild", "g1", "-c", str(root)]
    )
    assert "Manager role for g1: cleared" in cleared.stdout


def test_policy_reset_drops_override(tmp_path: Path) -> None:
    root = _write_config(tmp_path)
    _seed_rule(root, "g1", "ping", CommandRule(enabled=False, allow_channels=frozenset({"c1"})))

    before = runner.invoke(
        app, ["policy", "show", "--guild", "g1", "--json", "-c", str(root)]
    )
    ping = {row["command"]: row for row in json.loads(before.stdout)["commands"]}["ping"]
    assert ping["enabled"] is False
    assert ping["allow_channels"] == ["c1"]

    result = runner.invoke(
        app, ["policy", "reset", "--guild", "g1", "--command", "PING", "-c", str(root)]
    )

    assert result.exit_code == 0, result.output
    assert "Reset /ping in g1 to defaults." in result.stdout
    after = runner.invoke(
        app, ["policy", "show", "--guild", "g1", "--json", "-c", str(root)]
    )
    ping = {row["command"]: row for row in json.loads(after.stdout)["commands"]}["ping"]
    assert ping["enabled"] is True
    assert ping["allow_channels"] == []


def test_invalid_config_exits_nonzero(tmp_path: Path) -> None:
    (tmp_path / "jill-stingray.yml").write_text("bot: [broken", encoding="utf-8")

    result = runner.invoke(app, ["policy", "show", "--guild", "g1", "-c", str(tmp_path)])

    assert result.exit_code == 1
    assert "invalid YAML" in result.output


def test_register_commands_requires_credentials(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("DISCORD_APP_ID", raising=False)

    result = runner.invoke(app, ["register-commands", "-c", str(tmp_path)])

    assert result.exit_code == 1
    assert "DISCORD_TOKEN" in result.output


def test_sync_application_commands_uses_registry(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "tok")
    monkeypatch.setenv("DISCORD_APP_ID", "app-3")
    config = BotConfig.from_raw(
        root=tmp_path,
        raw={"command_registration": {"scope": "guild", "guild_ids": ["g1", "g2"]}},
    )
    seen: dict[str, Any] = {}

    class _FakeRest:
        def __init__(self, *, bot_token: str) -> None:
            seen["token"] = bot_token

        async def __aenter__(self) -> "_FakeRest":
            return self

        async def __aexit__(self, *_exc: Any) -> None:
            seen["closed"] = True

    async def _fake_sync(rest: Any, **kwargs: Any) -> int:
        seen.update(kwargs)
        return len(kwargs["guild_ids"])

    count = anyio.run(
        lambda: _sync_application_commands(
            config,
            logger=logging.getLogger("test.cli"),
            rest_client_factory=_FakeRest,
            sync_func=_fake_sync,
        )
    )

    assert count == 2
    assert seen["token"] == "tok"
    assert seen["closed"] is True
    assert seen["application_id"] == "app-3"
    assert seen["scope"] == "guild"
    assert seen["guild_ids"] == ("g1", "g2")
    assert "ping" in {command["name"] for command in seen["commands"]}

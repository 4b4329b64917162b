from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, Optional

import typer

from . import __version__
from .core.config import BotConfig, BotConfigError, load_bot_config
from .core.exceptions import StoreUnavailableError
from .core.logging_utils import setup_rotating_logger
from .gateway.policy import DEFAULT_POLICIES, PolicyResolver
from .gateway.policy_store import SqlitePolicyStore
from .integrations.discord.command_registry import sync_commands
from .integrations.discord.errors import DiscordAPIError
from .integrations.discord.rest import DiscordRestClient
from .integrations.discord.service import create_service

app = typer.Typer(add_completion=False, help="Jill Stingray Discord gateway.")
policy_app = typer.Typer(add_completion=False, help="Inspect and edit stored policy.")
app.add_typer(policy_app, name="policy")

_CONFIG_OPTION = typer.Option(
    None, "--config", "-c", help="Path to jill-stingray.yml (or its directory)"
)


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def _load_config(path: Optional[Path]) -> BotConfig:
    try:
        return load_bot_config(path)
    except BotConfigError as exc:
        raise_exit(str(exc), cause=exc)


async def _sync_application_commands(
    config: BotConfig,
    *,
    logger: logging.Logger,
    rest_client_factory: Callable[..., Any] = DiscordRestClient,
    sync_func: Callable[..., Awaitable[int]] = sync_commands,
) -> int:
    from .commands import build_default_registry

    bot_token, application_id = config.require_credentials()
    commands = build_default_registry().application_commands()
    async with rest_client_factory(bot_token=bot_token) as rest:
        return await sync_func(
            rest,
            application_id=application_id,
            commands=commands,
            scope=config.command_registration.scope,
            guild_ids=config.command_registration.guild_ids,
            logger=logger,
        )


async def _with_policy_store(
    config: BotConfig, action: Callable[[SqlitePolicyStore], Awaitable[Any]]
) -> Any:
    store = SqlitePolicyStore(config.state_file)
    try:
        await store.initialize()
        return await action(store)
    finally:
        await store.close()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@app.command("run")
def run(config_path: Optional[Path] = _CONFIG_OPTION) -> None:
    """Connect to the Discord gateway and serve interactions."""

    config = _load_config(config_path)
    try:
        config.require_credentials()
        logger = setup_rotating_logger("jill-stingray", config.log)
        service = create_service(config, logger=logger)
        asyncio.run(service.run_forever())
    except (BotConfigError, ValueError) as exc:
        raise_exit(str(exc), cause=exc)
    except KeyboardInterrupt:
        typer.echo("Bot stopped.")


@app.command("register-commands")
def register_commands(config_path: Optional[Path] = _CONFIG_OPTION) -> None:
    """Push the application-command definitions to Discord."""

    config = _load_config(config_path)
    try:
        count = asyncio.run(
            _sync_application_commands(
                config, logger=logging.getLogger("jill_stingray.commands")
            )
        )
    except (BotConfigError, DiscordAPIError, ValueError) as exc:
        raise_exit(str(exc), cause=exc)
    typer.echo(f"Application commands synchronized ({count} scope(s)).")


@policy_app.command("show")
def policy_show(
    guild: str = typer.Option(..., "--guild", help="Guild id"),
    config_path: Optional[Path] = _CONFIG_OPTION,
    output_json: bool = typer.Option(False, "--json", help="Emit JSON"),
) -> None:
    """Print the effective policy of every known command in a guild."""

    config = _load_config(config_path)
    try:
        workspace = asyncio.run(
            _with_policy_store(config, lambda store: store.get_workspace(guild))
        )
    except StoreUnavailableError as exc:
        raise_exit(str(exc), cause=exc)

    resolver = PolicyResolver(None)
    names = sorted(
        set(DEFAULT_POLICIES) | set(workspace.command_rules if workspace else ())
    )
    rows = []
    for name in names:
        policy = resolver.effective(name, workspace)
        rows.append(
            {
                "command": name,
                "enabled": policy.enabled,
                "min_permission": policy.min_permission,
                "allow_channels": sorted(policy.allow_channels),
                "block_channels": sorted(policy.block_channels),
            }
        )
    if output_json:
        typer.echo(
            json.dumps(
                {
                    "guild_id": guild,
                    "seeded": workspace is not None,
                    "bypass_role_id": workspace.bypass_role_id if workspace else None,
                    "owner_id": workspace.owner_id if workspace else None,
                    "commands": rows,
                },
                indent=2,
            )
        )
        return
    if workspace is None:
        typer.echo(f"Guild {guild} has no stored policy; showing defaults.")
    else:
        typer.echo(f"Guild {guild} (bypass role: {workspace.bypass_role_id or '-'})")
    for row in rows:
        flags = "on " if row["enabled"] else "off"
        perm = row["min_permission"] or "everyone"
        line = f"  [{flags}] {row['command']:<12} {perm}"
        if row["allow_channels"]:
            line += f"  allow={','.join(row['allow_channels'])}"
        if row["block_channels"]:
            line += f"  block={','.join(row['block_channels'])}"
        typer.echo(line)


@policy_app.command("set-bypass-role")
def policy_set_bypass_role(
    guild: str = typer.Option(..., "--guild", help="Guild id"),
    role: Optional[str] = typer.Option(
        None, "--role", help="Manager role id; omit to clear"
    ),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    config = _load_config(config_path)
    try:
        asyncio.run(
            _with_policy_store(
                config, lambda store: store.set_bypass_role(guild, role or None)
            )
        )
    except StoreUnavailableError as exc:
        raise_exit(str(exc), cause=exc)
    typer.echo(f"Manager role for {guild}: {role or 'cleared'}")


@policy_app.command("reset")
def policy_reset(
    guild: str = typer.Option(..., "--guild", help="Guild id"),
    command: str = typer.Option(..., "--command", help="Command name"),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Drop the stored override so the command follows its default again."""

    config = _load_config(config_path)
    name = command.strip().lower()
    try:
        asyncio.run(
            _with_policy_store(
                config, lambda store: store.clear_command_rule(guild, name)
            )
        )
    except StoreUnavailableError as exc:
        raise_exit(str(exc), cause=exc)
    typer.echo(f"Reset /{name} in {guild} to defaults.")

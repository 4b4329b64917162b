from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ...core.config import BotConfig
from ...core.logging_utils import log_event
from ...core.retry import retry_transient
from ...gateway.dispatcher import InteractionDispatcher
from ...gateway.policy import PolicyResolver, default_rules_snapshot
from ...gateway.policy_store import SqlitePolicyStore
from ...gateway.registry import CommandRegistry
from ...gateway.sessions import SessionStore, build_session_store
from ...gateway.supervisor import FailureSupervisor
from .command_registry import sync_commands
from .gateway import DiscordGatewayClient
from .rest import DiscordRestClient
from .state import DiscordStateStore


class JillStingrayService:
    """Gateway connection, stores and dispatcher wired for one process."""

    def __init__(
        self,
        config: BotConfig,
        *,
        logger: logging.Logger,
        registry: Optional[CommandRegistry] = None,
        rest_client: Optional[DiscordRestClient] = None,
        gateway_client: Optional[DiscordGatewayClient] = None,
        policy_store: Optional[SqlitePolicyStore] = None,
        session_store: Optional[SessionStore] = None,
        state_store: Optional[DiscordStateStore] = None,
        supervisor: Optional[FailureSupervisor] = None,
    ) -> None:
        self._config = config
        self._logger = logger

        if registry is None:
            from ...commands import build_default_registry

            registry = build_default_registry()
        self._registry = registry

        self._rest = (
            rest_client
            if rest_client is not None
            else DiscordRestClient(bot_token=config.bot_token or "")
        )
        self._owns_rest = rest_client is None

        self._gateway = (
            gateway_client
            if gateway_client is not None
            else DiscordGatewayClient(
                bot_token=config.bot_token or "",
                intents=config.intents,
                logger=logger,
            )
        )
        self._owns_gateway = gateway_client is None

        self._policy_store = (
            policy_store
            if policy_store is not None
            else SqlitePolicyStore(config.state_file)
        )
        self._owns_policy_store = policy_store is None

        self._sessions = (
            session_store
            if session_store is not None
            else build_session_store(
                config.sessions.backend, db_path=config.state_file, logger=logger
            )
        )
        self._owns_sessions = session_store is None

        self._state = (
            state_store
            if state_store is not None
            else DiscordStateStore(config.state_file)
        )
        self._owns_state = state_store is None

        self._supervisor = supervisor or FailureSupervisor(logger=logger)
        self._policy = PolicyResolver(
            self._policy_store,
            on_store_error=config.policy.on_store_error,
            logger=logger,
        )
        self._dispatcher = InteractionDispatcher(
            registry=self._registry,
            policy=self._policy,
            sessions=self._sessions,
            rest=self._rest,
            application_id=config.application_id or "",
            supervisor=self._supervisor,
            state=self._state,
            logger=logger,
            max_message_length=config.max_message_length,
        )

    @property
    def dispatcher(self) -> InteractionDispatcher:
        return self._dispatcher

    @property
    def supervisor(self) -> FailureSupervisor:
        return self._supervisor

    async def run_forever(self) -> None:
        self._supervisor.install_loop_handler(asyncio.get_running_loop())
        await self._initialize_stores()
        await self._sync_application_commands_on_startup()
        try:
            log_event(
                self._logger,
                logging.INFO,
                "discord.bot.starting",
                state_file=str(self._config.state_file),
                commands=self._registry.names(),
                session_backend=self._config.sessions.backend,
                on_store_error=self._config.policy.on_store_error,
            )
            await self._gateway.run(self._on_dispatch)
        finally:
            try:
                await asyncio.wait_for(self._supervisor.wait_idle(), timeout=10.0)
            except asyncio.TimeoutError:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "discord.bot.shutdown_timeout",
                    active_tasks=self._supervisor.active_tasks,
                )
                await self._supervisor.cancel_all()
            await self._shutdown()

    async def _initialize_stores(self) -> None:
        @retry_transient(max_attempts=3)
        async def _init_policy() -> None:
            await self._policy_store.initialize()

        @retry_transient(max_attempts=3)
        async def _init_state() -> None:
            await self._state.initialize()

        await _init_policy()
        await _init_state()
        initialize = getattr(self._sessions, "initialize", None)
        if callable(initialize):
            await retry_transient(max_attempts=3)(initialize)()

    async def _sync_application_commands_on_startup(self) -> None:
        registration = self._config.command_registration
        if not registration.enabled:
            log_event(self._logger, logging.INFO, "discord.commands.sync.disabled")
            return

        application_id = (self._config.application_id or "").strip()
        if not application_id:
            raise ValueError("missing Discord application id for command sync")

        commands = self._registry.application_commands()
        try:
            await sync_commands(
                self._rest,
                application_id=application_id,
                commands=commands,
                scope=registration.scope,
                guild_ids=registration.guild_ids,
                logger=self._logger,
            )
        except ValueError:
            raise
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "discord.commands.sync.startup_failed",
                scope=registration.scope,
                command_count=len(commands),
                exc=exc,
            )

    async def _on_dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type == "INTERACTION_CREATE":
            self._supervisor.spawn(
                self._dispatcher.dispatch(payload),
                label="interaction",
                interaction_id=payload.get("id"),
            )
        elif event_type == "GUILD_CREATE":
            self._supervisor.spawn(
                self._seed_workspace(payload),
                label="guild_create",
                guild_id=payload.get("id"),
            )

    async def _seed_workspace(self, payload: dict[str, Any]) -> None:
        guild_id = str(payload.get("id") or "").strip()
        if not guild_id:
            return
        owner_id = str(payload.get("owner_id") or "").strip() or None
        created = await self._policy_store.seed_workspace(
            guild_id, owner_id=owner_id, rules=default_rules_snapshot()
        )
        if not created and owner_id is not None:
            await self._policy_store.set_owner(guild_id, owner_id)
        log_event(
            self._logger,
            logging.INFO,
            "gateway.policy.workspace_seeded",
            guild_id=guild_id,
            created=created,
        )

    async def _shutdown(self) -> None:
        if self._owns_gateway:
            await self._close_quietly("gateway", self._gateway.stop)
        if self._owns_rest:
            await self._close_quietly("rest", self._rest.close)
        if self._owns_sessions:
            await self._close_quietly("sessions", self._sessions.close)
        if self._owns_state:
            await self._close_quietly("state", self._state.close)
        if self._owns_policy_store:
            await self._close_quietly("policy", self._policy_store.close)

    async def _close_quietly(self, name: str, close: Any) -> None:
        try:
            await close()
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "discord.bot.close_failed",
                component=name,
                exc=exc,
            )


def create_service(
    config: BotConfig, *, logger: logging.Logger
) -> JillStingrayService:
    return JillStingrayService(config, logger=logger)

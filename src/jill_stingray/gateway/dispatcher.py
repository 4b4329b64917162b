"""Routes classified interactions to handlers after every gate has passed.

Denials (disabled command, channel restriction, missing capability, not
the owner, expired session) are decided and sent here, never inside a
handler, and are logged at INFO.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..core.exceptions import StoreUnavailableError
from ..core.logging_utils import log_event
from ..integrations.discord.constants import DISCORD_MAX_MESSAGE_LENGTH
from .classifier import EventKind, InteractionEvent, classify
from .confirmation import CANCELLED_MESSAGE, SESSION_EXPIRED_MESSAGE, BulkResult
from .context import InteractionContext
from .permissions import has_bypass, readable_capability
from .policy import PolicyResolver
from .registry import Autocompletable, CommandRegistry
from .routing import CANCEL_FAMILY, CONFIRM_FAMILY, Ownership
from .sessions import FlowKind, Session, SessionStore
from .supervisor import FailureSupervisor

NOT_YOUR_INTERACTION_MESSAGE = "This isn't your interaction."
UNKNOWN_COMMAND_MESSAGE = "Unknown command."
UNKNOWN_COMPONENT_MESSAGE = "This control is no longer active."


def _missing_permission_message(token: str) -> str:
    readable = readable_capability(token)
    return (
        f"🚫 **Access Denied.** You need the `{readable}` permission "
        "to use this command."
    )


class DispatchStatus(str, Enum):
    HANDLED = "handled"
    FAILED = "failed"
    DENIED = "denied"
    EXPIRED = "expired"
    UNROUTABLE = "unroutable"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DispatchOutcome:
    status: DispatchStatus
    event: Optional[InteractionEvent] = None
    reason: Optional[str] = None


class InteractionDispatcher:
    def __init__(
        self,
        *,
        registry: CommandRegistry,
        policy: PolicyResolver,
        sessions: SessionStore,
        rest: Any,
        application_id: str,
        supervisor: Optional[FailureSupervisor] = None,
        state: Any = None,
        logger: Optional[logging.Logger] = None,
        max_message_length: int = DISCORD_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._registry = registry
        self._policy = policy
        self._sessions = sessions
        self._rest = rest
        self._application_id = application_id
        self._state = state
        self._logger = logger or logging.getLogger(__name__)
        self._supervisor = supervisor or FailureSupervisor(logger=self._logger)
        self._max_message_length = max_message_length

    @property
    def supervisor(self) -> FailureSupervisor:
        return self._supervisor

    def _context(self, event: InteractionEvent) -> InteractionContext:
        return InteractionContext(
            event=event,
            rest=self._rest,
            application_id=event.application_id or self._application_id,
            sessions=self._sessions,
            policy=self._policy,
            registry=self._registry,
            state=self._state,
            logger=self._logger,
            max_message_length=self._max_message_length,
        )

    async def dispatch(self, payload: dict[str, Any]) -> DispatchOutcome:
        event = classify(payload)
        if event is None:
            log_event(
                self._logger,
                logging.DEBUG,
                "gateway.dispatch.unclassified",
                interaction_type=payload.get("type"),
            )
            return DispatchOutcome(DispatchStatus.IGNORED)
        log_event(
            self._logger,
            logging.INFO,
            "gateway.dispatch.received",
            kind=event.kind.value,
            command=event.command_name,
            custom_id=event.custom_id,
            workspace_id=event.workspace_id,
            channel_id=event.channel_id,
            user_id=event.user_id,
        )
        ctx = self._context(event)
        if event.kind is EventKind.COMMAND:
            return await self._dispatch_command(event, ctx)
        if event.kind is EventKind.AUTOCOMPLETE:
            return await self._dispatch_autocomplete(event, ctx)
        return await self._dispatch_component(event, ctx)

    async def _deny(
        self,
        event: InteractionEvent,
        ctx: InteractionContext,
        message: str,
        *,
        reason: str,
        status: DispatchStatus = DispatchStatus.DENIED,
    ) -> DispatchOutcome:
        log_event(
            self._logger,
            logging.INFO,
            "gateway.dispatch.denied",
            reason=reason,
            command=event.command_name,
            custom_id=event.custom_id,
            workspace_id=event.workspace_id,
            channel_id=event.channel_id,
            user_id=event.user_id,
        )
        await self._supervisor.guard(
            "denial",
            lambda: ctx.respond_ephemeral(message),
            interaction_id=event.interaction_id,
        )
        return DispatchOutcome(status, event=event, reason=reason)

    async def _dispatch_command(
        self, event: InteractionEvent, ctx: InteractionContext
    ) -> DispatchOutcome:
        name = event.command_name or ""
        command = self._registry.get(name)
        if command is None:
            return await self._deny(
                event,
                ctx,
                UNKNOWN_COMMAND_MESSAGE,
                reason="unknown_command",
                status=DispatchStatus.UNROUTABLE,
            )

        decision = await self._policy.evaluate(
            workspace_id=event.workspace_id,
            command_name=name,
            channel_id=event.channel_id,
            invoker=event.invoker,
        )
        if not decision.allowed:
            reason = decision.reason.value if decision.reason else "denied"
            return await self._deny(
                event, ctx, decision.denial_message(name), reason=reason
            )

        required = getattr(command, "subcommand_permissions", {}).get(
            event.subcommand or ""
        )
        if required and not await self._has_capability(event, required):
            return await self._deny(
                event,
                ctx,
                _missing_permission_message(required),
                reason="missing_permission",
            )

        async def _run() -> None:
            if command.defer:
                await ctx.defer(ephemeral=command.ephemeral_defer)
            await command.execute(event, ctx)

        ok = await self._supervisor.guard(
            f"command:{name}",
            _run,
            on_error=ctx.send_error,
            command=name,
            workspace_id=event.workspace_id,
            user_id=event.user_id,
        )
        return DispatchOutcome(
            DispatchStatus.HANDLED if ok else DispatchStatus.FAILED, event=event
        )

    async def _dispatch_autocomplete(
        self, event: InteractionEvent, ctx: InteractionContext
    ) -> DispatchOutcome:
        command = self._registry.get(event.command_name)
        if command is None or not isinstance(command, Autocompletable):
            await self._supervisor.guard(
                "autocomplete:none", lambda: ctx.autocomplete_result([])
            )
            return DispatchOutcome(DispatchStatus.HANDLED, event=event)

        async def _run() -> None:
            choices = await command.autocomplete(event, ctx)
            await ctx.autocomplete_result(list(choices or []))

        async def _empty(_message: str) -> None:
            if not ctx.acknowledged:
                await ctx.autocomplete_result([])

        ok = await self._supervisor.guard(
            f"autocomplete:{event.command_name}",
            _run,
            on_error=_empty,
            command=event.command_name,
        )
        return DispatchOutcome(
            DispatchStatus.HANDLED if ok else DispatchStatus.FAILED, event=event
        )

    async def _has_capability(
        self, event: InteractionEvent, token: str
    ) -> bool:
        if event.invoker.has_capability(token):
            return True
        bypass_role_id: Optional[str] = None
        owner_id: Optional[str] = None
        if event.workspace_id is not None:
            try:
                workspace = await self._policy.load_workspace(event.workspace_id)
            except StoreUnavailableError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "gateway.policy.store_unavailable",
                    workspace_id=event.workspace_id,
                    custom_id=event.custom_id,
                    exc=exc,
                )
                workspace = None
            if workspace is not None:
                bypass_role_id = workspace.bypass_role_id
                owner_id = workspace.owner_id
        return has_bypass(
            event.invoker, bypass_role_id=bypass_role_id, owner_id=owner_id
        )

    async def _load_session(self, owner_id: str) -> Optional[Session]:
        """Session lookup; a failing store reads as "no session"."""

        try:
            return await self._sessions.get(owner_id)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "gateway.session.store_unavailable",
                owner_id=owner_id,
                exc=exc,
            )
            return None

    async def _dispatch_component(
        self, event: InteractionEvent, ctx: InteractionContext
    ) -> DispatchOutcome:
        key = event.routing_key
        routed = self._registry.route_for(key.family if key else None)
        if key is None or routed is None:
            return await self._deny(
                event,
                ctx,
                UNKNOWN_COMPONENT_MESSAGE,
                reason="unknown_component",
                status=DispatchStatus.UNROUTABLE,
            )
        route, handler = routed

        if route.ownership is Ownership.OWNER and key.owner_id != event.user_id:
            return await self._deny(
                event, ctx, NOT_YOUR_INTERACTION_MESSAGE, reason="not_owner"
            )

        if route.min_permission and not await self._has_capability(
            event, route.min_permission
        ):
            return await self._deny(
                event,
                ctx,
                _missing_permission_message(route.min_permission),
                reason="missing_permission",
            )

        if route.family == CANCEL_FAMILY:
            return await self._cancel(event, ctx)

        session: Optional[Session] = None
        if route.requires_session:
            session = await self._load_session(event.user_id)
            if session is not None and session.flow_kind not in route.flow_kinds:
                session = None
        if session is None and (
            route.requires_session or route.family == CONFIRM_FAMILY
        ):
            return await self._deny(
                event,
                ctx,
                SESSION_EXPIRED_MESSAGE,
                reason="session_expired",
                status=DispatchStatus.EXPIRED,
            )

        if route.family == CONFIRM_FAMILY and session is not None:
            return await self._confirm(event, ctx, session)

        if handler is None:
            return await self._deny(
                event,
                ctx,
                UNKNOWN_COMPONENT_MESSAGE,
                reason="unknown_component",
                status=DispatchStatus.UNROUTABLE,
            )
        ok = await self._supervisor.guard(
            f"component:{route.family}",
            lambda: handler.handle_component(event, ctx, session),
            on_error=ctx.send_error,
            custom_id=event.custom_id,
            user_id=event.user_id,
        )
        return DispatchOutcome(
            DispatchStatus.HANDLED if ok else DispatchStatus.FAILED, event=event
        )

    async def _confirm(
        self, event: InteractionEvent, ctx: InteractionContext, session: Session
    ) -> DispatchOutcome:
        key = event.routing_key
        requested = FlowKind.parse(key.arg(0)) if key else None
        confirmer = self._registry.confirmer_for(session.flow_kind)
        if requested is not session.flow_kind or confirmer is None:
            return await self._deny(
                event,
                ctx,
                SESSION_EXPIRED_MESSAGE,
                reason="flow_mismatch",
                status=DispatchStatus.EXPIRED,
            )

        async def _run() -> None:
            result = await confirmer.confirm(event, ctx, session)
            if isinstance(result, BulkResult):
                await ctx.update_message(
                    "", embeds=[result.to_embed()], components=[]
                )
            await self._sessions.delete(session.owner_id)
            log_event(
                self._logger,
                logging.INFO,
                "gateway.session.completed",
                owner_id=session.owner_id,
                flow=session.flow_kind.value,
                succeeded=len(result.succeeded) if result else None,
                failed=len(result.failed) if result else None,
            )

        ok = await self._supervisor.guard(
            f"confirm:{session.flow_kind.value}",
            _run,
            on_error=ctx.send_error,
            owner_id=session.owner_id,
        )
        return DispatchOutcome(
            DispatchStatus.HANDLED if ok else DispatchStatus.FAILED, event=event
        )

    async def _cancel(
        self, event: InteractionEvent, ctx: InteractionContext
    ) -> DispatchOutcome:
        key = event.routing_key
        requested = FlowKind.parse(key.arg(0)) if key else None

        async def _run() -> None:
            removed = False
            session = await self._load_session(event.user_id)
            if session is not None and session.flow_kind is requested:
                try:
                    removed = await self._sessions.delete(event.user_id)
                except Exception as exc:
                    log_event(
                        self._logger,
                        logging.WARNING,
                        "gateway.session.store_unavailable",
                        owner_id=event.user_id,
                        exc=exc,
                    )
            log_event(
                self._logger,
                logging.INFO,
                "gateway.session.cancelled",
                owner_id=event.user_id,
                flow=requested.value if requested else None,
                removed=removed,
            )
            await ctx.update_message(CANCELLED_MESSAGE, embeds=[], components=[])

        ok = await self._supervisor.guard(
            "cancel", _run, on_error=ctx.send_error, owner_id=event.user_id
        )
        return DispatchOutcome(
            DispatchStatus.HANDLED if ok else DispatchStatus.FAILED, event=event
        )

"""Typed command registry, built once at startup.

Handlers are plain objects. What the dispatcher may do with one is decided
by which capability protocols it satisfies:

* `Command` is required: name, description, options, and `execute`.
* `Autocompletable` adds `autocomplete`.
* `Interactive` declares component routes and `handle_component`.
* `Confirmable` declares the flow kinds whose confirm button it finishes.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from ..core.exceptions import RegistryError
from .routing import CANCEL_ROUTE, CONFIRM_ROUTE, ComponentRoute
from .sessions import FlowKind, Session

if TYPE_CHECKING:
    from .classifier import InteractionEvent
    from .confirmation import BulkResult
    from .context import InteractionContext


@runtime_checkable
class Command(Protocol):
    name: str
    description: str
    options: Sequence[dict[str, Any]]
    defer: bool
    ephemeral_defer: bool

    async def execute(
        self, event: "InteractionEvent", ctx: "InteractionContext"
    ) -> None: ...


@runtime_checkable
class Autocompletable(Protocol):
    async def autocomplete(
        self, event: "InteractionEvent", ctx: "InteractionContext"
    ) -> list[dict[str, Any]]: ...


@runtime_checkable
class Interactive(Protocol):
    component_routes: Sequence[ComponentRoute]

    async def handle_component(
        self,
        event: "InteractionEvent",
        ctx: "InteractionContext",
        session: Optional[Session],
    ) -> None: ...


@runtime_checkable
class Confirmable(Protocol):
    confirm_flows: frozenset[FlowKind]

    async def confirm(
        self,
        event: "InteractionEvent",
        ctx: "InteractionContext",
        session: Session,
    ) -> Optional["BulkResult"]: ...


class BaseCommand:
    """Defaults for the `Command` attributes handlers rarely change."""

    name: str = ""
    description: str = ""
    options: Sequence[dict[str, Any]] = ()
    defer: bool = False
    ephemeral_defer: bool = False
    default_member_permissions: Optional[str] = None
    dm_permission: bool = False
    # Subcommand name -> capability token, checked by the dispatcher.
    subcommand_permissions: Mapping[str, str] = MappingProxyType({})

    def application_command(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": 1,
            "name": self.name,
            "description": self.description[:100],
            "options": list(self.options),
            "dm_permission": self.dm_permission,
        }
        if self.default_member_permissions is not None:
            payload["default_member_permissions"] = self.default_member_permissions
        return payload


class CommandRegistry:
    def __init__(self, commands: Iterable[Command] = ()) -> None:
        self._commands: dict[str, Command] = {}
        self._routes: dict[str, tuple[ComponentRoute, Optional[Interactive]]] = {
            CONFIRM_ROUTE.family: (CONFIRM_ROUTE, None),
            CANCEL_ROUTE.family: (CANCEL_ROUTE, None),
        }
        self._confirmers: dict[FlowKind, Confirmable] = {}
        for command in commands:
            self.register(command)

    def register(self, command: Command) -> None:
        if not isinstance(command, Command):
            raise RegistryError(f"{command!r} does not implement Command")
        name = command.name.strip().lower()
        if not name:
            raise RegistryError("command name must be non-empty")
        if name in self._commands:
            raise RegistryError(f"duplicate command name: {name}")

        routes: list[ComponentRoute] = []
        if isinstance(command, Interactive):
            for route in command.component_routes:
                if route.family in self._routes or any(
                    existing.family == route.family for existing in routes
                ):
                    raise RegistryError(f"duplicate component family: {route.family}")
                routes.append(route)
        flows: frozenset[FlowKind] = frozenset()
        if isinstance(command, Confirmable):
            flows = frozenset(command.confirm_flows)
            clash = flows & self._confirmers.keys()
            if clash:
                kinds = ", ".join(sorted(kind.value for kind in clash))
                raise RegistryError(f"duplicate confirm flow: {kinds}")

        self._commands[name] = command
        for route in routes:
            self._routes[route.family] = (route, command)  # type: ignore[assignment]
        for flow in flows:
            self._confirmers[flow] = command  # type: ignore[assignment]

    def get(self, name: Optional[str]) -> Optional[Command]:
        if not name:
            return None
        return self._commands.get(name.lower())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def names(self) -> list[str]:
        return sorted(self._commands)

    def commands(self) -> list[Command]:
        return [self._commands[name] for name in self.names()]

    def route_for(
        self, family: Optional[str]
    ) -> Optional[tuple[ComponentRoute, Optional[Interactive]]]:
        if not family:
            return None
        return self._routes.get(family)

    def confirmer_for(self, flow_kind: FlowKind) -> Optional[Confirmable]:
        return self._confirmers.get(flow_kind)

    def application_commands(self) -> list[dict[str, Any]]:
        payloads: list[dict[str, Any]] = []
        for command in self.commands():
            builder = getattr(command, "application_command", None)
            if callable(builder):
                payloads.append(builder())
                continue
            payloads.append(
                {
                    "type": 1,
                    "name": command.name,
                    "description": command.description[:100],
                    "options": list(command.options),
                }
            )
        return payloads

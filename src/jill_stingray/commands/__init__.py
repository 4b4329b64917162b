from __future__ import annotations

from ..gateway.registry import CommandRegistry
from .audit import AuditCommand
from .config import ConfigCommand
from .custom import CustomCommand
from .dangeru import DangeruCommand
from .dashboard import DashboardCommand
from .help import HelpCommand
from .ping import PingCommand
from .role import RoleCommand


def build_default_registry() -> CommandRegistry:
    return CommandRegistry(
        [
            PingCommand(),
            HelpCommand(),
            ConfigCommand(),
            DashboardCommand(),
            RoleCommand(),
            CustomCommand(),
            AuditCommand(),
            DangeruCommand(),
        ]
    )


__all__ = ["build_default_registry"]

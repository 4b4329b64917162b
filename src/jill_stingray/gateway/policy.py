"""Per-workspace command policy: rules, defaults and resolution.

A stored `CommandRule` is a partial override; only the fields it sets are
laid over the compiled-in default for that command. Commands without a
default resolve to "enabled, no restriction".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Protocol

from ..core.exceptions import StoreUnavailableError
from ..core.logging_utils import log_event
from .permissions import (
    EVERYONE,
    Invoker,
    has_bypass,
    normalize_capability,
    readable_capability,
)

STORE_ERROR_ALLOW = "allow"
STORE_ERROR_DENY = "deny"

# Commands that edit policy themselves; `enabled=false` never locks them out.
POLICY_EXEMPT_COMMANDS = frozenset({"config", "dashboard"})

_ENABLED_KEYS = ("enabled",)
_PERMISSION_KEYS = ("min_perm", "min_permission", "required_perm")
_ALLOW_KEYS = ("allow_channels", "allowed_channels")
_BLOCK_KEYS = ("block_channels", "blocked_channels")


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> tuple[bool, Any]:
    for key in keys:
        if key in raw:
            return True, raw[key]
    return False, None


def _channel_set(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    items = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    return frozenset(str(item).strip() for item in items if str(item).strip())


@dataclass(frozen=True)
class CommandRule:
    """Stored override for one command in one workspace.

    `None` means "not set here". `min_permission == "everyone"` is an explicit
    override that removes the default requirement.
    """

    enabled: Optional[bool] = None
    min_permission: Optional[str] = None
    allow_channels: Optional[frozenset[str]] = None
    block_channels: Optional[frozenset[str]] = None

    @classmethod
    def from_mapping(cls, raw: Any) -> "CommandRule":
        if not isinstance(raw, Mapping):
            return cls()
        has_enabled, enabled = _first_present(raw, _ENABLED_KEYS)
        has_perm, perm = _first_present(raw, _PERMISSION_KEYS)
        has_allow, allow = _first_present(raw, _ALLOW_KEYS)
        has_block, block = _first_present(raw, _BLOCK_KEYS)
        min_permission: Optional[str] = None
        if has_perm:
            # An explicit null in storage means "everyone", not "unset".
            min_permission = normalize_capability(perm) if perm is not None else EVERYONE
        return cls(
            enabled=bool(enabled) if has_enabled and enabled is not None else None,
            min_permission=min_permission,
            allow_channels=_channel_set(allow) if has_allow else None,
            block_channels=_channel_set(block) if has_block else None,
        )

    def to_mapping(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.enabled is not None:
            data["enabled"] = self.enabled
        if self.min_permission is not None:
            data["min_perm"] = (
                None if self.min_permission == EVERYONE else self.min_permission
            )
        if self.allow_channels is not None:
            data["allow_channels"] = sorted(self.allow_channels)
        if self.block_channels is not None:
            data["block_channels"] = sorted(self.block_channels)
        return data

    @property
    def is_empty(self) -> bool:
        return not self.to_mapping()


@dataclass(frozen=True)
class EffectivePolicy:
    enabled: bool = True
    min_permission: Optional[str] = None
    allow_channels: frozenset[str] = field(default_factory=frozenset)
    block_channels: frozenset[str] = field(default_factory=frozenset)

    def overlay(self, rule: Optional[CommandRule]) -> "EffectivePolicy":
        if rule is None:
            return self
        policy = self
        if rule.enabled is not None:
            policy = replace(policy, enabled=rule.enabled)
        if rule.min_permission is not None:
            policy = replace(
                policy,
                min_permission=None
                if rule.min_permission == EVERYONE
                else rule.min_permission,
            )
        if rule.allow_channels is not None:
            policy = replace(policy, allow_channels=rule.allow_channels)
        if rule.block_channels is not None:
            policy = replace(policy, block_channels=rule.block_channels)
        return policy


UNRESTRICTED = EffectivePolicy()


def _default(min_permission: Optional[str] = None, *, enabled: bool = True) -> EffectivePolicy:
    return EffectivePolicy(enabled=enabled, min_permission=min_permission)


DEFAULT_POLICIES: Mapping[str, EffectivePolicy] = {
    "8ball": _default(),
    "avatar": _default(),
    "custom": _default(),
    "emojistats": _default(),
    "help": _default(),
    "id": _default(),
    "menu": _default(),
    "mix": _default(),
    "ping": _default(),
    "pulse": _default(),
    "regulars": _default(),
    "serverinfo": _default(),
    "surprise": _default(),
    "tab": _default(),
    "threads": _default(),
    "userinfo": _default(),
    "ghost": _default("manageGuild"),
    "role": _default("manageRoles"),
    "identity": _default("manageMessages"),
    "purge": _default("manageMessages"),
    "steal": _default("manageMessages"),
    "streamline": _default("manageMessages"),
    "trigger": _default("manageMessages"),
    "perms": _default("administrator"),
    "audit": _default("administrator"),
    "config": _default("manageGuild"),
    "dashboard": _default("administrator"),
    "dangeru": _default("administrator", enabled=False),
}


@dataclass(frozen=True)
class WorkspacePolicy:
    """Persisted policy row for one workspace."""

    workspace_id: str
    bypass_role_id: Optional[str] = None
    owner_id: Optional[str] = None
    command_rules: Mapping[str, CommandRule] = field(default_factory=dict)

    def rule_for(self, command_name: str) -> Optional[CommandRule]:
        return self.command_rules.get(command_name)


def default_rules_snapshot(
    defaults: Mapping[str, EffectivePolicy] = DEFAULT_POLICIES,
) -> dict[str, CommandRule]:
    """Factory defaults expressed as fully-set stored rules."""

    return {
        name: CommandRule(
            enabled=policy.enabled,
            min_permission=policy.min_permission or EVERYONE,
            allow_channels=policy.allow_channels,
            block_channels=policy.block_channels,
        )
        for name, policy in defaults.items()
    }


class PolicyStore(Protocol):
    async def get_workspace(self, workspace_id: str) -> Optional[WorkspacePolicy]: ...

    async def seed_workspace(
        self,
        workspace_id: str,
        *,
        owner_id: Optional[str] = None,
        rules: Optional[Mapping[str, CommandRule]] = None,
    ) -> bool: ...

    async def put_command_rule(
        self, workspace_id: str, command_name: str, rule: CommandRule
    ) -> WorkspacePolicy: ...

    async def clear_command_rule(
        self, workspace_id: str, command_name: str
    ) -> WorkspacePolicy: ...

    async def set_bypass_role(
        self, workspace_id: str, role_id: Optional[str]
    ) -> WorkspacePolicy: ...


class DenialReason(str, Enum):
    DISABLED = "disabled"
    CHANNEL_NOT_ALLOWED = "channel_not_allowed"
    CHANNEL_BLOCKED = "channel_blocked"
    MISSING_PERMISSION = "missing_permission"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    policy: EffectivePolicy
    reason: Optional[DenialReason] = None
    bypassed: bool = False
    store_available: bool = True

    def denial_message(self, command_name: str) -> str:
        if self.reason is DenialReason.DISABLED:
            return f"🚫 `/{command_name}` is disabled in this server."
        if self.reason in (
            DenialReason.CHANNEL_NOT_ALLOWED,
            DenialReason.CHANNEL_BLOCKED,
        ):
            return f"🚫 `/{command_name}` cannot be used in this channel."
        if self.reason is DenialReason.MISSING_PERMISSION:
            readable = readable_capability(self.policy.min_permission)
            return (
                f"🚫 **Access Denied.** You need the `{readable}` permission "
                "to use this command."
            )
        if self.reason is DenialReason.STORE_UNAVAILABLE:
            return "⚠️ Server settings are unavailable right now. Try again shortly."
        return ""


class PolicyResolver:
    """Merges defaults, stored overrides and runtime bypass into a decision."""

    def __init__(
        self,
        store: Optional[PolicyStore],
        *,
        defaults: Mapping[str, EffectivePolicy] = DEFAULT_POLICIES,
        exempt_commands: Iterable[str] = POLICY_EXEMPT_COMMANDS,
        on_store_error: str = STORE_ERROR_ALLOW,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if on_store_error not in (STORE_ERROR_ALLOW, STORE_ERROR_DENY):
            raise ValueError("on_store_error must be 'allow' or 'deny'")
        self._store = store
        self._defaults = dict(defaults)
        self._exempt = frozenset(exempt_commands)
        self.on_store_error = on_store_error
        self._logger = logger or logging.getLogger(__name__)

    @property
    def store(self) -> Optional[PolicyStore]:
        return self._store

    def is_exempt(self, command_name: str) -> bool:
        return command_name in self._exempt

    def default_for(self, command_name: str) -> EffectivePolicy:
        return self._defaults.get(command_name, UNRESTRICTED)

    def effective(
        self, command_name: str, workspace: Optional[WorkspacePolicy]
    ) -> EffectivePolicy:
        policy = self.default_for(command_name)
        if workspace is None:
            return policy
        return policy.overlay(workspace.rule_for(command_name))

    async def load_workspace(self, workspace_id: str) -> Optional[WorkspacePolicy]:
        """One store round trip; raises StoreUnavailableError on failure."""

        if self._store is None:
            return None
        try:
            return await self._store.get_workspace(workspace_id)
        except StoreUnavailableError:
            raise
        except Exception as exc:
            raise StoreUnavailableError(
                f"policy fetch failed: {exc}", store="policy"
            ) from exc

    async def _workspace_for(
        self, workspace_id: str, command_name: str
    ) -> tuple[Optional[WorkspacePolicy], bool]:
        """Stored row plus whether the store answered.

        An outage yields `(None, False)` when errors fail open, so callers
        fall back to the built-in default. With `on_store_error="deny"` the
        StoreUnavailableError propagates.
        """

        try:
            return await self.load_workspace(workspace_id), True
        except StoreUnavailableError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "gateway.policy.store_unavailable",
                workspace_id=workspace_id,
                command=command_name,
                on_store_error=self.on_store_error,
                exc=exc,
            )
            if self.on_store_error == STORE_ERROR_DENY:
                raise
            return None, False

    async def resolve(self, workspace_id: str, command_name: str) -> EffectivePolicy:
        """Built-in default for the command with the stored override on top.

        An unreachable store resolves to the built-in default alone, or
        raises StoreUnavailableError when errors are configured to deny.
        """

        workspace, _available = await self._workspace_for(workspace_id, command_name)
        return self.effective(command_name, workspace)

    async def evaluate(
        self,
        *,
        workspace_id: Optional[str],
        command_name: str,
        channel_id: Optional[str],
        invoker: Invoker,
        owner_id: Optional[str] = None,
    ) -> PolicyDecision:
        workspace: Optional[WorkspacePolicy] = None
        available = True
        if workspace_id is not None:
            try:
                workspace, available = await self._workspace_for(
                    workspace_id, command_name
                )
            except StoreUnavailableError:
                return PolicyDecision(
                    allowed=False,
                    policy=self.default_for(command_name),
                    reason=DenialReason.STORE_UNAVAILABLE,
                    store_available=False,
                )

        decision = self._decide(
            command_name,
            self.effective(command_name, workspace),
            workspace,
            channel_id=channel_id,
            invoker=invoker,
            owner_id=owner_id,
        )
        if available:
            return decision
        return replace(decision, store_available=False)

    def _decide(
        self,
        command_name: str,
        policy: EffectivePolicy,
        workspace: Optional[WorkspacePolicy],
        *,
        channel_id: Optional[str],
        invoker: Invoker,
        owner_id: Optional[str],
    ) -> PolicyDecision:
        if not policy.enabled and not self.is_exempt(command_name):
            return PolicyDecision(
                allowed=False, policy=policy, reason=DenialReason.DISABLED
            )
        if policy.allow_channels and channel_id not in policy.allow_channels:
            return PolicyDecision(
                allowed=False, policy=policy, reason=DenialReason.CHANNEL_NOT_ALLOWED
            )
        if channel_id in policy.block_channels:
            return PolicyDecision(
                allowed=False, policy=policy, reason=DenialReason.CHANNEL_BLOCKED
            )
        if policy.min_permission is None:
            return PolicyDecision(allowed=True, policy=policy)
        bypass_role_id = workspace.bypass_role_id if workspace is not None else None
        if owner_id is None and workspace is not None:
            owner_id = workspace.owner_id
        if has_bypass(invoker, bypass_role_id=bypass_role_id, owner_id=owner_id):
            return PolicyDecision(allowed=True, policy=policy, bypassed=True)
        if invoker.has_capability(policy.min_permission):
            return PolicyDecision(allowed=True, policy=policy)
        return PolicyDecision(
            allowed=False, policy=policy, reason=DenialReason.MISSING_PERMISSION
        )

from __future__ import annotations

import pytest

from jill_stingray.core.exceptions import StoreUnavailableError
from jill_stingray.gateway.permissions import (
    Invoker,
    has_bypass,
    normalize_capability,
    readable_capability,
)
from jill_stingray.gateway.policy import (
    DEFAULT_POLICIES,
    CommandRule,
    DenialReason,
    EffectivePolicy,
    PolicyResolver,
    WorkspacePolicy,
    default_rules_snapshot,
)
from tests.fixtures.discord_fakes import (
    PERM_ADMINISTRATOR,
    PERM_MANAGE_GUILD,
    PERM_MANAGE_ROLES,
    InMemoryPolicyStore,
)


def _invoker(permissions: int = 0, roles: tuple[str, ...] = (), user_id: str = "u1") -> Invoker:
    return Invoker(user_id=user_id, permissions=permissions, role_ids=frozenset(roles))


def test_normalize_capability_accepts_loose_spellings() -> None:
    assert normalize_capability("ManageGuild") == "manageGuild"
    assert normalize_capability("manage_roles") == "manageRoles"
    assert normalize_capability("null") == "everyone"
    assert normalize_capability("launchRockets") is None
    assert normalize_capability("  ") is None


def test_readable_capability_uses_server_wording() -> None:
    assert readable_capability("manageGuild") == "Manage Server"
    assert readable_capability("administrator") == "Administrator"
    assert readable_capability(None) == "Everyone"


def test_invoker_capabilities_and_bypass() -> None:
    admin = _invoker(PERM_ADMINISTRATOR)
    assert admin.has_capability("manageRoles")
    member = _invoker(PERM_MANAGE_ROLES, roles=("mods",))
    assert member.has_capability("manageRoles")
    assert not member.has_capability("manageGuild")
    assert has_bypass(member, bypass_role_id="mods")
    assert not has_bypass(member, bypass_role_id="other")
    assert has_bypass(_invoker(user_id="owner"), owner_id="owner")


def test_invoker_from_interaction_reads_member_bitfield() -> None:
    invoker = Invoker.from_interaction(
        {
            "member": {
                "user": {"id": "42", "username": "jill"},
                "permissions": "32",
                "roles": ["r1", ""],
            }
        }
    )
    assert invoker is not None
    assert invoker.user_id == "42"
    assert invoker.permissions == PERM_MANAGE_GUILD
    assert invoker.role_ids == frozenset({"r1"})
    assert Invoker.from_interaction({}) is None


def test_command_rule_mapping_round_trip_keeps_explicit_everyone() -> None:
    rule = CommandRule.from_mapping({"enabled": False, "min_perm": None})
    assert rule.enabled is False
    assert rule.min_permission == "everyone"
    assert rule.to_mapping() == {"enabled": False, "min_perm": None}
    assert CommandRule.from_mapping("garbage").is_empty


def test_effective_overlays_only_set_fields() -> None:
    resolver = PolicyResolver(None)
    workspace = WorkspacePolicy(
        "g", command_rules={"role": CommandRule(allow_channels=frozenset({"c1"}))}
    )
    policy = resolver.effective("role", workspace)
    assert policy.min_permission == "manageRoles"
    assert policy.allow_channels == frozenset({"c1"})
    assert resolver.effective("unknown-cmd", workspace).enabled is True


def test_default_rules_snapshot_covers_every_default() -> None:
    snapshot = default_rules_snapshot()
    assert set(snapshot) == set(DEFAULT_POLICIES)
    assert snapshot["ping"].min_permission == "everyone"
    assert snapshot["dangeru"].enabled is False


@pytest.mark.anyio
async def test_evaluate_disabled_command_is_denied() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule("g", "ping", CommandRule(enabled=False))
    decision = await PolicyResolver(store).evaluate(
        workspace_id="g", command_name="ping", channel_id="c", invoker=_invoker()
    )
    assert not decision.allowed
    assert decision.reason is DenialReason.DISABLED
    assert "disabled" in decision.denial_message("ping")


@pytest.mark.anyio
async def test_evaluate_exempt_command_ignores_disabled_flag() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule("g", "config", CommandRule(enabled=False))
    decision = await PolicyResolver(store).evaluate(
        workspace_id="g",
        command_name="config",
        channel_id="c",
        invoker=_invoker(PERM_MANAGE_GUILD),
    )
    assert decision.allowed


@pytest.mark.anyio
async def test_evaluate_channel_lists() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule(
        "g", "ping", CommandRule(allow_channels=frozenset({"ok"}))
    )
    await store.put_command_rule(
        "g", "help", CommandRule(block_channels=frozenset({"bad"}))
    )
    resolver = PolicyResolver(store)
    outside = await resolver.evaluate(
        workspace_id="g", command_name="ping", channel_id="elsewhere", invoker=_invoker()
    )
    assert outside.reason is DenialReason.CHANNEL_NOT_ALLOWED
    inside = await resolver.evaluate(
        workspace_id="g", command_name="ping", channel_id="ok", invoker=_invoker()
    )
    assert inside.allowed
    blocked = await resolver.evaluate(
        workspace_id="g", command_name="help", channel_id="bad", invoker=_invoker()
    )
    assert blocked.reason is DenialReason.CHANNEL_BLOCKED


@pytest.mark.anyio
async def test_evaluate_missing_permission_and_bypass_role() -> None:
    store = InMemoryPolicyStore()
    await store.set_bypass_role("g", "managers")
    resolver = PolicyResolver(store)
    denied = await resolver.evaluate(
        workspace_id="g", command_name="audit", channel_id="c", invoker=_invoker()
    )
    assert denied.reason is DenialReason.MISSING_PERMISSION
    assert "Administrator" in denied.denial_message("audit")

    bypassed = await resolver.evaluate(
        workspace_id="g",
        command_name="audit",
        channel_id="c",
        invoker=_invoker(roles=("managers",)),
    )
    assert bypassed.allowed and bypassed.bypassed


@pytest.mark.anyio
async def test_evaluate_store_outage_follows_configured_mode() -> None:
    store = InMemoryPolicyStore()
    store.broken = True
    open_ping = await PolicyResolver(store).evaluate(
        workspace_id="g", command_name="ping", channel_id="c", invoker=_invoker()
    )
    assert open_ping.allowed
    assert open_ping.store_available is False

    open_audit = await PolicyResolver(store).evaluate(
        workspace_id="g", command_name="audit", channel_id="c", invoker=_invoker()
    )
    assert open_audit.reason is DenialReason.MISSING_PERMISSION
    assert open_audit.store_available is False
    admin = await PolicyResolver(store).evaluate(
        workspace_id="g",
        command_name="audit",
        channel_id="c",
        invoker=_invoker(PERM_ADMINISTRATOR),
    )
    assert admin.allowed and admin.bypassed

    deny = await PolicyResolver(store, on_store_error="deny").evaluate(
        workspace_id="g", command_name="ping", channel_id="c", invoker=_invoker()
    )
    assert not deny.allowed
    assert deny.reason is DenialReason.STORE_UNAVAILABLE


@pytest.mark.anyio
async def test_resolve_overlays_stored_rule_on_default() -> None:
    store = InMemoryPolicyStore()
    resolver = PolicyResolver(store)

    assert await resolver.resolve("g", "role") == DEFAULT_POLICIES["role"]
    assert await resolver.resolve("g", "unknown") == EffectivePolicy()

    await store.put_command_rule(
        "g", "role", CommandRule(block_channels=frozenset({"c9"}))
    )
    resolved = await resolver.resolve("g", "role")
    assert resolved.min_permission == "manageRoles"
    assert resolved.block_channels == frozenset({"c9"})

    await store.put_command_rule("g", "role", CommandRule(min_permission="everyone"))
    assert (await resolver.resolve("g", "role")).min_permission is None


@pytest.mark.anyio
async def test_resolve_during_outage() -> None:
    store = InMemoryPolicyStore()
    await store.put_command_rule("g", "dangeru", CommandRule(enabled=True))
    store.broken = True

    fallback = await PolicyResolver(store).resolve("g", "role")
    assert fallback.min_permission == "manageRoles"
    assert await PolicyResolver(store).resolve("g", "dangeru") == DEFAULT_POLICIES["dangeru"]

    with pytest.raises(StoreUnavailableError):
        await PolicyResolver(store, on_store_error="deny").resolve("g", "role")


@pytest.mark.anyio
async def test_evaluate_without_workspace_uses_defaults() -> None:
    store = InMemoryPolicyStore()
    decision = await PolicyResolver(store).evaluate(
        workspace_id=None, command_name="ping", channel_id=None, invoker=_invoker()
    )
    assert decision.allowed
    assert store.reads == 0


def test_resolver_rejects_unknown_store_error_mode() -> None:
    with pytest.raises(ValueError):
        PolicyResolver(None, on_store_error="maybe")

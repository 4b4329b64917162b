"""Capability tokens and the invoking member's identity.

Discord delivers the invoker's resolved permission bitfield on every guild
interaction (`member.permissions`), including the full bitfield for the
guild owner, so capability checks never need an extra API round trip.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

EVERYONE = "everyone"

# https://discord.com/developers/docs/topics/permissions#permissions-bitwise-permission-flags
CAPABILITY_BITS: dict[str, int] = {
    "kickMembers": 1 << 1,
    "banMembers": 1 << 2,
    "administrator": 1 << 3,
    "manageChannels": 1 << 4,
    "manageGuild": 1 << 5,
    "manageMessages": 1 << 13,
    "manageRoles": 1 << 28,
    "manageEmojisAndStickers": 1 << 30,
}
ADMINISTRATOR_BIT = CAPABILITY_BITS["administrator"]

_LOOKUP = {name.lower(): name for name in CAPABILITY_BITS}
_LOOKUP[EVERYONE] = EVERYONE
_LOOKUP["null"] = EVERYONE
_LOOKUP["none"] = EVERYONE


def normalize_capability(token: Optional[str]) -> Optional[str]:
    """Map user/storage spellings to a canonical token.

    `ManageGuild`, `manageguild` and `manageGuild` all map to `manageGuild`;
    `null`/`none`/`everyone` map to `everyone`. Unknown tokens yield None.
    """

    if token is None:
        return None
    cleaned = str(token).strip().replace("_", "").replace(" ", "")
    if not cleaned:
        return None
    return _LOOKUP.get(cleaned.lower())


def readable_capability(token: Optional[str]) -> str:
    if not token or token == EVERYONE:
        return "Everyone"
    spaced = re.sub(r"([A-Z])", r" \1", token).strip()
    return spaced[:1].upper() + spaced[1:].replace("Guild", "Server")


def _parse_bitfield(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


@dataclass(frozen=True)
class Invoker:
    """The member who triggered an interaction."""

    user_id: str
    permissions: int = 0
    role_ids: frozenset[str] = field(default_factory=frozenset)
    display_name: Optional[str] = None

    @classmethod
    def from_interaction(cls, payload: dict[str, Any]) -> Optional["Invoker"]:
        member = payload.get("member")
        if isinstance(member, dict):
            user = member.get("user") if isinstance(member.get("user"), dict) else {}
            user_id = str(user.get("id") or "").strip()
            if not user_id:
                return None
            roles = member.get("roles")
            return cls(
                user_id=user_id,
                permissions=_parse_bitfield(member.get("permissions")),
                role_ids=frozenset(
                    str(role) for role in roles if str(role).strip()
                )
                if isinstance(roles, list)
                else frozenset(),
                display_name=member.get("nick") or user.get("global_name")
                or user.get("username"),
            )
        user = payload.get("user")
        if isinstance(user, dict) and str(user.get("id") or "").strip():
            return cls(
                user_id=str(user["id"]).strip(),
                display_name=user.get("global_name") or user.get("username"),
            )
        return None

    @property
    def is_administrator(self) -> bool:
        return bool(self.permissions & ADMINISTRATOR_BIT)

    def has_capability(self, token: Optional[str]) -> bool:
        canonical = normalize_capability(token)
        if canonical is None or canonical == EVERYONE:
            return True
        if self.is_administrator:
            return True
        return bool(self.permissions & CAPABILITY_BITS[canonical])


def has_bypass(
    invoker: Invoker,
    *,
    bypass_role_id: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> bool:
    """Owner, administrator, or manager-role holder."""

    if invoker.is_administrator:
        return True
    if owner_id is not None and invoker.user_id == owner_id:
        return True
    return bool(bypass_role_id) and bypass_role_id in invoker.role_ids

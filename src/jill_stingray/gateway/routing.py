"""Component routing keys (Discord `custom_id` values).

Two wire forms are accepted:

* `family|ownerId|arg1|arg2...` carries the owning user and is used by every
  ownership-checked family.
* `family_sub_action` names the family only; everything after the first
  underscore is split into arguments.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .sessions import FlowKind

OWNER_SEPARATOR = "|"
FAMILY_SEPARATOR = "_"
MAX_CUSTOM_ID_LENGTH = 100


class RoutingKeyError(ValueError):
    """Raised when a routing key cannot be encoded."""


@dataclass(frozen=True)
class RoutingKey:
    family: str
    owner_id: Optional[str]
    args: tuple[str, ...]
    raw: str

    @property
    def embeds_owner(self) -> bool:
        return self.owner_id is not None

    def arg(self, index: int, default: Optional[str] = None) -> Optional[str]:
        if 0 <= index < len(self.args):
            return self.args[index]
        return default


def decode_routing_key(custom_id: Optional[str]) -> Optional[RoutingKey]:
    if not custom_id or not custom_id.isascii():
        return None
    if OWNER_SEPARATOR in custom_id:
        parts = custom_id.split(OWNER_SEPARATOR)
        family = parts[0].strip()
        owner_id = parts[1].strip() if len(parts) > 1 else ""
        if not family:
            return None
        return RoutingKey(
            family=family,
            owner_id=owner_id or None,
            args=tuple(parts[2:]),
            raw=custom_id,
        )
    family, _, rest = custom_id.partition(FAMILY_SEPARATOR)
    family = family.strip()
    if not family:
        return None
    return RoutingKey(
        family=family,
        owner_id=None,
        args=tuple(rest.split(FAMILY_SEPARATOR)) if rest else (),
        raw=custom_id,
    )


def encode_routing_key(family: str, owner_id: Optional[str] = None, *args: object) -> str:
    tokens = [family, *(str(arg) for arg in args)]
    if not family or FAMILY_SEPARATOR in family or OWNER_SEPARATOR in family:
        raise RoutingKeyError(f"invalid family token: {family!r}")
    if any(OWNER_SEPARATOR in token for token in tokens):
        raise RoutingKeyError("routing key parts must not contain '|'")
    if owner_id is None:
        encoded = FAMILY_SEPARATOR.join(tokens)
    else:
        encoded = OWNER_SEPARATOR.join([family, str(owner_id), *tokens[1:]])
    if not encoded.isascii():
        raise RoutingKeyError("routing key must be ASCII")
    if len(encoded) > MAX_CUSTOM_ID_LENGTH:
        raise RoutingKeyError(
            f"routing key exceeds {MAX_CUSTOM_ID_LENGTH} characters"
        )
    return encoded


class Ownership(str, Enum):
    PUBLIC = "public"
    OWNER = "owner"


@dataclass(frozen=True)
class ComponentRoute:
    """What the dispatcher enforces before a family's handler runs."""

    family: str
    ownership: Ownership = Ownership.OWNER
    flow_kinds: frozenset[FlowKind] = frozenset()
    min_permission: Optional[str] = None

    @property
    def requires_session(self) -> bool:
        return bool(self.flow_kinds)


CONFIRM_FAMILY = "confirm"
CANCEL_FAMILY = "cancel"

CONFIRM_ROUTE = ComponentRoute(
    family=CONFIRM_FAMILY, flow_kinds=frozenset(FlowKind)
)
CANCEL_ROUTE = ComponentRoute(family=CANCEL_FAMILY)

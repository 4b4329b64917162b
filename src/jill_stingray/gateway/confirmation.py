"""Confirm/cancel affordances and the per-item tally for bulk operations.

A confirmable flow moves `idle -> awaiting_confirmation` when its command
stores a session and shows the two buttons built here; the dispatcher owns
the `confirm` and `cancel` families that finish it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from ..core.logging_utils import log_event
from ..integrations.discord.components import (
    DISCORD_BUTTON_STYLE_DANGER,
    DISCORD_BUTTON_STYLE_SECONDARY,
    DISCORD_BUTTON_STYLE_SUCCESS,
    build_action_row,
    build_button,
)
from .routing import CANCEL_FAMILY, CONFIRM_FAMILY, encode_routing_key
from .sessions import FlowKind

T = TypeVar("T")

CANCELLED_MESSAGE = "Action cancelled."
SESSION_EXPIRED_MESSAGE = "❌ Session expired. Please run the command again."

_COLOR_OK = 0x00FF00
_COLOR_PARTIAL = 0xFFA500


@dataclass
class BulkResult:
    """Outcome of attempting every item of a bulk operation."""

    title: str
    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    success_label: str = "Applied"
    failure_label: str = "Failed"
    header: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def describe(self) -> str:
        lines = [self.header] if self.header else []
        lines.append(f"**{self.success_label}:** {len(self.succeeded)}")
        if self.failed:
            names = ", ".join(item for item, _ in self.failed)
            lines.append(f"**{self.failure_label}:** {len(self.failed)} ({names})")
        else:
            lines.append(f"**{self.failure_label}:** 0")
        return "\n".join(lines)

    def to_embed(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.describe(),
            "color": _COLOR_OK if self.ok else _COLOR_PARTIAL,
        }


async def run_bulk(
    title: str,
    items: Iterable[T],
    operation: Callable[[T], Awaitable[Any]],
    *,
    label: Callable[[T], str] = str,
    logger: Optional[logging.Logger] = None,
    success_label: str = "Applied",
    failure_label: str = "Failed",
    header: Optional[str] = None,
) -> BulkResult:
    """Attempt `operation` on each item; failures are collected, never raised."""

    log = logger or logging.getLogger(__name__)
    result = BulkResult(
        title=title,
        success_label=success_label,
        failure_label=failure_label,
        header=header,
    )
    for item in items:
        name = label(item)
        try:
            await operation(item)
        except Exception as exc:
            log_event(
                log,
                logging.WARNING,
                "gateway.confirmation.item_failed",
                operation=title,
                item=name,
                exc=exc,
            )
            result.failed.append((name, str(exc) or type(exc).__name__))
            continue
        result.succeeded.append(name)
    return result


def confirm_custom_id(owner_id: str, flow_kind: FlowKind) -> str:
    return encode_routing_key(CONFIRM_FAMILY, owner_id, flow_kind.value)


def cancel_custom_id(owner_id: str, flow_kind: FlowKind) -> str:
    return encode_routing_key(CANCEL_FAMILY, owner_id, flow_kind.value)


def build_confirmation_row(
    owner_id: str,
    flow_kind: FlowKind,
    *,
    confirm_label: str = "Confirm",
    cancel_label: str = "Cancel",
    destructive: bool = False,
) -> dict[str, Any]:
    return build_action_row(
        [
            build_button(
                confirm_label,
                confirm_custom_id(owner_id, flow_kind),
                style=DISCORD_BUTTON_STYLE_DANGER
                if destructive
                else DISCORD_BUTTON_STYLE_SUCCESS,
            ),
            build_button(
                cancel_label,
                cancel_custom_id(owner_id, flow_kind),
                style=DISCORD_BUTTON_STYLE_SECONDARY
                if destructive
                else DISCORD_BUTTON_STYLE_DANGER,
            ),
        ]
    )

"""Shared error hierarchy.

Adapters and stores compose these so retry and severity decisions stay
consistent across the gateway.
"""

from __future__ import annotations

from typing import Optional


class JillError(Exception):
    """Base error for the bot."""

    recoverable: bool = True
    severity: str = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class TransientError(JillError):
    """Retryable failure (network blips, locked database, rate limits)."""

    recoverable = True
    severity = "warning"


class PermanentError(JillError):
    """Non-retryable failure (bad configuration, invalid requests)."""

    recoverable = False
    severity = "error"


class StoreUnavailableError(TransientError):
    """A backing store could not be read or written."""

    def __init__(
        self,
        message: str,
        *,
        store: str,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.store = store


class RegistryError(PermanentError):
    """Command or component registry is inconsistent."""

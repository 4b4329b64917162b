"""Keeps one event's fault from reaching the event loop or later events.

Two layers:

* `guard()` wraps each handler call, logs the fault and turns it into a
  best-effort reply to the user.
* `spawn()` runs each inbound event as its own task; anything that escapes
  `guard()` is logged from the task's done-callback and dropped.

Neither layer retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional

from ..core.exceptions import JillError
from ..core.logging_utils import log_event

GENERIC_ERROR_MESSAGE = "Command execution error."


def user_message_for(exc: BaseException) -> str:
    if isinstance(exc, JillError) and exc.user_message:
        return exc.user_message
    return GENERIC_ERROR_MESSAGE


class FailureSupervisor:
    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._idle_event = asyncio.Event()
        self._idle_event.set()
        self.faults = 0

    async def guard(
        self,
        label: str,
        call: Callable[[], Awaitable[Any]],
        *,
        on_error: Optional[Callable[[str], Awaitable[None]]] = None,
        **fields: Any,
    ) -> bool:
        """Run `call`; returns False when it raised."""

        try:
            await call()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.faults += 1
            log_event(
                self._logger,
                logging.ERROR,
                "gateway.supervisor.handler_failed",
                handler=label,
                exc=exc,
                **fields,
            )
            if on_error is not None:
                await self._report(label, on_error, user_message_for(exc), fields)
            return False
        return True

    async def _report(
        self,
        label: str,
        on_error: Callable[[str], Awaitable[None]],
        message: str,
        fields: dict[str, Any],
    ) -> None:
        try:
            await on_error(message)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "gateway.supervisor.error_reply_failed",
                handler=label,
                exc=exc,
                **fields,
            )

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, label: str, **fields: Any
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        self._idle_event.clear()

        def _done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if not self._tasks:
                self._idle_event.set()
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                self.faults += 1
                log_event(
                    self._logger,
                    logging.ERROR,
                    "gateway.supervisor.task_escaped",
                    task=label,
                    exc=exc,
                    **fields,
                )

        task.add_done_callback(_done)
        return task

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        await self._idle_event.wait()

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def install_loop_handler(self, loop: asyncio.AbstractEventLoop) -> None:
        """Log faults the loop would otherwise print, without stopping it."""

        def _handler(
            _loop: asyncio.AbstractEventLoop, context: dict[str, Any]
        ) -> None:
            exc = context.get("exception")
            self.faults += 1
            log_event(
                self._logger,
                logging.ERROR,
                "gateway.supervisor.loop_exception",
                message=context.get("message"),
                exc=exc if isinstance(exc, BaseException) else None,
            )

        loop.set_exception_handler(_handler)

from __future__ import annotations

import asyncio
import logging

import pytest

from jill_stingray.core.exceptions import PermanentError
from jill_stingray.gateway.supervisor import (
    GENERIC_ERROR_MESSAGE,
    FailureSupervisor,
    user_message_for,
)

pytestmark = pytest.mark.anyio


def test_user_message_for_prefers_error_text() -> None:
    assert user_message_for(PermanentError("x", user_message="nope")) == "nope"
    assert user_message_for(PermanentError("x")) == GENERIC_ERROR_MESSAGE
    assert user_message_for(KeyError("x")) == GENERIC_ERROR_MESSAGE


async def test_guard_reports_and_counts_faults() -> None:
    supervisor = FailureSupervisor(logger=logging.getLogger("test.supervisor"))
    replies: list[str] = []

    async def _fail() -> None:
        raise ValueError("broken")

    async def _reply(message: str) -> None:
        replies.append(message)

    async def _ok() -> None:
        return None

    assert await supervisor.guard("bad", _fail, on_error=_reply) is False
    assert await supervisor.guard("good", _ok, on_error=_reply) is True
    assert replies == [GENERIC_ERROR_MESSAGE]
    assert supervisor.faults == 1


async def test_guard_survives_failing_error_reply(
    caplog: pytest.LogCaptureFixture,
) -> None:
    supervisor = FailureSupervisor(logger=logging.getLogger("test.supervisor"))

    async def _fail() -> None:
        raise ValueError("broken")

    async def _reply(_message: str) -> None:
        raise ConnectionError("discord is down")

    with caplog.at_level(logging.WARNING, logger="test.supervisor"):
        assert await supervisor.guard("bad", _fail, on_error=_reply) is False
    assert "gateway.supervisor.error_reply_failed" in caplog.text


async def test_guard_does_not_swallow_cancellation() -> None:
    supervisor = FailureSupervisor()

    async def _cancelled() -> None:
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await supervisor.guard("cancel", _cancelled)
    assert supervisor.faults == 0


async def test_spawned_task_fault_is_logged_not_raised(
    caplog: pytest.LogCaptureFixture,
) -> None:
    supervisor = FailureSupervisor(logger=logging.getLogger("test.supervisor"))
    finished: list[str] = []

    async def _escape() -> None:
        raise RuntimeError("escaped")

    async def _work() -> None:
        await asyncio.sleep(0)
        finished.append("ok")

    with caplog.at_level(logging.ERROR, logger="test.supervisor"):
        supervisor.spawn(_escape(), label="event-1")
        supervisor.spawn(_work(), label="event-2")
        await supervisor.wait_idle()
        await asyncio.sleep(0)

    assert finished == ["ok"]
    assert supervisor.active_tasks == 0
    assert supervisor.faults == 1
    assert "gateway.supervisor.task_escaped" in caplog.text


async def test_cancel_all_stops_inflight_tasks() -> None:
    supervisor = FailureSupervisor()
    started = asyncio.Event()

    async def _hang() -> None:
        started.set()
        await asyncio.sleep(3600)

    supervisor.spawn(_hang(), label="hang")
    await started.wait()
    await supervisor.cancel_all()
    await asyncio.sleep(0)
    assert supervisor.active_tasks == 0
    assert supervisor.faults == 0

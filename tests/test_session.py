from __future__ import annotations

import asyncio

import pytest

from chat_dispatch.dispatch import SubmitOutcome
from chat_dispatch.session import SessionReadiness, SessionRegistry

from conftest import ScriptedClient


def test_readiness_wait_resumes_after_set_ready():
    readiness = SessionReadiness()

    async def go():
        waiter = asyncio.create_task(readiness.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        readiness.set_ready()
        await asyncio.wait_for(waiter, timeout=1)
        return readiness.is_ready

    assert asyncio.run(go()) is True


def test_registry_sessions_have_independent_logs_and_busy_signals():
    registry = SessionRegistry(ScriptedClient("ok"), persona="p")
    a = registry.create("a")
    b = registry.create("b")

    asyncio.run(a.controller.submit("hello"))

    assert len(a.log) == 2
    assert len(b.log) == 0
    assert a.controller.busy is not b.controller.busy
    assert len(registry) == 2


def test_registry_rejects_duplicate_ids():
    registry = SessionRegistry(ScriptedClient())
    registry.create("dup")
    with pytest.raises(ValueError):
        registry.create("dup")


def test_session_created_not_ready_ignores_submits():
    registry = SessionRegistry(ScriptedClient())
    session = registry.create(ready=False)
    assert asyncio.run(session.controller.submit("hi")) is SubmitOutcome.IGNORED_NOT_READY
    assert len(session.log) == 0


def test_close_removes_session_and_stops_dispatch():
    registry = SessionRegistry(ScriptedClient())
    session = registry.create("gone")

    async def go():
        closed = await registry.close("gone")
        missing = await registry.close("gone")
        outcome = await session.controller.submit("hi")
        return closed, missing, outcome

    closed, missing, outcome = asyncio.run(go())
    assert closed is True
    assert missing is False
    assert outcome is SubmitOutcome.IGNORED_NOT_READY
    assert registry.get("gone") is None

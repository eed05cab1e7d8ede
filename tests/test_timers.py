from __future__ import annotations

import asyncio

from core.timers import PeriodicTask


def test_periodic_task_keeps_running_after_callback_errors() -> None:
    calls: list[int] = []

    async def callback() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("boom")

    async def scenario() -> None:
        task = PeriodicTask("test", 0.01, callback)
        assert task.start()
        await asyncio.sleep(0.1)
        assert task.running
        assert task.stop()

    asyncio.run(scenario())

    assert len(calls) >= 2


def test_start_and_stop_are_idempotent() -> None:
    async def callback() -> None:
        return None

    async def scenario() -> None:
        task = PeriodicTask("test", 10, callback)
        assert task.start()
        assert not task.start()
        assert task.stop()
        assert not task.stop()
        assert not task.running

    asyncio.run(scenario())


def test_delayed_start_waits_one_interval() -> None:
    calls: list[int] = []

    async def callback() -> None:
        calls.append(1)

    async def scenario() -> None:
        task = PeriodicTask("test", 10, callback, run_immediately=False)
        task.start()
        await asyncio.sleep(0.02)
        task.stop()

    asyncio.run(scenario())

    assert calls == []

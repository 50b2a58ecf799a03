import asyncio

import pytest

from libs.timers import AsyncioTimerFactory

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_timer_runs_callback():
    fired = asyncio.Event()

    async def callback():
        fired.set()

    AsyncioTimerFactory()(0.01, callback)

    await asyncio.wait_for(fired.wait(), timeout=1)


@pytest.mark.asyncio
async def test_cancelled_timer_never_runs():
    calls = []

    async def callback():
        calls.append(1)

    handle = AsyncioTimerFactory()(0.01, callback)
    handle.cancel()
    await asyncio.sleep(0.05)

    assert calls == []


@pytest.mark.asyncio
async def test_failing_callback_is_logged(caplog):
    async def callback():
        raise RuntimeError("broadcast failed")

    factory = AsyncioTimerFactory()
    factory(-5, callback)
    await asyncio.sleep(0.05)

    assert "Timer callback failed" in caplog.text
    assert factory.running == 0

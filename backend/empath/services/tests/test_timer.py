import asyncio

from empath.services.timer import ResettableTimer


async def test_restart_debounces():
    fired = []
    timer = ResettableTimer(0.05, fired.append, "debounce")
    for value in range(4):
        timer.restart(value)
        await asyncio.sleep(0.01)
    assert timer.pending
    await asyncio.sleep(0.1)
    assert fired == [3]
    assert not timer.pending


async def test_start_if_idle_keeps_first_window():
    fired = []
    timer = ResettableTimer(0.05, lambda: fired.append("tick"), "window")
    assert timer.start_if_idle()
    await asyncio.sleep(0.03)
    assert not timer.start_if_idle()
    await asyncio.sleep(0.04)
    assert fired == ["tick"]
    assert timer.start_if_idle()
    timer.cancel()


async def test_cancel_prevents_fire():
    fired = []
    timer = ResettableTimer(0.02, fired.append, "cutoff")
    timer.restart("x")
    timer.cancel()
    await asyncio.sleep(0.05)
    assert fired == []


async def test_async_callback_and_errors():
    fired = []

    async def callback(value):
        fired.append(value)

    ok = ResettableTimer(0.01, callback, "async")
    ok.restart("done")

    def broken():
        raise RuntimeError("boom")

    failing = ResettableTimer(0.01, broken, "broken")
    failing.restart()
    await asyncio.sleep(0.05)
    assert fired == ["done"]
    assert not failing.pending

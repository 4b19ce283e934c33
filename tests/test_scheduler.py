import asyncio

from server_clock.scheduler import RepeatingTask


def test_runs_repeatedly_until_stopped():
    calls = []

    async def scenario():
        task = RepeatingTask(5, lambda: calls.append(1), name="counter")
        task.start()
        await asyncio.sleep(0.06)
        await task.stop()
        stopped_at = len(calls)
        await asyncio.sleep(0.03)
        return task, stopped_at

    task, stopped_at = asyncio.run(scenario())

    assert stopped_at >= 3
    assert len(calls) == stopped_at
    assert task.runs == stopped_at
    assert not task.running


def test_async_callbacks_never_overlap():
    active = 0
    peak = 0
    runs = 0

    async def slow():
        nonlocal active, peak, runs
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        runs += 1

    async def scenario():
        task = RepeatingTask(1, slow)
        task.start()
        await asyncio.sleep(0.1)
        await task.stop()

    asyncio.run(scenario())

    assert runs >= 2
    assert peak == 1


def test_callback_errors_do_not_stop_the_loop():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise ValueError("first tick fails")

    async def scenario():
        task = RepeatingTask(5, flaky)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

    asyncio.run(scenario())
    assert len(calls) >= 2


def test_delayed_first_run_and_restart():
    calls = []

    async def scenario():
        task = RepeatingTask(50, lambda: calls.append(1), immediate=False)
        task.start()
        task.start()
        await asyncio.sleep(0.02)
        first_window = len(calls)
        task.cancel()
        task.cancel()
        task.start()
        assert task.running
        await task.stop()
        return first_window

    first_window = asyncio.run(scenario())
    assert first_window == 0


def test_repeated_cancel_does_not_accumulate_finished_loops():
    async def scenario():
        task = RepeatingTask(5, lambda: None)
        for _ in range(5):
            task.start()
            await asyncio.sleep(0.01)
            task.cancel()
            await asyncio.sleep(0.01)
        pending = len(task._cancelled)
        await task.stop()
        return pending, len(task._cancelled)

    pending, after_stop = asyncio.run(scenario())
    assert pending <= 1
    assert after_stop == 0

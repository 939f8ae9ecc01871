"""
Sweep worker loop tests.
"""
import asyncio
import contextlib

from sweep_worker import worker_loop


class FlakySweeper:
    """Fails on the first pass, then reports one completion per pass"""

    def __init__(self, passes):
        self.calls = 0
        self.passes = passes
        self.done = asyncio.Event()

    async def sweep_all_deployed(self):
        self.calls += 1
        if self.calls >= self.passes:
            self.done.set()
        if self.calls == 1:
            raise RuntimeError('database unavailable')
        return 1


async def test_loop_survives_errors_and_keeps_sweeping():
    sweeper = FlakySweeper(passes=3)
    task = asyncio.create_task(worker_loop(sweeper, interval=0))

    await asyncio.wait_for(sweeper.done.wait(), timeout=5)
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert sweeper.calls >= 3

import asyncio

import pytest

from pagebot.services.background import BackgroundTaskSpawner


class TestBackgroundTaskSpawner:
    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self):
        spawner = BackgroundTaskSpawner()
        done = []

        async def fails():
            raise RuntimeError("boom")

        async def succeeds():
            await asyncio.sleep(0)
            done.append("ok")

        spawner.spawn(fails(), name="fails")
        spawner.spawn(succeeds(), name="succeeds")
        await spawner.drain(timeout=1)

        assert done == ["ok"]
        assert spawner.pending == 0

    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks_spawned_while_draining(self):
        spawner = BackgroundTaskSpawner()
        done = []

        async def child():
            done.append("child")

        async def parent():
            await asyncio.sleep(0)
            spawner.spawn(child(), name="child")

        spawner.spawn(parent(), name="parent")
        await spawner.drain(timeout=1)

        assert done == ["child"]

    @pytest.mark.asyncio
    async def test_drain_timeout(self):
        spawner = BackgroundTaskSpawner()
        task = spawner.spawn(asyncio.sleep(10), name="slow")

        await spawner.drain(timeout=0.01)

        assert spawner.pending == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

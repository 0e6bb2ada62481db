"""Tests for chatpilot.background"""

import asyncio

import pytest

from chatpilot.background import BackgroundTasks


class TestBackgroundTasks:

    @pytest.mark.asyncio
    async def test_spawn_and_drain(self):
        done = []

        async def work(n):
            await asyncio.sleep(0)
            done.append(n)

        tasks = BackgroundTasks()
        tasks.spawn(work(1))
        tasks.spawn(work(2))
        assert tasks.pending == 2

        await tasks.drain()

        assert sorted(done) == [1, 2]
        assert tasks.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_contained(self):
        async def boom():
            raise RuntimeError("vendor delete failed")

        tasks = BackgroundTasks()
        tasks.spawn(boom(), label="vendor-delete")
        await tasks.drain()
        assert tasks.pending == 0
